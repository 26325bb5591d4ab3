"""Writes published target groups to a Prometheus file_sd JSON file."""

from __future__ import annotations

import json
import logging
import os
import queue
import tempfile
import threading
from pathlib import Path

from ..discovery.models import TargetGroup
from ..exceptions import SinkError

logger = logging.getLogger(__name__)

_STOP = object()


class FileSDSink:
    """Queued file_sd writer.

    publish() only enqueues; a writer thread applies batches in FIFO order.
    Each group replaces the previous group with the same source, and a
    retraction marker deletes it. The file is rewritten only when its
    rendered content changes.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._queue: queue.Queue = queue.Queue()
        self._groups: dict[str, TargetGroup] = {}
        self._last_content: str | None = None
        self._thread: threading.Thread | None = None
        self._closed = False

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="file-sd-writer", daemon=True)
        self._thread.start()

    def publish(self, batch: list[TargetGroup]) -> None:
        if self._closed:
            raise SinkError("file_sd sink is stopped")
        self._queue.put(list(batch))

    def stop(self, timeout: float | None = None) -> None:
        """Drain pending batches and stop the writer thread."""
        if self._closed:
            return
        self._closed = True
        self._queue.put(_STOP)
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self) -> None:
        while True:
            batch = self._queue.get()
            if batch is _STOP:
                return
            try:
                self.apply(batch)
            except Exception:
                logger.exception("Failed to write %s", self._path)

    def apply(self, batch: list[TargetGroup]) -> bool:
        """Merge one batch into the current groups and write the file if it changed."""
        for group in batch:
            if group.is_retraction:
                self._groups.pop(group.source, None)
            else:
                self._groups[group.source] = group

        content = self.render()
        if content == self._last_content:
            logger.debug("file_sd content unchanged, not rewriting %s", self._path)
            return False
        self._write(content)
        self._last_content = content
        logger.info("Wrote %d target groups to %s", len(self._groups), self._path)
        return True

    def render(self) -> str:
        groups = [self._groups[source].to_file_sd() for source in sorted(self._groups)]
        return json.dumps(groups, indent=2, sort_keys=True) + "\n"

    def _write(self, content: str) -> None:
        directory = self._path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=directory, prefix=f".{self._path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
            os.replace(tmp, self._path)
        except OSError:
            Path(tmp).unlink(missing_ok=True)
            raise
