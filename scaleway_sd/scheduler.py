"""Polling loop: poll -> map -> build -> reconcile -> publish -> wait."""

from __future__ import annotations

import enum
import logging
import signal
import threading
import time
from types import FrameType

from .discovery import InventoryClient, OutputSink
from .discovery.group_builder import GroupBuilder, MappedTarget
from .discovery.label_mapper import LabelMapper
from .discovery.models import InstanceRecord, TargetGroup
from .discovery.reconciler import reconcile
from .exceptions import MalformedRecordError, SinkError
from .metrics import DiscoveryMetrics

logger = logging.getLogger(__name__)


class SchedulerState(enum.Enum):
    IDLE = "idle"
    POLLING = "polling"
    PUBLISHING = "publishing"
    WAITING = "waiting"
    STOPPED = "stopped"


class Scheduler:
    """Drives discovery cycles on a fixed interval until stopped.

    The only state carried between cycles is the set of sources published on
    the last successful cycle. A failed poll leaves it untouched and publishes
    nothing.
    """

    def __init__(
        self,
        client: InventoryClient,
        mapper: LabelMapper,
        builder: GroupBuilder,
        sink: OutputSink,
        interval_seconds: float,
        metrics: DiscoveryMetrics,
        malformed_records: str = "drop",
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if malformed_records not in ("drop", "warn"):
            raise ValueError(f"Unknown malformed record policy: {malformed_records!r}")
        self._client = client
        self._mapper = mapper
        self._builder = builder
        self._sink = sink
        self._interval = interval_seconds
        self._metrics = metrics
        self._warn_malformed = malformed_records == "warn"
        self._previous: frozenset[str] = frozenset()
        self._stop = threading.Event()
        self._state = SchedulerState.IDLE

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def previous_identities(self) -> frozenset[str]:
        return self._previous

    def stop(self) -> None:
        """Request shutdown. Safe to call from any thread or signal handler."""
        self._stop.set()

    def run_once(self) -> list[TargetGroup] | None:
        """Execute a single cycle. Returns the published batch, or None if the poll failed."""
        return self._cycle()

    def run(self) -> None:
        """Run cycles until stop() is called."""
        logger.info("Scheduler started, polling every %ss", self._interval)

        while not self._stop.is_set():
            cycle_start = time.monotonic()
            self._cycle()

            self._state = SchedulerState.WAITING
            elapsed = time.monotonic() - cycle_start
            sleep_time = max(0.0, self._interval - elapsed)
            logger.debug("Sleeping %.1fs before next cycle", sleep_time)
            self._stop.wait(sleep_time)

        self._state = SchedulerState.STOPPED
        logger.info("Scheduler stopped")

    def _cycle(self) -> list[TargetGroup] | None:
        """One full poll-to-publish cycle."""
        self._state = SchedulerState.POLLING
        start = time.monotonic()

        records = self._poll()
        if records is None:
            self._state = SchedulerState.WAITING
            return None

        mapped = self._map(records)
        groups = self._builder.build(mapped)
        batch, current = reconcile(self._previous, groups)
        retracted = len(batch) - len(groups)

        # Committed before publishing so a slow or failing sink cannot desync it
        self._previous = current
        self._metrics.record_cycle(targets=len(mapped), groups=len(groups), retracted=retracted)

        self._state = SchedulerState.PUBLISHING
        self._publish(batch)
        self._state = SchedulerState.WAITING

        elapsed = time.monotonic() - start
        logger.info(
            "Cycle complete",
            extra={
                "elapsed_seconds": round(elapsed, 2),
                "targets": len(mapped),
                "groups": len(groups),
                "retracted": retracted,
            },
        )
        return batch

    def _poll(self) -> list[InstanceRecord] | None:
        start = time.monotonic()
        try:
            records = self._client.list_instances()
        except Exception:
            self._metrics.request_failures.inc()
            logger.exception("Inventory request failed, keeping previous state")
            return None
        finally:
            self._metrics.request_duration.observe(time.monotonic() - start)

        logger.debug("Inventory returned %d servers", len(records), extra={"total_instances": len(records)})
        return records

    def _map(self, records: list[InstanceRecord]) -> list[MappedTarget]:
        mapped: list[MappedTarget] = []
        skipped = 0
        for record in records:
            try:
                target, labels = self._mapper.map(record)
            except MalformedRecordError as exc:
                skipped += 1
                self._metrics.malformed_records.inc()
                level = logging.WARNING if self._warn_malformed else logging.DEBUG
                logger.log(level, "Skipping malformed server: %s", exc)
                continue
            mapped.append((record, target, labels))

        if skipped and self._warn_malformed:
            logger.warning("Partial batch: %d of %d servers skipped", skipped, len(records))
        return mapped

    def _publish(self, batch: list[TargetGroup]) -> None:
        try:
            self._sink.publish(batch)
        except SinkError as exc:
            logger.error("Sink rejected batch of %d groups: %s", len(batch), exc)
        except Exception:
            logger.exception("Sink failed to publish batch of %d groups", len(batch))

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self._handle_shutdown)
        signal.signal(signal.SIGINT, self._handle_shutdown)

    def _handle_shutdown(self, signum: int, frame: FrameType | None) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("Received %s, shutting down", sig_name)
        self.stop()
