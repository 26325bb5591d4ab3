"""Retraction engine: emits empty groups for sources that disappeared."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from .models import TargetGroup

logger = logging.getLogger(__name__)


def reconcile(
    previous: frozenset[str] | set[str],
    current_groups: Sequence[TargetGroup],
) -> tuple[list[TargetGroup], frozenset[str]]:
    """Compare the current groups against the sources seen on the previous cycle.

    Returns:
        (batch, current_sources) where:
        - batch: current_groups followed by one retraction marker per source
          that was in `previous` but is not current, in sorted order
        - current_sources: the sources of current_groups, to be passed back as
          `previous` on the next cycle
    """
    current = frozenset(group.source for group in current_groups)

    for source in sorted(current - previous):
        logger.debug("Source added: %s", source, extra={"source": source})

    removed = sorted(previous - current)
    for source in removed:
        logger.info("Source removed: %s, emitting retraction", source, extra={"source": source})

    batch = list(current_groups)
    batch.extend(TargetGroup.retraction(source) for source in removed)

    logger.info(
        "Reconciliation: %d current, %d added, %d removed",
        len(current), len(current - previous), len(removed),
    )
    return batch, current
