"""Groups mapped targets into named target groups."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from .models import InstanceRecord, LabelSet, Target, TargetGroup

logger = logging.getLogger(__name__)

PER_INSTANCE = "per-instance"
MERGED = "merged"
SOURCE_PREFIX = "scaleway"

MappedTarget = tuple[InstanceRecord, Target, LabelSet]


class GroupBuilder:
    """Builds an ordered list of TargetGroups using one grouping policy.

    per-instance: one group per server, source "scaleway/<id>".
    merged: servers whose labels are equal once the per-instance labels are
    dropped share one group, source "<name>/<n>" in order of first appearance.
    """

    def __init__(
        self,
        policy: str = PER_INSTANCE,
        group_name: str = SOURCE_PREFIX,
        instance_labels: Iterable[str] = (),
    ):
        if policy not in (PER_INSTANCE, MERGED):
            raise ValueError(f"Unknown grouping policy: {policy!r}")
        self._policy = policy
        self._group_name = group_name
        self._instance_labels = frozenset(instance_labels)

    @property
    def policy(self) -> str:
        return self._policy

    def build(self, mapped: Sequence[MappedTarget]) -> list[TargetGroup]:
        if self._policy == MERGED:
            return self._build_merged(mapped)
        return self._build_per_instance(mapped)

    def _build_per_instance(self, mapped: Sequence[MappedTarget]) -> list[TargetGroup]:
        groups: list[TargetGroup] = []
        seen: set[str] = set()
        for record, target, labels in mapped:
            source = f"{SOURCE_PREFIX}/{record.identifier}"
            if source in seen:
                logger.warning(
                    "Duplicate server %s in inventory, keeping the first", record.identifier,
                    extra={"source": source},
                )
                continue
            seen.add(source)
            groups.append(TargetGroup(source=source, labels=labels, targets=(target,)))
        return groups

    def _build_merged(self, mapped: Sequence[MappedTarget]) -> list[TargetGroup]:
        # dicts keep insertion order, so groups follow first appearance
        buckets: dict[LabelSet, list[Target]] = {}
        for _record, target, labels in mapped:
            shared = labels.without(self._instance_labels)
            buckets.setdefault(shared, []).append(target)

        groups = [
            TargetGroup(source=f"{self._group_name}/{index}", labels=shared, targets=tuple(targets))
            for index, (shared, targets) in enumerate(buckets.items())
        ]
        logger.debug("Merged %d targets into %d groups", len(mapped), len(groups))
        return groups
