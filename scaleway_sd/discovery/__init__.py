"""Discovery package: collaborator Protocols consumed by the scheduler."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .models import InstanceRecord, TargetGroup


@runtime_checkable
class InventoryClient(Protocol):
    """Protocol that every inventory client must satisfy."""

    def list_instances(self) -> list[InstanceRecord]:
        """Return the current servers. Raises InventoryError on failure."""
        ...


@runtime_checkable
class OutputSink(Protocol):
    """Protocol for anything that accepts published target group batches."""

    def publish(self, batch: list[TargetGroup]) -> None:
        """Accept one batch. Empty and retraction-only batches are legal."""
        ...
