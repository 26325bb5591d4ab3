"""Maps an inventory record to its target address and descriptive labels."""

from __future__ import annotations

from ..config import META_PREFIX
from ..exceptions import MalformedRecordError
from .models import ADDRESS_LABEL, InstanceRecord, LabelSet, Target

ARCH_LABEL = f"{META_PREFIX}architecture"
COMMERCIAL_TYPE_LABEL = f"{META_PREFIX}commercial_type"
IDENTIFIER_LABEL = f"{META_PREFIX}identifier"
NAME_LABEL = f"{META_PREFIX}name"
IMAGE_ID_LABEL = f"{META_PREFIX}image_id"
IMAGE_NAME_LABEL = f"{META_PREFIX}image_name"
ORG_LABEL = f"{META_PREFIX}organization"
PRIVATE_IP_LABEL = f"{META_PREFIX}private_ip"
PUBLIC_IP_LABEL = f"{META_PREFIX}public_ip"
STATE_LABEL = f"{META_PREFIX}state"
TAGS_LABEL = f"{META_PREFIX}tags"
PLATFORM_LABEL = f"{META_PREFIX}platform_id"
HYPERVISOR_LABEL = f"{META_PREFIX}hypervisor_id"
NODE_LABEL = f"{META_PREFIX}node_id"
BLADE_LABEL = f"{META_PREFIX}blade_id"
CHASSIS_LABEL = f"{META_PREFIX}chassis_id"
CLUSTER_LABEL = f"{META_PREFIX}cluster_id"
ZONE_LABEL = f"{META_PREFIX}zone_id"


def join_tags(tags: tuple[str, ...] | list[str], separator: str = ",") -> str:
    """Encode tags as ',a,b,' so a single tag can be matched with ',a,'."""
    if not tags:
        return ""
    return separator + separator.join(tags) + separator


class LabelMapper:
    """Turns an InstanceRecord into a (Target, LabelSet) pair. Pure, no I/O."""

    def __init__(self, port: int, address_source: str = "private", separator: str = ","):
        if address_source not in ("private", "public"):
            raise ValueError(f"Unknown address source: {address_source!r}")
        self._port = port
        self._address_source = address_source
        self._separator = separator

    def map(self, record: InstanceRecord) -> tuple[Target, LabelSet]:
        if not record.identifier:
            raise MalformedRecordError("Record has no identifier")

        host = record.public_ip if self._address_source == "public" else record.private_ip
        if not host:
            raise MalformedRecordError(
                f"Server {record.identifier} has no {self._address_source} IP",
                identifier=record.identifier,
            )

        target = Target(host=host, port=self._port)
        loc = record.location
        labels = LabelSet.from_mapping({
            ADDRESS_LABEL: target.address,
            ARCH_LABEL: record.architecture,
            COMMERCIAL_TYPE_LABEL: record.commercial_type,
            IDENTIFIER_LABEL: record.identifier,
            IMAGE_ID_LABEL: record.image_id,
            IMAGE_NAME_LABEL: record.image_name,
            NAME_LABEL: record.name,
            ORG_LABEL: record.organization,
            PRIVATE_IP_LABEL: record.private_ip,
            PUBLIC_IP_LABEL: record.public_ip,
            STATE_LABEL: record.state,
            TAGS_LABEL: join_tags(record.tags, self._separator),
            PLATFORM_LABEL: loc.platform_id,
            HYPERVISOR_LABEL: loc.hypervisor_id,
            NODE_LABEL: loc.node_id,
            BLADE_LABEL: loc.blade_id,
            CHASSIS_LABEL: loc.chassis_id,
            CLUSTER_LABEL: loc.cluster_id,
            ZONE_LABEL: loc.zone_id,
        })
        return target, labels
