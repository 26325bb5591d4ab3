"""Data models for discovered Scaleway servers and Prometheus target groups."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

ADDRESS_LABEL = "__address__"


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


@dataclass(frozen=True)
class Location:
    """Physical placement of a server inside a Scaleway zone."""

    platform_id: str = ""
    hypervisor_id: str = ""
    node_id: str = ""
    blade_id: str = ""
    chassis_id: str = ""
    cluster_id: str = ""
    zone_id: str = ""

    @classmethod
    def from_api(cls, raw: Mapping[str, Any] | None) -> Location:
        if not raw:
            return cls()
        return cls(**{name: _text(raw.get(name)) for name in cls.__dataclass_fields__})


@dataclass(frozen=True)
class InstanceRecord:
    """A single server as returned by the inventory API."""

    identifier: str
    name: str = ""
    private_ip: str = ""
    public_ip: str = ""
    architecture: str = ""
    commercial_type: str = ""
    image_id: str = ""
    image_name: str = ""
    organization: str = ""
    state: str = ""
    tags: tuple[str, ...] = ()
    location: Location = field(default_factory=Location)

    @classmethod
    def from_api(cls, raw: Mapping[str, Any]) -> InstanceRecord:
        """Build a record from a Scaleway API server object.

        Missing or null attributes become empty strings; validation of what is
        actually needed to build a target happens in the label mapper.
        """
        image = _mapping(raw.get("image"))
        public_ip = _mapping(raw.get("public_ip"))
        return cls(
            identifier=_text(raw.get("id")),
            name=_text(raw.get("name")),
            private_ip=_text(raw.get("private_ip")),
            public_ip=_text(public_ip.get("address")),
            architecture=_text(raw.get("arch")),
            commercial_type=_text(raw.get("commercial_type")),
            image_id=_text(image.get("id")),
            image_name=_text(image.get("name")),
            organization=_text(raw.get("organization")),
            state=_text(raw.get("state")),
            tags=tuple(_text(t) for t in raw.get("tags") or ()),
            location=Location.from_api(_mapping(raw.get("location"))),
        )


@dataclass(frozen=True)
class Target:
    """One dialable host:port endpoint."""

    host: str
    port: int

    @property
    def address(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"

    def __str__(self) -> str:
        return self.address


@dataclass(frozen=True)
class LabelSet:
    """Immutable label mapping compared by value.

    Stored as a tuple of (name, value) pairs sorted by name, so two label sets
    built from equal mappings are equal, hash the same and serialize the same.
    """

    items: tuple[tuple[str, str], ...] = ()

    @classmethod
    def from_mapping(cls, labels: Mapping[str, str]) -> LabelSet:
        return cls(tuple(sorted((str(k), str(v)) for k, v in labels.items())))

    def as_dict(self) -> dict[str, str]:
        return dict(self.items)

    def get(self, name: str, default: str | None = None) -> str | None:
        for key, value in self.items:
            if key == name:
                return value
        return default

    def without(self, names: Iterable[str]) -> LabelSet:
        """Return a copy with the given label names removed."""
        drop = set(names)
        return LabelSet(tuple(item for item in self.items if item[0] not in drop))

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[tuple[str, str]]:
        return iter(self.items)


@dataclass(frozen=True)
class TargetGroup:
    """A named set of targets sharing one label set."""

    source: str
    labels: LabelSet = field(default_factory=LabelSet)
    targets: tuple[Target, ...] = ()

    @classmethod
    def retraction(cls, source: str) -> TargetGroup:
        """An empty group telling consumers that `source` no longer exists."""
        return cls(source=source)

    @property
    def is_retraction(self) -> bool:
        return not self.targets and not self.labels

    def to_file_sd(self) -> dict[str, Any]:
        """Render in the Prometheus file_sd JSON shape."""
        return {
            "targets": [t.address for t in self.targets],
            "labels": self.labels.as_dict(),
        }
