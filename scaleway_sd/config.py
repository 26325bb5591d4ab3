"""Frozen dataclasses for configuration and YAML loader with env-var interpolation."""

from __future__ import annotations

import dataclasses
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")
_LISTEN_PATTERN = re.compile(r"^(?P<host>\[[^\]]*\]|[^:]*):(?P<port>\d+)$")

META_PREFIX = "__meta_scaleway_"


def _interpolate_env(value: str) -> str:
    """Replace ${ENV_VAR} placeholders with environment variable values."""

    def _replace(match: re.Match) -> str:
        env_key = match.group(1)
        env_val = os.environ.get(env_key)
        if env_val is None:
            raise ConfigError(f"Environment variable '{env_key}' is not set")
        return env_val

    return _ENV_PATTERN.sub(_replace, value)


def _walk_and_interpolate(obj: Any) -> Any:
    """Recursively interpolate env vars in strings throughout a nested structure."""
    if isinstance(obj, str):
        return _interpolate_env(obj)
    if isinstance(obj, dict):
        return {k: _walk_and_interpolate(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_interpolate(v) for v in obj]
    return obj


def _default_instance_labels() -> list[str]:
    return [
        "__address__",
        f"{META_PREFIX}identifier",
        f"{META_PREFIX}name",
        f"{META_PREFIX}private_ip",
        f"{META_PREFIX}public_ip",
        f"{META_PREFIX}platform_id",
        f"{META_PREFIX}hypervisor_id",
        f"{META_PREFIX}node_id",
        f"{META_PREFIX}blade_id",
        f"{META_PREFIX}chassis_id",
    ]


@dataclass(frozen=True)
class ScalewayConfig:
    organization: str = ""
    region: str = "par1"
    token: str = ""
    token_file: str = ""
    api_url: str = ""  # empty = https://cp-<region>.scaleway.com
    timeout: float = 10
    all_states: bool = False  # False keeps only running servers

    @property
    def effective_api_url(self) -> str:
        if self.api_url:
            return self.api_url.rstrip("/")
        return f"https://cp-{self.region}.scaleway.com"


@dataclass(frozen=True)
class TargetsConfig:
    port: int = 80
    address_source: str = "private"  # "private" or "public"
    tag_separator: str = ","


@dataclass(frozen=True)
class GroupingConfig:
    policy: str = "per-instance"  # "per-instance" or "merged"
    name: str = "scaleway"
    instance_labels: list[str] = field(default_factory=_default_instance_labels)
    malformed_records: str = "drop"  # "drop" or "warn"


@dataclass(frozen=True)
class PollingConfig:
    interval_seconds: float = 30


@dataclass(frozen=True)
class OutputConfig:
    file: str = "scw.json"


@dataclass(frozen=True)
class WebConfig:
    listen_address: str = ":9465"


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    format: str = "json"  # "json" or "text"


@dataclass(frozen=True)
class AppConfig:
    scaleway: ScalewayConfig = field(default_factory=ScalewayConfig)
    targets: TargetsConfig = field(default_factory=TargetsConfig)
    grouping: GroupingConfig = field(default_factory=GroupingConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    web: WebConfig = field(default_factory=WebConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _build_nested(cls: type, data: dict[str, Any]) -> Any:
    """Construct a frozen dataclass, recursively building nested dataclass fields."""
    if not isinstance(data, dict):
        return data
    field_types = {f.name: f.type for f in cls.__dataclass_fields__.values()}
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        if key not in field_types:
            continue
        ft = field_types[key]
        # Resolve string annotations to actual types in the module scope
        if isinstance(ft, str):
            ft = eval(ft, globals(), {cls.__name__: cls})  # noqa: S307
        if isinstance(ft, type) and hasattr(ft, "__dataclass_fields__"):
            # An empty section ("polling:") keeps its defaults
            if value is None:
                continue
            if not isinstance(value, dict):
                raise ConfigError(f"Section '{key}' must be a YAML mapping")
            kwargs[key] = _build_nested(ft, value)
        else:
            kwargs[key] = value
    return cls(**kwargs)


def _as_number(value: Any, name: str, kind: type) -> int | float:
    """Coerce a config value (possibly an interpolated string) to int or float."""
    if isinstance(value, str):
        try:
            value = kind(value.strip())
        except ValueError:
            raise ConfigError(f"{name} must be a number, got {value!r}") from None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    if kind is int and not isinstance(value, int):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    return value


def _normalize(config: AppConfig) -> AppConfig:
    """Coerce numeric fields and check container types before validation."""
    labels = config.grouping.instance_labels
    if not isinstance(labels, list) or not all(isinstance(name, str) for name in labels):
        raise ConfigError("grouping.instance_labels must be a list of label names")

    return dataclasses.replace(
        config,
        scaleway=dataclasses.replace(
            config.scaleway, timeout=_as_number(config.scaleway.timeout, "scaleway.timeout", float),
        ),
        targets=dataclasses.replace(
            config.targets, port=_as_number(config.targets.port, "targets.port", int),
        ),
        polling=dataclasses.replace(
            config.polling,
            interval_seconds=_as_number(config.polling.interval_seconds, "polling.interval_seconds", float),
        ),
    )


def parse_listen_address(address: str) -> tuple[str, int]:
    """Split a listen address such as ':9465' or '[::1]:9465' into (host, port)."""
    match = _LISTEN_PATTERN.match(address) if isinstance(address, str) else None
    if not match:
        raise ConfigError(f"Invalid listen address: {address!r}")
    host = match.group("host").strip("[]")
    return host, int(match.group("port"))


def load_config(path: str | Path) -> AppConfig:
    """Load and validate configuration from a YAML file."""
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Configuration file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ConfigError("Configuration file must be a YAML mapping")

    raw = _walk_and_interpolate(raw)
    config = _normalize(_build_nested(AppConfig, raw))
    _validate(config)
    return _resolve_token(config)


def _resolve_token(config: AppConfig) -> AppConfig:
    """Read scaleway.token_file into scaleway.token."""
    if not config.scaleway.token_file:
        return config
    try:
        token = Path(config.scaleway.token_file).read_text().strip()
    except OSError as exc:
        raise ConfigError(f"Cannot read scaleway.token_file: {exc}") from exc
    if not token:
        raise ConfigError(f"scaleway.token_file is empty: {config.scaleway.token_file}")
    scaleway = dataclasses.replace(config.scaleway, token=token)
    return dataclasses.replace(config, scaleway=scaleway)


def _validate(config: AppConfig) -> None:
    """Validate configuration values."""
    if not config.scaleway.organization:
        raise ConfigError("scaleway.organization is required")

    if not config.scaleway.token and not config.scaleway.token_file:
        raise ConfigError("scaleway.token or scaleway.token_file is required")

    if config.scaleway.token and config.scaleway.token_file:
        raise ConfigError("scaleway.token and scaleway.token_file cannot be set at the same time")

    if config.scaleway.timeout <= 0:
        raise ConfigError("scaleway.timeout must be > 0")

    if not 1 <= config.targets.port <= 65535:
        raise ConfigError("targets.port must be an integer between 1 and 65535")

    if config.targets.address_source not in ("private", "public"):
        raise ConfigError("targets.address_source must be 'private' or 'public'")

    if not config.targets.tag_separator:
        raise ConfigError("targets.tag_separator must not be empty")

    if config.grouping.policy not in ("per-instance", "merged"):
        raise ConfigError("grouping.policy must be 'per-instance' or 'merged'")

    if config.grouping.policy == "merged" and not config.grouping.name:
        raise ConfigError("grouping.name is required for the merged policy")

    if config.grouping.malformed_records not in ("drop", "warn"):
        raise ConfigError("grouping.malformed_records must be 'drop' or 'warn'")

    if config.polling.interval_seconds <= 0:
        raise ConfigError("polling.interval_seconds must be > 0")

    if not config.output.file:
        raise ConfigError("output.file is required")

    parse_listen_address(config.web.listen_address)

    if not isinstance(config.logging.level, str) or config.logging.format not in ("json", "text"):
        raise ConfigError("logging.level must be a level name and logging.format 'json' or 'text'")
