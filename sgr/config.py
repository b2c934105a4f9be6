"""Layered node configuration.

Node properties (identity, ports, scheduling) are resolved from several
sources in priority order: the process environment, the ``properties`` table
and finally built-in defaults. Values are looked up on every access so a
change in any source is picked up by the next reconciliation tick.
"""

from __future__ import annotations

import abc
import os
import socket
from typing import Iterable

from . import db


class ConfigError(Exception):
    """Raised when the node configuration cannot be used."""


DEFAULT_PROPERTIES: dict[str, str] = {
    "app_name": "cass_cluster",
    "region": "us-east-1",
    "storage_port": "7000",
    "ssl_storage_port": "7001",
    "seed": "false",
    "acl_interval_s": "120",
}

PROPERTY_NAMES = frozenset(DEFAULT_PROPERTIES) | {"hostname", "host_ip", "instance_id"}


def app_id_from_group(group_name: str) -> str:
    """Application id is the group name up to its first '-', if any."""
    if group_name.rfind("-") > 0:
        return group_name[: group_name.index("-")]
    return group_name


class ConfigSource(abc.ABC):
    @abc.abstractmethod
    def get(self, key: str) -> str | None:
        ...

    @abc.abstractmethod
    def keys(self) -> Iterable[str]:
        ...


class EnvConfigSource(ConfigSource):
    """Reads ``<prefix><KEY>`` environment variables, e.g. ``SGR_HOST_IP``.

    Only node property names are listed by keys(); process settings sharing
    the prefix stay out of snapshots.
    """

    def __init__(self, prefix: str = "SGR_"):
        self.prefix = prefix

    def get(self, key: str) -> str | None:
        return os.environ.get(f"{self.prefix}{key.upper()}")

    def keys(self) -> Iterable[str]:
        n = len(self.prefix)
        names = [k[n:].lower() for k in os.environ if k.startswith(self.prefix)]
        return [k for k in names if k in PROPERTY_NAMES]

    def __repr__(self) -> str:
        return f"EnvConfigSource(prefix={self.prefix!r})"


class PropertiesConfigSource(ConfigSource):
    """Properties stored in sqlite for one application id.

    A row carrying a region applies to that region only and overrides a
    region-less row for the same property.
    """

    def __init__(self, app_id: str, region: str):
        self.app_id = app_id
        self.region = region

    def _load(self) -> dict[str, str]:
        data: dict[str, str] = {}
        for row in db.list_properties(self.app_id):
            if row.region and row.region != self.region:
                continue
            if row.property in data and not row.region:
                continue
            data[row.property] = row.value
        return data

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def keys(self) -> Iterable[str]:
        return list(self._load().keys())

    def __repr__(self) -> str:
        return f"PropertiesConfigSource(app_id={self.app_id!r}, region={self.region!r})"


class DefaultsConfigSource(ConfigSource):
    def __init__(self, values: dict[str, str] | None = None):
        self.values = dict(DEFAULT_PROPERTIES if values is None else values)

    def get(self, key: str) -> str | None:
        return self.values.get(key)

    def keys(self) -> Iterable[str]:
        return list(self.values.keys())

    def __repr__(self) -> str:
        return "DefaultsConfigSource()"


class CompositeConfig(ConfigSource):
    """First source holding a value for a key wins."""

    def __init__(self, *sources: ConfigSource):
        if not sources:
            raise ValueError("CompositeConfig needs at least one source")
        self.sources = list(sources)

    def get(self, key: str) -> str | None:
        for source in self.sources:
            value = source.get(key)
            if value is not None:
                return value
        return None

    def keys(self) -> Iterable[str]:
        seen: list[str] = []
        for source in self.sources:
            for k in source.keys():
                if k not in seen:
                    seen.append(k)
        return seen

    def snapshot(self) -> dict[str, str]:
        """Merge all sources into one dict, skipping empty values."""
        data: dict[str, str] = {}
        for source in self.sources:
            for key in source.keys():
                if key in data:
                    continue
                value = source.get(key)
                if value:
                    data[key] = value
        return data


class NodeConfig:
    """Typed, uncached view over a CompositeConfig."""

    def __init__(self, source: ConfigSource):
        self.source = source

    def _str(self, key: str, default: str | None = None) -> str | None:
        value = self.source.get(key)
        return default if value is None else value

    def _int(self, key: str) -> int:
        raw = self.source.get(key)
        try:
            return int(raw)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            raise ConfigError(f"Property '{key}' must be an integer, got {raw!r}") from None

    @property
    def app_name(self) -> str:
        return self._str("app_name", "")  # type: ignore[return-value]

    @property
    def region(self) -> str:
        return self._str("region", "")  # type: ignore[return-value]

    @property
    def hostname(self) -> str:
        return self._str("hostname") or socket.gethostname()

    @property
    def instance_id(self) -> str:
        return self._str("instance_id") or self.hostname

    @property
    def host_ip(self) -> str:
        value = self._str("host_ip")
        if not value:
            raise ConfigError("host_ip is not configured (set SGR_HOST_IP)")
        return value

    @property
    def storage_port(self) -> int:
        return self._int("storage_port")

    @property
    def ssl_storage_port(self) -> int:
        return self._int("ssl_storage_port")

    @property
    def is_seed(self) -> bool:
        return (self._str("seed", "") or "").strip().lower() in {"1", "true", "yes", "y", "on"}

    @property
    def acl_interval_s(self) -> int:
        value = self._int("acl_interval_s")
        if value <= 0:
            raise ConfigError("acl_interval_s must be positive")
        return value


def build_node_config() -> NodeConfig:
    env = EnvConfigSource()
    defaults = DefaultsConfigSource()
    group = env.get("app_name") or defaults.get("app_name") or ""
    region = env.get("region") or defaults.get("region") or ""
    props = PropertiesConfigSource(app_id_from_group(group), region)
    return NodeConfig(CompositeConfig(env, props, defaults))
