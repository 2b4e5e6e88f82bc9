"""Configuration: read ``deltaq.yml`` into frozen settings objects."""

from __future__ import annotations

import fnmatch
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from deltaq.errors import ConfigError

CONFIG_ENV_VAR = "DELTAQ_CONFIG"
DEFAULT_CONFIG_NAME = "deltaq.yml"

DEFAULT_LOCK_TIMEOUT = 240
DEFAULT_MERGE_AFTER = 3600.0
DEFAULT_QUEUE = "ts_delta"
DEFAULT_SHARD_TTL = 6 * 60 * 60
DEFAULT_SEMAPHORE_TIMEOUT = 600
DEFAULT_SEMAPHORE_WAIT = 30.0


@dataclass(frozen=True)
class ShardGroup:
    """A set of partition indices that reconcile their delta flags together."""

    namespace: str
    quorum: int
    partitions: tuple[str, ...]
    table: str
    ttl: int = DEFAULT_SHARD_TTL
    semaphore_timeout: int = DEFAULT_SEMAPHORE_TIMEOUT
    semaphore_wait: float = DEFAULT_SEMAPHORE_WAIT

    def matches(self, index: str) -> bool:
        """Return True if *index* is one of this group's partitions.

        Partition entries may be exact names or ``fnmatch`` patterns.
        """
        return any(fnmatch.fnmatchcase(index, pattern) for pattern in self.partitions)


@dataclass(frozen=True)
class Settings:
    """Everything a worker needs, passed explicitly to each component."""

    indices_location: Path = Path("db/sphinx")
    marker_dir: Path = Path("/tmp")  # noqa: S108
    indexer_bin_path: str = ""
    indexer_binary: str = "indexer"
    indexer_config_file: Path = Path("config/sphinx.conf")
    quiet_deltas: bool = False
    lock_timeout: int = DEFAULT_LOCK_TIMEOUT
    merge_after: float | None = DEFAULT_MERGE_AFTER
    queue: str = DEFAULT_QUEUE
    coordination_url: str = "redis://localhost:6379/0"
    records_db_path: Path = Path("db/records.db")
    detect_rotation: bool = True
    tables: dict[str, str] = field(default_factory=dict)
    shard_groups: tuple[ShardGroup, ...] = ()

    def shard_group_for(self, index: str) -> ShardGroup | None:
        """Return the shard group *index* belongs to, or None."""
        for group in self.shard_groups:
            if group.matches(index):
                return group
        return None

    def table_for(self, index: str, model_name: str) -> str:
        """Resolve the record table holding the ``delta`` flags for *index*."""
        group = self.shard_group_for(index)
        if group is not None:
            return group.table
        return self.tables.get(index, model_name)


def _positive_int(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"'{key}' must be a positive integer, got {value!r}")
    return value


def _positive_number(data: dict[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"'{key}' must be a positive number, got {value!r}")
    return float(value)


def _parse_shard_group(raw: Any) -> ShardGroup:
    if not isinstance(raw, dict):
        raise ConfigError(f"shard_groups entries must be mappings, got {raw!r}")

    namespace = raw.get("namespace")
    if not namespace or not isinstance(namespace, str):
        raise ConfigError("shard group is missing 'namespace'")

    partitions = raw.get("partitions")
    if not isinstance(partitions, list) or not partitions:
        raise ConfigError(f"shard group '{namespace}' needs a non-empty 'partitions' list")

    table = raw.get("table")
    if not table or not isinstance(table, str):
        raise ConfigError(f"shard group '{namespace}' is missing 'table'")

    return ShardGroup(
        namespace=namespace,
        quorum=_positive_int(raw, "quorum", len(partitions)),
        partitions=tuple(str(p) for p in partitions),
        table=table,
        ttl=_positive_int(raw, "ttl", DEFAULT_SHARD_TTL),
        semaphore_timeout=_positive_int(raw, "semaphore_timeout", DEFAULT_SEMAPHORE_TIMEOUT),
        semaphore_wait=_positive_number(raw, "semaphore_wait", DEFAULT_SEMAPHORE_WAIT),
    )


def parse_settings(data: dict[str, Any], base_dir: Path | None = None) -> Settings:
    """Build :class:`Settings` from an already-parsed YAML mapping.

    Relative paths are resolved against *base_dir* (the config file's
    directory) when given.
    """

    def _path(value: Any, default: Path) -> Path:
        path = Path(value) if value else default
        if base_dir is not None and not path.is_absolute():
            path = base_dir / path
        return path

    defaults = Settings()

    indexer = data.get("indexer") or {}
    coordination = data.get("coordination") or {}
    records = data.get("records") or {}
    if not all(isinstance(section, dict) for section in (indexer, coordination, records)):
        raise ConfigError("'indexer', 'coordination' and 'records' must be mappings")

    merge_after: float | None
    if "merge_after" in data and data["merge_after"] is None:
        merge_after = None
    else:
        merge_after = _positive_number(data, "merge_after", DEFAULT_MERGE_AFTER)

    tables = data.get("tables") or {}
    if not isinstance(tables, dict):
        raise ConfigError("'tables' must map index names to table names")

    raw_groups = data.get("shard_groups") or []
    if not isinstance(raw_groups, list):
        raise ConfigError("'shard_groups' must be a list")

    return Settings(
        indices_location=_path(data.get("indices_location"), defaults.indices_location),
        marker_dir=Path(data.get("marker_dir") or defaults.marker_dir),
        indexer_bin_path=str(indexer.get("bin_path") or ""),
        indexer_binary=str(indexer.get("binary") or defaults.indexer_binary),
        indexer_config_file=_path(indexer.get("config_file"), defaults.indexer_config_file),
        quiet_deltas=bool(data.get("quiet_deltas", False)),
        lock_timeout=_positive_int(data, "lock_timeout", DEFAULT_LOCK_TIMEOUT),
        merge_after=merge_after,
        queue=str(data.get("queue") or DEFAULT_QUEUE),
        coordination_url=str(coordination.get("url") or defaults.coordination_url),
        records_db_path=_path(records.get("db_path"), defaults.records_db_path),
        detect_rotation=bool(data.get("detect_rotation", True)),
        tables={str(k): str(v) for k, v in tables.items()},
        shard_groups=tuple(_parse_shard_group(raw) for raw in raw_groups),
    )


def resolve_config_path(explicit: Path | None = None) -> Path | None:
    """Find the config file: explicit path, ``$DELTAQ_CONFIG``, then ``./deltaq.yml``."""
    if explicit is not None:
        return explicit
    env_value = os.environ.get(CONFIG_ENV_VAR)
    if env_value:
        return Path(env_value)
    candidate = Path.cwd() / DEFAULT_CONFIG_NAME
    if candidate.exists():
        return candidate
    return None


def load_settings(config_path: Path | None = None) -> Settings:
    """Load settings from YAML, falling back to defaults when no file is found."""
    import yaml

    path = resolve_config_path(config_path)
    if path is None:
        return Settings()
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Cannot parse {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")

    return parse_settings(data, base_dir=path.parent)
