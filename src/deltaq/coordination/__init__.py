"""Shared coordination store: TTL keys, locks and job lists.

Backends are chosen from a URL::

    redis://host:6379/0           -> RedisStore
    sqlite:////var/lib/deltaq.db  -> SqliteStore (single host, absolute path)
"""

from __future__ import annotations

from pathlib import Path

from deltaq.coordination.base import CoordinationStore, LockLost, StoreLock
from deltaq.errors import ConfigError

KEY_PREFIX = "deltaq:"


def open_store(url: str) -> CoordinationStore:
    """Open the coordination store named by *url*."""
    if url.startswith(("redis://", "rediss://", "unix://")):
        from deltaq.coordination.redis_store import RedisStore

        return RedisStore.from_url(url)
    if url.startswith("sqlite:///"):
        from deltaq.coordination.sqlite_store import SqliteStore

        return SqliteStore(Path(url[len("sqlite:///") :]))
    raise ConfigError(f"Unsupported coordination url: {url!r}")


__all__ = [
    "KEY_PREFIX",
    "CoordinationStore",
    "LockLost",
    "StoreLock",
    "open_store",
]
