"""Coordination store protocol shared by every backend."""

from __future__ import annotations

from typing import Protocol


class StoreLock(Protocol):
    """A named lock that auto-expires ``timeout`` seconds after acquisition."""

    def acquire(self, *, blocking: bool = False, blocking_timeout: float | None = None) -> bool:
        """Try to take the lock. Returns False if it is held elsewhere."""
        ...

    def release(self) -> None:
        """Release the lock.

        Raises :class:`~deltaq.coordination.base.LockLost` when the lock
        already expired and possibly passed to another holder.
        """
        ...


class LockLost(Exception):  # noqa: N818
    """Raised on release when the lock is no longer owned by this holder."""


class CoordinationStore(Protocol):
    """Key-value store with TTLs, locks and lists, reachable by every worker."""

    def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        """Store *value* under *key* for *ttl* seconds unless the key exists.

        Returns True if the value was written.
        """
        ...

    def exists(self, key: str) -> bool: ...

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def list_keys(self, prefix: str) -> list[str]:
        """Return the live keys starting with *prefix*, sorted."""
        ...

    def flush(self, prefix: str) -> int:
        """Delete every key starting with *prefix*. Returns the number removed."""
        ...

    def lock(self, name: str, timeout: int) -> StoreLock: ...

    def push(self, queue: str, payload: str) -> None: ...

    def pop(self, queue: str, timeout: float = 0) -> str | None:
        """Pop the oldest payload, waiting up to *timeout* seconds (0 = no wait)."""
        ...

    def remove(self, queue: str, payload: str) -> int:
        """Remove every queued copy of *payload*. Returns the number removed."""
        ...

    def length(self, queue: str) -> int: ...

    def close(self) -> None: ...
