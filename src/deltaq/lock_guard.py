"""Per-index mutual exclusion for delta runs."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from deltaq.coordination import KEY_PREFIX, LockLost
from deltaq.errors import LockBusy

if TYPE_CHECKING:
    from types import TracebackType

    from deltaq.coordination import CoordinationStore, StoreLock

logger = logging.getLogger(__name__)


def lock_name(index: str) -> str:
    return f"{KEY_PREFIX}lock:{index}"


def operator_lock_key(index: str) -> str:
    return f"{KEY_PREFIX}locked:{index}"


class HeldLock:
    """An acquired index lock; releases on every exit path when used with ``with``."""

    def __init__(self, index: str, lock: StoreLock) -> None:
        self.index = index
        self._lock = lock
        self._released = False

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            self._lock.release()
        except LockLost:
            logger.warning(
                "Lock for %s expired before the run finished; raise lock_timeout", self.index
            )

    def __enter__(self) -> HeldLock:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


class LockGuard:
    """Acquire per-index locks that expire after *timeout* seconds.

    The timeout only recovers from crashed holders. It must exceed the
    slowest expected run, otherwise a second worker can enter while the
    first is still building.
    """

    def __init__(self, store: CoordinationStore, timeout: int) -> None:
        self._store = store
        self.timeout = timeout

    def acquire(self, index: str) -> HeldLock:
        """Take the lock for *index* without waiting.

        Raises :class:`~deltaq.errors.LockBusy` if another worker holds it.
        """
        lock = self._store.lock(lock_name(index), self.timeout)
        if not lock.acquire(blocking=False):
            raise LockBusy(index)
        logger.debug("Acquired lock for %s (timeout %ss)", index, self.timeout)
        return HeldLock(index, lock)

    # Operator lock: set by an external full-index task to pause delta runs.

    def is_index_locked(self, index: str) -> bool:
        return self._store.exists(operator_lock_key(index))

    def lock_index(self, index: str) -> None:
        self._store.set(operator_lock_key(index), "1")

    def unlock_index(self, index: str) -> None:
        self._store.delete(operator_lock_key(index))
