"""Quorum tracker for sharded indices.

Each partition of a shard group records the cutoff it captured before its
build. When ``quorum`` distinct partitions have reported within the TTL
window, the ``delta`` flag is cleared once for the whole table, bounded by
the *minimum* recorded cutoff, and the tracking set is wiped. A partition
that recorded no cutoff (nothing was pending when it started) means no
bound is safe, so that cycle wipes the set without clearing anything.

A partition whose build finished but whose completion could not be
recorded keeps a pending entry; the next run for that partition replays
it whatever that run decides to do.

Cycle states::

    Empty -> Accumulating(partitions seen) -> Triggered (back to Empty)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from deltaq.coordination import KEY_PREFIX, LockLost
from deltaq.errors import CoordinationStoreUnavailable, RecordStoreUnavailable

if TYPE_CHECKING:
    from deltaq.config import ShardGroup
    from deltaq.coordination import CoordinationStore
    from deltaq.records import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class QuorumResult:
    """Outcome of one record/check pass."""

    recorded: bool = False
    seen: int = 0
    triggered: bool = False
    cutoff: Any = None
    cleared: int = 0
    partitions: list[str] = field(default_factory=list)


def semaphore_name(namespace: str) -> str:
    return f"{KEY_PREFIX}semaphore:{namespace}"


class QuorumTracker:
    """Partition completion set plus the guarded check-and-clear."""

    def __init__(self, store: CoordinationStore, records: RecordStore, group: ShardGroup) -> None:
        self._store = store
        self._records = records
        self.group = group

    @property
    def prefix(self) -> str:
        return f"{self.group.namespace}:"

    def _key(self, partition: str) -> str:
        return f"{self.prefix}{partition}"

    def record(self, partition: str, cutoff: Any) -> bool:
        """Insert *partition* -> *cutoff* unless already recorded this cycle.

        A retried job never overwrites the earlier, more conservative cutoff.
        Returns True when the entry is new.
        """
        value = json.dumps(cutoff, default=str)
        recorded = self._store.set_if_absent(self._key(partition), value, self.group.ttl)
        if recorded:
            logger.info("Partition %s completed (cutoff %r)", partition, cutoff)
        else:
            logger.info("Partition %s already recorded this cycle", partition)
        return recorded

    def status(self) -> dict[str, Any]:
        """Return the recorded partitions and their cutoffs."""
        entries: dict[str, Any] = {}
        for key in self._store.list_keys(self.prefix):
            raw = self._store.get(key)
            if raw is None:
                continue  # expired between list and get
            entries[key[len(self.prefix) :]] = json.loads(raw)
        return entries

    def check_and_clear(self) -> QuorumResult:
        """Clear flags and reset the set if the quorum is reached.

        Must run under the semaphore (see :meth:`record_and_check`). The
        flag clear happens before the wipe; a crash in between leaves the
        set to be cleared again next cycle with a cutoff that is still safe.
        """
        entries = self.status()
        result = QuorumResult(seen=len(entries), partitions=sorted(entries))
        if len(entries) < self.group.quorum:
            logger.debug(
                "Quorum for %s not reached: %d/%d",
                self.group.namespace,
                len(entries),
                self.group.quorum,
            )
            return result

        cutoffs = list(entries.values())
        result.triggered = True
        if any(cutoff is None for cutoff in cutoffs):
            # A partition that saw no pending rows built before every row
            # still flagged, so no bound is safe this cycle.
            logger.info(
                "Quorum reached for %s without a common cutoff; leaving delta flags set",
                self.group.namespace,
            )
        else:
            try:
                result.cutoff = min(cutoffs)
            except TypeError as exc:
                # Nothing can be cleared safely; start a fresh cycle.
                self._store.flush(self.prefix)
                raise RecordStoreUnavailable(
                    f"Cutoffs recorded for {self.group.namespace} are not comparable: "
                    f"{sorted(entries.items())!r}"
                ) from exc
            result.cleared = self._records.clear_delta_flag(
                self.group.table, result.cutoff, inclusive=False
            )
        self._store.flush(self.prefix)
        logger.info(
            "Quorum reached for %s (%d partitions): cleared %d delta flags before %r",
            self.group.namespace,
            len(entries),
            result.cleared,
            result.cutoff,
        )
        return result

    def record_and_check(self, partition: str, cutoff: Any) -> QuorumResult:
        """Record completion and run the quorum check under the semaphore.

        Raises :class:`CoordinationStoreUnavailable` if the semaphore cannot
        be taken within ``semaphore_wait`` seconds; skipping the accounting
        silently could starve the quorum.
        """
        semaphore = self._store.lock(
            semaphore_name(self.group.namespace), self.group.semaphore_timeout
        )
        if not semaphore.acquire(blocking=True, blocking_timeout=self.group.semaphore_wait):
            raise CoordinationStoreUnavailable(
                f"Timed out waiting for the {self.group.namespace} semaphore"
            )
        try:
            recorded = self.record(partition, cutoff)
            result = self.check_and_clear()
            result.recorded = recorded
            return result
        finally:
            try:
                semaphore.release()
            except LockLost:
                logger.warning(
                    "Semaphore for %s expired before release; raise semaphore_timeout",
                    self.group.namespace,
                )

    def _pending_key(self, partition: str) -> str:
        return f"{KEY_PREFIX}pending:{self.group.namespace}:{partition}"

    def stash_pending(self, partition: str, cutoff: Any) -> None:
        """Keep *partition*'s completion until it is recorded.

        A newer stash replaces an older one: the newer build covers it.
        """
        self._store.set(self._pending_key(partition), json.dumps(cutoff, default=str))

    def replay_pending(self, partition: str) -> QuorumResult | None:
        """Record a stashed completion for *partition*, if there is one.

        The stash is dropped only after :meth:`record_and_check` succeeds.
        """
        key = self._pending_key(partition)
        raw = self._store.get(key)
        if raw is None:
            return None
        cutoff = json.loads(raw)
        logger.info("Recording earlier completion of %s (cutoff %r)", partition, cutoff)
        result = self.record_and_check(partition, cutoff)
        self._store.delete(key)
        return result
