"""Job queue for delta runs, stored as JSON payloads in the coordination store."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from deltaq.coordination import CoordinationStore

logger = logging.getLogger(__name__)

JOB_CLASS = "DeltaJob"


def encode_job(index: str) -> str:
    """Encode the payload for *index*; identical jobs encode identically."""
    return json.dumps({"class": JOB_CLASS, "args": [index]}, separators=(",", ":"))


def decode_job(payload: str) -> str:
    """Return the index name from a queued payload.

    Raises ValueError on payloads that are not delta jobs.
    """
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Malformed job payload: {payload!r}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Not a {JOB_CLASS} payload: {payload!r}")
    args = data.get("args")
    if data.get("class") != JOB_CLASS or not isinstance(args, list) or len(args) != 1:
        raise ValueError(f"Not a {JOB_CLASS} payload: {payload!r}")
    return str(args[0])


class JobQueue:
    def __init__(self, store: CoordinationStore, name: str) -> None:
        self._store = store
        self.name = name

    def enqueue(self, index: str) -> None:
        self._store.push(self.name, encode_job(index))
        logger.debug("Enqueued %s on %s", index, self.name)

    def remove_duplicates(self, index: str) -> int:
        """Drop every other queued run of *index*; the current run covers them."""
        removed = self._store.remove(self.name, encode_job(index))
        if removed:
            logger.debug("Removed %d queued duplicates of %s", removed, index)
        return removed

    def pop(self, timeout: float = 0) -> str | None:
        payload = self._store.pop(self.name, timeout)
        if payload is None:
            return None
        return decode_job(payload)

    def size(self) -> int:
        return self._store.length(self.name)
