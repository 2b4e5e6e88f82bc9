"""Action planner: choose how much indexing work a delta run does."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from deltaq.config import Settings
    from deltaq.job import IndexJob


class ReindexDecision(enum.Enum):
    SKIP = "skip"
    DELTA_ONLY = "delta-only"
    DELTA_THEN_MERGE = "delta+merge"
    DELTA_THEN_FULL_REBUILD = "delta+full-rebuild"

    @property
    def reconciles(self) -> bool:
        """True when the run folds the delta back into the base index."""
        return self in (ReindexDecision.DELTA_THEN_MERGE, ReindexDecision.DELTA_THEN_FULL_REBUILD)


@dataclass(frozen=True)
class IndexState:
    """Filesystem facts the decision is based on."""

    marker_present: bool
    base_present: bool
    base_age: float | None  # seconds since the base index was last written


def decide(
    *,
    marker_present: bool,
    base_present: bool,
    base_age: float | None,
    merge_after: float | None,
) -> ReindexDecision:
    """Pure decision policy, evaluated in order.

    1. Force-rebuild marker present, or no base index to merge into:
       full rebuild. The marker wins over every other input.
    2. Base index older than *merge_after* seconds: merge.
    3. Otherwise: delta only.

    ``base_age=None`` (unknown) and ``merge_after=None`` (merging disabled)
    both fall through to delta only.
    """
    if marker_present or not base_present:
        return ReindexDecision.DELTA_THEN_FULL_REBUILD
    if merge_after is not None and base_age is not None and base_age > merge_after:
        return ReindexDecision.DELTA_THEN_MERGE
    return ReindexDecision.DELTA_ONLY


class ActionPlanner:
    """Reads marker and base index state from disk and applies :func:`decide`."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def inspect(self, job: IndexJob, now: float | None = None) -> IndexState:
        now = time.time() if now is None else now
        marker_present = job.marker_path(self._settings.marker_dir).exists()

        base_path = job.base_index_path(self._settings.indices_location)
        try:
            mtime = base_path.stat().st_mtime
        except FileNotFoundError:
            return IndexState(marker_present=marker_present, base_present=False, base_age=None)
        return IndexState(
            marker_present=marker_present,
            base_present=True,
            base_age=max(0.0, now - mtime),
        )

    def plan(self, job: IndexJob, now: float | None = None) -> ReindexDecision:
        state = self.inspect(job, now)
        return decide(
            marker_present=state.marker_present,
            base_present=state.base_present,
            base_age=state.base_age,
            merge_after=self._settings.merge_after,
        )
