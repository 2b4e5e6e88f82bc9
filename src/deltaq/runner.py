"""Index runner: execute a planned decision against the indexing tool."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from deltaq.errors import BuildFailed
from deltaq.planner import ReindexDecision
from deltaq.quorum import QuorumResult, QuorumTracker

if TYPE_CHECKING:
    from deltaq.config import Settings
    from deltaq.coordination import CoordinationStore
    from deltaq.indexer import IndexingTool
    from deltaq.job import IndexJob
    from deltaq.records import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Summary of one delta run."""

    index: str
    decision: ReindexDecision
    cutoff: Any = None
    cleared: int | None = None
    quorum: QuorumResult | None = None
    output: list[str] = field(default_factory=list)


class IndexRunner:
    """Invoke builds for a decision and clear ``delta`` flags afterwards.

    The cutoff is read before the first build so a row updated mid-run
    keeps its flag. Nothing is cleared and the rebuild marker stays in
    place when any build fails. A sharded partition whose completion
    could not be recorded is recorded by its next run.
    """

    def __init__(
        self,
        settings: Settings,
        indexer: IndexingTool,
        records: RecordStore,
        store: CoordinationStore,
    ) -> None:
        self._settings = settings
        self._indexer = indexer
        self._records = records
        self._store = store

    def _build(self, decision: ReindexDecision, job: IndexJob, result: RunResult) -> None:
        verbose = not self._settings.quiet_deltas
        result.output.extend(self._indexer.build(job.name, verbose=verbose))

        if decision is ReindexDecision.DELTA_THEN_MERGE:
            result.output.extend(self._indexer.merge(job.base_name, job.name, rotate=True))
        elif decision is ReindexDecision.DELTA_THEN_FULL_REBUILD:
            result.output.extend(self._indexer.rebuild(job.base_name, rotate=True))
            marker = job.marker_path(self._settings.marker_dir)
            marker.unlink(missing_ok=True)

    def run(self, decision: ReindexDecision, job: IndexJob) -> RunResult:
        result = RunResult(index=job.name, decision=decision)
        if decision is ReindexDecision.SKIP:
            return result

        table = self._settings.table_for(job.name, job.model_name)
        if decision.reconciles:
            result.cutoff = self._records.max_updated_at(table)

        try:
            self._build(decision, job, result)
        except BuildFailed as exc:
            logger.error(
                "Build failed for %s (%s): %s\n%s",
                job.name,
                decision.value,
                exc,
                exc.output.rstrip(),
            )
            raise

        for line in result.output:
            logger.debug("[%s] %s", job.name, line)

        group = self._settings.shard_group_for(job.name)
        tracker = (
            QuorumTracker(self._store, self._records, group) if group is not None else None
        )
        if not decision.reconciles:
            if tracker is not None:
                result.quorum = tracker.replay_pending(job.name)
            logger.info("Indexed %s (%s)", job.name, decision.value)
            return result

        if tracker is not None:
            # Stashed first so a failed record is replayed by the next run.
            tracker.stash_pending(job.name, result.cutoff)
            result.quorum = tracker.replay_pending(job.name)
        elif result.cutoff is not None:
            result.cleared = self._records.clear_delta_flag(table, result.cutoff)

        logger.info(
            "Indexed %s (%s), cutoff %r, cleared %s",
            job.name,
            decision.value,
            result.cutoff,
            result.cleared if result.quorum is None else result.quorum.cleared,
        )
        return result
