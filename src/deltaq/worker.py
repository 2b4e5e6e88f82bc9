"""Delta job: gate, plan and run one index, plus the queue worker loop."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from deltaq.errors import AlreadyRotating, DeltaqError, InvalidIndex, LockBusy
from deltaq.indexer import SphinxIndexer
from deltaq.job import IndexJob
from deltaq.lock_guard import LockGuard
from deltaq.planner import ActionPlanner, ReindexDecision
from deltaq.queue import JobQueue
from deltaq.records import RecordStore
from deltaq.run_detector import NullDetector, ProcessTableDetector
from deltaq.runner import IndexRunner, RunResult

if TYPE_CHECKING:
    from deltaq.config import Settings
    from deltaq.coordination import CoordinationStore
    from deltaq.indexer import IndexingTool
    from deltaq.run_detector import RunDetector

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY = 5.0


class DeltaJob:
    """Process delta runs for indices popped from the queue.

    Only one run per index at a time: a busy lock sends the job back to
    the queue, an operator lock or a live external rotate skips it.
    """

    def __init__(
        self,
        settings: Settings,
        store: CoordinationStore,
        records: RecordStore,
        indexer: IndexingTool,
        detector: RunDetector | None = None,
    ) -> None:
        if detector is None:
            detector = ProcessTableDetector() if settings.detect_rotation else NullDetector()
        self.settings = settings
        self.detector = detector
        self.guard = LockGuard(store, settings.lock_timeout)
        self.queue = JobQueue(store, settings.queue)
        self.planner = ActionPlanner(settings)
        self.runner = IndexRunner(settings, indexer, records, store)

    @classmethod
    def from_settings(cls, settings: Settings, store: CoordinationStore) -> DeltaJob:
        return cls(
            settings,
            store,
            RecordStore(settings.records_db_path),
            SphinxIndexer.from_settings(settings),
        )

    def _check_not_running(self, job: IndexJob) -> None:
        if self.guard.is_index_locked(job.name) or self.detector.is_rotating(job):
            raise AlreadyRotating(job.name)

    def perform(self, index: str) -> RunResult:
        """Run the delta job for *index*.

        Returns a ``SKIP`` result for the expected control-flow cases.
        Every other error propagates to the caller.
        """
        job = IndexJob(index)
        try:
            held = self.guard.acquire(job.name)
        except LockBusy:
            logger.info("Lock for %s is busy, re-enqueueing", job.name)
            self.queue.enqueue(job.name)
            return RunResult(index=job.name, decision=ReindexDecision.SKIP)

        with held:
            # Queued copies of this job are covered by the run about to start.
            self.queue.remove_duplicates(job.name)
            try:
                self._check_not_running(job)
            except AlreadyRotating:
                logger.info("Indexer is already running for %s, skipping this run", job.name)
                return RunResult(index=job.name, decision=ReindexDecision.SKIP)

            decision = self.planner.plan(job)
            logger.debug("Planned %s for %s", decision.value, job.name)
            return self.runner.run(decision, job)

    def work(
        self,
        *,
        once: bool = False,
        poll_timeout: float = 5.0,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ) -> int:
        """Pop and perform jobs. Returns the number of jobs attempted.

        With ``once`` only the jobs queued at start are attempted, so a
        failing job that is sent back does not loop. Otherwise runs until
        interrupted.
        """
        remaining = self.queue.size() if once else None
        attempted = 0
        while remaining is None or remaining > 0:
            try:
                index = self.queue.pop(0 if once else poll_timeout)
            except ValueError as exc:
                logger.error("Dropping malformed job: %s", exc)
                if remaining is not None:
                    remaining -= 1
                continue
            if index is None:
                if once:
                    break
                continue

            attempted += 1
            if remaining is not None:
                remaining -= 1
            try:
                self.perform(index)
            except InvalidIndex as exc:
                logger.error("Dropping job for invalid index %r: %s", index, exc)
            except DeltaqError:
                logger.exception("Delta run for %s failed, re-enqueueing", index)
                self.queue.enqueue(index)
                if not once:
                    time.sleep(retry_delay)
        return attempted
