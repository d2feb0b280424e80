"""
Cleanup Worker Pool

Executes due cleanup jobs: delete the target comment through the GitHub API,
then record a system-actor audit entry.

Features:
- Bounded concurrency (5 executors by default)
- Explicit outcome values returned by every execution:
    Completed             -> job removed from the queue
    Retrying(next_delay)  -> job rescheduled with exponential backoff
    Failed                -> job removed, operational log only
- The supervising loop (not the workers) applies outcomes to the queue
- Crash recovery: jobs left RUNNING by a dead process go back to PENDING

Retry policy:
- 3 attempts per job
- Backoff 5s after the 1st failure, 10s after the 2nd
- The 3rd failure is terminal; no 4th attempt, no audit entry

A double delete (HTTP 404) is an ordinary failure and goes through the same
retry/give-up policy. No ordering is guaranteed between jobs.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Union, Callable, Set

from .activity_log import ActivityLogger, EntityType
from .cleanup_queue import (
    PersistentCleanupStore,
    QueuedJob,
    backoff_delay_ms,
    now_ms,
)
from .github_client import GitHubClientFactory

logger = logging.getLogger("cleanup_worker")

DEFAULT_CONCURRENCY = 5
DEFAULT_POLL_INTERVAL = 1.0


# -----------------------------------------------------------------------------
# Execution outcomes
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class Completed:
    job_id: str
    attempts_made: int


@dataclass(frozen=True)
class Retrying:
    job_id: str
    attempts_made: int
    next_delay_ms: int
    reason: str


@dataclass(frozen=True)
class Failed:
    job_id: str
    attempts_made: int
    reason: str


JobOutcome = Union[Completed, Retrying, Failed]


# -----------------------------------------------------------------------------
# Worker
# -----------------------------------------------------------------------------
class CleanupWorker:
    """Single executor. Runs one job at a time and reports an outcome."""

    def __init__(
        self,
        worker_id: int,
        github_factory: GitHubClientFactory,
        activity: ActivityLogger,
    ):
        self.worker_id = worker_id
        self._github_factory = github_factory
        self._activity = activity
        self._current_job: Optional[QueuedJob] = None

    @property
    def is_busy(self) -> bool:
        return self._current_job is not None

    @property
    def current_job_id(self) -> Optional[str]:
        return self._current_job.job_id if self._current_job else None

    def assign(self, record: QueuedJob) -> None:
        """Reserve this worker for a claimed job before its task starts."""
        self._current_job = record

    async def execute(self, record: QueuedJob) -> JobOutcome:
        self._current_job = record
        try:
            return await self._run(record)
        finally:
            self._current_job = None

    async def _run(self, record: QueuedJob) -> JobOutcome:
        job = record.job
        attempts_made = record.attempts_made + 1
        try:
            client = await self._github_factory.for_installation(job.installation_id)
            await client.delete_comment(job.owner, job.repo, job.comment_id)
        except Exception as e:
            reason = f"{e.__class__.__name__}: {e}"
            if attempts_made >= record.attempts:
                return Failed(record.job_id, attempts_made, reason)
            return Retrying(
                record.job_id,
                attempts_made,
                backoff_delay_ms(attempts_made, record.backoff_delay_ms),
                reason,
            )

        try:
            await self._activity.log_system(
                "comment_cleaned_up",
                EntityType.COMMENT,
                f"comment#{job.comment_id}",
                {"owner": job.owner, "repo": job.repo, "issueNumber": job.issue_number},
            )
        except Exception as e:
            # Comment is already gone; retrying would only hit a 404
            logger.error(f"Failed to log cleanup of comment {job.comment_id}: {e}")

        logger.info(
            f"Worker {self.worker_id}: deleted comment {job.comment_id} from "
            f"{job.owner}/{job.repo}#{job.issue_number}"
        )
        return Completed(record.job_id, attempts_made)


# -----------------------------------------------------------------------------
# Pool
# -----------------------------------------------------------------------------
class CleanupWorkerPool:
    """
    Supervises the workers and owns the retry/backoff decisions.

    Constructed once at process start with the shared queue store.
    """

    def __init__(
        self,
        store: PersistentCleanupStore,
        github_factory: GitHubClientFactory,
        activity: ActivityLogger,
        concurrency: int = DEFAULT_CONCURRENCY,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._clock = clock
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self._workers: List[CleanupWorker] = [
            CleanupWorker(worker_id=i, github_factory=github_factory, activity=activity)
            for i in range(concurrency)
        ]
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()

        logger.info(f"CleanupWorkerPool initialized with {concurrency} workers")

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("Cleanup worker pool already running")
            return
        self._running = True
        await self._store.recover_interrupted()
        self._loop_task = asyncio.create_task(self._supervisor_loop())
        logger.info(f"Cleanup worker pool started on queue {self._store.queue_name}")

    async def stop(self) -> None:
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)
        logger.info("Cleanup worker pool stopped")

    async def dispatch_due(self) -> List[asyncio.Task]:
        """Claim as many due jobs as there are idle workers and start them."""
        idle = [w for w in self._workers if not w.is_busy]
        if not idle:
            return []

        claimed = await self._store.claim_due(now_ms(self._clock), len(idle))
        tasks = []
        for worker, record in zip(idle, claimed):
            worker.assign(record)
            task = asyncio.create_task(self._execute_job(worker, record))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            tasks.append(task)
        return tasks

    async def run_once(self) -> List[JobOutcome]:
        """Run one scheduling round to completion and return its outcomes."""
        tasks = await self.dispatch_due()
        if not tasks:
            return []
        return list(await asyncio.gather(*tasks))

    async def _execute_job(self, worker: CleanupWorker, record: QueuedJob) -> JobOutcome:
        outcome = await worker.execute(record)
        try:
            await self._apply_outcome(record, outcome)
        except Exception as e:
            # the record stays running until recover_interrupted on next start
            logger.error(f"Failed to apply outcome for cleanup job {record.job_id}: {e}")
        return outcome

    async def _apply_outcome(self, record: QueuedJob, outcome: JobOutcome) -> None:
        job = record.job
        if isinstance(outcome, Completed):
            await self._store.remove(outcome.job_id)
            logger.info(f"Cleanup job {outcome.job_id} completed")
        elif isinstance(outcome, Retrying):
            await self._store.reschedule(
                outcome.job_id,
                ready_at_ms=now_ms(self._clock) + outcome.next_delay_ms,
                attempts_made=outcome.attempts_made,
                reason=outcome.reason,
            )
            logger.warning(
                f"Cleanup job {outcome.job_id} attempt {outcome.attempts_made} failed "
                f"({outcome.reason}); retrying in {outcome.next_delay_ms}ms"
            )
        elif isinstance(outcome, Failed):
            await self._store.remove(outcome.job_id)
            logger.error(
                f"Cleanup job {outcome.job_id} failed after {outcome.attempts_made} attempts: "
                f"comment {job.comment_id} on {job.owner}/{job.repo} not deleted ({outcome.reason})"
            )

    async def _supervisor_loop(self) -> None:
        while self._running:
            try:
                await self.dispatch_due()
                await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Cleanup supervisor loop error: {e}")
                await asyncio.sleep(self.poll_interval * 5)

    async def get_status(self) -> Dict[str, Any]:
        busy = [w for w in self._workers if w.is_busy]
        return {
            "running": self._running,
            "queue": self._store.queue_name,
            "concurrency": self.concurrency,
            "active_workers": len(busy),
            "available_workers": self.concurrency - len(busy),
            "active_jobs": [w.current_job_id for w in busy],
            "jobs": await self._store.counts(),
        }
