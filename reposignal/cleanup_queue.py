"""
Cleanup Queue & Scheduler

Durable queue of delayed comment deletions. Every ephemeral message the bot
posts (or consumes) gets exactly ONE cleanup job. Jobs are never batched and
never correlated: there is no cancel, no edit, no dedup.

Queue surface:
- Channel:  "reposignal-cleanup"
- Job name: "delete-comment"
- Payload:  {owner, repo, commentId, issueNumber?, installationId}
- Options:  {delay (ms), attempts: 3, backoff: {type: "exponential", delay: 5000}}

Job state machine:

    PENDING -> RUNNING -> COMPLETED            (removed from store)
                  |
                  +----> RETRYING -> RUNNING   (backoff 5s, 10s, ...)
                  |
                  +----> FAILED                (after 3 attempts, removed)

The store is the ONLY point of mutual exclusion between the executors of one
process: a job is claimed (PENDING/RETRYING -> RUNNING) under the store lock,
and each claim reads and rewrites the state file with no suspension point in
between, so no two executors ever run the same job. The lock is an
asyncio.Lock, not a file lock: run ONE worker process per state file.
"""

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any, List, Callable, Set

logger = logging.getLogger("cleanup_queue")

# -----------------------------------------------------------------------------
# Queue contract
# -----------------------------------------------------------------------------
QUEUE_NAME = "reposignal-cleanup"
JOB_NAME = "delete-comment"
DEFAULT_ATTEMPTS = 3
BACKOFF_TYPE = "exponential"
BACKOFF_DELAY_MS = 5000

# Delays used by callers
COMMAND_CLEANUP_DELAY_MS = 60_000           # command + confirmation pair (1 minute)
ISSUE_NUDGE_CLEANUP_DELAY_MS = 300_000      # issues.opened nudge (5 minutes)
FEEDBACK_NUDGE_CLEANUP_DELAY_MS = 3_600_000  # merged PR feedback nudge (1 hour)


def backoff_delay_ms(attempts_made: int, base_delay_ms: int = BACKOFF_DELAY_MS) -> int:
    """
    Exponential backoff before the next attempt.

    attempts_made=1 -> 5000, 2 -> 10000, 3 -> 20000 (base 5000ms).
    """
    return base_delay_ms * (2 ** max(attempts_made - 1, 0))


def now_ms(clock: Callable[[], float] = time.time) -> int:
    return int(clock() * 1000)


class CleanupJobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def claimable_states(cls) -> Set["CleanupJobState"]:
        """States a due job can be claimed from."""
        return {cls.PENDING, cls.RETRYING}

    @classmethod
    def terminal_states(cls) -> Set["CleanupJobState"]:
        return {cls.COMPLETED, cls.FAILED}


@dataclass(frozen=True)
class CleanupJob:
    """Target of one deletion: the comment plus the installation allowed to delete it."""
    owner: str
    repo: str
    comment_id: int
    installation_id: int
    issue_number: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "owner": self.owner,
            "repo": self.repo,
            "commentId": self.comment_id,
            "installationId": self.installation_id,
        }
        if self.issue_number is not None:
            payload["issueNumber"] = self.issue_number
        return payload

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "CleanupJob":
        return cls(
            owner=data["owner"],
            repo=data["repo"],
            comment_id=data["commentId"],
            installation_id=data["installationId"],
            issue_number=data.get("issueNumber"),
        )


@dataclass
class QueuedJob:
    """A cleanup job as stored in the queue, with its options and progress."""
    job_id: str
    job: CleanupJob
    delay_ms: int
    created_at_ms: int
    ready_at_ms: int
    state: CleanupJobState = CleanupJobState.PENDING
    attempts: int = DEFAULT_ATTEMPTS
    backoff_delay_ms: int = BACKOFF_DELAY_MS
    attempts_made: int = 0
    failed_reason: Optional[str] = None
    name: str = JOB_NAME

    def is_due(self, at_ms: int) -> bool:
        return self.state in CleanupJobState.claimable_states() and self.ready_at_ms <= at_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.job_id,
            "name": self.name,
            "data": self.job.to_payload(),
            "opts": {
                "delay": self.delay_ms,
                "attempts": self.attempts,
                "backoff": {"type": BACKOFF_TYPE, "delay": self.backoff_delay_ms},
            },
            "timestamp": self.created_at_ms,
            "readyAt": self.ready_at_ms,
            "attemptsMade": self.attempts_made,
            "state": self.state.value,
            "failedReason": self.failed_reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueuedJob":
        opts = data.get("opts", {})
        backoff = opts.get("backoff", {})
        return cls(
            job_id=data["id"],
            name=data.get("name", JOB_NAME),
            job=CleanupJob.from_payload(data["data"]),
            delay_ms=opts.get("delay", 0),
            attempts=opts.get("attempts", DEFAULT_ATTEMPTS),
            backoff_delay_ms=backoff.get("delay", BACKOFF_DELAY_MS),
            created_at_ms=data["timestamp"],
            ready_at_ms=data.get("readyAt", data["timestamp"] + opts.get("delay", 0)),
            attempts_made=data.get("attemptsMade", 0),
            state=CleanupJobState(data.get("state", CleanupJobState.PENDING.value)),
            failed_reason=data.get("failedReason"),
        )


# -----------------------------------------------------------------------------
# Persistent store
# -----------------------------------------------------------------------------
class PersistentCleanupStore:
    """
    JSON-file backed queue store.

    Every mutation rewrites the state file atomically (write temp, replace),
    so a restart sees every job scheduled before it.
    Mutual exclusion holds within one process only; the state file must not
    be shared by several processes.
    """

    def __init__(self, state_file: Path, queue_name: str = QUEUE_NAME):
        self._state_file = state_file
        self.queue_name = queue_name
        self._lock = asyncio.Lock()
        self._ensure_dir()

    def _ensure_dir(self) -> None:
        try:
            self._state_file.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Could not create queue state directory: {e}")

    def _load_state(self) -> Dict[str, Any]:
        default_state = {"queue": self.queue_name, "jobs": {}}
        if not self._state_file.exists():
            return default_state
        try:
            state = json.loads(self._state_file.read_text())
        except (json.JSONDecodeError, IOError) as e:
            logger.error(f"Failed to load queue state file: {e}")
            return default_state

        if not isinstance(state, dict) or not isinstance(state.get("jobs"), dict):
            logger.warning("Queue state file malformed, resetting jobs")
            return default_state
        return state

    def _save_state(self, state: Dict[str, Any]) -> None:
        temp_file = self._state_file.with_suffix(".tmp")
        try:
            temp_file.write_text(json.dumps(state, indent=2))
            temp_file.replace(self._state_file)
        except IOError:
            if temp_file.exists():
                temp_file.unlink()
            raise

    def _records(self, state: Dict[str, Any]) -> List[QueuedJob]:
        records = []
        for job_id, data in state["jobs"].items():
            try:
                records.append(QueuedJob.from_dict(data))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping unreadable cleanup job {job_id}: {e}")
        return records

    async def add(self, record: QueuedJob) -> str:
        async with self._lock:
            state = self._load_state()
            state["jobs"][record.job_id] = record.to_dict()
            self._save_state(state)
        return record.job_id

    async def get(self, job_id: str) -> Optional[QueuedJob]:
        async with self._lock:
            data = self._load_state()["jobs"].get(job_id)
        return QueuedJob.from_dict(data) if data else None

    async def list_jobs(self, state: Optional[CleanupJobState] = None) -> List[QueuedJob]:
        async with self._lock:
            records = self._records(self._load_state())
        if state:
            records = [r for r in records if r.state == state]
        records.sort(key=lambda r: (r.ready_at_ms, r.job_id))
        return records

    async def claim_due(self, at_ms: int, limit: int) -> List[QueuedJob]:
        """
        Atomically move up to `limit` due jobs to RUNNING and return them.

        Ordering among due jobs is by ready time only as a courtesy; callers
        must not rely on it.
        """
        if limit <= 0:
            return []
        async with self._lock:
            state = self._load_state()
            due = [r for r in self._records(state) if r.is_due(at_ms)]
            due.sort(key=lambda r: (r.ready_at_ms, r.job_id))
            claimed = due[:limit]
            for record in claimed:
                record.state = CleanupJobState.RUNNING
                state["jobs"][record.job_id] = record.to_dict()
            if claimed:
                self._save_state(state)
        return claimed

    async def reschedule(
        self,
        job_id: str,
        ready_at_ms: int,
        attempts_made: int,
        reason: Optional[str] = None,
    ) -> bool:
        """Move a RUNNING job to RETRYING with a new ready time."""
        async with self._lock:
            state = self._load_state()
            data = state["jobs"].get(job_id)
            if not data:
                return False
            record = QueuedJob.from_dict(data)
            record.state = CleanupJobState.RETRYING
            record.ready_at_ms = ready_at_ms
            record.attempts_made = attempts_made
            record.failed_reason = reason
            state["jobs"][job_id] = record.to_dict()
            self._save_state(state)
        return True

    async def remove(self, job_id: str) -> bool:
        async with self._lock:
            state = self._load_state()
            if job_id not in state["jobs"]:
                return False
            del state["jobs"][job_id]
            self._save_state(state)
        return True

    async def recover_interrupted(self) -> int:
        """
        Return RUNNING jobs left by a crashed process to PENDING.

        The interrupted attempt is not counted.
        """
        async with self._lock:
            state = self._load_state()
            recovered = 0
            for record in self._records(state):
                if record.state == CleanupJobState.RUNNING:
                    record.state = CleanupJobState.PENDING
                    state["jobs"][record.job_id] = record.to_dict()
                    recovered += 1
            if recovered:
                self._save_state(state)
        if recovered:
            logger.warning(f"Recovered {recovered} interrupted cleanup jobs")
        return recovered

    async def counts(self) -> Dict[str, int]:
        records = await self.list_jobs()
        counts = {s.value: 0 for s in CleanupJobState}
        for record in records:
            counts[record.state.value] += 1
        counts["total"] = len(records)
        return counts


# -----------------------------------------------------------------------------
# Scheduler
# -----------------------------------------------------------------------------
class CleanupScheduler:
    """
    Records cleanup obligations. Never waits for execution.

    Constructed once at process start and passed to every component that
    posts ephemeral messages.
    """

    def __init__(
        self,
        store: PersistentCleanupStore,
        clock: Callable[[], float] = time.time,
        attempts: int = DEFAULT_ATTEMPTS,
        backoff_delay: int = BACKOFF_DELAY_MS,
    ):
        self._store = store
        self._clock = clock
        self._attempts = attempts
        self._backoff_delay = backoff_delay

    async def schedule(self, job: CleanupJob, delay_ms: int) -> str:
        """Enqueue `job`, eligible no earlier than now + delay_ms. Returns the job id."""
        created = now_ms(self._clock)
        record = QueuedJob(
            job_id=uuid.uuid4().hex,
            job=job,
            delay_ms=delay_ms,
            created_at_ms=created,
            ready_at_ms=created + delay_ms,
            attempts=self._attempts,
            backoff_delay_ms=self._backoff_delay,
        )
        await self._store.add(record)
        logger.info(
            f"Scheduled cleanup of comment {job.comment_id} on "
            f"{job.owner}/{job.repo} in {delay_ms}ms (job {record.job_id})"
        )
        return record.job_id
