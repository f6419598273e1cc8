"""In-process priority task queue with a single background worker.

Producers call ``enqueue`` and receive a job id immediately; a drain loop
running on the event loop processes one pending job per cycle and re-arms
itself with a short delay while work remains. Callers poll ``get_status``.

Jobs live only in memory. They are dropped once older than ``job_ttl`` and,
when more than ``max_size`` are retained, the oldest by creation time are
evicted regardless of status.
"""

import asyncio
import itertools
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, TYPE_CHECKING

from core.logging import get_logger, log_job_transition
from .models import Job, JobStatus, QueueStats

if TYPE_CHECKING:
    from core.config import Settings

logger = get_logger(__name__)

JobHandler = Callable[[Dict[str, Any]], Awaitable[List[str]]]


class TaskQueue:
    """Priority-ordered, TTL-bounded job queue with at most one running job.

    Ordering is (priority ascending, created_at ascending, insertion order);
    a lower priority number is more urgent.
    """

    def __init__(self, handler: JobHandler,
                 max_size: int = 100,
                 job_ttl: float = 30 * 60,
                 job_timeout: float = 60.0,
                 drain_delay: float = 1.0,
                 default_priority: int = 10,
                 id_prefix: str = "job",
                 clock: Callable[[], float] = time.time):
        """Initialize the queue.

        Args:
            handler: Async callable performing the external work for a job
                payload and returning the produced artifact references
            max_size: Hard cap on retained jobs
            job_ttl: Seconds after creation before a job is forgotten
            job_timeout: Seconds a handler may run before the job times out
            drain_delay: Seconds between drain cycles while work remains
            default_priority: Priority used when enqueue gets none
            id_prefix: Prefix for generated job ids
            clock: Wall-clock source, injectable for tests
        """
        self._handler = handler
        self.max_size = max_size
        self.job_ttl = job_ttl
        self.job_timeout = job_timeout
        self.drain_delay = drain_delay
        self.default_priority = default_priority
        self.id_prefix = id_prefix
        self._clock = clock

        self._jobs: Dict[str, Job] = {}
        self._seq = itertools.count()
        self._draining = False
        self._closed = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, handler: JobHandler, settings: "Settings",
                      id_prefix: str = "job") -> "TaskQueue":
        return cls(
            handler,
            max_size=settings.queue_max_size,
            job_ttl=settings.queue_job_ttl,
            job_timeout=settings.queue_job_timeout,
            drain_delay=settings.queue_drain_delay,
            default_priority=settings.queue_default_priority,
            id_prefix=id_prefix,
        )

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def enqueue(self, payload: Dict[str, Any], priority: Optional[int] = None) -> str:
        """Add a job and trigger the drain loop without waiting for it.

        Must be called from a running event loop.

        Returns:
            The new job id
        """
        now = self._clock()
        self.collect_garbage(now)

        job_id = self._generate_id(now)
        job = Job(
            id=job_id,
            payload=dict(payload),
            priority=self.default_priority if priority is None else priority,
            seq=next(self._seq),
            created_at=now,
            updated_at=now,
        )
        self._jobs[job_id] = job
        self._enforce_capacity(keep=job_id)

        log_job_transition(logger, job_id, job.status.value, priority=job.priority,
                           queue_size=len(self._jobs))
        self._spawn_drain()
        return job_id

    def get_status(self, job_id: str) -> Optional[Job]:
        """Return a snapshot of the job, or None if unknown, expired or evicted."""
        job = self._jobs.get(job_id)
        if job is None:
            return None

        if job.age(self._clock()) > self.job_ttl:
            del self._jobs[job_id]
            logger.debug("Expired job dropped on lookup", job_id=job_id)
            return None

        return job.snapshot()

    def get_queue_stats(self) -> QueueStats:
        """Count retained jobs by status."""
        return QueueStats.from_jobs(list(self._jobs.values()))

    def collect_garbage(self, now: Optional[float] = None) -> int:
        """Drop expired jobs, then trim to capacity.

        Returns:
            Number of jobs removed
        """
        now = self._clock() if now is None else now
        expired = [job_id for job_id, job in self._jobs.items()
                   if job.age(now) > self.job_ttl]
        for job_id in expired:
            del self._jobs[job_id]

        removed = len(expired) + self._enforce_capacity()
        if removed:
            logger.debug("Queue garbage collected", removed=removed,
                         expired=len(expired), remaining=len(self._jobs))
        return removed

    @property
    def is_draining(self) -> bool:
        return self._draining

    def __len__(self) -> int:
        return len(self._jobs)

    async def shutdown(self) -> None:
        """Stop rescheduling and cancel any running drain cycle."""
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Task queue stopped", retained_jobs=len(self._jobs))

    # =========================================================================
    # DRAIN LOOP
    # =========================================================================

    def _spawn_drain(self) -> None:
        if self._closed:
            return
        task = asyncio.get_running_loop().create_task(self._drain())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _schedule_next(self) -> None:
        if self._closed or self._timer is not None:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.drain_delay, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self._spawn_drain()

    async def _drain(self) -> None:
        """Run one drain cycle: process the most urgent pending job."""
        # The flag is set before the first await so overlapping triggers no-op.
        if self._draining:
            return
        self._draining = True

        try:
            pending = self._pending_jobs()
            if not pending:
                return
            await self._process(pending[0])
        finally:
            self._draining = False
            if self._pending_jobs():
                self._schedule_next()

    async def _process(self, job: Job) -> None:
        """Execute a job, recording the outcome on the job itself.

        The job object is held by reference, so a job evicted from the map
        mid-flight still finishes; it just can no longer be looked up.
        """
        job.start(self._clock())
        log_job_transition(logger, job.id, job.status.value)

        try:
            artifacts = await asyncio.wait_for(
                self._handler(dict(job.payload)),
                timeout=self.job_timeout
            )
            job.complete(artifacts or [])
        except asyncio.TimeoutError:
            job.fail(f"Job timed out after {self.job_timeout}s", JobStatus.TIMEOUT)
        except asyncio.CancelledError:
            job.fail("Job cancelled")
            raise
        except Exception as e:
            job.fail(str(e) or type(e).__name__)
        finally:
            job.updated_at = self._clock()
            log_job_transition(
                logger, job.id, job.status.value,
                error=job.error,
                artifacts=len(job.artifacts),
                evicted=self._jobs.get(job.id) is not job,
            )

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _pending_jobs(self) -> List[Job]:
        pending = [job for job in self._jobs.values() if job.status == JobStatus.PENDING]
        pending.sort(key=lambda job: (job.priority, job.created_at, job.seq))
        return pending

    def _enforce_capacity(self, keep: Optional[str] = None) -> int:
        overflow = len(self._jobs) - self.max_size
        if overflow <= 0:
            return 0

        candidates = sorted(
            (job for job in self._jobs.values() if job.id != keep),
            key=lambda job: (job.created_at, job.seq)
        )
        for job in candidates[:overflow]:
            del self._jobs[job.id]
            logger.debug("Job evicted for capacity", job_id=job.id,
                         status=job.status.value)
        return min(overflow, len(candidates))

    def _generate_id(self, now: float) -> str:
        while True:
            job_id = f"{self.id_prefix}_{int(now * 1000)}_{uuid.uuid4().hex[:8]}"
            if job_id not in self._jobs:
                return job_id
