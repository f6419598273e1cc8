"""Task queue state models.

Job lifecycle:
    PENDING -> PROCESSING -> COMPLETED
                          -> FAILED
                          -> TIMEOUT

COMPLETED, FAILED and TIMEOUT are terminal. Jobs are never retried by the
queue; callers re-enqueue to retry.
"""

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Any, List, Optional


class JobStatus(str, Enum):
    """Job execution states."""
    PENDING = "pending"          # Enqueued, waiting for the drain loop
    PROCESSING = "processing"    # Handler running
    COMPLETED = "completed"      # Handler returned artifacts
    FAILED = "failed"            # Handler raised
    TIMEOUT = "timeout"          # Handler exceeded the job timeout


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.TIMEOUT})


@dataclass
class Job:
    """A unit of deferred work owned by the queue.

    ``seq`` is a per-queue insertion counter used to break ties between jobs
    created within the same clock tick.
    """
    id: str
    payload: Dict[str, Any]
    priority: int
    seq: int
    status: JobStatus = JobStatus.PENDING
    artifacts: List[str] = field(default_factory=list)
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def age(self, now: float) -> float:
        return now - self.created_at

    def start(self, now: float) -> None:
        self.status = JobStatus.PROCESSING
        self.updated_at = now

    def complete(self, artifacts: List[str]) -> None:
        if self.is_terminal:
            return
        self.artifacts = list(artifacts)
        self.status = JobStatus.COMPLETED

    def fail(self, error: str, status: JobStatus = JobStatus.FAILED) -> None:
        if self.is_terminal:
            return
        self.error = error
        self.status = status

    def snapshot(self) -> "Job":
        """Return a copy that callers may hold without seeing later mutations."""
        return replace(self, payload=dict(self.payload), artifacts=list(self.artifacts))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "id": self.id,
            "payload": self.payload,
            "priority": self.priority,
            "status": self.status.value,
            "artifacts": self.artifacts,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class QueueStats:
    """Counts of in-memory jobs by status."""
    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    timeout: int = 0

    @classmethod
    def from_jobs(cls, jobs: List[Job]) -> "QueueStats":
        stats = cls(total=len(jobs))
        for job in jobs:
            name = job.status.value
            setattr(stats, name, getattr(stats, name) + 1)
        return stats

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "pending": self.pending,
            "processing": self.processing,
            "completed": self.completed,
            "failed": self.failed,
            "timeout": self.timeout,
        }
