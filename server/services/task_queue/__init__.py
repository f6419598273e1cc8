"""In-process background task queue.

Single worker, priority ordered, TTL and capacity bounded. Jobs are polled,
never pushed, and never retried by the queue itself.
"""

from .models import (
    Job,
    JobStatus,
    QueueStats,
    TERMINAL_STATUSES,
)
from .queue import TaskQueue, JobHandler

__all__ = [
    # Models
    "Job",
    "JobStatus",
    "QueueStats",
    "TERMINAL_STATUSES",
    # Queue
    "TaskQueue",
    "JobHandler",
]
