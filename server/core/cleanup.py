"""Periodic cleanup service for the long-running server.

Follows the background sweeper pattern: a single asyncio task that wakes up
every CLEANUP_INTERVAL seconds. Both the cache and the task queue also expire
entries lazily on access; this loop reclaims memory for keys nobody reads.
"""
import asyncio
from typing import Dict, Optional, TYPE_CHECKING

from core.logging import get_logger

if TYPE_CHECKING:
    from core.cache import CacheManager
    from services.task_queue import TaskQueue

logger = get_logger(__name__)


class CleanupService:
    """Background cleanup to prevent unbounded memory growth.

    Periodically:
    - Purges expired cache entries
    - Drops expired and over-capacity queue jobs
    """

    def __init__(
        self,
        cache: "CacheManager",
        queue: "TaskQueue",
        interval: float = 300
    ):
        self.cache = cache
        self.queue = queue
        self.interval = interval
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the cleanup background task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._cleanup_loop())
        logger.info("Cleanup service started", interval=self.interval)

    async def stop(self) -> None:
        """Stop the cleanup service gracefully."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Cleanup service stopped")

    async def _cleanup_loop(self) -> None:
        """Main cleanup loop - runs at configured interval."""
        while self._running:
            await asyncio.sleep(self.interval)
            try:
                results = self.run_once()
            except Exception as e:
                logger.error("Cleanup failed", error=str(e))
                continue

            # Only log if something was cleaned up
            if sum(results.values()) > 0:
                logger.info("Cleanup completed", **results)

    def run_once(self) -> Dict[str, int]:
        """Run cleanup once and return counts per area."""
        return {
            "expired_cache": self.cache.purge_expired(),
            "expired_jobs": self.queue.collect_garbage(),
        }
