"""Health check utilities.

Provides uptime tracking and the payload for the /health endpoint.
"""
import time
from typing import Dict, Any, TYPE_CHECKING

if TYPE_CHECKING:
    from core.config import Settings
    from core.cache import CacheManager
    from services.task_queue import TaskQueue

# Module-level startup time tracking
_startup_time: float = 0.0


def set_startup_time() -> None:
    """Record the application startup time. Call once during lifespan startup."""
    global _startup_time
    _startup_time = time.time()


def get_uptime() -> float:
    """Get uptime in seconds since startup."""
    return time.time() - _startup_time if _startup_time else 0.0


async def check_cache(cache: "CacheManager") -> bool:
    """Read-only check: stats are computable and the persistent store answers."""
    try:
        cache.get_stats()
        return await cache.ping()
    except Exception:
        return False


async def get_health_status(
    cache: "CacheManager",
    queue: "TaskQueue",
    settings: "Settings"
) -> Dict[str, Any]:
    """Get health status for /health endpoint.

    Returns:
        Dict containing status, uptime, queue/cache statistics and feature flags.
    """
    cache_healthy = await check_cache(cache)

    return {
        "status": "healthy" if cache_healthy else "degraded",
        "uptime_seconds": round(get_uptime(), 1),
        "checks": {
            "cache": cache_healthy,
        },
        "queue": {
            **queue.get_queue_stats().to_dict(),
            "draining": queue.is_draining,
        },
        "cache": cache.get_stats(),
        "features": {
            "redis": settings.redis_enabled,
            "cleanup": settings.cleanup_enabled,
            "supabase": settings.supabase_configured,
        },
    }
