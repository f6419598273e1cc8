"""Cache administration routes."""

import secrets
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from core.cache import CacheManager
from core.config import Settings
from core.container import container
from core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/api/cache", tags=["cache"])


def admin_token_valid(token: str, settings: Settings) -> bool:
    """Constant-time check against CACHE_CLEAR_TOKEN. Always false when unset."""
    expected = settings.cache_clear_token
    return bool(expected) and secrets.compare_digest(token.encode(), expected.encode())


@router.get("/stats")
async def get_cache_stats(
    cache: CacheManager = Depends(lambda: container.cache())
):
    """Cache statistics."""
    return cache.get_stats()


@router.post("/clear")
async def clear_cache(
    token: str = Query(default=""),
    pattern: str = Query(default="all"),
    cache: CacheManager = Depends(lambda: container.cache()),
    settings: Settings = Depends(lambda: container.settings())
):
    """Invalidate cache entries.

    ``pattern=all`` clears everything, ``prefix*`` clears by prefix, anything
    else is an exact key. Requires CACHE_CLEAR_TOKEN.
    """
    if not admin_token_valid(token, settings):
        return JSONResponse(
            status_code=403,
            content={"error": "Forbidden", "message": "Invalid token"},
        )

    removed = await cache.invalidate(None if pattern == "all" else pattern)
    logger.info("Cache cleared via API", pattern=pattern, removed=removed)
    return {
        "success": True,
        "pattern": pattern,
        "removed": removed,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
