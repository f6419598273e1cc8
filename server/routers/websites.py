"""Website submission helpers (duplicate detection)."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from core.container import container
from core.logging import get_logger
from services.duplicate_check import DuplicateChecker, DuplicateCheckError, InvalidURLError
from services.supabase import SupabaseError

logger = get_logger(__name__)
router = APIRouter(prefix="/api/websites", tags=["websites"])


class DuplicateCheckRequest(BaseModel):
    url: str


@router.post("/check-duplicate")
async def check_duplicate(
    request: DuplicateCheckRequest,
    checker: DuplicateChecker = Depends(lambda: container.duplicate_checker())
):
    """Check whether a website is already listed."""
    try:
        return await checker.check(request.url)
    except InvalidURLError as e:
        return JSONResponse(
            status_code=400,
            content={"error": str(e), "code": "INVALID_URL_FORMAT"},
        )
    except SupabaseError as e:
        logger.error("Duplicate lookup failed", error=str(e))
        return JSONResponse(
            status_code=502,
            content={"error": "Database query failed", "code": "DATABASE_ERROR"},
        )
    except DuplicateCheckError as e:
        logger.error("Duplicate check unavailable", error=str(e))
        return JSONResponse(
            status_code=500,
            content={"error": "Server configuration error", "code": "SERVER_CONFIG_ERROR"},
        )
