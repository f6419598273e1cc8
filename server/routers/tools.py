"""Tool catalog routes: cached tool list, categories and invalidation."""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from core.config import Settings
from core.container import container
from core.logging import get_logger
from routers.cache import admin_token_valid
from services.duplicate_check import DuplicateChecker, InvalidURLError
from services.supabase import SupabaseError
from services.tools import CatalogNotConfiguredError, InvalidQueryError, ToolQuery, ToolsService

logger = get_logger(__name__)
router = APIRouter(prefix="/api/tools", tags=["tools"])

TOOLS_CACHE_CONTROL = "public, s-maxage=900, stale-while-revalidate=3600"
CATEGORIES_CACHE_CONTROL = "public, s-maxage=600, stale-while-revalidate=900"


class InvalidateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    website_url: Optional[str] = Field(default=None, alias="websiteUrl")
    categories: bool = False


def _catalog_error(e: Exception, what: str) -> JSONResponse:
    if isinstance(e, CatalogNotConfiguredError):
        logger.error("Tool catalog unavailable", error=str(e))
        return JSONResponse(status_code=500, content={"error": "Server configuration error"})
    logger.error("Tool catalog lookup failed", what=what, error=str(e))
    return JSONResponse(status_code=502, content={"error": f"Failed to fetch {what}"})


@router.get("")
async def list_tools(
    response: Response,
    limit: Optional[int] = Query(default=None),
    offset: Optional[int] = Query(default=None),
    sort_by: Optional[str] = Query(default=None, alias="sortBy"),
    featured: bool = Query(default=False),
    category: Optional[str] = Query(default=None),
    pricing: Optional[str] = Query(default=None),
    features: Optional[str] = Query(default=None),
    refresh: bool = Query(default=False),
    service: ToolsService = Depends(lambda: container.tools_service())
):
    """One page of published tools."""
    try:
        query = ToolQuery.parse(limit, offset, sort_by, featured, category, pricing, features)
    except InvalidQueryError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})

    try:
        result = await service.list_tools(query, refresh=refresh)
    except (CatalogNotConfiguredError, SupabaseError) as e:
        return _catalog_error(e, "tools")

    response.headers["Cache-Control"] = TOOLS_CACHE_CONTROL
    return result


@router.get("/categories")
async def list_categories(
    response: Response,
    service: ToolsService = Depends(lambda: container.tools_service())
):
    """Active categories."""
    try:
        result = await service.list_categories()
    except (CatalogNotConfiguredError, SupabaseError) as e:
        return _catalog_error(e, "categories")

    response.headers["Cache-Control"] = CATEGORIES_CACHE_CONTROL
    return result


@router.post("/cache/invalidate")
async def invalidate_catalog(
    request: Optional[InvalidateRequest] = None,
    token: str = Query(default=""),
    service: ToolsService = Depends(lambda: container.tools_service()),
    checker: DuplicateChecker = Depends(lambda: container.duplicate_checker()),
    settings: Settings = Depends(lambda: container.settings())
):
    """Drop cached catalog data after a tool is created or edited.

    Always clears every tool page; ``categories`` also clears the category
    list and ``websiteUrl`` forgets the duplicate-check result for that site.
    """
    if not admin_token_valid(token, settings):
        return JSONResponse(
            status_code=403,
            content={"error": "Forbidden", "message": "Invalid token"},
        )

    request = request or InvalidateRequest()
    removed = {"tools": 0, "categories": 0, "duplicate": 0}
    if request.website_url:
        try:
            removed["duplicate"] = await checker.forget(request.website_url)
        except InvalidURLError as e:
            return JSONResponse(
                status_code=400,
                content={"error": str(e), "code": "INVALID_URL_FORMAT"},
            )
    removed["tools"] = await service.invalidate_tools()
    if request.categories:
        removed["categories"] = await service.invalidate_categories()

    logger.info("Catalog cache invalidated", **removed)
    return {
        "success": True,
        "removed": removed,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
