"""Published tool catalog served through the shared cache.

Each tool list page is cached under a ``tools_<params>`` key with the
"normal" preset, so a stale page is served while a refresh runs in the
background. Categories change rarely and use the persisted "static" preset.
Creating or editing a tool drops every ``tools_`` key at once.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, TYPE_CHECKING

import httpx

from core.cache import CACHE_PRESETS, CacheManager, cached
from core.cache_keys import generate_key
from core.logging import get_logger
from services.supabase import SupabaseClient, SupabaseError

if TYPE_CHECKING:
    from core.config import Settings

logger = get_logger(__name__)

TOOLS_KEY_PREFIX = "tools"
CATEGORIES_KEY = "categories"
DATA_VERSION = "v1.1.0"
DEFAULT_PAGE_SIZE = 12
MAX_PAGE_SIZE = 200
SORT_FIELDS = ("upvotes", "date_added", "rating", "views")
PRICING_TIERS = ("Free", "Freemium", "Paid", "Trial")
TOOL_COLUMNS = (
    "id,name,tagline,description,website_url,logo_url,categories,features,pricing,"
    "rating,views,upvotes,date_added,featured,review_count,updated_at,screenshots"
)


class CatalogError(Exception):
    """Base exception for tool catalog failures."""


class InvalidQueryError(CatalogError):
    """List parameters out of range."""


class CatalogNotConfiguredError(CatalogError):
    """Supabase credentials are missing."""


def _array_literal(values) -> str:
    quoted = ",".join('"' + v.replace('"', '\\"') + '"' for v in values)
    return "{" + quoted + "}"


@dataclass(frozen=True)
class ToolQuery:
    """Normalized parameters of one tool list page."""
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0
    sort_by: str = "upvotes"
    featured: bool = False
    category: Optional[str] = None
    pricing: Optional[str] = None
    features: Tuple[str, ...] = ()

    @classmethod
    def parse(cls, limit: Optional[int] = None, offset: Optional[int] = None,
              sort_by: Optional[str] = None, featured: bool = False,
              category: Optional[str] = None, pricing: Optional[str] = None,
              features: Optional[str] = None) -> "ToolQuery":
        """Validate raw request values.

        Unknown sort fields fall back to ``upvotes`` and unknown pricing tiers
        are ignored; ``features`` is a comma-separated list.

        Raises:
            InvalidQueryError: If limit or offset is out of range
        """
        limit = limit or DEFAULT_PAGE_SIZE
        offset = offset or 0
        if limit > MAX_PAGE_SIZE:
            raise InvalidQueryError(f"Limit cannot exceed {MAX_PAGE_SIZE}")
        if limit < 0:
            raise InvalidQueryError("Limit must be positive")
        if offset < 0:
            raise InvalidQueryError("Offset must be non-negative")

        return cls(
            limit=limit,
            offset=offset,
            sort_by=sort_by if sort_by in SORT_FIELDS else "upvotes",
            featured=featured,
            category=category or None,
            pricing=pricing if pricing in PRICING_TIERS else None,
            features=tuple(sorted({f.strip() for f in (features or "").split(",") if f.strip()})),
        )

    def cache_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": self.limit, "offset": self.offset, "sort_by": self.sort_by}
        if self.featured:
            params["featured"] = True
        if self.category:
            params["category"] = self.category
        if self.pricing:
            params["pricing"] = self.pricing
        if self.features:
            params["features"] = list(self.features)
        return params

    def filters(self) -> Dict[str, str]:
        """PostgREST filters for published tools matching this query."""
        filters = {"status": "eq.published"}
        if self.featured:
            filters["featured"] = "eq.true"
        if self.category:
            filters["categories"] = f"ov.{_array_literal([self.category])}"
        if self.pricing:
            filters["pricing"] = f"eq.{self.pricing}"
        if self.features:
            filters["features"] = f"ov.{_array_literal(self.features)}"
        return filters

    @property
    def order(self) -> str:
        if self.sort_by == "rating":
            return "rating.desc.nullslast"
        return f"{self.sort_by}.desc"


class ToolsService:
    """Cached reads of the published tool catalog."""

    def __init__(self, cache: CacheManager, settings: "Settings",
                 http_client: Optional[httpx.AsyncClient] = None):
        self.cache = cache
        self.settings = settings
        self._client = http_client
        self._owns_client = http_client is None
        self.load_categories = cached(
            cache, CACHE_PRESETS["static"], prefix=CATEGORIES_KEY
        )(self._fetch_categories)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.http_timeout)
        return self._client

    async def shutdown(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def cache_key(self, query: ToolQuery) -> str:
        return generate_key(TOOLS_KEY_PREFIX, query.cache_params())

    async def list_tools(self, query: ToolQuery, refresh: bool = False) -> Dict[str, Any]:
        """Return one page of published tools.

        Args:
            query: Page parameters
            refresh: Drop every cached tool page before reading

        Raises:
            CatalogNotConfiguredError: When Supabase is not configured
            SupabaseError: When the lookup fails (never cached)
        """
        if refresh:
            await self.cache.invalidate(f"{TOOLS_KEY_PREFIX}_*")

        key = self.cache_key(query)
        was_cached = key in self.cache
        tools = await self.cache.fetch_with_cache(
            key, lambda: self._fetch_tools(query), CACHE_PRESETS["normal"]
        )
        return {
            "tools": tools,
            "count": len(tools),
            "cached": was_cached,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": DATA_VERSION,
        }

    async def list_categories(self) -> Dict[str, Any]:
        was_cached = CATEGORIES_KEY in self.cache
        categories = await self.load_categories()
        return {
            "categories": categories,
            "cached": was_cached,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def invalidate_tools(self) -> int:
        """Drop every cached tool page. Returns the number of pages removed."""
        removed = await self.cache.invalidate_prefix(f"{TOOLS_KEY_PREFIX}_")
        logger.info("Tool pages invalidated", removed=removed)
        return removed

    async def invalidate_categories(self) -> int:
        return await self.cache.invalidate(CATEGORIES_KEY)

    async def warm(self) -> None:
        """Prefetch the default first page and the category list."""
        query = ToolQuery()
        await self.cache.prefetch(
            self.cache_key(query), lambda: self._fetch_tools(query), CACHE_PRESETS["normal"]
        )
        await self.cache.prefetch(CATEGORIES_KEY, self._fetch_categories, CACHE_PRESETS["static"])

    # =========================================================================
    # SUPABASE
    # =========================================================================

    def _supabase(self) -> SupabaseClient:
        if not self.settings.supabase_configured:
            raise CatalogNotConfiguredError("Supabase is not configured")
        return SupabaseClient(
            self.settings.supabase_url, self.settings.supabase_service_key, self.client
        )

    async def _fetch_tools(self, query: ToolQuery) -> List[Dict[str, Any]]:
        return await self._supabase().select(
            "tools",
            columns=TOOL_COLUMNS,
            filters=query.filters(),
            limit=query.limit,
            offset=query.offset,
            order=query.order,
        )

    async def _fetch_categories(self) -> List[Dict[str, Any]]:
        supabase = self._supabase()
        try:
            return await supabase.select(
                "categories",
                filters={"is_active": "eq.true"},
                order="sort_order.asc,name.asc",
            )
        except SupabaseError as e:
            # Older schemas have no is_active column
            if "is_active" not in str(e):
                raise
            logger.warning("Categories lookup without is_active filter", error=str(e))
            return await supabase.select("categories", order="name.asc")
