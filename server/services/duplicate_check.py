"""Website duplicate detection for tool submissions.

Checks whether a submitted website URL already belongs to a listed tool.
Lookups go through the CacheManager so repeated checks of the same URL
(e.g. while a user edits the submission form) hit Supabase once per TTL.
"""

import time
from typing import Any, Dict, Optional, TYPE_CHECKING
from urllib.parse import urlparse

import httpx

from core.cache import CacheManager, CacheOptions
from core.cache_keys import namespaced_key
from core.logging import get_logger
from services.supabase import SupabaseClient

if TYPE_CHECKING:
    from core.config import Settings

logger = get_logger(__name__)

TOOL_COLUMNS = "id,name,tagline,website_url,status,logo_url,created_at,categories"


class DuplicateCheckError(Exception):
    """Base exception for duplicate check failures."""


class InvalidURLError(DuplicateCheckError):
    """Submitted URL is not a usable website address."""


def _parse(url: str):
    trimmed = (url or "").strip()
    if not trimmed:
        raise InvalidURLError("URL must not be empty")

    with_scheme = trimmed if trimmed.lower().startswith(("http://", "https://")) else f"https://{trimmed}"
    try:
        parsed = urlparse(with_scheme)
        hostname = parsed.hostname
    except ValueError:
        raise InvalidURLError("Invalid URL format")

    if not hostname or len(hostname) < 3:
        raise InvalidURLError("Invalid domain")
    if "." not in hostname and hostname != "localhost":
        raise InvalidURLError("Domain must include a top-level domain")
    return parsed, hostname


def normalize_website_url(url: str) -> str:
    """Normalize a URL for duplicate matching.

    Lowercases, drops protocol, ``www.``, query, fragment and trailing
    slashes; keeps other subdomains and the path.

    Raises:
        InvalidURLError: If the URL cannot be parsed into a valid host
    """
    parsed, hostname = _parse(url)
    host = hostname[4:] if hostname.startswith("www.") else hostname
    path = parsed.path.rstrip("/")
    return f"{host}{path}".lower()


def display_url(url: str) -> str:
    """Friendly host+path form of a URL for UI display."""
    try:
        parsed, hostname = _parse(url)
    except InvalidURLError:
        return url
    path = parsed.path if parsed.path not in ("", "/") else ""
    return f"{hostname}{path}"


class DuplicateChecker:
    """Cached lookup of tools by normalized website URL."""

    def __init__(self, cache: CacheManager, settings: "Settings",
                 http_client: Optional[httpx.AsyncClient] = None):
        self.cache = cache
        self.settings = settings
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.http_timeout)
        return self._client

    def cache_key(self, normalized_url: str) -> str:
        return namespaced_key("duplicate", normalized_url,
                              namespace=self.settings.cache_key_prefix)

    async def check(self, url: str) -> Dict[str, Any]:
        """Check whether ``url`` is already listed.

        Raises:
            InvalidURLError: For malformed URLs
            DuplicateCheckError: When Supabase is not configured
            SupabaseError: When the lookup fails (never cached)
        """
        start = time.perf_counter()
        normalized = normalize_website_url(url)
        key = self.cache_key(normalized)
        was_cached = key in self.cache

        tool = await self.cache.fetch_with_cache(
            key,
            lambda: self._find_tool(normalized),
            CacheOptions(ttl=self.settings.duplicate_cache_ttl),
        )

        result = {
            "exists": tool is not None,
            "tool": tool,
            "cached": was_cached,
            "normalized_url": normalized,
            "display_url": display_url(url),
            "processing_time_ms": round((time.perf_counter() - start) * 1000, 2),
        }
        logger.info("Duplicate check", normalized_url=normalized,
                    exists=result["exists"], cached=was_cached)
        return result

    async def forget(self, url: str) -> int:
        """Drop the cached result for ``url`` (after a tool is created or edited)."""
        return await self.cache.invalidate(self.cache_key(normalize_website_url(url)))

    async def _find_tool(self, normalized: str) -> Optional[Dict[str, Any]]:
        if not self.settings.supabase_configured:
            raise DuplicateCheckError("Supabase is not configured")

        supabase = SupabaseClient(
            self.settings.supabase_url, self.settings.supabase_service_key, self.client
        )
        rows = await supabase.select(
            "tools",
            columns=TOOL_COLUMNS,
            filters={"website_url": f"eq.{normalized}"},
            limit=1,
        )
        if not rows:
            return None

        row = rows[0]
        return {
            "id": row.get("id"),
            "name": row.get("name"),
            "tagline": row.get("tagline") or "",
            "website_url": row.get("website_url"),
            "status": row.get("status"),
            "logo_url": row.get("logo_url"),
            "created_at": row.get("created_at"),
            "categories": row.get("categories") or [],
        }

    async def shutdown(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
