"""Screenshot capture worker.

Job handler for the screenshot TaskQueue: captures a hero screenshot of a
tool's website through the capture API and stores it in Supabase Storage.
Only the hero region is generated so a single job stays short.
"""

import time
from typing import Any, Dict, List, Optional, Tuple, TYPE_CHECKING
from urllib.parse import urlparse

import httpx

from core.logging import get_logger, log_http_call
from services.screenshot.exceptions import (
    CaptureFailedError,
    InvalidTargetError,
    ScreenshotTooLargeError,
    StorageNotConfiguredError,
)
from services.supabase import SupabaseClient

if TYPE_CHECKING:
    from core.config import Settings

logger = get_logger(__name__)

HERO_REGION = "hero"
BUCKET_FILE_SIZE_LIMIT = 10 * 1024 * 1024
ALLOWED_MIME_TYPES = ["image/jpeg", "image/jpg", "image/png", "image/webp"]

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}


def normalize_screenshot_target(website_url: str) -> Optional[str]:
    """Return the hostname to capture, or None for unusable URLs."""
    if not website_url:
        return None
    try:
        parsed = urlparse(website_url.strip())
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None
    return parsed.hostname


class ScreenshotService:
    """Captures and stores tool screenshots."""

    def __init__(self, settings: "Settings", http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._client = http_client
        self._owns_client = http_client is None
        self._bucket_ready = False

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.settings.http_timeout,
                follow_redirects=True,
            )
        return self._client

    async def shutdown(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def capture(self, payload: Dict[str, Any]) -> List[str]:
        """Queue handler: capture, upload and return the public screenshot URLs.

        Args:
            payload: ``{"tool_id": ..., "website_url": ...}``

        Raises:
            ScreenshotError: On invalid targets, capture or size failures
            SupabaseError: When storage calls fail
        """
        tool_id = str(payload.get("tool_id", ""))
        website_url = str(payload.get("website_url", ""))

        target = normalize_screenshot_target(website_url)
        if not target:
            raise InvalidTargetError(website_url)

        if not self.settings.supabase_configured:
            raise StorageNotConfiguredError("Supabase storage is not configured")

        supabase = SupabaseClient(
            self.settings.supabase_url, self.settings.supabase_service_key, self.client
        )
        bucket = self.settings.screenshot_bucket
        await self._ensure_bucket(supabase, bucket)

        image, content_type = await self._fetch_image(target)
        object_path = f"tools/{tool_id}/{HERO_REGION}.{_EXTENSIONS.get(content_type, 'png')}"

        await supabase.upload(bucket, object_path, image, content_type)
        public_url = supabase.public_url(bucket, object_path)

        logger.info("Screenshot stored", tool_id=tool_id, target=target,
                    size_bytes=len(image), path=object_path)
        return [public_url]

    async def _ensure_bucket(self, supabase: SupabaseClient, bucket: str) -> None:
        if self._bucket_ready:
            return
        if not await supabase.bucket_exists(bucket):
            await supabase.create_bucket(
                bucket,
                public=True,
                file_size_limit=BUCKET_FILE_SIZE_LIMIT,
                allowed_mime_types=ALLOWED_MIME_TYPES,
            )
        self._bucket_ready = True

    async def _fetch_image(self, target: str) -> Tuple[bytes, str]:
        url = self.settings.screenshot_api_url.format(
            width=self.settings.screenshot_width, target=target
        )
        limit = self.settings.screenshot_max_bytes

        start = time.perf_counter()
        response = await self.client.get(url, timeout=self.settings.http_timeout)
        log_http_call(logger, "capture", "screenshot", response.status_code,
                      time.perf_counter() - start, target=target)
        if not response.is_success:
            raise CaptureFailedError(response.status_code)

        declared = response.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > limit:
            raise ScreenshotTooLargeError(int(declared), limit)

        image = response.content
        if len(image) > limit:
            raise ScreenshotTooLargeError(len(image), limit)

        content_type = response.headers.get("content-type", "image/jpeg").split(";")[0].strip()
        return image, content_type or "image/jpeg"
