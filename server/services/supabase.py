"""Thin async client for the Supabase REST (PostgREST) and Storage APIs.

Only the handful of calls the screenshot worker, tool catalog and duplicate
check need. Uses the service role key; never expose this client to browsers.
"""

import time
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from core.logging import get_logger, log_http_call

logger = get_logger(__name__)


class SupabaseError(Exception):
    """Supabase API call failed."""

    def __init__(self, operation: str, status_code: int, message: str):
        self.operation = operation
        self.status_code = status_code
        super().__init__(f"{operation} failed ({status_code}): {message}")


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)


class SupabaseClient:
    """Service-role client bound to one project URL."""

    def __init__(self, url: str, service_key: str, client: httpx.AsyncClient):
        self.url = url.rstrip("/")
        self.service_key = service_key
        self.client = client

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
        }

    # =========================================================================
    # Storage
    # =========================================================================

    async def bucket_exists(self, bucket: str) -> bool:
        response = await self.client.get(
            f"{self.url}/storage/v1/bucket/{bucket}", headers=self.headers
        )
        return response.status_code == 200

    async def create_bucket(self, bucket: str, public: bool = True,
                            file_size_limit: Optional[int] = None,
                            allowed_mime_types: Optional[List[str]] = None) -> None:
        payload: Dict[str, Any] = {"id": bucket, "name": bucket, "public": public}
        if file_size_limit is not None:
            payload["file_size_limit"] = file_size_limit
        if allowed_mime_types:
            payload["allowed_mime_types"] = allowed_mime_types

        response = await self.client.post(
            f"{self.url}/storage/v1/bucket", headers=self.headers, json=payload
        )
        # 409: created concurrently by another worker
        if response.status_code not in (200, 201, 409):
            raise SupabaseError("create_bucket", response.status_code, _error_message(response))
        logger.info("Storage bucket ensured", bucket=bucket)

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str,
                     cache_control: str = "2592000", upsert: bool = True) -> None:
        headers = {
            **self.headers,
            "Content-Type": content_type,
            "Cache-Control": f"max-age={cache_control}",
            "x-upsert": "true" if upsert else "false",
        }
        start = time.perf_counter()
        response = await self.client.post(
            f"{self.url}/storage/v1/object/{bucket}/{quote(path)}",
            headers=headers,
            content=data,
        )
        log_http_call(logger, "supabase", "upload", response.status_code,
                      time.perf_counter() - start, bucket=bucket, size_bytes=len(data))
        if response.status_code not in (200, 201):
            raise SupabaseError("upload", response.status_code, _error_message(response))

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{bucket}/{quote(path)}"

    # =========================================================================
    # PostgREST
    # =========================================================================

    async def select(self, table: str, columns: str = "*",
                     filters: Optional[Dict[str, str]] = None,
                     limit: Optional[int] = None,
                     offset: Optional[int] = None,
                     order: Optional[str] = None) -> List[Dict[str, Any]]:
        """Run ``GET /rest/v1/<table>`` with PostgREST filters (``{"col": "eq.value"}``).

        ``order`` uses PostgREST syntax, e.g. ``"rating.desc.nullslast,name.asc"``.
        """
        params: Dict[str, Any] = {"select": columns, **(filters or {})}
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = limit
        if offset:
            params["offset"] = offset

        start = time.perf_counter()
        response = await self.client.get(
            f"{self.url}/rest/v1/{table}", headers=self.headers, params=params
        )
        log_http_call(logger, "supabase", "select", response.status_code,
                      time.perf_counter() - start, table=table)
        if response.status_code != 200:
            raise SupabaseError("select", response.status_code, _error_message(response))
        return response.json()
