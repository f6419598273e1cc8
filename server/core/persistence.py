"""Durable backing for persistent cache entries.

Redis is used when REDIS_ENABLED=true and reachable; otherwise entries are
mirrored into a process-local dict. Every backend degrades to miss/no-op on
errors: the in-memory cache stays the source of truth.

Records are JSON objects of the form::

    {"value": <any>, "created_at": <float>, "expires_at": <float>}
"""

import json
import time
from typing import Any, Callable, Dict, Optional, Protocol, TYPE_CHECKING

try:
    import redis.asyncio as redis
    REDIS_AVAILABLE = True
except ImportError:
    redis = None
    REDIS_AVAILABLE = False

from core.logging import get_logger

if TYPE_CHECKING:
    from core.config import Settings

logger = get_logger(__name__)


def _escape_glob(text: str) -> str:
    """Escape Redis MATCH glob metacharacters."""
    return "".join("\\" + ch if ch in "*?[]\\" else ch for ch in text)


def _decode_record(raw: Optional[str], now: float) -> Optional[Dict[str, Any]]:
    """Parse a stored record, treating corrupt or expired data as absent."""
    if not raw:
        return None
    try:
        record = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(record, dict) or "value" not in record:
        return None
    try:
        if now >= float(record.get("expires_at", 0)):
            return None
    except (TypeError, ValueError):
        return None
    return record


class PersistentStore(Protocol):
    """Protocol for persistent cache backends (enables duck typing)."""

    async def read(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    async def write(self, key: str, record: Dict[str, Any], ttl: float) -> bool:
        ...

    async def delete(self, key: str) -> bool:
        ...

    async def delete_prefix(self, prefix: str) -> int:
        ...

    async def clear(self) -> int:
        ...

    async def ping(self) -> bool:
        ...

    @property
    def backend(self) -> str:
        ...


class NullPersistentStore:
    """No-op store. All reads miss, all writes succeed silently."""

    @property
    def backend(self) -> str:
        return "none"

    async def startup(self) -> None:
        pass

    async def shutdown(self) -> None:
        pass

    async def ping(self) -> bool:
        return True

    async def read(self, key: str) -> Optional[Dict[str, Any]]:
        return None

    async def write(self, key: str, record: Dict[str, Any], ttl: float) -> bool:
        return True

    async def delete(self, key: str) -> bool:
        return False

    async def delete_prefix(self, prefix: str) -> int:
        return 0

    async def clear(self) -> int:
        return 0


class MemoryPersistentStore:
    """Process-local store holding serialized records.

    Used when Redis is disabled. Values round-trip through JSON so behaviour
    matches the Redis backend.
    """

    def __init__(self, prefix: str = "unified_cache", clock: Callable[[], float] = time.time):
        self.prefix = prefix
        self._clock = clock
        self._data: Dict[str, str] = {}

    @property
    def backend(self) -> str:
        return "memory"

    def _full_key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def startup(self) -> None:
        pass

    async def shutdown(self) -> None:
        self._data.clear()

    async def ping(self) -> bool:
        return True

    async def read(self, key: str) -> Optional[Dict[str, Any]]:
        full_key = self._full_key(key)
        record = _decode_record(self._data.get(full_key), self._clock())
        if record is None:
            self._data.pop(full_key, None)
        return record

    async def write(self, key: str, record: Dict[str, Any], ttl: float) -> bool:
        try:
            self._data[self._full_key(key)] = json.dumps(record, default=str)
            return True
        except (TypeError, ValueError) as e:
            logger.warning("Persistent cache write failed", key=key, error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        return self._data.pop(self._full_key(key), None) is not None

    async def delete_prefix(self, prefix: str) -> int:
        full_prefix = self._full_key(prefix)
        keys = [k for k in self._data if k.startswith(full_prefix)]
        for k in keys:
            del self._data[k]
        return len(keys)

    async def clear(self) -> int:
        count = len(self._data)
        self._data.clear()
        return count


class RedisPersistentStore:
    """Redis-backed store. Falls back to no-op when Redis is unreachable."""

    def __init__(self, redis_url: str, prefix: str = "unified_cache",
                 client: Optional[Any] = None, clock: Callable[[], float] = time.time):
        self.redis_url = redis_url
        self.prefix = prefix
        self.redis = client
        self._clock = clock

    @property
    def backend(self) -> str:
        return "redis" if self.redis is not None else "none"

    def _full_key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def startup(self) -> None:
        """Connect and verify Redis; disable the store on failure."""
        try:
            if self.redis is None:
                if not REDIS_AVAILABLE:
                    raise RuntimeError("redis package not installed")
                self.redis = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_timeout=5,
                    socket_connect_timeout=5,
                    retry_on_timeout=True
                )
            await self.redis.ping()
            logger.info("Redis persistent cache initialized", url=self.redis_url)
        except Exception as e:
            logger.warning("Redis connection failed, persistent cache disabled", error=str(e))
            self.redis = None

    async def shutdown(self) -> None:
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None
            logger.info("Redis persistent cache closed")

    async def ping(self) -> bool:
        if self.redis is None:
            return False
        try:
            return bool(await self.redis.ping())
        except Exception as e:
            logger.warning("Redis ping failed", error=str(e))
            return False

    async def read(self, key: str) -> Optional[Dict[str, Any]]:
        if self.redis is None:
            return None
        try:
            raw = await self.redis.get(self._full_key(key))
        except Exception as e:
            logger.warning("Persistent cache read failed", key=key, error=str(e))
            return None

        record = _decode_record(raw, self._clock())
        if raw and record is None:
            # Corrupt or expired record
            await self.delete(key)
        return record

    async def write(self, key: str, record: Dict[str, Any], ttl: float) -> bool:
        if self.redis is None:
            return False
        try:
            serialized = json.dumps(record, default=str)
            await self.redis.set(self._full_key(key), serialized, px=max(1, int(ttl * 1000)))
            return True
        except Exception as e:
            logger.warning("Persistent cache write failed", key=key, error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        if self.redis is None:
            return False
        try:
            return bool(await self.redis.delete(self._full_key(key)))
        except Exception as e:
            logger.warning("Persistent cache delete failed", key=key, error=str(e))
            return False

    async def delete_prefix(self, prefix: str) -> int:
        if self.redis is None:
            return 0
        try:
            keys = [k async for k in self.redis.scan_iter(match=f"{_escape_glob(self._full_key(prefix))}*")]
            if not keys:
                return 0
            return await self.redis.delete(*keys)
        except Exception as e:
            logger.warning("Persistent cache prefix delete failed", prefix=prefix, error=str(e))
            return 0

    async def clear(self) -> int:
        return await self.delete_prefix("")


def create_persistent_store(settings: "Settings"):
    """Factory selecting the persistent backend from settings."""
    if settings.redis_enabled and settings.redis_url:
        logger.info("Persistent cache backend: redis")
        return RedisPersistentStore(settings.redis_url, prefix=settings.persistent_prefix)
    logger.debug("Persistent cache backend: memory")
    return MemoryPersistentStore(prefix=settings.persistent_prefix)
