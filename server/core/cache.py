"""Keyed TTL cache with stale-while-revalidate and request coalescing.

The in-memory map is the source of truth. Entries written with
``persistent=True`` are mirrored to a PersistentStore (Redis or memory) and
reloaded from it on a memory miss.

Invalidation semantics:
    invalidate()          -> clear everything
    invalidate("a:b")     -> exact key
    invalidate("a:*")     -> every key starting with "a:" (only a single
                             trailing "*" is special)

All durations are seconds.
"""

import asyncio
import functools
import json
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, Optional, TYPE_CHECKING

from core.logging import get_logger, log_cache_operation
from core.persistence import NullPersistentStore

if TYPE_CHECKING:
    from core.config import Settings
    from core.persistence import PersistentStore

logger = get_logger(__name__)

Compute = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class CacheOptions:
    """Per-call cache behaviour. ``None`` fields fall back to manager defaults."""
    ttl: Optional[float] = None
    stale_time: Optional[float] = None
    stale_while_revalidate: bool = False
    persistent: bool = False

    def merged(self, **overrides) -> "CacheOptions":
        return replace(self, **overrides)


CACHE_PRESETS: Dict[str, CacheOptions] = {
    # Critical data - short stale window, refreshed in background
    "critical": CacheOptions(ttl=30 * 60, stale_time=5 * 60, stale_while_revalidate=True),
    # Normal data
    "normal": CacheOptions(ttl=10 * 60, stale_time=2 * 60, stale_while_revalidate=True),
    # Static data - long TTL, persisted
    "static": CacheOptions(ttl=60 * 60, stale_time=10 * 60, persistent=True),
    # Per-user data - always recomputed once expired
    "user": CacheOptions(ttl=2 * 60, stale_time=30, stale_while_revalidate=False),
}


@dataclass
class CacheEntry:
    """A memoized value with hard expiry and staleness threshold."""
    key: str
    value: Any
    created_at: float
    expires_at: float
    stale_at: float
    persistent: bool = False

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def is_stale(self, now: float) -> bool:
        return now >= self.stale_at

    def to_record(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
        }


class CacheManager:
    """Fetch-or-compute cache.

    At most one computation per key is in flight; concurrent misses join it.
    Failed computations are never cached and always release their slot.
    """

    def __init__(self, default_ttl: float = 600,
                 default_stale_time: float = 300,
                 max_entries: int = 1000,
                 store: Optional["PersistentStore"] = None,
                 clock: Callable[[], float] = time.time):
        self.default_ttl = default_ttl
        self.default_stale_time = default_stale_time
        self.max_entries = max_entries
        self.store = store if store is not None else NullPersistentStore()
        self._clock = clock

        # Insertion order doubles as write order for eviction
        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._hits = 0
        self._misses = 0

    @classmethod
    def from_settings(cls, settings: "Settings",
                      store: Optional["PersistentStore"] = None) -> "CacheManager":
        return cls(
            default_ttl=settings.cache_ttl,
            default_stale_time=settings.cache_stale_time,
            max_entries=settings.cache_max_entries,
            store=store,
        )

    async def startup(self) -> None:
        """Initialize the persistent backing."""
        startup = getattr(self.store, "startup", None)
        if startup is not None:
            await startup()
        logger.info("Cache manager initialized",
                    max_entries=self.max_entries,
                    default_ttl=self.default_ttl,
                    persistent_backend=self.store.backend)

    async def shutdown(self) -> None:
        """Cancel outstanding computations and close the persistent backing."""
        tasks = list(self._inflight.values())
        self._inflight.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._entries.clear()
        shutdown = getattr(self.store, "shutdown", None)
        if shutdown is not None:
            await shutdown()
        logger.info("Cache manager stopped")

    # =========================================================================
    # READ / WRITE
    # =========================================================================

    async def get(self, key: str, options: Optional[CacheOptions] = None,
                  default: Any = None) -> Any:
        """Return the cached value if present and not hard-expired."""
        entry = await self._lookup(key, options or CacheOptions(), self._clock())
        log_cache_operation(logger, "get", key, hit=entry is not None)
        return default if entry is None else entry.value

    async def set(self, key: str, value: Any, options: Optional[CacheOptions] = None) -> None:
        """Write or overwrite an entry."""
        options = options or CacheOptions()
        now = self._clock()
        ttl = self._ttl(options)
        stale_time = self.default_stale_time if options.stale_time is None else options.stale_time

        entry = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            expires_at=now + ttl,
            stale_at=now + stale_time,
            persistent=options.persistent,
        )
        self._insert(entry, now)

        if options.persistent:
            await self._store_call("write", key, entry.to_record(), ttl)
        log_cache_operation(logger, "set", key, ttl=ttl, persistent=options.persistent)

    async def fetch_with_cache(self, key: str, compute: Compute,
                               options: Optional[CacheOptions] = None) -> Any:
        """Return the cached value for ``key`` or compute, store and return it.

        Args:
            key: Cache key
            compute: Zero-argument async callable producing the value
            options: TTL, staleness and persistence options

        Returns:
            The cached or freshly computed value

        Raises:
            Whatever ``compute`` raises, unchanged.
        """
        options = options or CacheOptions()
        now = self._clock()

        entry = await self._lookup(key, options, now)
        if entry is None:
            # A store read may have suspended while another caller filled the key
            entry = self._entries.get(key)
            if entry is not None and entry.is_expired(self._clock()):
                entry = None
        if entry is not None:
            self._hits += 1
            refresh = options.stale_while_revalidate and self._entry_is_stale(entry, options, now)
            if refresh and key not in self._inflight:
                self._start_computation(key, compute, options)
            log_cache_operation(logger, "fetch", key, hit=True, revalidating=refresh)
            return entry.value

        self._misses += 1
        task = self._inflight.get(key)
        if task is None:
            task = self._start_computation(key, compute, options)
            log_cache_operation(logger, "fetch", key, hit=False)
        else:
            log_cache_operation(logger, "fetch", key, hit=False, joined=True)

        # Shielded so one cancelled caller does not cancel the shared computation
        return await asyncio.shield(task)

    async def prefetch(self, key: str, compute: Compute,
                       options: Optional[CacheOptions] = None) -> None:
        """Warm the cache. Failures are logged, never raised."""
        options = options or CacheOptions()
        try:
            if await self._lookup(key, options, self._clock()) is not None:
                return
            await self.fetch_with_cache(key, compute, options)
        except Exception as e:
            logger.warning("Cache prefetch failed", cache_key=key, error=str(e))

    # =========================================================================
    # INVALIDATION
    # =========================================================================

    async def invalidate(self, key: Optional[str] = None) -> int:
        """Remove one key, a trailing-``*`` prefix, or everything.

        In-flight computations for removed keys are detached: callers already
        waiting still receive the result, but it is not stored.

        Returns:
            Number of in-memory entries removed
        """
        if key is None:
            removed = len(self._entries)
            self._entries.clear()
            self._inflight.clear()
            await self._store_call("clear")
            logger.info("Cache cleared", removed=removed)
            return removed

        if key.endswith("*"):
            return await self.invalidate_prefix(key[:-1])

        removed = int(self._entries.pop(key, None) is not None)
        self._inflight.pop(key, None)
        await self._store_call("delete", key)
        log_cache_operation(logger, "invalidate", key, removed=removed)
        return removed

    async def invalidate_prefix(self, prefix: str) -> int:
        """Remove every key starting with ``prefix``."""
        keys = [k for k in self._entries if k.startswith(prefix)]
        for k in keys:
            del self._entries[k]
        for k in [k for k in self._inflight if k.startswith(prefix)]:
            del self._inflight[k]
        await self._store_call("delete_prefix", prefix)
        log_cache_operation(logger, "invalidate_prefix", prefix, removed=len(keys))
        return len(keys)

    def purge_expired(self) -> int:
        """Drop expired in-memory entries. Returns the number removed."""
        now = self._clock()
        expired = [k for k, entry in self._entries.items() if entry.is_expired(now)]
        for k in expired:
            del self._entries[k]
        return len(expired)

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    def is_expired(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is None or entry.is_expired(self._clock())

    def is_stale(self, key: str, stale_time: Optional[float] = None) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return True
        return self._entry_is_stale(entry, CacheOptions(stale_time=stale_time), self._clock())

    async def ping(self) -> bool:
        """Check the persistent backing. Never reads or writes cache entries."""
        ping = getattr(self.store, "ping", None)
        if ping is None:
            return True
        try:
            return bool(await ping())
        except Exception as e:
            logger.warning("Persistent cache ping failed", error=str(e))
            return False

    def get_stats(self) -> Dict[str, Any]:
        """Aggregate counts for observability. Read-only."""
        now = self._clock()
        entries = list(self._entries.values())
        expired = sum(1 for e in entries if e.is_expired(now))
        stale = sum(1 for e in entries if not e.is_expired(now) and e.is_stale(now))
        lookups = self._hits + self._misses

        return {
            "total_entries": len(entries),
            "max_entries": self.max_entries,
            "expired_entries": expired,
            "stale_entries": stale,
            "inflight": len(self._inflight),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
            "persistent_backend": self.store.backend,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return not self.is_expired(key)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _ttl(self, options: CacheOptions) -> float:
        return self.default_ttl if options.ttl is None else options.ttl

    def _entry_is_stale(self, entry: CacheEntry, options: CacheOptions, now: float) -> bool:
        if options.stale_time is not None:
            return now - entry.created_at >= options.stale_time
        return entry.is_stale(now)

    async def _lookup(self, key: str, options: CacheOptions, now: float) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is not None:
            if not entry.is_expired(now):
                return entry
            del self._entries[key]

        if not options.persistent:
            return None

        record = await self._store_call("read", key)
        if not record:
            return None

        try:
            created_at = float(record.get("created_at", now))
            expires_at = float(record["expires_at"])
        except (KeyError, TypeError, ValueError):
            return None

        stale_time = self.default_stale_time if options.stale_time is None else options.stale_time
        entry = CacheEntry(
            key=key,
            value=record["value"],
            created_at=created_at,
            expires_at=expires_at,
            stale_at=created_at + stale_time,
            persistent=True,
        )
        if entry.is_expired(now):
            return None

        self._insert(entry, now)
        log_cache_operation(logger, "restore", key, hit=True)
        return entry

    def _insert(self, entry: CacheEntry, now: float) -> None:
        if entry.key in self._entries:
            del self._entries[entry.key]
        elif len(self._entries) >= self.max_entries:
            self._evict(now)
        self._entries[entry.key] = entry

    def _evict(self, now: float) -> None:
        for k in [k for k, e in self._entries.items() if e.is_expired(now)]:
            del self._entries[k]
        while len(self._entries) >= self.max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            log_cache_operation(logger, "evict", oldest)

    def _start_computation(self, key: str, compute: Compute, options: CacheOptions) -> asyncio.Task:
        # Registered before any suspension so concurrent callers join it
        task = asyncio.get_running_loop().create_task(
            self._compute_and_store(key, compute, options)
        )
        self._inflight[key] = task
        task.add_done_callback(functools.partial(self._on_computation_done, key))
        return task

    async def _compute_and_store(self, key: str, compute: Compute, options: CacheOptions) -> Any:
        this_task = asyncio.current_task()
        try:
            value = await compute()
            if self._inflight.get(key) is this_task:
                await self.set(key, value, options)
            else:
                logger.debug("Discarding result for invalidated key", cache_key=key)
            return value
        finally:
            if self._inflight.get(key) is this_task:
                del self._inflight[key]

    def _on_computation_done(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("Cache computation failed", cache_key=key,
                           error=str(error), error_type=type(error).__name__)

    async def _store_call(self, operation: str, *args: Any) -> Any:
        try:
            return await getattr(self.store, operation)(*args)
        except Exception as e:
            logger.warning("Persistent cache operation failed",
                           operation=operation, error=str(e))
            return None


def cached(cache: CacheManager, options: Optional[CacheOptions] = None,
           prefix: Optional[str] = None):
    """Memoize an async function through ``cache.fetch_with_cache``.

    The key is ``<prefix or function name>_<json of first argument>``, so
    functions taking a single params dict map cleanly onto cache entries.
    Calls without arguments use the bare name.
    """
    def decorator(fn: Callable[..., Awaitable[Any]]):
        name = prefix or fn.__name__

        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            if not args and not kwargs:
                key = name
            else:
                first = args[0] if args else kwargs
                key = f"{name}_{json.dumps(first, sort_keys=True, separators=(',', ':'), default=str)}"
            return await cache.fetch_with_cache(key, lambda: fn(*args, **kwargs), options)

        return wrapper

    return decorator
