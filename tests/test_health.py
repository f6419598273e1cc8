import pytest

from core.cache import CacheManager
from core.health import check_cache, get_health_status
from core.persistence import MemoryPersistentStore, RedisPersistentStore
from services.task_queue import TaskQueue


class DownStore(MemoryPersistentStore):
    backend = "down"

    async def ping(self):
        raise ConnectionError("store down")


class SilentStore(MemoryPersistentStore):
    async def ping(self):
        return False


@pytest.mark.asyncio
async def test_check_cache_leaves_a_full_cache_untouched(clock):
    cache = CacheManager(max_entries=3, clock=clock)
    for key in ("a", "b", "c"):
        await cache.set(key, key.upper())

    assert await check_cache(cache) is True

    assert len(cache) == 3
    for key in ("a", "b", "c"):
        assert await cache.get(key) == key.upper()
    assert "_health_check" not in cache


@pytest.mark.asyncio
async def test_check_cache_does_not_touch_persistent_store(clock):
    store = MemoryPersistentStore(clock=clock)
    cache = CacheManager(store=store, clock=clock)

    assert await check_cache(cache) is True
    assert store._data == {}


@pytest.mark.asyncio
async def test_check_cache_fails_when_store_is_unreachable(clock):
    assert await check_cache(CacheManager(store=DownStore(clock=clock), clock=clock)) is False
    assert await check_cache(CacheManager(store=SilentStore(clock=clock), clock=clock)) is False


@pytest.mark.asyncio
async def test_disconnected_redis_store_reports_unhealthy():
    store = RedisPersistentStore("redis://fake")

    assert await store.ping() is False
    assert await check_cache(CacheManager(store=store)) is False


@pytest.mark.asyncio
async def test_health_status_degrades_with_cache(settings, clock):
    queue = TaskQueue(lambda payload: None, drain_delay=0.01)
    healthy = await get_health_status(CacheManager(clock=clock), queue, settings)
    degraded = await get_health_status(
        CacheManager(store=DownStore(clock=clock), clock=clock), queue, settings
    )

    assert healthy["status"] == "healthy"
    assert degraded["status"] == "degraded"
    assert degraded["checks"]["cache"] is False
    assert healthy["queue"]["draining"] is False
    assert healthy["features"]["supabase"] is True
