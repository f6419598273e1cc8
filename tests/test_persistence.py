import json

import fakeredis
import pytest
import pytest_asyncio

from core.config import Settings
from core.persistence import (
    MemoryPersistentStore,
    RedisPersistentStore,
    create_persistent_store,
)


@pytest_asyncio.fixture
async def redis_store(clock):
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    store = RedisPersistentStore("redis://fake", prefix="test_cache", client=client, clock=clock)
    await store.startup()
    yield store
    await store.shutdown()


def record(value, clock, ttl=60):
    now = clock()
    return {"value": value, "created_at": now, "expires_at": now + ttl}


@pytest.mark.asyncio
async def test_memory_store_roundtrip(clock):
    store = MemoryPersistentStore(clock=clock)
    await store.write("k", record({"a": 1}, clock), 60)

    assert (await store.read("k"))["value"] == {"a": 1}
    assert await store.delete("k") is True
    assert await store.read("k") is None


@pytest.mark.asyncio
async def test_memory_store_drops_corrupt_and_expired_records(clock):
    store = MemoryPersistentStore(prefix="p", clock=clock)
    store._data["p:corrupt"] = "{not json"
    store._data["p:shape"] = json.dumps(["not", "a", "record"])
    await store.write("old", record("v", clock, ttl=5), 5)
    clock.advance(5)

    assert await store.read("corrupt") is None
    assert await store.read("shape") is None
    assert await store.read("old") is None
    assert store._data == {}


@pytest.mark.asyncio
async def test_memory_store_prefix_delete(clock):
    store = MemoryPersistentStore(clock=clock)
    for key in ("tools:1", "tools:2", "users:1"):
        await store.write(key, record(key, clock), 60)

    assert await store.delete_prefix("tools:") == 2
    assert await store.read("users:1") is not None
    assert await store.clear() == 1


@pytest.mark.asyncio
async def test_redis_store_roundtrip(redis_store, clock):
    assert redis_store.backend == "redis"
    assert await redis_store.write("k", record([1, 2], clock), 60) is True

    assert (await redis_store.read("k"))["value"] == [1, 2]
    assert await redis_store.redis.pttl("test_cache:k") > 0


@pytest.mark.asyncio
async def test_redis_store_deletes_corrupt_record(redis_store):
    await redis_store.redis.set("test_cache:bad", "{oops")

    assert await redis_store.read("bad") is None
    assert await redis_store.redis.exists("test_cache:bad") == 0


@pytest.mark.asyncio
async def test_redis_prefix_delete_escapes_glob_characters(redis_store, clock):
    await redis_store.write('tools_ids:[1,2]', record("a", clock), 60)
    await redis_store.write('tools_ids:[1,2]|page:2', record("b", clock), 60)
    await redis_store.write("tools_ids:1", record("c", clock), 60)

    assert await redis_store.delete_prefix("tools_ids:[1,2]") == 2
    assert await redis_store.read("tools_ids:1") is not None


@pytest.mark.asyncio
async def test_redis_clear_only_touches_own_prefix(redis_store, clock):
    await redis_store.redis.set("other:key", "keep")
    await redis_store.write("a", record(1, clock), 60)
    await redis_store.write("b", record(2, clock), 60)

    assert await redis_store.clear() == 2
    assert await redis_store.redis.get("other:key") == "keep"


@pytest.mark.asyncio
async def test_unreachable_redis_disables_store():
    store = RedisPersistentStore("redis://127.0.0.1:1/0")
    await store.startup()

    assert store.backend == "none"
    assert await store.read("k") is None
    assert await store.write("k", {"value": 1, "expires_at": 0}, 60) is False
    assert await store.delete_prefix("") == 0


def test_factory_selects_backend():
    memory = create_persistent_store(Settings(_env_file=None, redis_enabled=False))
    redis_backed = create_persistent_store(
        Settings(_env_file=None, redis_enabled=True, redis_url="redis://localhost:6379/0")
    )

    assert isinstance(memory, MemoryPersistentStore)
    assert isinstance(redis_backed, RedisPersistentStore)
