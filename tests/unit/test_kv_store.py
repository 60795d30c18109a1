"""
Tests for key/value store backends.
"""

from unittest.mock import AsyncMock

import pytest

from marketsync.config import Settings
from marketsync.exceptions import StoreError
from marketsync.services.infrastructure.kv_store import (
    InMemoryKeyValueStore,
    RedisKeyValueStore,
    build_store,
)


@pytest.mark.asyncio
async def test_in_memory_roundtrip():
    store = InMemoryKeyValueStore()

    assert await store.set("k", "v") is True
    assert await store.get("k") == "v"
    assert await store.delete("k") is True
    assert await store.get("k") is None
    assert await store.ping() is True


@pytest.mark.asyncio
async def test_in_memory_quota_exceeded():
    store = InMemoryKeyValueStore(quota_bytes=10)

    await store.set("k", "12345")
    with pytest.raises(StoreError, match="Quota exceeded"):
        await store.set("other", "123456789")
    # overwriting the same key only counts the new value
    assert await store.set("k", "12345678") is True


@pytest.mark.asyncio
async def test_disabled_store_raises():
    store = InMemoryKeyValueStore(enabled=False)

    with pytest.raises(StoreError):
        await store.get("k")
    with pytest.raises(StoreError):
        await store.set("k", "v")
    assert await store.ping() is False


@pytest.mark.asyncio
async def test_redis_store_wraps_client_errors():
    store = RedisKeyValueStore("redis://localhost:6379/0")
    store._initialized = True
    store.client = AsyncMock()
    store.client.get.side_effect = ConnectionError("connection refused")

    with pytest.raises(StoreError):
        await store.get("k")


@pytest.mark.asyncio
async def test_redis_store_set_with_ttl_uses_setex():
    store = RedisKeyValueStore("redis://localhost:6379/0")
    store._initialized = True
    store.client = AsyncMock()
    store.client.setex.return_value = True

    assert await store.set("k", "v", ttl_s=60) is True
    store.client.setex.assert_awaited_once_with("k", 60, "v")


@pytest.mark.asyncio
async def test_redis_ping_failure_returns_false():
    store = RedisKeyValueStore("redis://localhost:6379/0")
    store._initialized = True
    store.client = AsyncMock()
    store.client.ping.side_effect = ConnectionError("down")

    assert await store.ping() is False


def test_build_store_selects_backend():
    assert isinstance(build_store(Settings(STORE_BACKEND="memory")), InMemoryKeyValueStore)

    redis_store = build_store(Settings(STORE_BACKEND="redis", REDIS_URL="redis://cache:6379/1"))
    assert isinstance(redis_store, RedisKeyValueStore)
    assert redis_store.url == "redis://cache:6379/1"

    with pytest.raises(ValueError):
        build_store(Settings(STORE_BACKEND="redis", REDIS_URL=None))
    with pytest.raises(ValueError, match="Unknown store backend"):
        build_store(Settings(STORE_BACKEND="sqlite"))
