from __future__ import annotations

import asyncio

import pytest

from sportscache.proxy.cache import CacheClient
from tests.utils.fake_redis import FakeRedis, FakeRedisFactory


@pytest.fixture
def anyio_backend():
    return "asyncio"


def _client(factory: FakeRedisFactory, **kwargs) -> CacheClient:
    return CacheClient("redis.internal", 6379, "hunter2", client_factory=factory, **kwargs)


@pytest.mark.anyio
async def test_connect_pings_once_and_reports_alive() -> None:
    factory = FakeRedisFactory()
    cache = _client(factory)
    assert cache.is_alive() is False

    assert await cache.connect() is True
    assert await cache.connect() is True
    assert cache.is_alive() is True
    assert factory.created == 1
    assert factory.redis.operations("ping") == [("ping",)]
    assert factory.redis.init_kwargs == {"host": "redis.internal", "port": 6379, "password": "hunter2"}


@pytest.mark.anyio
async def test_concurrent_connects_share_one_attempt() -> None:
    factory = FakeRedisFactory()
    cache = _client(factory)

    results = await asyncio.gather(*(cache.connect() for _ in range(5)))

    assert results == [True] * 5
    assert factory.created == 1


@pytest.mark.anyio
async def test_missing_configuration_disables_cache() -> None:
    factory = FakeRedisFactory()
    cache = CacheClient("redis.internal", 6379, None, client_factory=factory)

    assert await cache.connect() is False
    assert await cache.get("key") is None
    assert await cache.set("key", "value", 60) is False
    assert factory.created == 0
    assert cache.configured is False


@pytest.mark.anyio
async def test_failed_connect_releases_client_and_skips_operations() -> None:
    factory = FakeRedisFactory(FakeRedis(fail_ping=True))
    cache = _client(factory)

    assert await cache.connect() is False
    assert factory.redis.closed is True
    assert cache.is_alive() is False

    assert await cache.get("key") is None
    assert await cache.set("key", "value", 60) is False
    assert factory.redis.calls == [("ping",)]


@pytest.mark.anyio
async def test_operations_before_connect_are_noops() -> None:
    factory = FakeRedisFactory()
    cache = _client(factory)

    assert await cache.get("key") is None
    assert factory.created == 0


@pytest.mark.anyio
async def test_set_stores_value_with_ttl_and_get_returns_bytes() -> None:
    factory = FakeRedisFactory()
    cache = _client(factory)
    await cache.connect()

    assert await cache.set("https://api.example/x?api_token=k", "eJzLSM3JyQcABiwCFQ==", 60) is True
    assert factory.redis.ttls["https://api.example/x?api_token=k"] == 60
    assert await cache.get("https://api.example/x?api_token=k") == b"eJzLSM3JyQcABiwCFQ=="


@pytest.mark.anyio
async def test_connection_error_on_get_marks_cache_dead() -> None:
    factory = FakeRedisFactory()
    cache = _client(factory)
    await cache.connect()
    factory.redis.fail_get = True

    assert await cache.get("key") is None
    assert cache.is_alive() is False

    await cache.get("key")
    await cache.set("key", "value", 60)
    assert len(factory.redis.operations("get")) == 1
    assert factory.redis.operations("set") == []


@pytest.mark.anyio
async def test_set_failure_is_swallowed() -> None:
    factory = FakeRedisFactory()
    cache = _client(factory)
    await cache.connect()
    factory.redis.fail_set = True

    assert await cache.set("key", "value", 60) is False
    assert cache.is_alive() is False


@pytest.mark.anyio
async def test_dead_cache_is_probed_again_after_retry_interval(monkeypatch) -> None:
    now = [100.0]
    monkeypatch.setattr("sportscache.proxy.cache.time.monotonic", lambda: now[0])
    factory = FakeRedisFactory(FakeRedis(fail_ping=True))
    cache = _client(factory, retry_seconds=30.0)

    assert await cache.connect() is False
    now[0] += 10.0
    assert await cache.get("key") is None
    assert factory.created == 1

    factory.redis.fail_ping = False
    factory.redis.store["key"] = b"cached"
    now[0] += 30.0
    assert await cache.get("key") == b"cached"
    assert factory.created == 2
    assert cache.is_alive() is True


@pytest.mark.anyio
async def test_close_releases_connection() -> None:
    factory = FakeRedisFactory()
    cache = _client(factory)
    await cache.connect()

    await cache.close()

    assert factory.redis.closed is True
    assert cache.is_alive() is False


@pytest.mark.anyio
async def test_existing_connection_is_reused_once_breaker_resets(monkeypatch) -> None:
    now = [100.0]
    monkeypatch.setattr("sportscache.proxy.cache.time.monotonic", lambda: now[0])
    factory = FakeRedisFactory()
    cache = _client(factory, retry_seconds=30.0)
    await cache.connect()
    factory.redis.fail_set = True
    assert await cache.set("key", "value", 60) is False

    factory.redis.fail_set = False
    now[0] += 5.0
    assert await cache.set("key", "value", 60) is False
    assert len(factory.redis.operations("set")) == 1

    now[0] += 30.0
    assert await cache.set("key", "value", 60) is True
    assert factory.created == 1
    assert factory.redis.operations("ping") == [("ping",)]
