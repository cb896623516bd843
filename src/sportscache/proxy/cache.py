"""Redis-backed key-value cache shared by all requests in a worker."""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional

import structlog
from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..common.observability import redact_token
from ..common.settings import ProxySettings

LOGGER = structlog.get_logger("sportscache.cache")

_CONNECTION_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError)


class CircuitBreaker:
    def __init__(self, failure_threshold: int, reset_timeout: float):
        self._failure_threshold = max(1, failure_threshold)
        self._reset_timeout = max(0.0, reset_timeout)
        self._failure_count = 0
        self._opened_at: float | None = None

    def _maybe_reset(self) -> None:
        if self._opened_at is None:
            return
        if time.monotonic() - self._opened_at >= self._reset_timeout:
            self._opened_at = None
            self._failure_count = 0

    def record_success(self) -> None:
        self._failure_count = 0
        self._opened_at = None

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._failure_count >= self._failure_threshold:
            self._opened_at = time.monotonic()

    @property
    def is_open(self) -> bool:
        self._maybe_reset()
        return self._opened_at is not None


class CacheClient:
    """Owns the worker's single Redis connection.

    Every read and write is skipped while the connection is not alive, so an
    unavailable cache degrades requests to plain upstream passthrough. A
    connection failure opens the breaker; once ``retry_seconds`` have passed
    the next operation probes Redis again.
    """

    def __init__(
        self,
        host: Optional[str],
        port: Optional[int],
        password: Optional[str],
        *,
        retry_seconds: float = 30.0,
        client_factory: Optional[Callable[..., Redis]] = None,
    ) -> None:
        self._host = host
        self._port = port
        self._password = password
        self._client_factory = client_factory
        self._client: Optional[Redis] = None
        self._breaker = CircuitBreaker(failure_threshold=1, reset_timeout=retry_seconds)
        self._connect_lock = asyncio.Lock()
        self._attempted = False

    @classmethod
    def from_settings(cls, settings: ProxySettings, **kwargs) -> "CacheClient":
        password = settings.redis_password.get_secret_value() if settings.redis_password else None
        return cls(
            settings.redis_host,
            settings.redis_port,
            password,
            retry_seconds=settings.cache_retry_seconds,
            **kwargs,
        )

    @property
    def configured(self) -> bool:
        return bool(self._host and self._port and self._password)

    def is_alive(self) -> bool:
        return self._client is not None and not self._breaker.is_open

    async def connect(self) -> bool:
        """Open the connection once; later calls return the current liveness."""

        async with self._connect_lock:
            if self._attempted:
                return self.is_alive()
            self._attempted = True
            if not self.configured:
                LOGGER.warning("cache_not_configured", host=self._host, port=self._port)
                return False
            return await self._open()

    async def _open(self) -> bool:
        factory = self._client_factory or Redis
        client = factory(host=self._host, port=self._port, password=self._password)
        try:
            await client.ping()
        except (RedisError, OSError) as exc:
            self._breaker.record_failure()
            LOGGER.error("cache_connect_failed", host=self._host, port=self._port, error=str(exc))
            await client.aclose()
            LOGGER.info("cache_client_closed")
            return False
        self._client = client
        self._breaker.record_success()
        LOGGER.info("cache_connected", host=self._host, port=self._port)
        return True

    async def _ready(self) -> Optional[Redis]:
        """Return the live client, probing Redis again once the breaker has closed."""

        if self._client is None:
            if not self._attempted or not self.configured or self._breaker.is_open:
                return None
            async with self._connect_lock:
                if self._client is None and not self._breaker.is_open:
                    await self._open()
        return self._client if self.is_alive() else None

    def _mark_failed(self, operation: str, key: str, exc: Exception) -> None:
        self._breaker.record_failure()
        LOGGER.error("cache_unavailable", operation=operation, key=redact_token(key), error=str(exc))

    async def get(self, key: str) -> Optional[bytes]:
        client = await self._ready()
        if client is None:
            return None
        try:
            value = await client.get(key)
        except _CONNECTION_ERRORS as exc:
            self._mark_failed("get", key, exc)
            return None
        except RedisError as exc:
            LOGGER.error("cache_read_failed", key=redact_token(key), error=str(exc))
            return None
        self._breaker.record_success()
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        client = await self._ready()
        if client is None:
            return False
        try:
            await client.set(key, value, ex=ttl_seconds)
        except _CONNECTION_ERRORS as exc:
            self._mark_failed("set", key, exc)
            return False
        except RedisError as exc:
            LOGGER.error("cache_write_failed", key=redact_token(key), error=str(exc))
            return False
        self._breaker.record_success()
        return True

    async def close(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        await client.aclose()
        LOGGER.info("cache_client_closed")
