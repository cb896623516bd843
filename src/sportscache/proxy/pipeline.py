"""Cache-aside request pipeline: route, look up, fetch on miss, populate."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import structlog
from opentelemetry import trace

from ..common.metrics import GLOBAL_REGISTRY, Counter
from ..common.observability import redact_token
from .cache import CacheClient
from .codec import compress, decompress
from .errors import UpstreamFetchError
from .router import RouteTable
from .upstream import UpstreamFetcher

LOGGER = structlog.get_logger("sportscache.pipeline")
TRACER = trace.get_tracer("sportscache.pipeline")

DEFAULT_CACHE_TTL = 60

REQUEST_COUNTER = GLOBAL_REGISTRY.register(Counter("sportscache_requests_total", "Routed proxy requests"))
HIT_COUNTER = GLOBAL_REGISTRY.register(Counter("sportscache_cache_hits_total", "Responses served from cache"))
MISS_COUNTER = GLOBAL_REGISTRY.register(Counter("sportscache_cache_misses_total", "Responses fetched from upstream"))
UPSTREAM_ERROR_COUNTER = GLOBAL_REGISTRY.register(
    Counter("sportscache_upstream_errors_total", "Upstream transport failures")
)
CACHE_WRITE_FAILURE_COUNTER = GLOBAL_REGISTRY.register(
    Counter("sportscache_cache_write_failures_total", "Cache writes skipped or rejected")
)


@dataclass(frozen=True)
class ProxyResult:
    url: str
    body: bytes
    cache_status: Literal["hit", "miss"]

    @property
    def needs_store(self) -> bool:
        return self.cache_status == "miss"


class CacheAsideProxy:
    """Composes routing, the cache client and the upstream fetcher.

    ``handle`` answers a request: a cache hit is decoded and returned, a miss is
    fetched upstream and returned uncompressed. Populating the cache after a
    miss is a separate step, ``store``, so the caller can run it once the
    response is on its way. Route and upstream errors propagate to the caller;
    cache errors never do.
    """

    def __init__(
        self,
        routes: RouteTable,
        cache: CacheClient,
        fetcher: UpstreamFetcher,
        *,
        ttl_seconds: int = DEFAULT_CACHE_TTL,
    ) -> None:
        self.routes = routes
        self.cache = cache
        self.fetcher = fetcher
        self.ttl_seconds = ttl_seconds

    async def handle(self, path: str, query: str = "") -> ProxyResult:
        url = self.routes.resolve(path, query)
        REQUEST_COUNTER.inc()
        safe_url = redact_token(url)
        with TRACER.start_as_current_span("sportscache.lookup", attributes={"sportscache.url": safe_url}) as span:
            cached = await self.cache.get(url)
            if cached is not None:
                body = decompress(cached)
                HIT_COUNTER.inc()
                span.set_attribute("sportscache.cache_status", "hit")
                LOGGER.info("cache_hit", url=safe_url, bytes=len(body))
                return ProxyResult(url=url, body=body, cache_status="hit")

            MISS_COUNTER.inc()
            span.set_attribute("sportscache.cache_status", "miss")
            LOGGER.info("cache_miss", url=safe_url)
            try:
                body = await self.fetcher.fetch(url)
            except UpstreamFetchError:
                UPSTREAM_ERROR_COUNTER.inc()
                raise
            span.set_attribute("sportscache.bytes", len(body))
            return ProxyResult(url=url, body=body, cache_status="miss")

    async def store(self, url: str, body: bytes) -> bool:
        """Write the compressed body under ``url``; failures are logged, never raised."""

        safe_url = redact_token(url)
        with TRACER.start_as_current_span("sportscache.store", attributes={"sportscache.url": safe_url}):
            try:
                stored = await self.cache.set(url, compress(body), self.ttl_seconds)
            except Exception as exc:  # noqa: BLE001 - a failed write must not fail the request
                LOGGER.error("cache_write_failed", url=safe_url, error=str(exc))
                stored = False
            if stored:
                LOGGER.debug("cache_write", url=safe_url, ttl=self.ttl_seconds)
            else:
                CACHE_WRITE_FAILURE_COUNTER.inc()
            return stored
