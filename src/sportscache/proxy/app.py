"""HTTP surface of the caching proxy."""

from __future__ import annotations

import hmac
import time
from contextlib import asynccontextmanager
from ipaddress import ip_address
from typing import Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import PlainTextResponse
from starlette.background import BackgroundTask

from ..common.metrics import GLOBAL_REGISTRY, Histogram
from ..common.observability import configure_logging, configure_tracing, instrument_fastapi_app
from ..common.settings import ProxySettings
from .cache import CacheClient
from .errors import CacheDecodeError, RouteNotFound, UpstreamFetchError
from .pipeline import CacheAsideProxy
from .router import RouteTable
from .upstream import UpstreamFetcher, create_http_client

SERVICE_NAME = "sportscache.proxy"
JSON_HEADERS = {"Access-Control-Allow-Origin": "*"}
# Every method is answered from the same upstream GET.
PROXIED_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

REQUEST_LATENCY_HISTOGRAM = GLOBAL_REGISTRY.register(
    Histogram(
        "sportscache_request_latency_seconds",
        buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
        description="Proxy request latency",
    )
)


class ProxyState:
    def __init__(self, settings: ProxySettings, proxy: CacheAsideProxy, http_client) -> None:
        self.settings = settings
        self.proxy = proxy
        self.http_client = http_client
        self.logger = structlog.get_logger(SERVICE_NAME)


def get_state(request: Request) -> ProxyState:
    return request.app.state.proxy_state  # type: ignore[attr-defined]


def inbound_path(request: Request) -> str:
    """Return the request path exactly as sent, keeping its percent-encoding."""

    raw_path = request.scope.get("raw_path")
    if raw_path:
        return raw_path.split(b"?", 1)[0].decode("latin-1")
    return request.url.path


def require_metrics_access(request: Request, token: Optional[str]) -> None:
    """Allow metrics scrapes with the configured bearer token, or from loopback when none is set."""
    if token:
        auth_header = request.headers.get("authorization") or ""
        if not hmac.compare_digest(auth_header, f"Bearer {token}"):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid metrics token")
        return

    client_host = request.client.host if request.client else None
    try:
        loopback = client_host is not None and ip_address(client_host).is_loopback
    except ValueError:
        loopback = client_host == "localhost"
    if not loopback:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Metrics access restricted to localhost")


def create_app(settings: Optional[ProxySettings] = None) -> FastAPI:
    settings = settings or ProxySettings()
    configure_logging(SERVICE_NAME, settings.log_level)
    tracing_enabled = configure_tracing(
        service_name=SERVICE_NAME,
        endpoint=settings.otel_exporter_endpoint,
        headers=settings.otel_exporter_headers,
        sampler_ratio=settings.otel_sampler_ratio,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        routes = RouteTable.from_settings(settings)
        cache = CacheClient.from_settings(settings)
        http_client = create_http_client(settings)
        fetcher = UpstreamFetcher(http_client, settings.api_token)
        proxy = CacheAsideProxy(routes, cache, fetcher, ttl_seconds=settings.cache_ttl_seconds)
        await cache.connect()
        app.state.proxy_state = ProxyState(settings, proxy, http_client)
        try:
            yield
        finally:
            await cache.close()
            await http_client.aclose()

    app = FastAPI(lifespan=lifespan)
    if tracing_enabled:
        instrument_fastapi_app(app)

    @app.middleware("http")
    async def record_latency(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        start = time.perf_counter()
        logger = structlog.get_logger(SERVICE_NAME)
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start
            REQUEST_LATENCY_HISTOGRAM.observe(duration)
            logger.exception(
                "http_request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration * 1000, 2),
            )
            raise

        duration = time.perf_counter() - start
        REQUEST_LATENCY_HISTOGRAM.observe(duration)
        log_kwargs = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(duration * 1000, 2),
        }
        if response.status_code >= 500:
            logger.error("http_request", **log_kwargs)
        elif duration >= 1.0:
            logger.warning("http_request", **log_kwargs)
        else:
            logger.info("http_request", **log_kwargs)
        return response

    @app.get("/healthz", status_code=status.HTTP_200_OK)
    async def health_check(state: ProxyState = Depends(get_state)) -> dict:
        """Liveness probe; a dead cache only degrades the service."""
        cache = state.proxy.cache
        return {
            "status": "healthy",
            "checks": {
                "cache": "alive" if cache.is_alive() else ("down" if cache.configured else "disabled"),
                "routes": state.proxy.routes.prefixes,
            },
        }

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics_endpoint(request: Request, state: ProxyState = Depends(get_state)) -> PlainTextResponse:
        token = state.settings.metrics_token.get_secret_value() if state.settings.metrics_token else None
        require_metrics_access(request, token)
        return PlainTextResponse(GLOBAL_REGISTRY.render())

    @app.api_route("/{path:path}", methods=PROXIED_METHODS)
    async def proxy_request(request: Request, state: ProxyState = Depends(get_state)) -> Response:
        try:
            result = await state.proxy.handle(inbound_path(request), request.url.query)
        except RouteNotFound:
            return PlainTextResponse("Not Found", status_code=status.HTTP_404_NOT_FOUND)
        except (UpstreamFetchError, CacheDecodeError) as exc:
            state.logger.error("proxy_request_failed", path=request.url.path, error=str(exc))
            return PlainTextResponse("Internal Server Error", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

        background = BackgroundTask(state.proxy.store, result.url, result.body) if result.needs_store else None
        headers = {**JSON_HEADERS, "X-Cache": result.cache_status.upper()}
        return Response(
            content=result.body,
            media_type="application/json",
            headers=headers,
            background=background,
        )

    return app
