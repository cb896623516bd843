"""Outbound HTTPS calls to the sports data APIs."""

from __future__ import annotations

from typing import Optional

import httpx
import structlog

from ..common.observability import redact_token
from ..common.settings import ProxySettings
from .errors import UpstreamFetchError

LOGGER = structlog.get_logger("sportscache.upstream")


def create_http_client(settings: ProxySettings, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """Build the worker's shared upstream client; no timeout unless one is configured."""

    return httpx.AsyncClient(timeout=httpx.Timeout(settings.upstream_timeout_seconds), transport=transport)


class UpstreamFetcher:
    def __init__(self, http_client: httpx.AsyncClient, api_token: str) -> None:
        self._http_client = http_client
        self._headers = {"Content-Type": "application/json", "api_token": api_token}

    async def fetch(self, url: str) -> bytes:
        """GET ``url`` and return the whole body regardless of status code."""

        try:
            response = await self._http_client.get(url, headers=self._headers)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            LOGGER.error("upstream_fetch_failed", url=redact_token(url), error=str(exc))
            raise UpstreamFetchError(str(exc)) from exc
        if response.status_code >= 400:
            LOGGER.warning("upstream_error_status", url=redact_token(url), status=response.status_code)
        return response.content
