"""Prefix routing from inbound paths to upstream API URLs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import quote

import structlog

from ..common.settings import ProxySettings
from .errors import RouteNotFound

LOGGER = structlog.get_logger("sportscache.router")

FOOTBALL_V2 = "football-v2"
FOOTBALL_V3 = "football-v3"
CRICKET_V2 = "cricket-v2"


@dataclass(frozen=True)
class Route:
    """One API family: requests under ``/<prefix>`` go to ``base_url``."""

    prefix: str
    base_url: str


class RouteTable:
    """Ordered prefix table; a path matches on its first segment only."""

    def __init__(self, routes: Iterable[Route], api_token: str) -> None:
        self._routes: dict[str, Route] = {}
        for route in routes:
            self._routes.setdefault(route.prefix, route)
        self._api_token = api_token

    @classmethod
    def from_settings(cls, settings: ProxySettings) -> "RouteTable":
        families = [
            (FOOTBALL_V2, settings.football_v2_url),
            (FOOTBALL_V3, settings.football_v3_url),
            (CRICKET_V2, settings.cricket_v2_url),
        ]
        routes = []
        for prefix, base_url in families:
            if not base_url:
                LOGGER.warning("route_not_configured", prefix=prefix)
                continue
            routes.append(Route(prefix=prefix, base_url=base_url))
        if not settings.api_key:
            LOGGER.warning("api_key_missing")
        return cls(routes, settings.api_token)

    @property
    def prefixes(self) -> list[str]:
        return list(self._routes)

    def match(self, path: str) -> Optional[Route]:
        segments = path.split("/")
        first = segments[1] if len(segments) > 1 else ""
        return self._routes.get(first)

    def resolve(self, path: str, query: str = "") -> str:
        """Build the upstream URL for ``path`` or raise :class:`RouteNotFound`.

        The matched ``/<prefix>`` is stripped, the remainder is appended to the
        family's base URL, and the original query string is kept ahead of the
        ``api_token`` parameter. The result doubles as the cache key.
        """

        route = self.match(path)
        if route is None:
            raise RouteNotFound(path)
        rest = path[len(route.prefix) + 1 :]
        token_param = f"api_token={quote(self._api_token, safe='')}"
        if query:
            return f"{route.base_url}{rest}?{query}&{token_param}"
        return f"{route.base_url}{rest}?{token_param}"
