"""Exceptions raised along the cache-aside request path."""

from __future__ import annotations


class SportsCacheError(Exception):
    """Base class for proxy errors."""


class RouteNotFound(SportsCacheError):
    """The first path segment does not name a known API family."""

    def __init__(self, path: str) -> None:
        super().__init__(f"no upstream route for path {path!r}")
        self.path = path


class UpstreamFetchError(SportsCacheError):
    """The upstream API could not be reached (DNS, TLS, reset, timeout)."""


class CacheDecodeError(SportsCacheError):
    """A cached value could not be decoded back into the upstream body."""
