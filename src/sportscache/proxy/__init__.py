"""Cache-aside request pipeline.

Requests are routed by path prefix to an upstream API, answered from Redis
when a fresh copy exists, and otherwise fetched upstream and cached for the
next caller.
"""

from .cache import CacheClient
from .codec import compress, decompress
from .errors import CacheDecodeError, RouteNotFound, SportsCacheError, UpstreamFetchError
from .pipeline import CacheAsideProxy, ProxyResult
from .router import Route, RouteTable
from .upstream import UpstreamFetcher

__all__ = [
    "CacheAsideProxy",
    "CacheClient",
    "CacheDecodeError",
    "ProxyResult",
    "Route",
    "RouteNotFound",
    "RouteTable",
    "SportsCacheError",
    "UpstreamFetchError",
    "UpstreamFetcher",
    "compress",
    "decompress",
]
