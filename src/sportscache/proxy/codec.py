"""Compression for cached payloads: zlib deflate wrapped in base64 text."""

from __future__ import annotations

import base64
import binascii
import zlib

from .errors import CacheDecodeError


def compress(data: bytes) -> str:
    """Deflate ``data`` and return it as base64 text suitable for a Redis string."""

    return base64.b64encode(zlib.compress(data)).decode("ascii")


def decompress(encoded: str | bytes) -> bytes:
    """Reverse :func:`compress`.

    Raises :class:`CacheDecodeError` when the value is not valid base64 or not a
    complete zlib stream, which means the cache entry is corrupt.
    """

    try:
        raw = base64.b64decode(encoded, validate=True)
        return zlib.decompress(raw)
    except (binascii.Error, ValueError, zlib.error) as exc:
        raise CacheDecodeError("cached payload is not a valid compressed entry") from exc
