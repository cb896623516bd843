"""Caching reverse proxy for sports data APIs."""

__version__ = "0.1.0"
