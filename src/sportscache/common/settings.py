"""Application configuration models for the sports data cache proxy."""

from __future__ import annotations

import os
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


class ProxySettings(BaseSettings):
    """Runtime settings for the caching proxy and its worker supervisor."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)

    api_key: Optional[SecretStr] = env_field(None, "API_KEY")
    football_v2_url: Optional[str] = env_field(None, "SPORTS_FOOTBALL_URL_V2")
    football_v3_url: Optional[str] = env_field(None, "SPORTS_FOOTBALL_URL_V3")
    cricket_v2_url: Optional[str] = env_field(None, "SPORTS_CRICKET_URL_V2")
    redis_host: Optional[str] = env_field(None, "REDIS_HOST")
    redis_port: Optional[int] = env_field(None, "REDIS_PORT")
    redis_password: Optional[SecretStr] = env_field(None, "REDIS_PASSWORD")

    listen_host: str = env_field("0.0.0.0", "SPORTSCACHE_HOST")
    listen_port: int = env_field(5678, "SPORTSCACHE_PORT")
    workers: Optional[int] = env_field(None, "SPORTSCACHE_WORKERS")
    restart_workers: bool = env_field(False, "SPORTSCACHE_RESTART_WORKERS")
    cache_ttl_seconds: int = env_field(60, "SPORTSCACHE_CACHE_TTL")
    cache_retry_seconds: float = env_field(30.0, "SPORTSCACHE_CACHE_RETRY")
    upstream_timeout_seconds: Optional[float] = env_field(None, "SPORTSCACHE_UPSTREAM_TIMEOUT")
    metrics_token: Optional[SecretStr] = env_field(None, "SPORTSCACHE_METRICS_TOKEN")
    log_level: str = env_field("INFO", "SPORTSCACHE_LOG_LEVEL")
    otel_exporter_endpoint: Optional[str] = env_field(None, "SPORTSCACHE_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "SPORTSCACHE_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "SPORTSCACHE_OTEL_SAMPLER_RATIO")

    @field_validator(
        "football_v2_url",
        "football_v3_url",
        "cricket_v2_url",
        "redis_host",
        mode="before",
    )
    @classmethod
    def _blank_as_none(cls, value):
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
        return value

    @field_validator("redis_port", "workers", "upstream_timeout_seconds", mode="before")
    @classmethod
    def _parse_optional_number(cls, value):
        if value in (None, ""):
            return None
        if isinstance(value, str):
            return value.strip() or None
        return value

    @property
    def api_token(self) -> str:
        return self.api_key.get_secret_value() if self.api_key else ""

    @property
    def cache_configured(self) -> bool:
        return bool(self.redis_host and self.redis_port and self.redis_password)

    @property
    def worker_count(self) -> int:
        if self.workers and self.workers > 0:
            return self.workers
        return os.cpu_count() or 1
