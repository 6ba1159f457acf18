from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix='QUERYBRIDGE_', env_file='.env', env_file_encoding='utf-8', extra='ignore')

    # Application
    app_name: str = 'querybridge'
    app_version: str = '0.1.0'
    log_level: str = 'INFO'

    # SQL connection pools
    pool_max_connections: int = Field(default=10, ge=1)
    pool_max_overflow: int = Field(default=0, ge=0)
    pool_acquire_timeout_s: float = Field(default=10.0, gt=0)
    pool_idle_timeout_s: int = Field(default=300, ge=1)
    connect_timeout_s: int = Field(default=10, ge=1)

    # External sources
    http_timeout_s: float = Field(default=30.0, gt=0)

    # Data plane limits
    preview_row_limit: int = Field(default=100, ge=1)
    sample_row_limit_max: int = Field(default=100, ge=1)
    fanout_max_concurrency: int = Field(default=16, ge=1)


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
