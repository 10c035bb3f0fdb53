from __future__ import annotations

from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """
    Central configuration.

    - Values loaded from `.env`
    - Comma-separated lists for multi-value settings like CORS_ORIGINS
    """

    # ----------------------------
    # Service
    # ----------------------------
    SERVICE_NAME: str = "tenantgate"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"  # text or json

    # ----------------------------
    # Mongo (master database holds tenant credentials)
    # ----------------------------
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "tenantgate_master"

    # ----------------------------
    # Tenant databases
    # ----------------------------
    tenant_mongo_host: str = "localhost:27017"
    tenant_connect_timeout_ms: int = 2000
    tenant_connect_attempts: int = 3
    tenant_connect_backoff_s: float = 0.2
    tenant_connect_backoff_max_s: float = 2.0

    # ----------------------------
    # Permissions
    # ----------------------------
    store_read_attempts: int = 2
    max_template_depth: int = 32

    # ----------------------------
    # Redis (audit stream)
    # ----------------------------
    redis_url: str = "redis://localhost:6379/0"
    redis_stream_audit: str = "tg:stream:authz-audit"
    audit_sink: str = "log"  # log or redis
    audit_timeout_s: float = 1.0
    redis_socket_timeout_s: float = 2.0

    # ----------------------------
    # CORS
    # ----------------------------
    # store as raw string list from env; we will normalize in code
    CORS_ORIGINS: Any = Field(default_factory=list)

    # ----------------------------
    # JWT
    # ----------------------------
    jwt_alg: str = "HS256"
    jwt_secret: str = "change-me"
    jwt_audience: str | None = None
    jwt_issuer: str | None = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
