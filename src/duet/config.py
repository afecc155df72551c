from __future__ import annotations

import os
from uuid import uuid4

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def generate_node_id() -> str:
    """Mint a unique node identifier for this process."""
    hostname = os.environ.get("HOSTNAME", os.environ.get("POD_NAME", "node"))
    return f"{hostname}-{uuid4().hex[:12]}"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DUET_", env_file=".env", extra="ignore")

    app_name: str = "duet"

    # Node identity (minted once per process unless pinned)
    node_id: str = Field(default_factory=generate_node_id)

    # Backend for directory and channel: "redis" or "memory"
    backend: str = "redis"

    # Redis
    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="REDIS_URL")
    redis_host: str | None = Field(default=None, validation_alias="REDIS_HOST")
    redis_port: int = Field(default=6379, validation_alias="REDIS_PORT")
    redis_password: str | None = Field(default=None, validation_alias="REDIS_PASSWORD")
    redis_db: int = Field(default=0, validation_alias="REDIS_DB")

    # Key namespace and channel
    key_prefix: str = ""
    channel_topic: str = "message"

    # Timing (milliseconds)
    sync_interval_ms: int = 250
    publish_interval_ms: int = 500
    online_expiry_ms: int | None = None

    # Observability
    log_level: str = "INFO"
    log_json: bool = False
    enable_metrics: bool = Field(default=True, validation_alias="ENABLE_METRICS")
    metrics_port: int | None = Field(default=None, validation_alias="METRICS_PORT")

    @field_validator("sync_interval_ms", "publish_interval_ms")
    @classmethod
    def _positive_interval(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("interval must be positive")
        return value

    @field_validator("online_expiry_ms")
    @classmethod
    def _positive_expiry(cls, value: int | None) -> int | None:
        if value is not None and value <= 0:
            raise ValueError("online_expiry_ms must be positive")
        return value

    @model_validator(mode="after")
    def _default_expiry(self) -> "Settings":
        # A heartbeat is stale once it misses one and a half sync periods
        if self.online_expiry_ms is None:
            self.online_expiry_ms = int(self.sync_interval_ms * 1.5)
        return self

    @property
    def effective_redis_url(self) -> str:
        """Redis URL, with explicit host/port/password taking precedence."""
        if not self.redis_host:
            return self.redis_url
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"


# Loaded on first get_settings() call
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the process-wide settings, reading the environment once."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def use_settings(config: Settings) -> Settings:
    """Install config as the process-wide settings."""
    global _settings
    _settings = config
    return config
