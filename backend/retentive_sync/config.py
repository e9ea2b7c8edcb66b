import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class Settings(BaseSettings):
    database_url: str = Field("sqlite:///retentive.db", alias="RETENTIVE_DATABASE_URL")
    database_echo: bool = Field(False, alias="RETENTIVE_DATABASE_ECHO")
    remote_url: Optional[str] = Field(None, alias="RETENTIVE_REMOTE_URL")
    remote_api_key: Optional[str] = Field(None, alias="RETENTIVE_REMOTE_API_KEY")
    remote_timeout_seconds: float = Field(10.0, alias="RETENTIVE_REMOTE_TIMEOUT", gt=0)
    memory_cache_ttl_seconds: int = Field(300, alias="RETENTIVE_MEMORY_CACHE_TTL", ge=0)
    persisted_cache_ttl_seconds: int = Field(86400, alias="RETENTIVE_PERSISTED_CACHE_TTL", ge=0)
    persisted_cache_max_bytes: Optional[int] = Field(
        5 * 1024 * 1024,
        alias="RETENTIVE_PERSISTED_CACHE_MAX_BYTES",
    )
    stale_operation_days: int = Field(7, alias="RETENTIVE_STALE_OPERATION_DAYS", ge=1)
    reconnect_base_delay_ms: int = Field(5000, alias="RETENTIVE_RECONNECT_BASE_DELAY_MS", ge=0)
    reconnect_max_attempts: int = Field(5, alias="RETENTIVE_RECONNECT_MAX_ATTEMPTS", ge=0)
    offline_queue_key: str = Field("retentive_offline_queue", alias="RETENTIVE_OFFLINE_QUEUE_KEY")
    log_level: LogLevel = Field("INFO", alias="RETENTIVE_LOG_LEVEL")
    sync_log_level: Optional[LogLevel] = Field(None, alias="RETENTIVE_LOG_LEVEL_SYNC")
    realtime_log_level: Optional[LogLevel] = Field(None, alias="RETENTIVE_LOG_LEVEL_REALTIME")
    cache_log_level: Optional[LogLevel] = Field(None, alias="RETENTIVE_LOG_LEVEL_CACHE")
    telemetry_log_level: Optional[LogLevel] = Field(None, alias="RETENTIVE_LOG_LEVEL_TELEMETRY")
    debug_http: bool = Field(False, alias="RETENTIVE_DEBUG_HTTP")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        populate_by_name = True

    @field_validator(
        "log_level", "sync_log_level", "realtime_log_level", "cache_log_level", "telemetry_log_level", mode="before"
    )
    @classmethod
    def _upper_level(cls, value: Optional[str]) -> Optional[str]:
        if isinstance(value, str):
            value = value.strip().upper()
            return value or None
        return value

    @property
    def stale_operation_ms(self) -> int:
        return self.stale_operation_days * 24 * 60 * 60 * 1000


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[call-arg]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid sync configuration: {exc}") from exc
