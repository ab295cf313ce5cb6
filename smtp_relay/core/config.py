from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    SMTP_HOST: str = "0.0.0.0"
    SMTP_PORT: int = 587
    SMTP_DOMAIN: str = "smtp.relay.local"
    SMTP_IDLE_TIMEOUT_SECONDS: float = 30.0

    # Both are required; there is no sensible default for either.
    ORCHESTRATOR_URL: str
    USER_JWT: str

    MAX_MESSAGE_BYTES: int = 10 * 1024 * 1024  # 10MB
    MAX_RECIPIENTS: int = 50
    # Threads running DATA (parse + delivery); one per concurrently delivering connection.
    DATA_WORKERS: int = 64
    DELIVERY_TIMEOUT_SECONDS: float = 30.0
    SHUTDOWN_GRACE_SECONDS: float = 10.0

    ENABLE_PROMETHEUS_METRICS: bool = False
    METRICS_PORT: int = 9108
    LOG_LEVEL: str = "INFO"

    @field_validator("ORCHESTRATOR_URL")
    @classmethod
    def _validate_orchestrator_url(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v:
            raise ValueError("ORCHESTRATOR_URL must not be empty")
        if not (v.startswith("http://") or v.startswith("https://")):
            raise ValueError("ORCHESTRATOR_URL must be an http(s) URL")
        return v

    @field_validator("USER_JWT")
    @classmethod
    def _validate_user_jwt(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("USER_JWT must not be empty")
        return v

    @field_validator("SMTP_PORT", "METRICS_PORT")
    @classmethod
    def _validate_port(cls, v: int) -> int:
        if v < 1 or v > 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @field_validator("MAX_MESSAGE_BYTES", "MAX_RECIPIENTS", "DATA_WORKERS")
    @classmethod
    def _validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def _normalize_log_level(cls, v: str) -> str:
        return (v or "INFO").strip().upper()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
