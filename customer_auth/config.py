from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the customer auth service."""

    database_url: str = env_field(
        "postgresql://localhost:5432/customers", "DATABASE_URL"
    )
    redis_url: str | None = env_field("redis://localhost:6379/0", "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Deterministic test behaviors; allows in-memory fallbacks for Redis.",
    )
    image_storage_dir: str = env_field("/srv/customer-auth/uploads", "IMAGE_STORAGE_DIR")
    api_url: str = env_field("http://localhost:8000", "API_URL")
    build_sha: str = env_field("dev", "BUILD_SHA")

    session_ttl_minutes: int = env_field(
        60, "SESSION_TTL_MINUTES", description="Lifetime of a customer session token"
    )
    otp_ttl_seconds: int = env_field(
        120, "OTP_TTL_SECONDS", description="Lifetime of a one-time login code"
    )
    lockout_block_seconds: int = env_field(
        60,
        "LOCKOUT_BLOCK_SECONDS",
        description="Block window after rapid failed logins; also the safe-retry base",
    )
    store_timeout_seconds: float = env_field(
        5.0,
        "STORE_TIMEOUT_SECONDS",
        description="Upper bound for any single store or repository call",
    )
    lock_timeout_seconds: float = env_field(
        5.0, "LOCK_TIMEOUT_SECONDS", description="Lease for per-key advisory locks"
    )
    max_upload_bytes: int = env_field(5 * 1024 * 1024, "MAX_UPLOAD_BYTES")
    expose_otp_endpoint: bool = env_field(
        False,
        "EXPOSE_OTP_ENDPOINT",
        description="Serve issued OTP codes over HTTP in place of SMS delivery (development only)",
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator(
        "session_ttl_minutes",
        "otp_ttl_seconds",
        "lockout_block_seconds",
        "max_upload_bytes",
    )
    @classmethod
    def _require_positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("store_timeout_seconds", "lock_timeout_seconds")
    @classmethod
    def _require_positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeout must be positive")
        return value

    @field_validator("api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
