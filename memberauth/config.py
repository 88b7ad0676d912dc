from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from memberauth.logging import get_logger

logger = get_logger(__name__)

# Only symmetric MAC algorithms are accepted; the verifier is always handed a
# single-element allow list built from this value.
SUPPORTED_JWT_ALGORITHMS = frozenset({"HS256", "HS384", "HS512"})


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the authentication core."""

    jwt_access_key: str | None = env_field(
        None, "JWT_ACCESS_KEY", description="HMAC key for access tokens"
    )
    jwt_refresh_key: str | None = env_field(
        None, "JWT_REFRESH_KEY", description="HMAC key for refresh tokens"
    )
    jwt_algorithm: str = env_field("HS512", "JWT_ALGORITHM")

    database_url: str = env_field(
        "postgresql://localhost:5432/memberauth", "DATABASE_URL"
    )
    redis_url: str | None = env_field("redis://localhost:6379/0", "REDIS_URL")
    redis_key_prefix: str = env_field(
        "",
        "REDIS_KEY_PREFIX",
        description="Prepended to every registry key; lets several deployments share one Redis DB",
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(False, "TEST_MODE")

    auth_cookie_path: str = env_field(
        "/auth", "AUTH_COOKIE_PATH", description="Path scope of the refresh-token cookie"
    )
    cookie_domain: str | None = env_field(None, "COOKIE_DOMAIN")
    cookie_secure: bool = env_field(True, "COOKIE_SECURE")

    hash_time_cost: int = env_field(2, "HASH_TIME_COST")
    hash_memory_cost: int = env_field(
        19 * 1024, "HASH_MEMORY_COST", description="argon2 memory cost in KiB"
    )
    hash_parallelism: int = env_field(1, "HASH_PARALLELISM")

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

    @field_validator("jwt_algorithm")
    @classmethod
    def _validate_algorithm(cls, value: str) -> str:
        normalized = value.upper()
        if normalized not in SUPPORTED_JWT_ALGORITHMS:
            raise ValueError(
                f"JWT_ALGORITHM must be one of {sorted(SUPPORTED_JWT_ALGORITHMS)}"
            )
        return normalized

    @field_validator("auth_cookie_path")
    @classmethod
    def _validate_cookie_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("AUTH_COOKIE_PATH must be an absolute path")
        return value

    @model_validator(mode="after")
    def _require_signing_keys(self) -> "Settings":
        if not self.jwt_access_key or not self.jwt_refresh_key:
            raise ValueError("JWT_ACCESS_KEY and JWT_REFRESH_KEY must both be set")
        if self.jwt_access_key == self.jwt_refresh_key:
            logger.warning(
                "jwt_keys_shared",
                message="access and refresh tokens share a signing key",
            )
        return self


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
