from __future__ import annotations

import sys
from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_DEFAULT_JWT_SECRET = "change-me-in-production-use-long-random-string"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="GATEKEEPER_")

    # Database (auth collaborator: users + login history)
    database_url: str = "sqlite:///./gatekeeper.db"
    log_sql: bool = False

    # Server
    environment: str = "development"
    log_level: str = "info"
    log_format: str = "json"  # json | text
    allow_cors_origins: List[str] = ["*"]
    # Peers allowed to set X-Forwarded-For / X-Real-IP ("*" trusts any peer).
    trusted_proxies: List[str] = ["127.0.0.1", "::1"]

    # Counter store
    store_url: str = "redis://localhost:6379/0"
    store_timeout_seconds: float = 0.5

    # Auth
    jwt_secret: str = _DEFAULT_JWT_SECRET
    jwt_expire_minutes: int = 480  # 8 hours

    # Brute-force lockout
    lockout_threshold: int = 5
    lockout_window_seconds: int = 15 * 60

    # IP reputation
    reputation_ttl_seconds: int = 24 * 60 * 60
    reputation_alert_threshold: int = 50
    reputation_critical_threshold: int = 100
    reputation_rate_limit_divisor: int = 2

    # Rate limiting
    rate_limit_fail_open: bool = True   # non-auth routes
    auth_fail_open: bool = False        # /api/auth routes
    auth_rate_limit_max: int = 5
    auth_rate_limit_window_ms: int = 15 * 60 * 1000
    api_rate_limit_per_minute: int = 60

    # Suspicious request handling
    block_suspicious: bool = True

    # Alert log
    alert_ttl_seconds: int = 30 * 24 * 60 * 60

    # Maintenance
    cleanup_interval_seconds: int = 6 * 60 * 60  # 0 disables the periodic task

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: str, info) -> str:
        """Refuse to start in production with the default JWT secret."""
        env = info.data.get("environment", "development")
        if env != "development" and v == _DEFAULT_JWT_SECRET:
            print(
                "\n🚨 FATAL: GATEKEEPER_JWT_SECRET is set to the default value.\n"
                "   Set GATEKEEPER_JWT_SECRET to a strong random string before "
                "running in production.\n",
                file=sys.stderr,
            )
            raise ValueError(
                "JWT secret must be changed from default in non-development environments. "
                "Set GATEKEEPER_JWT_SECRET env var."
            )
        return v

    @field_validator("lockout_threshold", "reputation_rate_limit_divisor", "auth_rate_limit_max")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()


# Module-level singleton for convenience
settings = get_settings()
