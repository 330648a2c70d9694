"""
Central configuration using Pydantic BaseSettings.

Settings are built once at startup by ``load_settings()`` and passed
explicitly to the services that need them; nothing reads the environment
after that.

Usage:
    from src.utils.settings import load_settings

    settings = load_settings()
    print(settings.auth.access_token_hours)
"""
import os
from typing import List, Optional

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings

from .secrets import get_secret


# =============================================================================
# Nested Settings Groups
# =============================================================================


class AuthSettings(BaseSettings):
    """JWT, password, MFA and lockout configuration."""

    model_config = {"env_prefix": "", "extra": "ignore"}

    jwt_secret: SecretStr = SecretStr("")
    jwt_algorithm: str = "HS256"

    # Token lifetimes
    access_token_hours: int = 3
    temporary_token_minutes: int = 5
    admin_token_hours: int = 3

    # Password policy
    password_min_length: int = 10
    password_bcrypt_rounds: int = 12

    # Backup codes
    backup_code_bcrypt_rounds: int = 6
    backup_code_count: int = 8
    backup_code_ttl_days: int = 90

    # TOTP
    totp_issuer: str = "EMPORIUM"

    # Account lockout
    lockout_threshold: int = 5
    lockout_window_minutes: int = 15


class RoutingSettings(BaseSettings):
    """Route prefixes the request gate matches on."""

    model_config = {"env_prefix": "ROUTE_", "extra": "ignore"}

    public_prefix: str = "/api/v1/public"
    private_prefix: str = "/api/v1/private"
    admin_prefix: str = "/api/v1/admin"
    mfa_verify_path: str = "/api/v1/private/mfa/verify"


class CookieSettings(BaseSettings):
    """Auth cookie attributes."""

    model_config = {"env_prefix": "COOKIE_", "extra": "ignore"}

    name: str = "auth_token"
    secure: bool = True
    domain: Optional[str] = None
    path: str = "/"
    same_site: str = "lax"


class DatabaseSettings(BaseSettings):
    """Database configuration."""

    model_config = {"env_prefix": "", "extra": "ignore"}

    database_url: Optional[str] = None

    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "emporium"
    postgres_user: str = "emporium_user"

    @property
    def url(self) -> str:
        """Explicit DATABASE_URL, else a PostgreSQL URL from POSTGRES_*."""
        if self.database_url:
            return self.database_url
        password = get_secret("POSTGRES_PASSWORD", "")
        return (
            f"postgresql://{self.postgres_user}:{password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )


class RateLimitSettings(BaseSettings):
    """IP rate limits on the unauthenticated auth endpoints."""

    model_config = {"env_prefix": "RATE_LIMIT_", "extra": "ignore"}

    enabled: bool = True
    register_per_hour: int = 5
    login_per_window: int = 10
    mfa_verify_per_window: int = 10
    window_minutes: int = 15


class RedisSettings(BaseSettings):
    """Redis connection configuration."""

    model_config = {"env_prefix": "REDIS_", "extra": "ignore"}

    enabled: bool = True
    host: str = "localhost"
    port: int = 6379
    password: Optional[SecretStr] = None
    db: int = 0


# =============================================================================
# Root Settings
# =============================================================================


class Settings(BaseSettings):
    """Root application settings composing all sub-settings."""

    model_config = {"env_prefix": "", "extra": "ignore", "env_file": ".env", "env_file_encoding": "utf-8"}

    app_env: str = "development"
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000"

    # Nested groups (initialized separately to support env_prefix)
    auth: AuthSettings = None  # type: ignore[assignment]
    routing: RoutingSettings = None  # type: ignore[assignment]
    cookie: CookieSettings = None  # type: ignore[assignment]
    database: DatabaseSettings = None  # type: ignore[assignment]
    redis: RedisSettings = None  # type: ignore[assignment]
    rate_limit: RateLimitSettings = None  # type: ignore[assignment]

    @model_validator(mode="before")
    @classmethod
    def _init_nested(cls, values):
        """Initialize nested settings from environment."""
        if values.get("auth") is None:
            values["auth"] = AuthSettings()
        if values.get("routing") is None:
            values["routing"] = RoutingSettings()
        if values.get("cookie") is None:
            values["cookie"] = CookieSettings()
        if values.get("database") is None:
            values["database"] = DatabaseSettings()
        if values.get("redis") is None:
            values["redis"] = RedisSettings()
        if values.get("rate_limit") is None:
            values["rate_limit"] = RateLimitSettings()
        return values

    @property
    def cors_origin_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


def load_settings() -> Settings:
    """
    Build the settings object from the environment.

    The JWT secret may also come from ``JWT_SECRET_FILE`` or a Docker
    secret. An empty secret is left empty here; the token service refuses
    to start with it.
    """
    settings = Settings()
    if not settings.auth.jwt_secret.get_secret_value():
        secret = get_secret("JWT_SECRET", "")
        settings.auth.jwt_secret = SecretStr(secret or "")
    if os.getenv("COOKIE_SECURE") is None and not settings.is_production:
        settings.cookie.secure = False
    return settings
