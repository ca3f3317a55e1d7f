"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the service layer and the
operational scripts share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal, Optional

import os

from pydantic import AnyHttpUrl, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_DAY_SECONDS = 60 * 60 * 24


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


class GoogleSettings(BaseSettings):
    """Configuration required for the Google OAuth client."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    client_id: str = Field(..., validation_alias="GOOGLE_CLIENT_ID")
    client_secret: str = Field(..., validation_alias="GOOGLE_CLIENT_SECRET")
    redirect_uri: AnyHttpUrl = Field(..., validation_alias="GOOGLE_REDIRECT_URI")


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    session_encryption_secret: str = Field(
        ...,
        validation_alias="SESSION_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the AES-256-GCM key sealing session cookies "
            "and stored tokens. Changing it invalidates every live session."
        ),
    )


class OAuthSettings(BaseSettings):
    """OAuth flow configuration."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    state_ttl_seconds: int = Field(600, validation_alias="OAUTH_STATE_TTL")
    refresh_skew_seconds: int = Field(60, validation_alias="OAUTH_REFRESH_SKEW_SECONDS")
    provider_timeout_seconds: float = Field(
        15.0, validation_alias="OAUTH_PROVIDER_TIMEOUT"
    )
    scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        ("https://www.googleapis.com/auth/analytics.readonly",),
        validation_alias="OAUTH_SCOPES",
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(value)
        return tuple(scope.strip() for scope in value.split(",") if scope.strip())


class KVSettings(BaseSettings):
    """Remote key-value store used for tokens, PKCE state and usage counters."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    backend: Literal["rest", "sqlite", "memory"] = Field(
        "rest", validation_alias="KV_BACKEND"
    )
    rest_url: Optional[str] = Field(None, validation_alias="UPSTASH_KV_REST_URL")
    rest_token: Optional[str] = Field(None, validation_alias="UPSTASH_KV_REST_TOKEN")
    timeout_seconds: float = Field(10.0, validation_alias="KV_TIMEOUT")
    retry_attempts: int = Field(2, validation_alias="KV_RETRY_ATTEMPTS")
    sqlite_path: str = Field("./data/kv.sqlite3", validation_alias="KV_SQLITE_PATH")


class SessionSettings(BaseSettings):
    """Session cookie attributes."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    cookie_name: str = Field("aa_sid", validation_alias="SESSION_COOKIE_NAME")
    cookie_domain: Optional[str] = Field(
        None,
        validation_alias="SESSION_COOKIE_DOMAIN",
        description="Leave unset to keep the cookie host-only.",
    )
    cookie_max_age_seconds: int = Field(
        90 * _DAY_SECONDS, validation_alias="SESSION_COOKIE_MAX_AGE"
    )
    cookie_secure: bool = Field(True, validation_alias="SESSION_COOKIE_SECURE")

    @field_validator("cookie_max_age_seconds")
    @classmethod
    def _bound_max_age(cls, value: int) -> int:
        if not 30 * _DAY_SECONDS <= value <= 90 * _DAY_SECONDS:
            raise ValueError("SESSION_COOKIE_MAX_AGE must be between 30 and 90 days.")
        return value


class PlanSettings(BaseSettings):
    """Per-plan quota tables. Lookback of zero means unlimited."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    free_ga4_reports_per_month: int = Field(
        25, validation_alias="PLAN_FREE_GA4_REPORTS_PER_MONTH"
    )
    free_ai_summaries_per_month: int = Field(
        10, validation_alias="PLAN_FREE_AI_SUMMARIES_PER_MONTH"
    )
    free_linked_resources: int = Field(1, validation_alias="PLAN_FREE_LINKED_PROPERTIES")
    free_lookback_days: int = Field(90, validation_alias="PLAN_FREE_LOOKBACK_DAYS")
    premium_ga4_reports_per_month: int = Field(
        3000, validation_alias="PLAN_PREMIUM_GA4_REPORTS_PER_MONTH"
    )
    premium_ai_summaries_per_month: int = Field(
        100, validation_alias="PLAN_PREMIUM_AI_SUMMARIES_PER_MONTH"
    )
    premium_linked_resources: int = Field(
        5, validation_alias="PLAN_PREMIUM_LINKED_PROPERTIES"
    )
    premium_lookback_days: int = Field(0, validation_alias="PLAN_PREMIUM_LOOKBACK_DAYS")


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    frontend_base_url: Optional[HttpUrl] = Field(
        None,
        validation_alias="FRONTEND_BASE_URL",
        description="Optional URL for redirecting users back to the front-end.",
    )
    reconnect_path: str = Field(
        "/start",
        validation_alias="RECONNECT_PATH",
        description="Where browsers are sent when the Google connection must be redone.",
    )
    premium_url: str = Field(
        "https://analyticsassistant.ai/premium", validation_alias="PREMIUM_URL"
    )
    allow_qa_premium_override: bool = Field(
        False, validation_alias="ALLOW_QA_PREMIUM_OVERRIDE"
    )
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    google: GoogleSettings = Field(default_factory=GoogleSettings)
    kv: KVSettings = Field(default_factory=KVSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    plans: PlanSettings = Field(default_factory=PlanSettings)


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "GoogleSettings",
    "KVSettings",
    "OAuthSettings",
    "PlanSettings",
    "SecuritySettings",
    "SessionSettings",
    "get_settings",
]
