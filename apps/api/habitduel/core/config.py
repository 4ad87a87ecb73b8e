from __future__ import annotations

from pathlib import Path
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AnyUrl, Field
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILE = Path(__file__).resolve().parents[2] / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(str(ENV_FILE), ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    app_env: str = Field(default="development", alias="APP_ENV")
    frontend_url: AnyUrl = Field(alias="FRONTEND_URL")

    # Supabase
    supabase_url: AnyUrl = Field(alias="SUPABASE_URL")
    supabase_anon_key: str = Field(alias="SUPABASE_ANON_KEY")
    supabase_service_role_key: str = Field(alias="SUPABASE_SERVICE_ROLE_KEY")

    # Observability
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")
    sentry_traces_sample_rate: float = Field(
        default=0.0, alias="SENTRY_TRACES_SAMPLE_RATE"
    )

    # Challenges
    # Calendar used for day boundaries when scoring logs.
    challenge_timezone: str = Field(default="UTC", alias="CHALLENGE_TIMEZONE")
    challenge_title_max_length: int = Field(
        default=120, alias="CHALLENGE_TITLE_MAX_LENGTH"
    )
    challenge_list_limit: int = Field(default=200, alias="CHALLENGE_LIST_LIMIT")

    @model_validator(mode="after")
    def validate_runtime_constraints(self) -> "Settings":
        env = (self.app_env or "").strip().lower()
        is_prod = env in {"production", "prod"}

        frontend_host = (urlparse(str(self.frontend_url)).hostname or "").lower()
        if is_prod and frontend_host in {"localhost", "127.0.0.1"}:
            raise ValueError(
                "Invalid FRONTEND_URL for production: localhost is not allowed. "
                "Set FRONTEND_URL to your public web domain."
            )

        supabase_host = (urlparse(str(self.supabase_url)).hostname or "").lower()
        if is_prod and supabase_host in {"localhost", "127.0.0.1"}:
            raise ValueError(
                "Invalid SUPABASE_URL for production: localhost is not allowed."
            )

        try:
            ZoneInfo(self.challenge_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(
                f"CHALLENGE_TIMEZONE is not a known time zone: {self.challenge_timezone!r}"
            )
        if not (1 <= self.challenge_title_max_length <= 500):
            raise ValueError("CHALLENGE_TITLE_MAX_LENGTH must be 1..500")
        if not (1 <= self.challenge_list_limit <= 1000):
            raise ValueError("CHALLENGE_LIST_LIMIT must be 1..1000")

        return self

    def challenge_tz(self) -> ZoneInfo:
        return ZoneInfo(self.challenge_timezone)


settings = Settings()  # type: ignore[call-arg]  # singleton import via env settings
