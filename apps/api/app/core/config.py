"""Application configuration for the support call pipeline."""
from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_env: str = Field(default="development")
    log_level: str = Field(default="INFO")
    cors_allow_origins: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["*"])

    database_url: str = Field(default="sqlite+aiosqlite:///./support_calls.db")
    database_ssl_required: bool = Field(default=False)

    s3_bucket: str = Field(default="")
    s3_region: str = Field(default="")
    s3_access_key_id: str = Field(default="")
    s3_secret_access_key: str = Field(default="")
    s3_endpoint_url: str = Field(default="")
    recording_url_ttl_seconds: int = Field(default=3600)

    twilio_account_sid: str = Field(default="")
    twilio_auth_token: str = Field(default="")
    twilio_api_base: str = Field(default="https://api.twilio.com/2010-04-01")
    twilio_timeout_seconds: float = Field(default=15.0)
    recording_start_max_wait_seconds: float = Field(default=20.0)
    recording_start_poll_seconds: float = Field(default=1.0)

    elevenlabs_api_key: str = Field(default="")
    elevenlabs_agent_id: str = Field(default="")
    elevenlabs_phone_number_id: str = Field(default="")
    elevenlabs_api_base: str = Field(default="https://api.elevenlabs.io/v1")

    webhook_base_url: str = Field(default="")
    phone_default_country_code: str = Field(default="+91")

    gemini_api_key: str = Field(default="")
    gemini_model: str = Field(default="gemini-2.0-flash")
    gemini_model_fallbacks: Annotated[list[str], NoDecode] = Field(default_factory=lambda: [
        "gemini-2.0-flash-lite",
        "gemini-1.5-flash-latest",
    ])

    whisper_model: str = Field(default="small")
    whisper_device: str = Field(default="cpu")
    whisper_compute_type: str = Field(default="int8")
    whisper_language: str | None = Field(default=None)

    recording_poll_enabled: bool = Field(default=False)
    recording_poll_interval_seconds: int = Field(default=180)
    recording_poll_batch_size: int = Field(default=20)
    recording_poll_max_age_hours: float = Field(default=48.0)

    @field_validator("gemini_model_fallbacks", "cors_allow_origins", mode="before")
    @classmethod
    def _split_csv(cls, value: object) -> object:
        """Allow comma-separated env values for list settings."""

        if isinstance(value, str):
            parts = [item.strip() for item in value.split(",") if item.strip()]
            return parts
        return value


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


settings = get_settings()
