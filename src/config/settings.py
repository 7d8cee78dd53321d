"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    log_level: str = Field(default="INFO")

    # Asterisk Manager Interface (AMI)
    ami_host: str = Field(
        default="localhost",
        description="Manager host, optionally with ':port' appended.",
    )
    ami_port: int = Field(default=5038, ge=1, le=65535)
    ami_username: str | None = Field(default=None)
    ami_secret: str | None = Field(default=None)
    ami_connect_timeout: float = Field(default=10.0, gt=0.0)
    ami_request_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Seconds to wait for the reply correlated with a request.",
    )
    ami_events: str | None = Field(
        default=None,
        description="Optional event mask sent with Login, e.g. 'on', 'off' or 'system,call'.",
    )

    # Asterisk Gateway Interface (AGI)
    agi_debug: bool = Field(
        default=False,
        description="If true, AgiSession.conlog() mirrors messages to the Asterisk console.",
    )
    fastagi_host: str = Field(default="0.0.0.0")
    fastagi_port: int = Field(default=4573, ge=1, le=65535)

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.strip().upper()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
