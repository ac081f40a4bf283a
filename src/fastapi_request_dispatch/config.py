"""Dispatcher configuration settings."""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DispatchSettings(BaseSettings):
    """Settings for the dispatch pipeline, loaded from ``DISPATCH_*`` variables."""

    model_config = SettingsConfigDict(
        env_prefix="DISPATCH_",
        case_sensitive=False,
        extra="ignore",
    )

    flash_timeout_seconds: int = Field(
        default=180,
        ge=0,
        description="Seconds a saved flash state stays deliverable after a redirect",
    )

    flash_sweep_interval_seconds: float | None = Field(
        default=60,
        ge=0,
        description="Minimum seconds between sweeps of expired flash states; None disables sweeping",
    )

    throw_if_no_handler_found: bool = Field(
        default=False,
        description="Raise NoHandlerFound instead of writing a 404 directly",
    )

    default_locale: str = Field(
        default="en",
        description="Locale bound when the request carries no Accept-Language",
    )

    async_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Default timeout for concurrent handling; None waits indefinitely",
    )

    publish_events: bool = Field(
        default=True,
        description="Publish a RequestHandledEvent to listeners after each request",
    )

    session_cookie: str = Field(
        default="session",
        description="Cookie naming the session that owns saved flash states",
    )

    debug: bool = Field(
        default=False,
        description="Record a DispatchTrace of interceptor callbacks per request",
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    log_json: bool = Field(
        default=False,
        description="Render log events as JSON instead of console output",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level
