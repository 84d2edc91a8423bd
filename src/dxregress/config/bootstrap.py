"""Timing knobs for the chain bootstrap."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BootstrapSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    readiness_timeout_seconds: float = Field(default=45.0, alias="DX_READINESS_TIMEOUT", gt=0)
    readiness_interval_seconds: float = Field(default=2.0, alias="DX_READINESS_INTERVAL", gt=0)
    command_deadline_seconds: float = Field(
        default=180.0,
        alias="DX_COMMAND_DEADLINE",
        gt=0,
        description="Upper bound for a single remote command invocation.",
    )
    activation_settle_seconds: float = Field(default=10.0, alias="DX_ACTIVATION_SETTLE", ge=0)
    activation_resettle_seconds: float = Field(default=5.0, alias="DX_ACTIVATION_RESETTLE", ge=0)


__all__ = ["BootstrapSettings"]
