"""Configuration helpers for dxregress runtime wiring."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from dxregress.config.bootstrap import BootstrapSettings
from dxregress.config.sandbox import SandboxSettings


class Settings(BaseSettings):
    """Runtime configuration resolved from the environment.

    Only includes genuinely configurable settings - protocol constants
    (funding amounts, block counts, ports) live in their domain modules.
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    debug: bool = Field(default=False, alias="DX_DEBUG")
    log_level: str = Field(default="INFO", alias="DX_LOG_LEVEL")
    config_dir: Path = Field(default_factory=lambda: Path.home() / ".dxregress", alias="DX_CONFIG_DIR")
    host_ip: str | None = Field(default=None, alias="DX_HOST_IP")

    # --- Component settings ---
    sandbox: SandboxSettings = Field(default_factory=SandboxSettings)
    bootstrap: BootstrapSettings = Field(default_factory=BootstrapSettings)

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level.upper()

    @property
    def environment_path(self) -> Path:
        return self.config_dir.expanduser() / "localenv"

    # --- Loader ---
    @classmethod
    def load(cls) -> Settings:
        instance = cls()
        logger = logging.getLogger("dxregress.settings")
        logger.info("dxregress settings loaded: %r", instance)
        return instance


__all__ = ["Settings"]
