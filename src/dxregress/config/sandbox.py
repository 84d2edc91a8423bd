"""Docker engine settings for node sandboxes."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SandboxSettings(BaseSettings):
    """Container engine settings and deadlines."""

    model_config = SettingsConfigDict(
        env_prefix="",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    docker_binary: str = Field(default="docker", alias="DX_DOCKER_BINARY")
    container_prefix: str = Field(default="dxregress-localenv-", alias="DX_CONTAINER_PREFIX")
    image: str = Field(default="blocknetdx/dxregress:localenv", alias="DX_IMAGE")
    stop_grace_seconds: int = Field(
        default=30,
        alias="DX_STOP_GRACE",
        ge=0,
        description="Seconds a sandbox is given to stop before it is killed.",
    )
    cleanup_deadline_seconds: float = Field(
        default=120.0,
        alias="DX_CLEANUP_DEADLINE",
        gt=0,
        description="Overall deadline for bulk stop/remove and restart fan-outs.",
    )


__all__ = ["SandboxSettings"]
