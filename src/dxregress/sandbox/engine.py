"""Sandbox engine interface consumed by the lifecycle manager."""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from dxregress.domain.topology import PortBinding

SANDBOX_LABEL = "co.blocknet.dxregress"


@dataclass(frozen=True, slots=True)
class SandboxSpec:
    """Configuration for creating a node sandbox."""

    image: str
    name: str
    ports: Sequence[PortBinding] = field(default_factory=tuple)
    labels: Mapping[str, str] = field(default_factory=lambda: {SANDBOX_LABEL: "true"})
    user: str | None = "root:root"


@dataclass(frozen=True, slots=True)
class SandboxSummary:
    """One row of a sandbox listing."""

    identifier: str
    name: str
    state: str

    @property
    def running(self) -> bool:
        return self.state == "running"


@dataclass(frozen=True, slots=True)
class SandboxState:
    """Runtime state flags reported by inspect."""

    running: bool = False
    paused: bool = False
    status: str = ""


class SandboxEngine(Protocol):
    """Container-engine operations used to provision node sandboxes."""

    def create(self, spec: SandboxSpec) -> str:
        """Create a sandbox and return its identifier."""

    def start(self, identifier: str) -> None:
        """Start a created sandbox."""

    def stop(self, identifier: str, *, grace_seconds: int) -> None:
        """Stop a sandbox, killing it after the grace period."""

    def remove(self, identifier: str, *, force: bool) -> None:
        """Remove a sandbox."""

    def restart(self, identifier: str, *, grace_seconds: int) -> None:
        """Restart a sandbox."""

    def list(self, name_filter: str) -> list[SandboxSummary]:
        """List sandboxes (running or not) whose name matches the regex filter."""

    def inspect_state(self, identifier: str) -> SandboxState:
        """Return runtime state flags for a sandbox."""

    def unpause(self, identifier: str) -> None:
        """Resume a paused sandbox."""

    def copy_archive(self, identifier: str, dest_path: str, archive: bytes) -> None:
        """Extract a tar archive into the sandbox filesystem at ``dest_path``."""

    def build_image(self, context: bytes, *, dockerfile: str, tag: str) -> Iterator[str]:
        """Build an image from a tar build context, yielding progress lines."""


__all__ = [
    "SANDBOX_LABEL",
    "SandboxEngine",
    "SandboxSpec",
    "SandboxState",
    "SandboxSummary",
]
