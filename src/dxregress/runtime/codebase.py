"""Codebase checks, genesis patching and docker preflight."""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from dxregress.errors import EngineError, PatchError, ValidationError

logger = logging.getLogger(__name__)

CLI_BINARY_PATH = "src/blocknetdx-cli"

CommandRunner = Callable[..., subprocess.CompletedProcess[str]]


def _default_run(*args: Any, **kwargs: Any) -> subprocess.CompletedProcess[str]:  # pragma: no cover
    return subprocess.run(*args, **kwargs)  # noqa: S603


def validate_codebase(codebase: Path) -> Path:
    resolved = codebase.expanduser()
    if not resolved.is_dir():
        raise ValidationError(f"invalid codebase directory: {codebase}")
    return resolved.resolve()


def require_cli_binary(codebase: Path) -> Path:
    cli = codebase / CLI_BINARY_PATH
    if not cli.is_file():
        raise ValidationError(f"blocknetdx-cli missing from {cli}, did you build first?")
    return cli


class GenesisPatcher:
    """Applies and removes the regression genesis patch with ``git apply``."""

    def __init__(self, *, git_binary: str = "git", command_runner: CommandRunner | None = None) -> None:
        self._git = git_binary
        self._run = command_runner or _default_run

    def _git_apply(self, codebase: Path, *flags: str, patch: Path) -> subprocess.CompletedProcess[str]:
        args: Sequence[str] = [self._git, "apply", *flags, str(patch)]
        try:
            return self._run(list(args), cwd=str(codebase), capture_output=True, text=True, check=False)
        except OSError as exc:
            raise PatchError(f"git could not be executed: {exc}") from exc

    def _ensure_clean(self, codebase: Path, patch: Path) -> None:
        # A failing --check usually means the patch is already applied; reverse it.
        if self._git_apply(codebase, "--check", patch=patch).returncode == 0:
            return
        reverted = self._git_apply(codebase, "-R", patch=patch)
        if reverted.returncode != 0:
            raise PatchError(
                f"reverting patch failed, check codebase: git apply -R {patch}: {reverted.stderr.strip()}"
            )

    def apply(self, patch: Path, codebase: Path) -> None:
        if not patch.is_file():
            raise PatchError(f"genesis patch not found: {patch}")
        self._ensure_clean(codebase, patch)
        applied = self._git_apply(codebase, patch=patch)
        if applied.returncode != 0:
            raise PatchError(f"failed to apply genesis patch, possible conflict: {applied.stderr.strip()}")
        logger.info("genesis patch applied", extra={"data": {"patch": patch, "codebase": codebase}})

    def remove(self, patch: Path, codebase: Path) -> None:
        if not patch.is_file():
            raise PatchError(f"genesis patch not found: {patch}")
        self._ensure_clean(codebase, patch)
        logger.info("genesis patch removed", extra={"data": {"patch": patch, "codebase": codebase}})


def docker_preflight(
    docker_binary: str = "docker",
    *,
    command_runner: CommandRunner | None = None,
    which: Callable[[str], str | None] = shutil.which,
) -> None:
    """Raise :class:`EngineError` unless docker is installed and the daemon answers."""

    if which(docker_binary) is None:
        raise EngineError(f"startup check failed: is docker installed? ({docker_binary} not found on PATH)")
    run = command_runner or _default_run
    try:
        result = run(
            [docker_binary, "info", "--format", "{{.ServerVersion}}"],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as exc:
        raise EngineError(f"startup check failed: {exc}") from exc
    if result.returncode != 0:
        raise EngineError(f"startup check failed: is docker running? {(result.stderr or '').strip()}")
    logger.debug("docker is running", extra={"data": {"server_version": (result.stdout or "").strip()}})


__all__ = [
    "CLI_BINARY_PATH",
    "GenesisPatcher",
    "docker_preflight",
    "require_cli_binary",
    "validate_codebase",
]
