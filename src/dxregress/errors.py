"""Exception taxonomy shared across the test environment tooling."""

from __future__ import annotations


class DxregressError(Exception):
    """Base class for dxregress failures."""


class ValidationError(DxregressError, ValueError):
    """Raised when a topology or wallet description is malformed."""


class EngineError(DxregressError):
    """Raised when a sandbox engine call fails."""


class DeadlineExceededError(EngineError):
    """Raised when a bulk sandbox operation does not finish before its deadline."""


class CommandError(DxregressError):
    """Raised when a remote command exits non-zero or returns unexpected output."""

    def __init__(self, message: str, *, stdout: str = "", stderr: str = "") -> None:
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr


class ReadinessTimeoutError(DxregressError, TimeoutError):
    """Raised when nodes do not report ready before the deadline."""


class ParseError(DxregressError, ValueError):
    """Raised when a structured node response cannot be decoded."""


class CancellationError(DxregressError):
    """Raised when an operation is interrupted by the operator."""


class InvalidTransitionError(DxregressError):
    """Raised when the environment state machine is driven backwards."""


class PatchError(DxregressError):
    """Raised when the genesis patch cannot be applied to or removed from a codebase."""


class BootstrapError(DxregressError):
    """Wraps the failure of a single bootstrap phase."""

    def __init__(self, phase: object, cause: BaseException) -> None:
        label = getattr(phase, "name", None)
        described = f"{int(phase)} ({label.lower()})" if isinstance(phase, int) and label else str(phase)
        super().__init__(f"bootstrap phase {described} failed: {cause}")
        self.phase = phase
        self.cause = cause


__all__ = [
    "BootstrapError",
    "CancellationError",
    "CommandError",
    "DeadlineExceededError",
    "DxregressError",
    "EngineError",
    "InvalidTransitionError",
    "ParseError",
    "PatchError",
    "ReadinessTimeoutError",
    "ValidationError",
]
