"""RPC calls issued inside node sandboxes via ``docker exec``."""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Callable, Sequence
from typing import Any

from dxregress.domain.topology import BLOCK_CLI
from dxregress.errors import CommandError

logger = logging.getLogger(__name__)


class RemoteCommandExecutor:
    """Runs node CLI commands inside sandboxes.

    Calls block; async callers hand them to a
    :class:`~dxregress.runtime.blocking.BlockingCallRunner`.
    """

    def __init__(
        self,
        *,
        docker_binary: str = "docker",
        timeout: float | None = None,
        command_runner: Callable[..., subprocess.CompletedProcess[str]] | None = None,
    ) -> None:
        self._docker = docker_binary
        self._timeout = timeout
        self._run = command_runner or self._default_run

    def command_line(self, node_name: str, exe: str, args: str) -> list[str]:
        return [self._docker, "exec", node_name, exe, *shlex.split(args)]

    def run(self, node_name: str, exe: str, args: str) -> str:
        """Run ``exe args`` inside ``node_name`` and return its stdout."""

        argv = self.command_line(node_name, exe, args)
        logger.debug("remote command", extra={"data": {"node": node_name, "cmd": " ".join(argv[3:])}})
        try:
            completed = self._run(argv, capture_output=True, text=True, check=True, timeout=self._timeout)
        except subprocess.CalledProcessError as exc:
            raise CommandError(
                f"{exe} {args} failed on {node_name} (returncode={exc.returncode})",
                stdout=exc.stdout or "",
                stderr=exc.stderr or "",
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise CommandError(f"{exe} {args} timed out on {node_name} after {exc.timeout}s") from exc
        except OSError as exc:
            raise CommandError(f"{exe} {args} could not be executed on {node_name}: {exc}") from exc
        return completed.stdout or ""

    def run_batch(self, node_name: str, exe: str, commands: Sequence[str]) -> str:
        """Run ``commands`` in order, stopping at the first failure.

        Returns the concatenated stdout of every invocation.
        """

        outputs: list[str] = []
        for args in commands:
            outputs.append(self.run(node_name, exe, args))
        return "".join(outputs)

    def block_rpc(self, node_name: str, args: str) -> str:
        return self.run(node_name, BLOCK_CLI, args)

    def block_rpc_batch(self, node_name: str, commands: Sequence[str]) -> str:
        return self.run_batch(node_name, BLOCK_CLI, commands)

    def start_all_service_nodes(self, activator_name: str) -> str:
        output = self.block_rpc(activator_name, "servicenode start-all")
        logger.debug("servicenode start-all", extra={"data": {"node": activator_name, "output": output.strip()}})
        return output

    @staticmethod
    def _default_run(
        *args: Any,
        **kwargs: Any,
    ) -> subprocess.CompletedProcess[str]:  # pragma: no cover - thin wrapper
        return subprocess.run(*args, **kwargs)  # noqa: S603


__all__ = ["RemoteCommandExecutor"]
