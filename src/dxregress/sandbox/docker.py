"""Docker-backed sandbox engine driven through the Docker CLI."""

from __future__ import annotations

import json
import logging
import subprocess
import threading
from collections.abc import Callable, Iterator, Sequence
from typing import IO, Any, NoReturn

from dxregress.errors import EngineError
from dxregress.sandbox.engine import SandboxEngine, SandboxSpec, SandboxState, SandboxSummary

logger = logging.getLogger(__name__)


class DockerEngine(SandboxEngine):
    """Runs node sandboxes as Docker containers using the ``docker`` binary."""

    def __init__(
        self,
        *,
        docker_binary: str = "docker",
        command_runner: Callable[..., subprocess.CompletedProcess[Any]] | None = None,
        stream_runner: Callable[..., subprocess.Popen[Any]] | None = None,
    ) -> None:
        self._docker = docker_binary
        self._run = command_runner or self._default_run
        self._popen = stream_runner or self._default_popen

    def create(self, spec: SandboxSpec) -> str:
        args = self._build_create_args(spec)
        logger.info(
            "creating sandbox container",
            extra={"data": {"image": spec.image, "container_name": spec.name}},
        )
        container_id = self._invoke(args, action="create").stdout.strip()
        if not container_id:
            raise EngineError("docker create did not return a container identifier")
        return container_id

    def _build_create_args(self, spec: SandboxSpec) -> list[str]:
        args = [self._docker, "create", "--name", spec.name]
        if spec.user:
            args.extend(["--user", spec.user])
        for key, value in spec.labels.items():
            args.extend(["--label", f"{key}={value}"])
        for binding in spec.ports:
            args.extend(["-p", f"{binding.host_ip}:{binding.host_port}:{binding.container_port}/tcp"])
        args.append(spec.image)
        return args

    def start(self, identifier: str) -> None:
        self._invoke([self._docker, "start", identifier], action="start")

    def stop(self, identifier: str, *, grace_seconds: int) -> None:
        logger.info("stopping sandbox container", extra={"data": {"container": identifier}})
        self._invoke([self._docker, "stop", "-t", str(grace_seconds), identifier], action="stop")

    def remove(self, identifier: str, *, force: bool) -> None:
        args = [self._docker, "rm"]
        if force:
            args.append("-f")
        args.append(identifier)
        self._invoke(args, action="rm")

    def restart(self, identifier: str, *, grace_seconds: int) -> None:
        logger.info("restarting sandbox container", extra={"data": {"container": identifier}})
        self._invoke([self._docker, "restart", "-t", str(grace_seconds), identifier], action="restart")

    def unpause(self, identifier: str) -> None:
        self._invoke([self._docker, "unpause", identifier], action="unpause")

    def list(self, name_filter: str) -> list[SandboxSummary]:
        args = [
            self._docker,
            "ps",
            "--all",
            "--no-trunc",
            "--filter",
            f"name={name_filter}",
            "--format",
            "{{json .}}",
        ]
        output = self._invoke(args, action="ps").stdout or ""
        summaries: list[SandboxSummary] = []
        for line in output.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                row = json.loads(line)
            except ValueError as exc:
                raise EngineError(f"docker ps returned an unexpected row: {line}") from exc
            names = str(row.get("Names", "")).split(",")
            summaries.append(
                SandboxSummary(
                    identifier=str(row.get("ID", "")),
                    name=names[0].lstrip("/"),
                    state=str(row.get("State", "")).lower(),
                )
            )
        return summaries

    def inspect_state(self, identifier: str) -> SandboxState:
        args = [self._docker, "inspect", "--format", "{{json .State}}", identifier]
        output = (self._invoke(args, action="inspect").stdout or "").strip()
        try:
            state = json.loads(output)
        except ValueError as exc:
            raise EngineError(f"docker inspect returned an unexpected state: {output}") from exc
        return SandboxState(
            running=bool(state.get("Running")),
            paused=bool(state.get("Paused")),
            status=str(state.get("Status", "")),
        )

    def copy_archive(self, identifier: str, dest_path: str, archive: bytes) -> None:
        # docker cp reads a tar stream from stdin when the source is "-"
        args = [self._docker, "cp", "-", f"{identifier}:{dest_path}"]
        self._invoke(args, action="cp", stdin=archive)

    def build_image(self, context: bytes, *, dockerfile: str, tag: str) -> Iterator[str]:
        args = [
            self._docker,
            "build",
            "--pull",
            "--rm",
            "--label",
            "co.blocknet.dxregress=true",
            "-f",
            dockerfile,
            "-t",
            tag,
            "-",
        ]
        logger.info("building sandbox image", extra={"data": {"tag": tag, "dockerfile": dockerfile}})
        try:
            process = self._popen(
                args,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except OSError as exc:
            raise EngineError(f"docker build could not be started: {exc}") from exc
        return self._stream_build(process, context, tag)

    def _stream_build(self, process: subprocess.Popen[Any], context: bytes, tag: str) -> Iterator[str]:
        if process.stdin is None or process.stdout is None:
            raise EngineError("docker build was started without stdin/stdout pipes")
        # stdin is fed from a thread while stdout drains here
        feed_errors: list[OSError] = []
        feeder = threading.Thread(
            target=_feed_context,
            args=(process.stdin, context, feed_errors),
            name="docker-build-context",
            daemon=True,
        )
        feeder.start()
        finished = False
        try:
            for raw in process.stdout:
                line = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
                line = line.rstrip()
                if line:
                    yield line
            finished = True
        except OSError as exc:
            raise EngineError(f"docker build output could not be read for {tag}: {exc}") from exc
        finally:
            if not finished and process.poll() is None:
                process.kill()
            feeder.join()
        returncode = process.wait()
        if returncode != 0:
            raise EngineError(f"docker build failed for {tag} (returncode={returncode})")
        if feed_errors:
            raise EngineError(f"docker build stopped reading the context for {tag}: {feed_errors[0]}")

    def _invoke(
        self,
        args: Sequence[str],
        *,
        action: str,
        stdin: bytes | None = None,
    ) -> subprocess.CompletedProcess[Any]:
        try:
            if stdin is None:
                return self._run(list(args), capture_output=True, text=True, check=True)
            return self._run(list(args), input=stdin, capture_output=True, check=True)
        except subprocess.CalledProcessError as exc:
            self._raise_engine_error(exc, args, action)
        except OSError as exc:
            raise EngineError(f"docker {action} could not be executed: {exc}") from exc

    @staticmethod
    def _raise_engine_error(exc: subprocess.CalledProcessError, args: Sequence[str], action: str) -> NoReturn:
        cmd_str = " ".join(str(part) for part in (exc.cmd or args))
        stderr = _as_text(exc.stderr).strip()
        logger.debug(
            "docker %s failed (returncode=%s)",
            action,
            exc.returncode,
            extra={"data": {"docker_cmd": cmd_str, "stderr": stderr}},
        )
        raise EngineError(f"docker {action} failed (returncode={exc.returncode}) stderr={stderr}") from exc

    @staticmethod
    def _default_run(
        *args: Any,
        **kwargs: Any,
    ) -> subprocess.CompletedProcess[Any]:  # pragma: no cover - thin wrapper
        return subprocess.run(*args, **kwargs)  # noqa: S603

    @staticmethod
    def _default_popen(
        *args: Any,
        **kwargs: Any,
    ) -> subprocess.Popen[Any]:  # pragma: no cover - thin wrapper
        return subprocess.Popen(*args, **kwargs)  # noqa: S603


def _feed_context(stdin: IO[bytes], context: bytes, errors: list[OSError]) -> None:
    try:
        stdin.write(context)
    except OSError as exc:
        errors.append(exc)
    finally:
        try:
            stdin.close()
        except OSError as exc:
            errors.append(exc)


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


__all__ = ["DockerEngine"]
