"""Async sandbox lifecycle operations and bulk fan-outs."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from dxregress.domain.topology import PortBinding
from dxregress.errors import DeadlineExceededError, EngineError
from dxregress.runtime.blocking import BlockingCallRunner
from dxregress.sandbox.engine import SandboxEngine, SandboxSpec, SandboxSummary

logger = logging.getLogger(__name__)

DEFAULT_STOP_GRACE_SECONDS = 30


@dataclass(slots=True)
class BatchReport:
    """Outcome of a bulk sandbox operation; failures are collected, not raised."""

    action: str
    succeeded: list[str] = field(default_factory=list)
    failures: list[tuple[str, BaseException]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failures)

    @property
    def first_error(self) -> BaseException | None:
        return self.failures[0][1] if self.failures else None

    def raise_first(self) -> None:
        if not self.failures:
            return
        name, error = self.failures[0]
        raise EngineError(f"{self.action} failed for {name}: {error}") from error


class SandboxLifecycleManager:
    """Creates, stops, restarts and removes node sandboxes."""

    def __init__(
        self,
        engine: SandboxEngine,
        runner: BlockingCallRunner,
        *,
        stop_grace_seconds: int = DEFAULT_STOP_GRACE_SECONDS,
    ) -> None:
        self._engine = engine
        self._runner = runner
        self._grace = stop_grace_seconds

    async def create_and_start(
        self,
        image: str,
        name: str,
        ports: Sequence[PortBinding] = (),
    ) -> str:
        existing = await self._runner.run(self._engine.list, f"^/{re.escape(name)}$")
        if any(summary.name == name for summary in existing):
            raise EngineError(f"sandbox {name} already exists")
        spec = SandboxSpec(image=image, name=name, ports=tuple(ports))
        identifier = await self._runner.run(self._engine.create, spec)
        await self._runner.run(self._engine.start, identifier)
        logger.info(
            "sandbox started",
            extra={"data": {"name": name, "image": image, "ports": [p.host_port for p in ports]}},
        )
        return identifier

    async def stop(self, identifier: str) -> None:
        await self._runner.run(self._engine.stop, identifier, grace_seconds=self._grace)

    async def remove(self, identifier: str, *, force: bool = True) -> None:
        await self._runner.run(self._engine.remove, identifier, force=force)

    async def restart(self, identifier: str) -> None:
        await self._runner.run(self._engine.restart, identifier, grace_seconds=self._grace)

    async def stop_and_remove(self, identifier: str) -> None:
        state = await self._runner.run(self._engine.inspect_state, identifier)
        if state.paused:
            await self._runner.run(self._engine.unpause, identifier)
        if state.running or state.paused:
            await self.stop(identifier)
        await self.remove(identifier, force=True)

    async def copy_archive(self, identifier: str, dest_path: str, archive: bytes) -> None:
        await self._runner.run(self._engine.copy_archive, identifier, dest_path, archive)

    async def build_image(self, context: bytes, *, dockerfile: str, tag: str) -> int:
        """Build ``tag`` from a tar context, logging progress; returns the progress line count."""

        def _consume() -> int:
            count = 0
            for line in self._engine.build_image(context, dockerfile=dockerfile, tag=tag):
                count += 1
                logger.info("docker build: %s", line)
            return count

        return await self._runner.run(_consume)

    async def find(self, name_filter: str) -> list[SandboxSummary]:
        return await self._runner.run(self._engine.list, name_filter)

    async def stop_all_matching(
        self,
        name_filter: str,
        *,
        suppress_logs: bool = False,
        timeout: float | None = None,
    ) -> BatchReport:
        """Stop and remove every sandbox whose name matches ``name_filter``."""

        summaries = await self.find(name_filter)
        if not summaries:
            if not suppress_logs:
                logger.info("no sandboxes to remove", extra={"data": {"filter": name_filter}})
            return BatchReport(action="stop")
        return await self._fan_out(
            "stop",
            summaries,
            self.stop_and_remove,
            timeout=timeout,
            suppress_logs=suppress_logs,
        )

    async def restart_all_matching(self, name_filter: str, *, timeout: float | None = None) -> BatchReport:
        """Restart every sandbox whose name matches ``name_filter``."""

        summaries = await self.find(name_filter)
        if not summaries:
            logger.info("no sandboxes to restart", extra={"data": {"filter": name_filter}})
            return BatchReport(action="restart")
        return await self._fan_out("restart", summaries, self.restart, timeout=timeout, suppress_logs=False)

    async def _fan_out(
        self,
        action: str,
        summaries: Sequence[SandboxSummary],
        operation: Callable[[str], Awaitable[None]],
        *,
        timeout: float | None,
        suppress_logs: bool,
    ) -> BatchReport:
        report = BatchReport(action=action)

        async def _one(summary: SandboxSummary) -> None:
            try:
                await operation(summary.identifier)
            except Exception as exc:  # noqa: BLE001 - aggregated into the report
                report.failures.append((summary.name, exc))
                logger.warning(
                    "sandbox %s failed",
                    action,
                    extra={"data": {"name": summary.name, "error": str(exc)}},
                )
                return
            report.succeeded.append(summary.name)
            if not suppress_logs:
                logger.info("sandbox %s complete", action, extra={"data": {"name": summary.name}})

        try:
            async with asyncio.timeout(timeout):
                async with asyncio.TaskGroup() as group:
                    for summary in summaries:
                        group.create_task(_one(summary), name=f"{action}:{summary.name}")
        except TimeoutError as exc:
            raise DeadlineExceededError(
                f"{action} of {len(summaries)} sandboxes did not finish within {timeout}s"
            ) from exc
        return report


__all__ = ["BatchReport", "DEFAULT_STOP_GRACE_SECONDS", "SandboxLifecycleManager"]
