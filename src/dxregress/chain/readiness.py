"""Polling readiness checks for chain nodes."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from typing import Protocol

import httpx

from dxregress.chain.commands import RemoteCommandExecutor
from dxregress.errors import CommandError, ReadinessTimeoutError
from dxregress.runtime.blocking import BlockingCallRunner

logger = logging.getLogger(__name__)

DEFAULT_PROBE_INTERVAL_SECONDS = 2.0
RPC_IN_WARMUP = -28


class LivenessCheck(Protocol):
    """One node's liveness probe."""

    name: str

    async def check(self) -> bool:
        """Return True when the node answered successfully."""


class CommandLivenessCheck:
    """Runs ``<cli> getinfo`` inside the node's sandbox."""

    def __init__(
        self,
        name: str,
        cli: str,
        *,
        commands: RemoteCommandExecutor,
        runner: BlockingCallRunner,
    ) -> None:
        self.name = name
        self._cli = cli
        self._commands = commands
        self._runner = runner

    async def check(self) -> bool:
        try:
            await self._runner.run(self._commands.run, self.name, self._cli, "getinfo")
        except CommandError as exc:
            logger.debug("node not ready", extra={"data": {"node": self.name, "error": str(exc)}})
            return False
        return True


class RpcLivenessCheck:
    """Calls ``getblockcount`` over JSON-RPC for wallets running outside a sandbox.

    Any well-formed JSON-RPC reply counts as alive except ``-28`` (still warming up);
    ``getblockcount`` is answered by old and current daemons alike.
    """

    def __init__(
        self,
        name: str,
        url: str,
        *,
        rpc_user: str,
        rpc_password: str,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.name = name
        self._url = url
        self._auth = (rpc_user, rpc_password)
        self._timeout = timeout
        self._client = client

    async def check(self) -> bool:
        payload = {"jsonrpc": "1.0", "id": "dxregress", "method": "getblockcount", "params": []}
        try:
            if self._client is not None:
                response = await self._client.post(self._url, json=payload, auth=self._auth, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self._url, json=payload, auth=self._auth)
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug("wallet not ready", extra={"data": {"node": self.name, "error": str(exc)}})
            return False
        if not isinstance(body, dict) or not ("result" in body or "error" in body):
            logger.debug(
                "wallet reply is not JSON-RPC",
                extra={"data": {"node": self.name, "status": response.status_code}},
            )
            return False
        error = body.get("error")
        if isinstance(error, dict) and error.get("code") == RPC_IN_WARMUP:
            logger.debug("wallet warming up", extra={"data": {"node": self.name, "error": error}})
            return False
        return True


class ProbeHandle:
    """Owned polling task; :meth:`wait` races it against a deadline."""

    def __init__(self, task: asyncio.Task[None]) -> None:
        self._task = task

    @property
    def done(self) -> bool:
        return self._task.done()

    async def wait(self, timeout: float) -> None:
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except TimeoutError as exc:
            await self.cancel()
            raise ReadinessTimeoutError(f"nodes were not ready within {timeout}s") from exc
        except asyncio.CancelledError:
            await self.cancel()
            raise

    async def cancel(self) -> None:
        if self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class ReadinessProber:
    """Polls liveness checks until every target succeeds in the same round."""

    def __init__(self, *, interval: float = DEFAULT_PROBE_INTERVAL_SECONDS) -> None:
        self._interval = interval

    def start(self, targets: Sequence[LivenessCheck]) -> ProbeHandle:
        return ProbeHandle(asyncio.create_task(self._poll(tuple(targets)), name="readiness-probe"))

    async def await_ready(self, targets: Sequence[LivenessCheck], timeout: float) -> None:
        if not targets:
            return
        names = [target.name for target in targets]
        logger.info("waiting for nodes", extra={"data": {"nodes": names, "timeout_s": timeout}})
        start = time.monotonic()
        await self.start(targets).wait(timeout)
        logger.info(
            "nodes ready",
            extra={"data": {"nodes": names, "elapsed_s": round(time.monotonic() - start, 3)}},
        )

    async def _poll(self, targets: tuple[LivenessCheck, ...]) -> None:
        rounds = 0
        while True:
            rounds += 1
            results = await asyncio.gather(*(target.check() for target in targets))
            if all(results):
                return
            pending = [target.name for target, ok in zip(targets, results, strict=True) if not ok]
            logger.debug("readiness round incomplete", extra={"data": {"round": rounds, "pending": pending}})
            await asyncio.sleep(self._interval)


__all__ = [
    "CommandLivenessCheck",
    "DEFAULT_PROBE_INTERVAL_SECONDS",
    "LivenessCheck",
    "ProbeHandle",
    "RPC_IN_WARMUP",
    "ReadinessProber",
    "RpcLivenessCheck",
]
