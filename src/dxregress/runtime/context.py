"""Runtime wiring for ``dxregress`` commands."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import httpx

from dxregress.chain.commands import RemoteCommandExecutor
from dxregress.chain.configs import ConfigEmitter
from dxregress.chain.environment import TestEnvironment
from dxregress.chain.readiness import ReadinessProber
from dxregress.domain.topology import EnvironmentConfig, ImageBuildSpec, build_topology, default_nodes
from dxregress.domain.wallets import WalletDescriptor, parse_wallet_parameter
from dxregress.runtime.blocking import BlockingCallRunner
from dxregress.runtime.network import resolve_local_ip
from dxregress.runtime.settings import Settings
from dxregress.sandbox.docker import DockerEngine
from dxregress.sandbox.engine import SandboxEngine
from dxregress.sandbox.lifecycle import SandboxLifecycleManager

logger = logging.getLogger("dxregress.runtime")


@dataclass(frozen=True, slots=True)
class EnvironmentRuntime:
    """Everything one ``up``/``down`` invocation owns."""

    settings: Settings
    environment: TestEnvironment
    runner: BlockingCallRunner
    rpc_client: httpx.AsyncClient

    async def aclose(self) -> None:
        await self.rpc_client.aclose()
        await asyncio.to_thread(self.runner.drain)


def parse_wallets(raw_wallets: Sequence[str], *, host_ip: str) -> tuple[WalletDescriptor, ...]:
    return tuple(parse_wallet_parameter(raw, default_ip=host_ip) for raw in raw_wallets)


def build_environment_config(
    settings: Settings,
    *,
    wallets: Sequence[WalletDescriptor] = (),
    image: str | None = None,
    build: ImageBuildSpec | None = None,
) -> EnvironmentConfig:
    prefix = settings.sandbox.container_prefix
    return EnvironmentConfig(
        config_path=settings.environment_path,
        container_prefix=prefix,
        default_image=image or settings.sandbox.image,
        topology=build_topology(default_nodes(prefix)),
        wallets=tuple(wallets),
        build=build,
    )


def build_runtime(
    settings: Settings,
    *,
    raw_wallets: Sequence[str] = (),
    image: str | None = None,
    codebase: Path | None = None,
    wallet_data: bytes | None = None,
    engine: SandboxEngine | None = None,
    host_ip: str | None = None,
) -> EnvironmentRuntime:
    """Construct the environment and its collaborators from settings and CLI input.

    A ``codebase`` turns on the image build; without one the image is
    expected to exist already.
    """

    resolved_ip = host_ip or resolve_local_ip(settings.host_ip)
    wallets = parse_wallets(raw_wallets, host_ip=resolved_ip)
    build = ImageBuildSpec(codebase=codebase, wallet_data=wallet_data) if codebase is not None else None
    config = build_environment_config(settings, wallets=wallets, image=image, build=build)

    runner = BlockingCallRunner()
    sandbox_engine = engine or DockerEngine(docker_binary=settings.sandbox.docker_binary)
    lifecycle = SandboxLifecycleManager(
        sandbox_engine,
        runner,
        stop_grace_seconds=settings.sandbox.stop_grace_seconds,
    )
    commands = RemoteCommandExecutor(
        docker_binary=settings.sandbox.docker_binary,
        timeout=settings.bootstrap.command_deadline_seconds,
    )
    rpc_client = httpx.AsyncClient(timeout=5.0)
    environment = TestEnvironment(
        config,
        lifecycle=lifecycle,
        commands=commands,
        runner=runner,
        prober=ReadinessProber(interval=settings.bootstrap.readiness_interval_seconds),
        emitter=ConfigEmitter(resolved_ip),
        settings=settings.bootstrap,
        cleanup_deadline=settings.sandbox.cleanup_deadline_seconds,
        rpc_client=rpc_client,
    )
    logger.info(
        "environment configured",
        extra={
            "data": {
                "prefix": config.container_prefix,
                "image": config.default_image,
                "host_ip": resolved_ip,
                "wallets": [wallet.ticker for wallet in wallets],
                "build": build is not None,
            }
        },
    )
    return EnvironmentRuntime(settings=settings, environment=environment, runner=runner, rpc_client=rpc_client)


__all__ = ["EnvironmentRuntime", "build_environment_config", "build_runtime", "parse_wallets"]
