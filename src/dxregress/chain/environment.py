"""Bootstrap orchestrator for the regression environment."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import IntEnum, StrEnum
from pathlib import Path
from typing import Final, TypeVar

import httpx
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from dxregress.chain.commands import RemoteCommandExecutor
from dxregress.chain.configs import (
    NODE_CONFIG_DIR,
    NODE_DATA_DIR,
    NODE_TESTNET_DIR,
    ConfigEmitter,
    ServiceNodeRegistration,
)
from dxregress.chain.readiness import CommandLivenessCheck, LivenessCheck, ReadinessProber, RpcLivenessCheck
from dxregress.config.bootstrap import BootstrapSettings
from dxregress.domain.topology import (
    ACTIVATOR_ROLE,
    SERVICE_NODE_ROLE,
    AliasIdentity,
    EnvironmentConfig,
    ImageBuildSpec,
    Node,
    node_for_wallet,
)
from dxregress.domain.wallets import WalletDescriptor, wallet_tickers
from dxregress.errors import (
    BootstrapError,
    CommandError,
    DeadlineExceededError,
    DxregressError,
    EngineError,
    InvalidTransitionError,
    ParseError,
    ValidationError,
)
from dxregress.runtime.blocking import BlockingCallRunner
from dxregress.sandbox.archive import build_context_archive, create_tar
from dxregress.sandbox.lifecycle import BatchReport, SandboxLifecycleManager

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEED_BLOCKS: Final[int] = 25
CONFIRMATION_BLOCKS: Final[int] = 25
COLLATERAL_AMOUNT: Final[int] = 5000
# Splits the mined balance into staking-sized inputs.
FRAGMENT_COUNT: Final[int] = 75
FRAGMENT_AMOUNT: Final[int] = 2500


class EnvironmentState(StrEnum):
    NOT_STARTED = "not_started"
    IMAGES_BUILDING = "images_building"
    CONTAINERS_STARTING = "containers_starting"
    AWAITING_READINESS = "awaiting_readiness"
    BOOTSTRAPPING = "bootstrapping"
    AWAITING_RESTART_READINESS = "awaiting_restart_readiness"
    ACTIVATING = "activating"
    READY = "ready"
    FAILED = "failed"
    STOPPED = "stopped"


_FORWARD_STATES: Final[tuple[EnvironmentState, ...]] = (
    EnvironmentState.NOT_STARTED,
    EnvironmentState.IMAGES_BUILDING,
    EnvironmentState.CONTAINERS_STARTING,
    EnvironmentState.AWAITING_READINESS,
    EnvironmentState.BOOTSTRAPPING,
    EnvironmentState.AWAITING_RESTART_READINESS,
    EnvironmentState.ACTIVATING,
    EnvironmentState.READY,
)
_TERMINAL_STATES: Final[frozenset[EnvironmentState]] = frozenset(
    {EnvironmentState.READY, EnvironmentState.FAILED, EnvironmentState.STOPPED}
)


class BootstrapPhase(IntEnum):
    SEED_FUNDING = 1
    ALIAS_FUNDING = 2
    COLLATERAL_FUNDING = 3
    FRAGMENT_FUNDING = 4
    CONFIRMATION = 5
    KEY_GENERATION = 6
    OUTPUT_DISCOVERY = 7
    REGISTRATION = 8
    CONFIGURATION = 9
    CONTROLLED_RESTART = 10
    ACTIVATION = 11


class CollateralOutput(BaseModel):
    """One entry of ``servicenode outputs``."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    txid: str = Field(alias="txhash", min_length=1)
    index: int = Field(alias="outputidx", ge=0)


_COLLATERAL_OUTPUTS = TypeAdapter(list[CollateralOutput])


def parse_collateral_outputs(raw: str) -> list[CollateralOutput]:
    try:
        return _COLLATERAL_OUTPUTS.validate_json(raw)
    except PydanticValidationError as exc:
        raise ParseError(f"servicenode outputs could not be decoded: {exc.error_count()} errors") from exc


def pair_registrations(
    service_nodes: Sequence[Node],
    keys: Sequence[str],
    outputs: Sequence[CollateralOutput],
    *,
    host_ip: str,
) -> list[ServiceNodeRegistration]:
    """Pair the i-th service node with the i-th generated key and i-th collateral output."""

    if not (len(service_nodes) == len(keys) == len(outputs)):
        raise ParseError(
            f"expected one key and one collateral output per service node: "
            f"nodes={len(service_nodes)} keys={len(keys)} outputs={len(outputs)}"
        )
    return [
        ServiceNodeRegistration(
            alias=node.short_name,
            address=node.address(host_ip),
            key=key,
            collateral_txid=output.txid,
            collateral_index=output.index,
        )
        for node, key, output in zip(service_nodes, keys, outputs, strict=True)
    ]


def _alias(node: Node) -> AliasIdentity:
    if node.alias is None:
        raise ValidationError(f"node {node.name} has no funding identity")
    return node.alias


@dataclass(frozen=True, slots=True)
class EnvironmentSummary:
    """What the operator needs after ``up``: sample calls, config file, wallets."""

    sample_calls: tuple[str, ...]
    config_file: Path
    wallets: tuple[str, ...] = field(default_factory=tuple)

    def lines(self) -> list[str]:
        lines = list(self.sample_calls)
        lines.append(f"Test blocknetdx.conf file here: {self.config_file}")
        if self.wallets:
            lines.append(f"Wallets enabled: {','.join(self.wallets)}")
        return lines


class TestEnvironment:
    """Provisions the sandboxes and drives the ordered chain bootstrap."""

    __test__ = False

    def __init__(
        self,
        config: EnvironmentConfig,
        *,
        lifecycle: SandboxLifecycleManager,
        commands: RemoteCommandExecutor,
        runner: BlockingCallRunner,
        prober: ReadinessProber,
        emitter: ConfigEmitter,
        settings: BootstrapSettings | None = None,
        cleanup_deadline: float | None = None,
        rpc_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._lifecycle = lifecycle
        self._commands = commands
        self._runner = runner
        self._prober = prober
        self._emitter = emitter
        self._settings = settings or BootstrapSettings()
        self._cleanup_deadline = cleanup_deadline
        self._rpc_client = rpc_client
        self._sleep = sleep
        self._state = EnvironmentState.NOT_STARTED
        self._history: list[EnvironmentState] = [self._state]
        self._phase: BootstrapPhase | None = None
        self._sandbox_ids: dict[str, str] = {}
        self._registrations: list[ServiceNodeRegistration] = []

    @property
    def config(self) -> EnvironmentConfig:
        return self._config

    @property
    def state(self) -> EnvironmentState:
        return self._state

    @property
    def history(self) -> tuple[EnvironmentState, ...]:
        return tuple(self._history)

    @property
    def phase(self) -> BootstrapPhase | None:
        return self._phase

    @property
    def registrations(self) -> tuple[ServiceNodeRegistration, ...]:
        return tuple(self._registrations)

    # --- state machine -------------------------------------------------

    def _transition(self, target: EnvironmentState) -> None:
        current = self._state
        if target is EnvironmentState.STOPPED:
            allowed = current is not EnvironmentState.STOPPED
        elif target is EnvironmentState.FAILED:
            allowed = current not in _TERMINAL_STATES
        else:
            allowed = (
                current in _FORWARD_STATES
                and _FORWARD_STATES.index(target) > _FORWARD_STATES.index(current)
            )
        if not allowed:
            raise InvalidTransitionError(f"cannot move environment from {current} to {target}")
        self._state = target
        self._history.append(target)
        logger.debug("environment state changed", extra={"data": {"from": current, "to": target}})

    def _fail(self) -> None:
        if self._state not in _TERMINAL_STATES:
            self._transition(EnvironmentState.FAILED)

    # --- public operations ---------------------------------------------

    async def start(self) -> None:
        """Provision every sandbox and run bootstrap phases 1 through 11."""

        if self._state is not EnvironmentState.NOT_STARTED:
            raise InvalidTransitionError(f"environment cannot start from {self._state}")
        start = time.monotonic()
        try:
            await self._provision()
            await self._bootstrap()
        except (Exception, asyncio.CancelledError):
            self._fail()
            raise
        self._transition(EnvironmentState.READY)
        logger.info(
            "environment ready",
            extra={"data": {"elapsed_s": round(time.monotonic() - start, 3), "nodes": len(self._config.nodes)}},
        )

    async def stop(self) -> BatchReport:
        """Remove every sandbox of this environment; raises the first failure after trying all."""

        report = await self._lifecycle.stop_all_matching(
            self._config.container_filter(),
            timeout=self._cleanup_deadline,
        )
        if self._state is not EnvironmentState.STOPPED:
            self._transition(EnvironmentState.STOPPED)
        report.raise_first()
        return report

    def summary(self) -> EnvironmentSummary:
        nodes = (*self._config.nodes, *self._config.wallet_nodes)
        return EnvironmentSummary(
            sample_calls=tuple(
                f"Sample rpc call {node.short_name}: docker exec {node.name} {node.cli} getinfo" for node in nodes
            ),
            config_file=self._config.summary_config_file,
            wallets=tuple(wallet_tickers(self._config.wallets)),
        )

    # --- provisioning --------------------------------------------------

    async def _provision(self) -> None:
        self._write_summary_config()
        if self._config.build is not None:
            self._transition(EnvironmentState.IMAGES_BUILDING)
            await self._build_image(self._config.build)
        self._transition(EnvironmentState.CONTAINERS_STARTING)
        await self._remove_stale_sandboxes()
        for node in self._config.nodes:
            await self._create(node, node.image or self._config.default_image)
        for node in self._config.wallet_nodes:
            await self._create(node, node.image or self._config.default_image)
        self._transition(EnvironmentState.AWAITING_READINESS)
        await self._await_ready(self._config.nodes)

    def _write_summary_config(self) -> None:
        path = self._config.summary_config_file
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(self._emitter.summary_config(self._config.nodes), encoding="utf-8")
        except OSError as exc:
            raise DxregressError(f"failed to write {path}: {exc}") from exc
        logger.info("wrote environment config", extra={"data": {"path": path}})

    async def _build_image(self, build: ImageBuildSpec) -> None:
        extras: dict[str, bytes] = {
            build.dockerfile_name: self._emitter.dockerfile().encode(),
            "blocknetdx.conf": self._emitter.node_config(None, ()).encode(),
        }
        if build.wallet_data is not None:
            extras["wallet.dat"] = build.wallet_data
        logger.info(
            "building node image, please wait",
            extra={"data": {"codebase": build.codebase, "tag": self._config.default_image}},
        )
        context = await self._runner.run(build_context_archive, build.codebase, extra_files=extras)
        await self._lifecycle.build_image(context, dockerfile=build.dockerfile_name, tag=self._config.default_image)

    async def _remove_stale_sandboxes(self) -> None:
        try:
            report = await self._lifecycle.stop_all_matching(
                self._config.container_filter(),
                suppress_logs=True,
                timeout=self._cleanup_deadline,
            )
        except EngineError as exc:
            logger.warning("failed to remove previous sandboxes", extra={"data": {"error": str(exc)}})
            return
        if not report.ok:
            logger.warning(
                "failed to remove some previous sandboxes",
                extra={"data": {"failures": [name for name, _ in report.failures]}},
            )

    async def _create(self, node: Node, image: str) -> None:
        identifier = await self._lifecycle.create_and_start(image, node.name, node.ports)
        self._sandbox_ids[node.name] = identifier
        logger.info(
            "node running",
            extra={
                "data": {
                    "node": node.name,
                    "port": node.port,
                    "rpc_port": node.rpc_port,
                    "debugger_port": node.debugger_port,
                }
            },
        )

    def _sandbox_id(self, node: Node) -> str:
        return self._sandbox_ids.get(node.name, node.name)

    def _liveness_checks(
        self,
        nodes: Sequence[Node],
        wallets: Sequence[WalletDescriptor] = (),
    ) -> list[LivenessCheck]:
        checks: list[LivenessCheck] = [
            CommandLivenessCheck(node.name, node.cli, commands=self._commands, runner=self._runner) for node in nodes
        ]
        for wallet in wallets:
            checks.append(
                RpcLivenessCheck(
                    node_for_wallet(wallet, self._config.container_prefix).name,
                    f"http://{wallet.ip}:{wallet.rpc_port}",
                    rpc_user=wallet.rpc_user,
                    rpc_password=wallet.rpc_password,
                    client=self._rpc_client,
                )
            )
        return checks

    async def _await_ready(self, nodes: Sequence[Node], wallets: Sequence[WalletDescriptor] = ()) -> None:
        await self._prober.await_ready(
            self._liveness_checks(nodes, wallets),
            timeout=self._settings.readiness_timeout_seconds,
        )

    # --- bootstrap -----------------------------------------------------

    async def _phase_step(self, phase: BootstrapPhase, operation: Callable[[], Awaitable[T]]) -> T:
        self._phase = phase
        logger.info("bootstrap phase", extra={"data": {"phase": int(phase), "name": phase.name.lower()}})
        try:
            return await operation()
        except Exception as exc:
            raise BootstrapError(phase, exc) from exc

    async def _bootstrap(self) -> None:
        self._transition(EnvironmentState.BOOTSTRAPPING)
        await self._phase_step(BootstrapPhase.SEED_FUNDING, self._seed_funding)
        await self._phase_step(BootstrapPhase.ALIAS_FUNDING, self._alias_funding)
        await self._phase_step(BootstrapPhase.COLLATERAL_FUNDING, self._collateral_funding)
        await self._phase_step(BootstrapPhase.FRAGMENT_FUNDING, self._fragment_funding)
        await self._phase_step(BootstrapPhase.CONFIRMATION, self._confirmation)
        keys = await self._phase_step(BootstrapPhase.KEY_GENERATION, self._generate_keys)
        outputs = await self._phase_step(BootstrapPhase.OUTPUT_DISCOVERY, self._discover_outputs)
        self._registrations = await self._phase_step(
            BootstrapPhase.REGISTRATION,
            lambda: self._register(keys, outputs),
        )

        deadline = self._settings.command_deadline_seconds
        try:
            async with asyncio.timeout(deadline):
                await self._phase_step(BootstrapPhase.CONFIGURATION, self._distribute_configs)
                await self._phase_step(BootstrapPhase.CONTROLLED_RESTART, self._controlled_restart)
                self._transition(EnvironmentState.ACTIVATING)
                await self._phase_step(BootstrapPhase.ACTIVATION, self._activate)
        except TimeoutError as exc:
            phase = self._phase or BootstrapPhase.CONFIGURATION
            raise BootstrapError(
                phase,
                DeadlineExceededError(f"configuration, restart and activation did not finish within {deadline}s"),
            ) from exc

    async def _block_rpc(self, node: Node, args: str) -> str:
        return await self._runner.run(self._commands.block_rpc, node.name, args)

    async def _block_rpc_batch(self, node: Node, commands: Sequence[str]) -> str:
        return await self._runner.run(self._commands.block_rpc_batch, node.name, list(commands))

    async def _seed_funding(self) -> None:
        activator = self._config.activator
        identity = _alias(activator)
        output = await self._block_rpc_batch(
            activator,
            [f"importprivkey {identity.private_key} coin", f"setgenerate true {SEED_BLOCKS}"],
        )
        if not output.strip():
            raise CommandError(f"generating the first {SEED_BLOCKS} blocks returned no output")
        logger.debug("seed funding", extra={"data": {"output": output.strip()}})

    async def _alias_funding(self) -> None:
        commands = []
        for node in self._config.topology.service_nodes:
            commands.append(f"importprivkey {_alias(node).private_key} {node.short_name}")
        await self._block_rpc_batch(self._config.activator, commands)

    async def _collateral_funding(self) -> None:
        commands = []
        for node in self._config.topology.service_nodes:
            commands.append(f"sendtoaddress {_alias(node).address} {COLLATERAL_AMOUNT}")
        await self._block_rpc_batch(self._config.activator, commands)

    async def _fragment_funding(self) -> None:
        activator = self._config.activator
        command = f"sendtoaddress {_alias(activator).address} {FRAGMENT_AMOUNT}"
        await self._block_rpc_batch(activator, [command] * FRAGMENT_COUNT)

    async def _confirmation(self) -> None:
        await self._block_rpc(self._config.activator, f"setgenerate true {CONFIRMATION_BLOCKS}")

    async def _generate_keys(self) -> list[str]:
        keys: list[str] = []
        for node in self._config.topology.service_nodes:
            key = (await self._block_rpc(node, "servicenode genkey")).strip()
            if not key:
                raise ParseError(f"servicenode genkey returned an empty key on {node.name}")
            keys.append(key)
        return keys

    async def _discover_outputs(self) -> list[CollateralOutput]:
        raw = await self._block_rpc(self._config.activator, "servicenode outputs")
        outputs = parse_collateral_outputs(raw)
        expected = len(self._config.topology.service_nodes)
        if len(outputs) != expected:
            raise ParseError(f"expected {expected} collateral outputs, found {len(outputs)}")
        return outputs

    async def _register(
        self,
        keys: Sequence[str],
        outputs: Sequence[CollateralOutput],
    ) -> list[ServiceNodeRegistration]:
        return pair_registrations(
            self._config.topology.service_nodes,
            keys,
            outputs,
            host_ip=self._emitter.host_ip,
        )

    async def _upload(self, node: Node, dest_path: str, files: Mapping[str, str]) -> None:
        archive = create_tar({name: content.encode() for name, content in files.items()})
        await self._lifecycle.copy_archive(self._sandbox_id(node), dest_path, archive)
        logger.debug("uploaded config", extra={"data": {"node": node.name, "dest": dest_path, "files": list(files)}})

    async def _distribute_configs(self) -> None:
        nodes = self._config.nodes
        activator = self._config.activator
        registry = self._emitter.service_node_registry(self._registrations)
        bridge = self._emitter.bridge_config(self._config.wallets)

        await self._upload(activator, NODE_TESTNET_DIR, {"servicenode.conf": registry})
        await self._upload(activator, NODE_CONFIG_DIR, {"blocknetdx.conf": self._emitter.node_config(activator, nodes)})
        service_nodes = self._config.topology.service_nodes
        for node, registration in zip(service_nodes, self._registrations, strict=True):
            node_config = self._emitter.node_config(node, nodes, service_node_key=registration.key)
            await self._upload(node, NODE_CONFIG_DIR, {"blocknetdx.conf": node_config})
            await self._upload(node, NODE_DATA_DIR, {"xbridge.conf": bridge, "servicenode.conf": registry})

    async def _restart_role(self, role: str) -> None:
        report = await self._lifecycle.restart_all_matching(
            self._config.container_filter(role),
            timeout=self._cleanup_deadline,
        )
        if not report.ok:
            logger.warning(
                "some sandboxes failed to restart",
                extra={"data": {"role": role, "failures": [name for name, _ in report.failures]}},
            )

    async def _controlled_restart(self) -> None:
        activator = self._config.activator
        await self._lifecycle.stop(self._sandbox_id(activator))
        await self._restart_role(SERVICE_NODE_ROLE)
        await self._restart_role(ACTIVATOR_ROLE)
        self._transition(EnvironmentState.AWAITING_RESTART_READINESS)
        logger.info("waiting for nodes and wallets to be ready")
        await self._await_ready((*self._config.nodes, *self._config.wallet_nodes), self._config.byo_wallets)

    async def _activate(self) -> None:
        activator = self._config.activator
        await self._runner.run(self._commands.start_all_service_nodes, activator.name)
        await self._sleep(self._settings.activation_settle_seconds)
        # restarting the activator triggers staking
        await self._restart_role(ACTIVATOR_ROLE)
        logger.info("waiting for activator to be ready")
        await self._await_ready((activator,))
        await self._sleep(self._settings.activation_resettle_seconds)
        await self._runner.run(self._commands.start_all_service_nodes, activator.name)


__all__ = [
    "BootstrapPhase",
    "COLLATERAL_AMOUNT",
    "CONFIRMATION_BLOCKS",
    "CollateralOutput",
    "EnvironmentState",
    "EnvironmentSummary",
    "FRAGMENT_AMOUNT",
    "FRAGMENT_COUNT",
    "SEED_BLOCKS",
    "TestEnvironment",
    "pair_registrations",
    "parse_collateral_outputs",
]
