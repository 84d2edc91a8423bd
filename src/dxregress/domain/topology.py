"""Static description of the nodes that make up a regression environment."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

from dxregress.domain.wallets import WalletDescriptor
from dxregress.errors import ValidationError

BLOCK_CLI: Final[str] = "blocknetdx-cli"
NODE_PORT: Final[int] = 41476
NODE_RPC_PORT: Final[int] = 41419
NODE_DEBUGGER_PORT: Final[int] = 41475
BYO_NAME_PREFIX: Final[str] = "Virtual-"

ACTIVATOR_ID: Final[int] = 0
ACTIVATOR_ROLE: Final[str] = "act"
SERVICE_NODE_ROLE: Final[str] = "sn"


@dataclass(frozen=True, slots=True)
class PortBinding:
    """Host port published for a container port (tcp, all interfaces)."""

    host_port: int
    container_port: int
    host_ip: str = "0.0.0.0"  # noqa: S104


@dataclass(frozen=True, slots=True)
class AliasIdentity:
    """Funded address and key backing a node's collateral."""

    address: str
    private_key: str


@dataclass(frozen=True, slots=True)
class Node:
    """A single provisioned blockchain process."""

    node_id: int
    short_name: str
    name: str
    port: int
    rpc_port: int
    cli: str = BLOCK_CLI
    debugger_port: int | None = None
    is_service_node: bool = False
    alias: AliasIdentity | None = None
    ports: tuple[PortBinding, ...] = field(default_factory=tuple)
    image: str | None = None

    def address(self, host_ip: str) -> str:
        return f"{host_ip}:{self.port}"


# Well-known regression keys; the activator's is imported into the activator
# wallet and mined into, the service node aliases receive the collateral.
ACTIVATOR_IDENTITY: Final[AliasIdentity] = AliasIdentity(
    address="y5zBd8oLQSnTjChTUCfRieTAp5Z31bRwEV",
    private_key="cQiWHyehhhsRFYadBpj5wQRU9HU23GtHSjyPY2hBLccHWeNq6iTY",
)
SN1_IDENTITY: Final[AliasIdentity] = AliasIdentity(
    address="y3DT9bZ69AjvdQFzYTCSpFgT9wJcRpHi7T",
    private_key="cRdLcWroNyJPJ1BH4Q24pamDQtE3JNdm7tGQoD6mm9brqpYuX1dC",
)
SN2_IDENTITY: Final[AliasIdentity] = AliasIdentity(
    address="yF2E6wPBc1YosrGUMhgoet5zPat1A4Z87d",
    private_key="cMn9aiQGBYqeRzRuTFAModv459UQNxGsXkgPSRQ1W7XwGdGCp1JB",
)


def container_name(prefix: str, short_name: str) -> str:
    return f"{prefix}{short_name}"


def container_filter(prefix: str, role: str = "") -> str:
    """Regex matching every container of the environment whose name starts with ``role``."""

    return rf"^/{re.escape(prefix + role)}[^\s]+$"


def port_bindings(
    port: int,
    rpc_port: int,
    debugger_port: int | None = None,
    *,
    container_port: int = NODE_PORT,
    container_rpc_port: int = NODE_RPC_PORT,
    container_debugger_port: int = NODE_DEBUGGER_PORT,
) -> tuple[PortBinding, ...]:
    bindings = [PortBinding(port, container_port), PortBinding(rpc_port, container_rpc_port)]
    if debugger_port is not None:
        bindings.append(PortBinding(debugger_port, container_debugger_port))
    return tuple(bindings)


def _block_node(
    prefix: str,
    node_id: int,
    short_name: str,
    ports: tuple[int, int, int],
    *,
    alias: AliasIdentity,
    is_service_node: bool,
) -> Node:
    port, rpc_port, debugger_port = ports
    return Node(
        node_id=node_id,
        short_name=short_name,
        name=container_name(prefix, short_name),
        port=port,
        rpc_port=rpc_port,
        debugger_port=debugger_port,
        is_service_node=is_service_node,
        alias=alias,
        ports=port_bindings(port, rpc_port, debugger_port),
    )


def default_nodes(prefix: str) -> tuple[Node, ...]:
    """Return the built-in activator + two service node layout."""

    return (
        _block_node(
            prefix,
            ACTIVATOR_ID,
            "activator",
            (41477, 41427, 41487),
            alias=ACTIVATOR_IDENTITY,
            is_service_node=False,
        ),
        _block_node(prefix, 1, "sn1", (41478, 41428, 41488), alias=SN1_IDENTITY, is_service_node=True),
        _block_node(prefix, 2, "sn2", (41479, 41429, 41489), alias=SN2_IDENTITY, is_service_node=True),
    )


def node_for_wallet(wallet: WalletDescriptor, prefix: str) -> Node:
    """Build the node a wallet runs as; bring-your-own wallets get a virtual name."""

    port = wallet.port or wallet.rpc_port
    name = f"{BYO_NAME_PREFIX}{wallet.ticker}" if wallet.bring_own else container_name(prefix, wallet.ticker)
    return Node(
        node_id=port,
        short_name=wallet.ticker,
        name=name,
        port=port,
        rpc_port=wallet.rpc_port,
        cli=wallet.cli or "",
        ports=port_bindings(port, wallet.rpc_port, container_port=port, container_rpc_port=wallet.rpc_port),
        image=wallet.image,
    )


@dataclass(frozen=True, slots=True)
class Topology:
    """Validated set of chain nodes with exactly one activator."""

    nodes: tuple[Node, ...]
    activator_id: int = ACTIVATOR_ID

    def __post_init__(self) -> None:
        ids = [node.node_id for node in self.nodes]
        if len(ids) != len(set(ids)):
            raise ValidationError(f"node ids must be unique: {ids}")
        names = [node.name for node in self.nodes]
        if len(names) != len(set(names)):
            raise ValidationError(f"node names must be unique: {names}")
        activators = [node for node in self.nodes if node.node_id == self.activator_id]
        if len(activators) != 1:
            raise ValidationError(f"topology requires exactly one activator with id {self.activator_id}")
        if activators[0].is_service_node:
            raise ValidationError("the activator cannot be a service node")
        if activators[0].alias is None:
            raise ValidationError("the activator requires a funding identity")
        for node in self.nodes:
            if node.is_service_node and node.alias is None:
                raise ValidationError(f"service node {node.short_name} requires an alias identity")

    @property
    def activator(self) -> Node:
        return self.node_for_id(self.activator_id)

    @property
    def service_nodes(self) -> tuple[Node, ...]:
        return tuple(node for node in self.nodes if node.is_service_node)

    def node_for_id(self, node_id: int) -> Node:
        for node in self.nodes:
            if node.node_id == node_id:
                return node
        raise KeyError(node_id)


@dataclass(frozen=True, slots=True)
class ImageBuildSpec:
    """Inputs for building the node image from a local codebase."""

    codebase: Path
    dockerfile_name: str = "Dockerfile-dxregress"
    wallet_data: bytes | None = None


@dataclass(frozen=True, slots=True)
class EnvironmentConfig:
    """Everything a single ``up``/``down`` run needs to know."""

    config_path: Path
    container_prefix: str
    default_image: str
    topology: Topology
    wallets: tuple[WalletDescriptor, ...] = ()
    build: ImageBuildSpec | None = None

    def container_filter(self, role: str = "") -> str:
        return container_filter(self.container_prefix, role)

    @property
    def activator(self) -> Node:
        return self.topology.activator

    @property
    def nodes(self) -> tuple[Node, ...]:
        return self.topology.nodes

    @property
    def wallet_nodes(self) -> tuple[Node, ...]:
        """Nodes for wallets that run in a sandbox."""

        return tuple(node_for_wallet(w, self.container_prefix) for w in self.wallets if not w.bring_own)

    @property
    def byo_wallets(self) -> tuple[WalletDescriptor, ...]:
        return tuple(w for w in self.wallets if w.bring_own)

    @property
    def summary_config_file(self) -> Path:
        return self.config_path / "blocknetdx.conf"


def build_topology(nodes: Sequence[Node]) -> Topology:
    return Topology(nodes=tuple(nodes))


__all__ = [
    "ACTIVATOR_ID",
    "ACTIVATOR_IDENTITY",
    "ACTIVATOR_ROLE",
    "AliasIdentity",
    "BLOCK_CLI",
    "EnvironmentConfig",
    "ImageBuildSpec",
    "Node",
    "PortBinding",
    "SERVICE_NODE_ROLE",
    "SN1_IDENTITY",
    "SN2_IDENTITY",
    "Topology",
    "build_topology",
    "container_filter",
    "container_name",
    "default_nodes",
    "node_for_wallet",
    "port_bindings",
]
