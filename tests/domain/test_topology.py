from __future__ import annotations

import re
from pathlib import Path

import pytest

from dxregress.domain.topology import (
    ACTIVATOR_IDENTITY,
    AliasIdentity,
    EnvironmentConfig,
    Node,
    PortBinding,
    Topology,
    build_topology,
    container_filter,
    default_nodes,
    node_for_wallet,
)
from dxregress.domain.wallets import WalletDescriptor, WalletKind
from dxregress.errors import ValidationError

PREFIX = "dxregress-localenv-"


def test_default_nodes_layout() -> None:
    activator, sn1, sn2 = default_nodes(PREFIX)

    assert (activator.node_id, activator.name, activator.is_service_node) == (0, f"{PREFIX}activator", False)
    assert activator.alias == ACTIVATOR_IDENTITY
    assert [sn1.short_name, sn2.short_name] == ["sn1", "sn2"]
    assert sn1.is_service_node and sn2.is_service_node
    assert sn1.ports == (
        PortBinding(41478, 41476),
        PortBinding(41428, 41419),
        PortBinding(41488, 41475),
    )
    assert sn2.address("10.0.0.5") == "10.0.0.5:41479"


def test_topology_exposes_activator_and_service_nodes_in_order() -> None:
    topology = build_topology(default_nodes(PREFIX))

    assert topology.activator.short_name == "activator"
    assert [node.short_name for node in topology.service_nodes] == ["sn1", "sn2"]
    assert topology.node_for_id(2).short_name == "sn2"
    with pytest.raises(KeyError):
        topology.node_for_id(99)


def test_topology_rejects_duplicate_ids() -> None:
    activator, sn1, _ = default_nodes(PREFIX)
    clash = Node(node_id=1, short_name="sn9", name=f"{PREFIX}sn9", port=1, rpc_port=2, alias=sn1.alias)

    with pytest.raises(ValidationError, match="unique"):
        Topology(nodes=(activator, sn1, clash))


def test_topology_requires_exactly_one_activator() -> None:
    _, sn1, sn2 = default_nodes(PREFIX)

    with pytest.raises(ValidationError, match="exactly one activator"):
        Topology(nodes=(sn1, sn2))


def test_topology_rejects_service_node_without_alias() -> None:
    activator, *_ = default_nodes(PREFIX)
    bare = Node(node_id=5, short_name="sn5", name=f"{PREFIX}sn5", port=1, rpc_port=2, is_service_node=True)

    with pytest.raises(ValidationError, match="alias"):
        Topology(nodes=(activator, bare))


def test_topology_rejects_service_node_activator() -> None:
    activator = Node(
        node_id=0,
        short_name="activator",
        name=f"{PREFIX}activator",
        port=1,
        rpc_port=2,
        is_service_node=True,
        alias=AliasIdentity("addr", "key"),
    )

    with pytest.raises(ValidationError, match="cannot be a service node"):
        Topology(nodes=(activator,))


@pytest.mark.parametrize(
    ("role", "name", "matches"),
    [
        ("", f"/{PREFIX}activator", True),
        ("", f"/{PREFIX}SYS", True),
        ("sn", f"/{PREFIX}sn1", True),
        ("sn", f"/{PREFIX}activator", False),
        ("act", f"/{PREFIX}activator", True),
        ("", "/other-activator", False),
        ("", f"/{PREFIX}", False),
    ],
)
def test_container_filter(role: str, name: str, matches: bool) -> None:
    assert bool(re.search(container_filter(PREFIX, role), name)) is matches


def test_node_for_wallet_uses_port_as_id_and_virtual_name_for_byo() -> None:
    sandboxed = WalletDescriptor(WalletKind.SYS, "addr", "10.0.0.5", "user", "pass")
    byo = WalletDescriptor(WalletKind.BTC, "addr", "10.0.0.9", "user", "pass", bring_own=True)

    node = node_for_wallet(sandboxed, PREFIX)
    assert (node.node_id, node.name, node.cli) == (8369, f"{PREFIX}SYS", "syscoin-cli")
    assert node.image == "blocknetdx/syscoin2:2.1.6-snap500644"
    assert node.ports == (PortBinding(8369, 8369), PortBinding(8370, 8370))

    assert node_for_wallet(byo, PREFIX).name == "Virtual-BTC"


def test_environment_config_splits_wallets(tmp_path: Path) -> None:
    sandboxed = WalletDescriptor(WalletKind.LTC, "addr", "10.0.0.5", "user", "pass")
    byo = WalletDescriptor(WalletKind.BTC, "addr", "10.0.0.9", "user", "pass", bring_own=True)
    config = EnvironmentConfig(
        config_path=tmp_path,
        container_prefix=PREFIX,
        default_image="blocknetdx/dxregress:localenv",
        topology=build_topology(default_nodes(PREFIX)),
        wallets=(sandboxed, byo),
    )

    assert [node.short_name for node in config.wallet_nodes] == ["LTC"]
    assert config.byo_wallets == (byo,)
    assert config.summary_config_file == tmp_path / "blocknetdx.conf"
    assert config.container_filter("sn") == rf"^/{re.escape(PREFIX)}sn[^\s]+$"


def test_container_filter_escapes_prefix() -> None:
    pattern = container_filter("dx.env+", "sn")

    assert re.search(pattern, "/dx.env+sn1")
    assert not re.search(pattern, "/dxXenvvsn1")
