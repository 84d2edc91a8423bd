from __future__ import annotations

import pytest

from dxregress.domain.wallets import (
    WALLET_PROFILES,
    WalletDescriptor,
    WalletKind,
    parse_wallet_parameter,
    supports_wallet,
)
from dxregress.errors import ValidationError


def test_every_wallet_kind_has_a_profile() -> None:
    assert set(WALLET_PROFILES) == set(WalletKind)


def test_supports_wallet() -> None:
    assert supports_wallet("SYS")
    assert not supports_wallet("SEQ")
    assert not supports_wallet("sys")


def test_parse_sandboxed_wallet_strips_spaces() -> None:
    wallet = parse_wallet_parameter(" SYS, sysaddr , user, pass ", default_ip="10.0.0.5")

    assert wallet.kind is WalletKind.SYS
    assert (wallet.address, wallet.rpc_user, wallet.rpc_password) == ("sysaddr", "user", "pass")
    assert wallet.ip == "10.0.0.5"
    assert wallet.bring_own is False
    assert (wallet.port, wallet.rpc_port, wallet.cli) == (8369, 8370, "syscoin-cli")


def test_parse_wallet_with_ip_is_bring_your_own() -> None:
    wallet = parse_wallet_parameter("BTC,btcaddr,user,pass,192.168.1.20", default_ip="10.0.0.5")

    assert wallet.bring_own is True
    assert wallet.ip == "192.168.1.20"
    assert wallet.image is None


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ("SYS,addr,user", "incorrect wallet format"),
        ("SEQ,addr,user,pass", "unsupported wallet"),
        ("SYS,,user,pass", "address must not be empty"),
        ("SYS,addr,user,pass,300.1.1.1", "IPv4"),
        ("BTC,addr,user,pass", "cannot run in a sandbox"),
    ],
)
def test_parse_wallet_rejects_malformed_input(raw: str, message: str) -> None:
    with pytest.raises(ValidationError, match=message):
        parse_wallet_parameter(raw, default_ip="10.0.0.5")


def test_image_uses_version_then_default_then_latest() -> None:
    ltc = WalletDescriptor(WalletKind.LTC, "addr", "ip", "u", "p")
    mona = WalletDescriptor(WalletKind.MONA, "addr", "ip", "u", "p")
    pinned = WalletDescriptor(WalletKind.MONA, "addr", "ip", "u", "p", version="0.15")

    assert ltc.image == "blocknetdx/litecoin:latest"
    assert mona.image == "blocknetdx/monacoin:0.14.2-snap1193272"
    assert pinned.image == "blocknetdx/monacoin:0.15"


def test_port_overrides() -> None:
    wallet = WalletDescriptor(WalletKind.BLOCK, "addr", "ip", "u", "p", port_override=41478, rpc_port_override=41428)

    assert (wallet.port, wallet.rpc_port) == (41478, 41428)
