"""Supported coin wallets and the descriptors built from CLI input."""

from __future__ import annotations

import ipaddress
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType
from typing import Final

from dxregress.errors import ValidationError

logger = logging.getLogger(__name__)

WALLET_PARAMETER_FORMAT: Final[str] = "TICKER,address,rpcuser,rpcpassword,rpc-wallet-ipv4address(optional)"


class WalletKind(StrEnum):
    BTC = "BTC"
    LTC = "LTC"
    SYS = "SYS"
    DASH = "DASH"
    DGB = "DGB"
    DYN = "DYN"
    DOGE = "DOGE"
    PIVX = "PIVX"
    VIA = "VIA"
    VTC = "VTC"
    MUE = "MUE"
    NMC = "NMC"
    QTUM = "QTUM"
    LBC = "LBC"
    MONA = "MONA"
    BLOCK = "BLOCK"
    FAIR = "FAIR"


@dataclass(frozen=True, slots=True)
class BridgeParams:
    """Per-coin parameters rendered into the XBridge wallet section."""

    address_prefix: int
    script_prefix: int
    secret_prefix: int
    min_tx_fee: int
    fee_per_byte: int
    block_time: int
    tx_version: int = 1
    get_new_key_supported: bool = False
    import_with_no_scan_supported: bool = True
    coin: int = 100_000_000
    create_tx_method: str = "BTC"


@dataclass(frozen=True, slots=True)
class WalletProfile:
    """Fixed metadata for a wallet kind."""

    title: str
    port: int | None
    rpc_port: int
    bridge: BridgeParams
    image_repository: str | None = None
    default_version: str | None = None
    cli: str | None = None


_PROFILES: dict[WalletKind, WalletProfile] = {
    WalletKind.BTC: WalletProfile(
        title="Bitcoin",
        port=8333,
        rpc_port=8332,
        bridge=BridgeParams(0, 5, 128, 27000, 105, 600, tx_version=2, import_with_no_scan_supported=False),
    ),
    WalletKind.LTC: WalletProfile(
        title="Litecoin",
        port=9333,
        rpc_port=9332,
        bridge=BridgeParams(48, 5, 176, 60000, 110, 60),
        image_repository="blocknetdx/litecoin",
        cli="litecoin-cli",
    ),
    WalletKind.SYS: WalletProfile(
        title="SysCoin2",
        port=8369,
        rpc_port=8370,
        bridge=BridgeParams(0, 5, 128, 60000, 100, 60, import_with_no_scan_supported=False),
        image_repository="blocknetdx/syscoin2",
        default_version="2.1.6-snap500644",
        cli="syscoin-cli",
    ),
    WalletKind.DASH: WalletProfile(
        title="Dash", port=None, rpc_port=9998, bridge=BridgeParams(76, 16, 204, 15000, 15, 150)
    ),
    WalletKind.DGB: WalletProfile(
        title="Digibyte", port=None, rpc_port=14022, bridge=BridgeParams(30, 5, 128, 100000, 100, 60)
    ),
    WalletKind.DYN: WalletProfile(
        title="Dynamic",
        port=None,
        rpc_port=31350,
        bridge=BridgeParams(30, 10, 140, 40000, 80, 128, import_with_no_scan_supported=False),
    ),
    WalletKind.DOGE: WalletProfile(
        title="Dogecoin",
        port=None,
        rpc_port=22555,
        bridge=BridgeParams(30, 22, 158, 100000000, 100000, 60),
    ),
    WalletKind.PIVX: WalletProfile(
        title="Pivx", port=None, rpc_port=51473, bridge=BridgeParams(30, 13, 212, 100000, 110, 60)
    ),
    WalletKind.VIA: WalletProfile(
        title="Viacoin",
        port=None,
        rpc_port=5222,
        bridge=BridgeParams(71, 33, 199, 60000, 110, 24, import_with_no_scan_supported=False),
    ),
    WalletKind.VTC: WalletProfile(
        title="Vertcoin",
        port=None,
        rpc_port=5888,
        bridge=BridgeParams(71, 5, 199, 100000, 200, 150, import_with_no_scan_supported=False),
    ),
    WalletKind.MUE: WalletProfile(
        title="MonetaryUnit", port=None, rpc_port=29683, bridge=BridgeParams(16, 76, 126, 100000, 300, 40)
    ),
    WalletKind.NMC: WalletProfile(
        title="Namecoin", port=None, rpc_port=8336, bridge=BridgeParams(52, 13, 180, 100000, 100, 600)
    ),
    WalletKind.QTUM: WalletProfile(
        title="Qtum", port=None, rpc_port=3889, bridge=BridgeParams(58, 50, 128, 20000, 20, 150)
    ),
    WalletKind.LBC: WalletProfile(
        title="LBRY Credits", port=None, rpc_port=9245, bridge=BridgeParams(85, 122, 28, 200000, 200, 150)
    ),
    WalletKind.MONA: WalletProfile(
        title="Monacoin",
        port=9401,
        rpc_port=9402,
        bridge=BridgeParams(50, 55, 176, 200000, 200, 90),
        image_repository="blocknetdx/monacoin",
        default_version="0.14.2-snap1193272",
        cli="monacoin-cli",
    ),
    WalletKind.BLOCK: WalletProfile(
        title="Blocknet",
        port=41412,
        rpc_port=41414,
        bridge=BridgeParams(26, 28, 154, 0, 20, 60, get_new_key_supported=True),
        image_repository="blocknetdx/servicenode",
        cli="blocknetdx-cli",
    ),
    WalletKind.FAIR: WalletProfile(
        title="Faircoin",
        port=None,
        rpc_port=40405,
        bridge=BridgeParams(95, 36, 223, 30000, 30, 210, get_new_key_supported=True),
    ),
}

WALLET_PROFILES: Final[Mapping[WalletKind, WalletProfile]] = MappingProxyType(_PROFILES)


def supports_wallet(ticker: str) -> bool:
    return ticker in WalletKind.__members__


@dataclass(frozen=True, slots=True)
class WalletDescriptor:
    """A coin wallet taking part in the environment."""

    kind: WalletKind
    address: str
    ip: str
    rpc_user: str
    rpc_password: str
    bring_own: bool = False
    version: str | None = None
    port_override: int | None = None
    rpc_port_override: int | None = None

    @property
    def profile(self) -> WalletProfile:
        return WALLET_PROFILES[self.kind]

    @property
    def ticker(self) -> str:
        return self.kind.value

    @property
    def port(self) -> int | None:
        return self.port_override if self.port_override is not None else self.profile.port

    @property
    def rpc_port(self) -> int:
        return self.rpc_port_override if self.rpc_port_override is not None else self.profile.rpc_port

    @property
    def cli(self) -> str | None:
        return self.profile.cli

    @property
    def image(self) -> str | None:
        """Return ``repository:tag`` for sandboxed wallets, ``None`` when no image is published."""

        repository = self.profile.image_repository
        if not repository:
            return None
        tag = self.version or self.profile.default_version or "latest"
        return f"{repository}:{tag}"

    def validate_sandboxed(self) -> None:
        if self.bring_own:
            return
        if self.image is None or self.port is None or self.cli is None:
            raise ValidationError(
                f"wallet {self.ticker} cannot run in a sandbox; supply its rpc ip to bring your own wallet"
            )


def parse_wallet_parameter(raw: str, *, default_ip: str) -> WalletDescriptor:
    """Parse ``TICKER,address,rpcuser,rpcpassword[,ipv4]`` into a descriptor.

    A well-formed trailing IPv4 address marks the wallet as bring-your-own: it
    is already running at that address and no sandbox is created for it.
    """

    fields = raw.replace(" ", "").split(",")
    if len(fields) < 4:
        raise ValidationError(f"incorrect wallet format {raw!r}, the correct format is: {WALLET_PARAMETER_FORMAT}")
    ticker, address, rpc_user, rpc_password = fields[:4]
    if not supports_wallet(ticker):
        raise ValidationError(f"unsupported wallet {ticker}")
    if not address:
        raise ValidationError(f"wallet {ticker} address must not be empty")

    ip = default_ip
    bring_own = False
    if len(fields) > 4 and fields[4]:
        try:
            ipaddress.IPv4Address(fields[4])
        except ValueError as exc:
            raise ValidationError(f"wallet {ticker} IPv4 is the wrong format: {fields[4]}") from exc
        ip = fields[4]
        bring_own = True

    wallet = WalletDescriptor(
        kind=WalletKind(ticker),
        address=address,
        ip=ip,
        rpc_user=rpc_user,
        rpc_password=rpc_password,
        bring_own=bring_own,
    )
    wallet.validate_sandboxed()
    logger.debug(
        "parsed wallet parameter",
        extra={"data": {"ticker": ticker, "ip": ip, "bring_own": bring_own}},
    )
    return wallet


def wallet_tickers(wallets: tuple[WalletDescriptor, ...] | list[WalletDescriptor]) -> list[str]:
    return [wallet.ticker for wallet in wallets]


__all__ = [
    "BridgeParams",
    "WALLET_PARAMETER_FORMAT",
    "WALLET_PROFILES",
    "WalletDescriptor",
    "WalletKind",
    "WalletProfile",
    "parse_wallet_parameter",
    "supports_wallet",
    "wallet_tickers",
]
