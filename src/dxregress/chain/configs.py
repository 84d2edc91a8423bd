"""Text renderers for node, registry, bridge and image configuration."""

from __future__ import annotations

import os
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Final

from dxregress.domain.topology import NODE_DEBUGGER_PORT, NODE_PORT, NODE_RPC_PORT, Node
from dxregress.domain.wallets import WalletDescriptor, wallet_tickers

NODE_CONFIG_DIR: Final[str] = "/opt/blockchain/config/"
NODE_DATA_DIR: Final[str] = "/opt/blockchain/dxregress/"
NODE_TESTNET_DIR: Final[str] = "/opt/blockchain/dxregress/testnet4/"

NODE_RPC_USER: Final[str] = "localenv"
NODE_RPC_PASSWORD: Final[str] = "test"  # noqa: S105

_NODE_BASE = f"""datadir=/opt/blockchain/dxregress
testnet=1
dbcache=256
maxmempool=512

port={NODE_PORT}
rpcport={NODE_RPC_PORT}

listen=1
server=1
logtimestamps=1
logips=1

rpcuser={NODE_RPC_USER}
rpcpassword={NODE_RPC_PASSWORD}
rpcallowip=0.0.0.0/0
rpctimeout=15
rpcclienttimeout=15

whitelist=0.0.0.0/0
"""

_BRIDGE_MAIN = """[Main]
ExchangeWallets={wallets}
FullLog=true
LogPath=/var/log/xbridge.log
ExchangeTax=300

[RPC]
Enable=false
UserName=
Password=
UseSSL=false
Port=9898

"""

_DOCKERFILE = """FROM ubuntu:trusty

ARG cores={cores}
ENV ecores=$cores

RUN apt update \\
  && apt install -y --no-install-recommends \\
     software-properties-common ca-certificates wget curl git python vim \\
  && add-apt-repository ppa:bitcoin/bitcoin \\
  && apt update \\
  && apt install -y --no-install-recommends \\
     build-essential libtool autotools-dev bsdmainutils \\
     libevent-dev autoconf automake pkg-config libssl-dev \\
     libboost-system-dev libboost-filesystem-dev libboost-chrono-dev \\
     libboost-program-options-dev libboost-test-dev libboost-thread-dev \\
     libdb4.8-dev libdb4.8++-dev libgmp-dev libminiupnpc-dev libzmq3-dev \\
  && apt-get clean && rm -rf /var/lib/apt/lists/* /tmp/* /var/tmp/*

COPY . /opt/blocknetdx/BlockDX/

RUN mkdir -p {config_dir} \\
  && mkdir -p {testnet_dir} \\
  && ln -s {config_dir} /root/.blocknetdx \\
  && if [ -f /opt/blocknetdx/BlockDX/wallet.dat ]; then \\
       cp /opt/blocknetdx/BlockDX/wallet.dat {testnet_dir}wallet.dat; fi

RUN cd /opt/blocknetdx/BlockDX \\
  && chmod +x ./autogen.sh \\
  && ./autogen.sh \\
  && ./configure --without-gui --enable-debug --enable-tests=0 \\
  && make clean \\
  && make -j$ecores \\
  && make install \\
  && rm -rf /opt/blocknetdx/

COPY blocknetdx.conf {config_dir}blocknetdx.conf

WORKDIR /opt/blockchain/
VOLUME ["/opt/blockchain/config", "/opt/blockchain/dxregress"]

# Testnet Port, RPC, GDB Remote Debug
EXPOSE {port} {rpc_port} {debugger_port}

CMD ["blocknetdxd", "-daemon=0", "-testnet=1", "-conf=/root/.blocknetdx/blocknetdx.conf"]
"""


@dataclass(frozen=True, slots=True)
class ServiceNodeRegistration:
    """One line of the service node registry."""

    alias: str
    address: str
    key: str
    collateral_txid: str
    collateral_index: int

    def render(self) -> str:
        return f"{self.alias} {self.address} {self.key} {self.collateral_txid} {self.collateral_index}"


class ConfigEmitter:
    """Renders configuration text from topology and discovered values."""

    def __init__(self, host_ip: str) -> None:
        self._host_ip = host_ip

    @property
    def host_ip(self) -> str:
        return self._host_ip

    def node_config(self, node: Node | None, nodes: Sequence[Node], *, service_node_key: str | None = None) -> str:
        """Return ``blocknetdx.conf`` for ``node``.

        Every other node in ``nodes`` gets a ``connect`` entry. With
        ``node=None`` (the host-side summary) every node is listed. A service
        node key turns on the service node settings; otherwise staking is on.
        """

        current = node.node_id if node is not None else None
        lines = [_NODE_BASE]
        for other in nodes:
            if other.node_id == current:
                continue
            lines.append(f"connect={other.address(self._host_ip)}\n")
        if service_node_key:
            if node is None:
                raise ValueError("a service node key requires a node")
            lines.append(
                "\nstaking=0\n"
                "enableexchange=1\n"
                "servicenode=1\n"
                f"servicenodeaddr={node.address(self._host_ip)}\n"
                f"servicenodeprivkey={service_node_key}\n"
            )
        else:
            lines.append("staking=1\n")
        return "".join(lines)

    def summary_config(self, nodes: Sequence[Node]) -> str:
        return self.node_config(None, nodes)

    def service_node_registry(self, registrations: Sequence[ServiceNodeRegistration]) -> str:
        return "".join(f"{registration.render()}\n" for registration in registrations)

    def bridge_config(self, wallets: Sequence[WalletDescriptor]) -> str:
        sections = [_BRIDGE_MAIN.format(wallets=",".join(wallet_tickers(wallets)))]
        for wallet in wallets:
            sections.append(self._wallet_section(wallet) + "\n\n")
        return "".join(sections)

    @staticmethod
    def _wallet_section(wallet: WalletDescriptor) -> str:
        profile = wallet.profile
        bridge = profile.bridge
        entries = [
            f"[{wallet.ticker}]",
            f"Title={profile.title}",
            f"Address={wallet.address}",
            f"Ip={wallet.ip}",
            f"Port={wallet.rpc_port}",
            f"Username={wallet.rpc_user}",
            f"Password={wallet.rpc_password}",
            f"AddressPrefix={bridge.address_prefix}",
            f"ScriptPrefix={bridge.script_prefix}",
            f"SecretPrefix={bridge.secret_prefix}",
            f"COIN={bridge.coin}",
            "MinimumAmount=0",
            f"TxVersion={bridge.tx_version}",
            "DustAmount=0",
            f"CreateTxMethod={bridge.create_tx_method}",
            f"MinTxFee={bridge.min_tx_fee}",
            f"BlockTime={bridge.block_time}",
            f"GetNewKeySupported={str(bridge.get_new_key_supported).lower()}",
            f"ImportWithNoScanSupported={str(bridge.import_with_no_scan_supported).lower()}",
            f"FeePerByte={bridge.fee_per_byte}",
            "Confirmations=0",
        ]
        return "\n".join(entries)

    def dockerfile(self, *, cores: int | None = None) -> str:
        return _DOCKERFILE.format(
            cores=cores or os.cpu_count() or 1,
            config_dir=NODE_CONFIG_DIR,
            testnet_dir=NODE_TESTNET_DIR,
            port=NODE_PORT,
            rpc_port=NODE_RPC_PORT,
            debugger_port=NODE_DEBUGGER_PORT,
        )


__all__ = [
    "ConfigEmitter",
    "NODE_CONFIG_DIR",
    "NODE_DATA_DIR",
    "NODE_RPC_PASSWORD",
    "NODE_RPC_USER",
    "NODE_TESTNET_DIR",
    "ServiceNodeRegistration",
]
