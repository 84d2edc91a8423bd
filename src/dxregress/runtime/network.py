"""Host address discovery."""

from __future__ import annotations

import logging
import socket

logger = logging.getLogger(__name__)

_PROBE_ADDRESS = ("8.8.8.8", 80)
_FALLBACK_IP = "127.0.0.1"


def resolve_local_ip(override: str | None = None) -> str:
    """Return the host address nodes use to reach each other's published ports.

    Opening a UDP socket sends nothing; it only makes the kernel pick the
    outbound interface.
    """

    if override:
        return override
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
            probe.connect(_PROBE_ADDRESS)
            address = probe.getsockname()[0]
    except OSError as exc:
        logger.warning(
            "could not determine local ip, falling back to loopback",
            extra={"data": {"error": str(exc), "fallback": _FALLBACK_IP}},
        )
        return _FALLBACK_IP
    return str(address)


__all__ = ["resolve_local_ip"]
