"""Network connection check used by the remote-management fallback."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from loguru import logger

from armboot.core.command import run_cmd
from armboot.errors import ExternalToolFailure, NetworkUnavailable


class ConnectionType(str, Enum):
    ETHERNET = "ethernet"
    WIFI = "wifi"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class NetworkConnection:
    interface: str
    ip_address: str
    connection_type: ConnectionType = ConnectionType.UNKNOWN

    def url(self, port: int) -> str:
        return f"http://{self.ip_address}:{port}"


class NetworkConnector:
    """Finds an interface that already holds a global IPv4 address.

    Link bring-up itself (DHCP, wpa_supplicant) belongs to the host OS;
    this only reports whether the device is reachable and how.
    """

    def __init__(self, root: Path = Path("/"), ethernet_preferred: bool = True) -> None:
        self._root = root
        self._ethernet_preferred = ethernet_preferred

    def connect(self) -> NetworkConnection:
        """Return the preferred usable connection or raise NetworkUnavailable."""
        logger.info("Checking network connectivity")
        try:
            result = run_cmd(["ip", "-4", "-o", "addr", "show", "scope", "global"], operation="network")
        except ExternalToolFailure as e:
            raise NetworkUnavailable(f"cannot query interfaces: {e}", operation="network") from e

        connections = [
            NetworkConnection(iface, ip, self._connection_type(iface))
            for iface, ip in parse_ip_addr(result.stdout)
        ]
        if not connections:
            raise NetworkUnavailable("no interface has a global IPv4 address", operation="network")

        preferred = ConnectionType.ETHERNET if self._ethernet_preferred else ConnectionType.WIFI
        connections.sort(key=lambda c: (c.connection_type is not preferred, c.interface))
        conn = connections[0]
        logger.info("Network connected via {} ({}): {}", conn.interface, conn.connection_type.value, conn.ip_address)
        return conn

    def _connection_type(self, iface: str) -> ConnectionType:
        sys_net = self._root / "sys" / "class" / "net" / iface
        if (sys_net / "wireless").exists() or (sys_net / "phy80211").exists():
            return ConnectionType.WIFI
        if sys_net.exists() or iface.startswith(("eth", "en")):
            return ConnectionType.ETHERNET
        return ConnectionType.UNKNOWN


def parse_ip_addr(output: str) -> list[tuple[str, str]]:
    """``(interface, address)`` pairs from ``ip -4 -o addr`` output."""
    pairs: list[tuple[str, str]] = []
    for line in output.splitlines():
        fields = line.split()
        if len(fields) < 4 or "inet" not in fields:
            continue
        iface = fields[1].rstrip(":")
        idx = fields.index("inet")
        if idx + 1 >= len(fields) or iface == "lo":
            continue
        pairs.append((iface, fields[idx + 1].split("/")[0]))
    return pairs
