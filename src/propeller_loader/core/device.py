"""
Device model.

A Device is an addressable Propeller found by discovery, either behind a
local serial port or behind a network bridge. Identity is the location
only: two Device objects built for the same serial port (or the same
IP/MAC pair) compare equal whatever their name, version or UI state.
"""

import ipaddress
from dataclasses import dataclass, field
from enum import Enum
from functools import total_ordering
from typing import Optional, Tuple, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class DeviceStatus(Enum):
    """Outcome of the last update attempt."""
    NONE = "none"
    OK = "ok"
    ERROR = "error"


@total_ordering
@dataclass(eq=False)
class Device:
    """
    Attributes:
        name: Chip version text (e.g. "P8X32A") or bridge name
        version: 1 or 2; 0 when unidentified
        serial_port: Local port name, for serial devices
        inet_addr: Bridge IP address, for network devices
        mac_addr: Bridge MAC address, for network devices
        reset_pin: Bridge reset-pin setting, passed through to the bridge
        selected: UI selection flag
        status: Result of the last update
    """
    name: str
    version: int
    serial_port: Optional[str] = None
    inet_addr: Optional[IPAddress] = None
    mac_addr: Optional[str] = None
    reset_pin: Optional[str] = None
    selected: bool = False
    status: DeviceStatus = field(default=DeviceStatus.NONE)

    def __post_init__(self):
        if self.inet_addr is not None and not isinstance(
            self.inet_addr, (ipaddress.IPv4Address, ipaddress.IPv6Address)
        ):
            self.inet_addr = ipaddress.ip_address(str(self.inet_addr))

    @classmethod
    def network(
        cls,
        name: str,
        version: int,
        inet_addr: Union[str, IPAddress],
        mac_addr: Optional[str],
        reset_pin: Optional[str] = None,
    ) -> "Device":
        return cls(name, version, inet_addr=inet_addr, mac_addr=mac_addr, reset_pin=reset_pin)

    @property
    def is_serial(self) -> bool:
        return bool(self.serial_port)

    @property
    def location(self) -> Tuple[Optional[str], Optional[IPAddress], Optional[str]]:
        """Identity key: (serial port, ip, mac)."""
        return (self.serial_port, self.inet_addr, self.mac_addr)

    @property
    def port_description(self) -> str:
        if self.serial_port is not None:
            return self.serial_port
        return str(self.inet_addr)

    def clear_status(self) -> None:
        self.status = DeviceStatus.NONE

    def _sort_key(self):
        if self.serial_port is not None:
            return (0, self.serial_port, b"")
        packed = self.inet_addr.packed if self.inet_addr is not None else b""
        return (1, "", packed)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Device):
            return NotImplemented
        return self.location == other.location

    def __hash__(self) -> int:
        return hash(self.location)

    def __lt__(self, other: "Device") -> bool:
        if not isinstance(other, Device):
            return NotImplemented
        return self._sort_key() < other._sort_key()


def get_version_text(version: int) -> Optional[str]:
    """
    Map a detection result to a chip name.

    Args:
        version: 1 for P1, the P2 revision letter code, 0 for nothing found

    Returns:
        Chip name, or None when nothing was found
    """
    if version == 0:
        return None
    if version == 1:
        return "P8X32A"
    if version == ord("G"):
        return "P2X8C4M64P Rev B/C"
    if 0 < version < 0x110000 and chr(version).isalnum():
        return f"Unknown version '{chr(version)}'"
    return f"Unknown version {version}"
