"""
Device descriptor codec.

Network bridges answer the UDP discovery datagram with a small JSON object:

    {"name": "wx-3d1a2b", "description": "Parallax WX", "reset pin": "12",
     "rx pullup": "disabled", "mac address": "18:fe:34:3d:1a:2b"}

Unknown keys are ignored. "rx pullup" accepts a permissive set of spellings.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from propeller_loader.core.errors import ProtocolError

logger = logging.getLogger(__name__)

TRUE_VALUES = ("1", "active", "true", "enabled")
FALSE_VALUES = ("0", "inactive", "false", "disabled")


def parse_permissive_bool(value: Any) -> Optional[bool]:
    """
    Decode a permissive boolean.

    Returns:
        True / False for recognised spellings, None for anything else
    """
    if isinstance(value, bool):
        return value
    if value is None:
        return None
    text = str(value)
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    return None


@dataclass(frozen=True)
class DeviceDescriptor:
    name: str
    description: str = ""
    reset_pin: Optional[str] = None
    rx_pullup: Optional[bool] = None
    mac_address: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "DeviceDescriptor":
        if not isinstance(data, dict):
            raise ProtocolError(f"Descriptor must be a JSON object, got {type(data).__name__}")

        mac = data.get("mac address")
        if not mac or not isinstance(mac, str):
            raise ProtocolError("Descriptor has no 'mac address'")

        reset_pin = data.get("reset pin")
        return cls(
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            reset_pin=None if reset_pin is None else str(reset_pin),
            rx_pullup=parse_permissive_bool(data.get("rx pullup")),
            mac_address=mac,
        )

    @classmethod
    def from_json(cls, payload: Union[str, bytes]) -> "DeviceDescriptor":
        """
        Parse a descriptor from a discovery reply body.

        Raises:
            ProtocolError: If the payload is not a valid descriptor
        """
        try:
            if isinstance(payload, bytes):
                payload = payload.decode("utf-8")
            data = json.loads(payload)
        except (UnicodeDecodeError, ValueError) as e:
            raise ProtocolError(f"Invalid descriptor JSON: {e}") from e
        return cls.from_dict(data)

    def to_dict(self) -> dict:
        data = {
            "name": self.name,
            "description": self.description,
            "mac address": self.mac_address,
        }
        if self.reset_pin is not None:
            data["reset pin"] = self.reset_pin
        if self.rx_pullup is not None:
            data["rx pullup"] = "enabled" if self.rx_pullup else "disabled"
        return data
