"""
Firmware images and firmware packs.

A Firmware is a raw binary image plus the chip generation it targets. When
loaded from a raw file the generation is inferred from the image checksum:
P1 (Spin) images have a byte sum of 0x14 modulo 256, the two stack-marker
longs the boot ROM appends bringing it to zero.

A FirmwarePack bundles several firmwares with discovery preferences and is
stored as JSON:

    {
      "enableLocal": true,
      "enableNetwork": false,
      "firmwareList": [
        {"binaryImage": "<base64>", "binaryVersion": 1, "description": "..."}
      ]
    }
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Sequence, Union

from propeller_loader.core.errors import InvalidFirmware

logger = logging.getLogger(__name__)

P1_IMAGE_CHECKSUM = 0x14

BINARY_SUFFIXES = (".binary", ".bin")
PACK_SUFFIXES = (".json",)

VERSION_DESCRIPTIONS = {
    1: "P8X32A Firmware",
    2: "P2X8C4M64P Rev B/C Firmware",
}


def byte_sum(data: bytes) -> int:
    """Sum of all bytes modulo 256."""
    return sum(data) & 0xFF


def infer_binary_version(data: bytes) -> int:
    """Return 1 for a P1 image, 2 otherwise."""
    return 1 if byte_sum(data) == P1_IMAGE_CHECKSUM else 2


@dataclass(frozen=True)
class Firmware:
    binary_version: int
    binary_image: bytes
    description: str = ""

    def __post_init__(self):
        if not isinstance(self.binary_image, bytes):
            object.__setattr__(self, "binary_image", bytes(self.binary_image))

    @classmethod
    def from_bytes(cls, data: bytes, description: str = None) -> "Firmware":
        """
        Build a firmware from a raw image, inferring its chip version.

        Raises:
            InvalidFirmware: If the image is empty
        """
        if not data:
            raise InvalidFirmware("Firmware image is empty")
        version = infer_binary_version(data)
        if description is None:
            description = VERSION_DESCRIPTIONS[version]
        return cls(version, bytes(data), description)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Firmware":
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise InvalidFirmware(f"Cannot read {path}: {e}") from e
        firmware = cls.from_bytes(data)
        logger.debug(f"Loaded {path}: {len(data)} bytes, P{firmware.binary_version}")
        return firmware

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description or "",
            "binaryVersion": self.binary_version,
            "binaryImage": base64.b64encode(self.binary_image).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Firmware":
        if not isinstance(data, dict):
            raise InvalidFirmware("Firmware entry must be a JSON object")
        try:
            image = base64.b64decode(data.get("binaryImage") or "", validate=True)
            version = int(data.get("binaryVersion", 0))
        except (binascii.Error, TypeError, ValueError) as e:
            raise InvalidFirmware(f"Invalid firmware entry: {e}") from e
        return cls(version, image, data.get("description") or "")

    def __repr__(self) -> str:
        return (
            f"Firmware(binary_version={self.binary_version}, "
            f"description={self.description!r}, {len(self.binary_image)} bytes)"
        )


def _flag(data: Dict[str, Any], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise InvalidFirmware(f"'{key}' must be true or false, got {value!r}")
    return value


@dataclass
class FirmwarePack:
    firmware_list: List[Firmware] = field(default_factory=list)
    enable_local: bool = True
    enable_network: bool = False

    def add_firmware(self, firmware: Firmware) -> None:
        self.firmware_list.append(firmware)

    def remove_firmware(self, firmware: Firmware) -> None:
        self.firmware_list.remove(firmware)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enableLocal": self.enable_local,
            "enableNetwork": self.enable_network,
            "firmwareList": [fw.to_dict() for fw in self.firmware_list],
        }

    def to_json(self) -> str:
        """Pretty-printed JSON with sorted keys."""
        return json.dumps(self.to_dict(), indent=2, sort_keys=True)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FirmwarePack":
        if not isinstance(data, dict):
            raise InvalidFirmware("Firmware pack must be a JSON object")
        entries = data.get("firmwareList") or []
        if not isinstance(entries, list):
            raise InvalidFirmware("'firmwareList' must be a list")
        return cls(
            firmware_list=[Firmware.from_dict(entry) for entry in entries],
            enable_local=_flag(data, "enableLocal", True),
            enable_network=_flag(data, "enableNetwork", False),
        )

    @classmethod
    def from_json(cls, text: str) -> "FirmwarePack":
        try:
            data = json.loads(text)
        except ValueError as e:
            raise InvalidFirmware(f"Invalid firmware pack JSON: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "FirmwarePack":
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise InvalidFirmware(f"Cannot read {path}: {e}") from e
        return cls.from_json(text)

    def save(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.write_text(self.to_json() + "\n", encoding="utf-8")
        return path

    @classmethod
    def from_images(
        cls,
        paths: Sequence[Union[str, Path]],
        enable_local: bool = True,
        enable_network: bool = False,
    ) -> "FirmwarePack":
        """Build a pack from raw image files, one firmware per file."""
        pack = cls(enable_local=enable_local, enable_network=enable_network)
        for path in paths:
            pack.add_firmware(Firmware.from_file(path))
        return pack


def load_firmware_file(path: Union[str, Path]) -> Union[Firmware, FirmwarePack]:
    """
    Load a firmware selection by file type.

    .json files are firmware packs, .binary/.bin files are raw images.

    Raises:
        InvalidFirmware: For unknown file types or unreadable content
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix in PACK_SUFFIXES:
        return FirmwarePack.from_file(path)
    if suffix in BINARY_SUFFIXES:
        return Firmware.from_file(path)
    raise InvalidFirmware(f"Unsupported firmware file type: {path.name}")
