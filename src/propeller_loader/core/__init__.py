"""
Core module for Propeller Loader.

This module provides the single source of truth for:
- Error kinds (errors.py)
- Firmware images and packs (firmware.py)
- Devices (device.py)
- Loader parameters and change events (parameters.py)
- Result objects (results.py)

Discovery (discovery.py) and the update controller (update.py) sit on top of
the port and protocol layers and are imported from their modules directly.
"""

from .errors import (
    PropellerLoaderError,
    TransportError,
    Timeout,
    ProtocolError,
    ChecksumError,
    NotAPropeller,
    InvalidFirmware,
    Cancelled,
)
from .firmware import Firmware, FirmwarePack, load_firmware_file
from .device import Device, DeviceStatus, get_version_text
from .parameters import LoaderParameters, Property, PropertyChangeEvent
from .results import DeviceResult, UpdateReport

__all__ = [
    # Errors
    "PropellerLoaderError",
    "TransportError",
    "Timeout",
    "ProtocolError",
    "ChecksumError",
    "NotAPropeller",
    "InvalidFirmware",
    "Cancelled",
    # Firmware
    "Firmware",
    "FirmwarePack",
    "load_firmware_file",
    # Devices
    "Device",
    "DeviceStatus",
    "get_version_text",
    # Parameters
    "LoaderParameters",
    "Property",
    "PropertyChangeEvent",
    # Results
    "DeviceResult",
    "UpdateReport",
]
