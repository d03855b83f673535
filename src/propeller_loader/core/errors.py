"""
Error kinds raised by ports, loaders, discovery and the update controller.

Discovery swallows NotAPropeller, TransportError and Timeout per port.
The update controller turns every PropellerLoaderError into a per-device
error status. Cancelled is a distinct outcome and not part of the error tree.
"""

from typing import Optional


class PropellerLoaderError(Exception):
    """Base error for propeller_loader."""


class TransportError(PropellerLoaderError):
    """Open/close/read/write failure on a serial or network port."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class Timeout(PropellerLoaderError):
    """An expected response did not arrive within its budget."""


class ProtocolError(PropellerLoaderError):
    """Framing or parse failure."""


class ChecksumError(PropellerLoaderError):
    """The device rejected the uploaded image."""


class NotAPropeller(PropellerLoaderError):
    """Detection did not identify a Propeller chip."""


class InvalidFirmware(PropellerLoaderError):
    """Firmware file is unreadable, empty or unfit for the target chip."""


class Cancelled(Exception):
    """The operation was cancelled by the caller."""
