"""
Loader base class and progress listener.

A loader owns one port for the duration of a call: detect() and upload()
open the port, drive the chip's boot protocol and close it again on every
path.
"""

import logging
from typing import Optional

from propeller_loader.config import LoaderConfig
from propeller_loader.core.errors import TransportError
from propeller_loader.port.base import ComPort

logger = logging.getLogger(__name__)

DOWNLOAD_RUN_RAM = 0
DOWNLOAD_RUN_FLASH = 1


class PropellerLoaderListener:
    """
    Receives upload milestones.

    Every hook is a no-op here; subclasses override what they need.
    """

    def buffer_upload(self, type: int, image: bytes, text: str) -> None:
        """An image of the given type is about to be sent."""

    def verify_ram(self) -> None:
        """Waiting for the RAM checksum acknowledgement."""

    def eeprom_write(self) -> None:
        """Waiting for the EEPROM/flash programming acknowledgement."""

    def eeprom_verify(self) -> None:
        """Waiting for the EEPROM verification acknowledgement."""

    def upload_progress(self, sent: int, total: int) -> None:
        """Bytes of the image accepted so far."""


class PropellerLoader:
    """Common state for the P1 and P2 loaders."""

    chip_version = 0

    def __init__(
        self,
        port: ComPort,
        listener: Optional[PropellerLoaderListener] = None,
        config: Optional[LoaderConfig] = None,
    ):
        self.port = port
        self.listener = listener or PropellerLoaderListener()
        self.config = config or LoaderConfig()

    def set_listener(self, listener: Optional[PropellerLoaderListener]) -> None:
        self.listener = listener or PropellerLoaderListener()

    @property
    def port_name(self) -> str:
        return self.port.name

    def detect(self) -> int:
        """
        Open the port and run the chip handshake.

        Returns:
            Version code reported by the chip, 0 if nothing answered
        """
        raise NotImplementedError

    def upload(self, image: bytes, write_flash: bool = False) -> None:
        """
        Open the port, handshake and load an image.

        Args:
            image: Raw binary image
            write_flash: Also program non-volatile memory (EEPROM/flash)

        Raises:
            NotAPropeller: If no chip answered the handshake
            ChecksumError: If the chip rejected the image
            Timeout: If an acknowledgement did not arrive
            TransportError: On port I/O failure
        """
        raise NotImplementedError

    def _close_quietly(self) -> None:
        try:
            self.port.close()
        except TransportError as e:
            logger.debug(f"Close failed on {self.port.description}: {e}")

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.port!r})"
