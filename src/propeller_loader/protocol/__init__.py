"""Boot loader protocols - P1 LFSR handshake and P2 text monitor."""

from .base import (
    DOWNLOAD_RUN_FLASH,
    DOWNLOAD_RUN_RAM,
    PropellerLoader,
    PropellerLoaderListener,
)
from .p1_loader import P1Loader, encode_long, prepare_image as prepare_p1_image
from .p2_loader import P2Loader, P2_MAGIC, append_checksum, prepare_flash_image

__all__ = [
    # Base
    "DOWNLOAD_RUN_FLASH",
    "DOWNLOAD_RUN_RAM",
    "PropellerLoader",
    "PropellerLoaderListener",
    # P1
    "P1Loader",
    "encode_long",
    "prepare_p1_image",
    # P2
    "P2Loader",
    "P2_MAGIC",
    "append_checksum",
    "prepare_flash_image",
]
