"""
P2 (P2X8C4M64P) Boot Loader Protocol

The P2 boot ROM runs a small text monitor on its serial pins after reset:

    host:   "> \\r> Prop_Chk 0 0 0 0\\r"
    chip:   "\\r\\nProp_Ver G\\r\\n"

Images are sent as base64 text after "> Prop_Txt 0 0 0 0", split into
64-character chunks each prefixed with "\\r> ", and terminated with " ?".
The image carries a trailing checksum long chosen so that all longs sum to
0x706F7250 ("Prop"). The chip answers '.' when the checksum matches.

Writing to flash prepends a flash sub-loader that copies the image to the
SPI flash after it has been loaded into hub RAM.
"""

import base64
import logging
from importlib import resources
from typing import Optional

from propeller_loader.config import LoaderConfig
from propeller_loader.core.errors import (
    ChecksumError,
    InvalidFirmware,
    NotAPropeller,
    Timeout,
)
from propeller_loader.port.base import ComPort
from propeller_loader.protocol.base import (
    DOWNLOAD_RUN_FLASH,
    DOWNLOAD_RUN_RAM,
    PropellerLoader,
    PropellerLoaderListener,
)

logger = logging.getLogger(__name__)

P2_MAGIC = 0x706F7250
WORD_MASK = 0xFFFFFFFF

PROP_CHK = "> \r> Prop_Chk 0 0 0 0\r"
PROP_VER = "Prop_Ver "
PROP_TXT = "> Prop_Txt 0 0 0 0"
PROP_HEX = "> Prop_Hex 0 0 0 0"
CHUNK_PREFIX = "\r> "
VERIFY_REQUEST = " ?"
ACK = ord(".")

BASE64_CHUNK = 64
BASE64_CHUNK_BYTES = 48
HEX_LINE_BYTES = 64

FLASH_LOADER_RESOURCE = "flash_loader.binary"
FLASH_LOADER_HEADER = 12


def word_sum(data: bytes) -> int:
    """Sum of little-endian longs, last long zero padded, modulo 2^32."""
    padded = bytes(data) + bytes(-len(data) % 4)
    total = 0
    for i in range(0, len(padded), 4):
        total += int.from_bytes(padded[i:i + 4], "little")
    return total & WORD_MASK


def append_checksum(image: bytes) -> bytes:
    """
    Pad the image to a long boundary and append the "Prop" checksum long.

    Returns:
        Image of (len + 7) & ~3 bytes whose longs sum to 0x706F7250
    """
    checksum = (P2_MAGIC - word_sum(image)) & WORD_MASK
    size = (len(image) + 7) & ~3
    return bytes(image).ljust(size - 4, b"\x00") + checksum.to_bytes(4, "little")


def prepare_flash_image(flash_loader: bytes, image: bytes) -> bytes:
    """
    Prepend the flash sub-loader and fix up its header.

    Bytes 8..11 receive the combined length. Bytes 4..7 receive the negated
    long sum, so the combined image sums to zero.
    """
    if len(flash_loader) < FLASH_LOADER_HEADER:
        raise InvalidFirmware(f"Flash loader too short ({len(flash_loader)} bytes)")
    loader = bytes(flash_loader) + bytes(-len(flash_loader) % 4)
    data = bytearray(loader + bytes(image).ljust((len(image) + 3) & ~3, b"\x00"))
    data[8:12] = len(data).to_bytes(4, "little")
    data[4:8] = bytes(4)
    data[4:8] = ((-word_sum(data)) & WORD_MASK).to_bytes(4, "little")
    return bytes(data)


def load_flash_loader(config: LoaderConfig) -> bytes:
    """
    Read the flash sub-loader blob.

    The LOADER_P2_FLASH_LOADER path wins over a blob shipped in the package.

    Raises:
        InvalidFirmware: If no blob is available
    """
    if config.flash_loader_path is not None:
        try:
            return config.flash_loader_path.read_bytes()
        except OSError as e:
            raise InvalidFirmware(f"Cannot read flash loader {config.flash_loader_path}: {e}") from e

    resource = resources.files("propeller_loader.protocol").joinpath(FLASH_LOADER_RESOURCE)
    if resource.is_file():
        return resource.read_bytes()
    raise InvalidFirmware(
        "P2 flash loader not available, set LOADER_P2_FLASH_LOADER to its path"
    )


class P2Loader(PropellerLoader):
    """
    Loader for P2X8C4M64P chips.

    Example:
        loader = P2Loader(SerialComPort("/dev/ttyUSB0"), listener)
        loader.upload(firmware.binary_image, write_flash=False)
    """

    chip_version = 2

    def __init__(
        self,
        port: ComPort,
        listener: Optional[PropellerLoaderListener] = None,
        config: Optional[LoaderConfig] = None,
        flash_loader: Optional[bytes] = None,
    ):
        super().__init__(port, listener, config)
        self._flash_loader = flash_loader
        self._pushback: Optional[int] = None

    @property
    def flash_loader(self) -> bytes:
        if self._flash_loader is None:
            self._flash_loader = load_flash_loader(self.config)
        return self._flash_loader

    def detect(self) -> int:
        """
        Return the revision letter code reported by Prop_Ver, or 0.

        Raises:
            TransportError: If the port cannot be used
        """
        self.port.open()
        try:
            self.port.set_params(self.config.p2_baud)
            return self._hwfind()
        finally:
            self._close_quietly()

    def upload(self, image: bytes, write_flash: bool = False) -> None:
        if not image:
            raise InvalidFirmware("Firmware image is empty")
        if write_flash:
            # Fail before touching the chip
            _ = self.flash_loader

        self.port.open()
        try:
            self.port.set_params(self.config.p2_baud)
            if self._hwfind() == 0:
                raise NotAPropeller(f"No propeller chip on port {self.port.name}")
            self._buffer_upload(
                DOWNLOAD_RUN_FLASH if write_flash else DOWNLOAD_RUN_RAM,
                bytes(image),
                "binary image",
            )
        finally:
            self._close_quietly()

    def _hwfind(self) -> int:
        self._pushback = None
        self.port.hw_reset(self.config.p2_reset_delay_ms)
        self.port.write_str(PROP_CHK)

        self._read_line()
        line = self._read_line()
        self._pushback = None
        if line.startswith(PROP_VER) and len(line) > len(PROP_VER):
            revision = line[len(PROP_VER)]
            logger.info(f"{self.port.description}: P2 handshake ok, revision {revision}")
            return ord(revision)
        logger.debug(f"{self.port.description}: unexpected reply {line!r}")
        return 0

    def _read_char(self) -> Optional[int]:
        if self._pushback is not None:
            value, self._pushback = self._pushback, None
            return value
        return self.port.read_byte(self.config.p2_line_timeout_ms)

    def _read_line(self) -> str:
        """
        Read up to CR, skipping LF. Returns what arrived before a timeout.

        The LF of a CRLF pair is consumed with its CR so it cannot be taken
        for the checksum reply later.
        """
        chars = []
        while True:
            value = self._read_char()
            if value is None:
                break
            if value == 0x0D:
                following = self._read_char()
                if following is not None and following != 0x0A:
                    self._pushback = following
                break
            if value == 0x0A:
                continue
            chars.append(chr(value))
        return "".join(chars)

    def _buffer_upload(self, type: int, image: bytes, text: str) -> None:
        self.listener.buffer_upload(type, image, text)

        if type == DOWNLOAD_RUN_FLASH:
            image = prepare_flash_image(self.flash_loader, image)

        if self.config.use_hex_upload:
            self._hex_upload(image)
        else:
            self._base64_upload(image)
        self._verify_ram()

        if type == DOWNLOAD_RUN_FLASH:
            # The sub-loader programs the flash on its own; nothing to wait for
            self.listener.eeprom_write()

    def _base64_upload(self, image: bytes) -> None:
        image = append_checksum(image)
        encoded = base64.b64encode(image).decode("ascii")
        total = len(image)

        self.port.write_str(PROP_TXT)
        sent = 0
        for offset in range(0, len(encoded), BASE64_CHUNK):
            self.port.write_str(CHUNK_PREFIX + encoded[offset:offset + BASE64_CHUNK])
            sent = min(sent + BASE64_CHUNK_BYTES, total)
            self.listener.upload_progress(sent, total)
        self.port.write_str(VERIFY_REQUEST)

    def _hex_upload(self, image: bytes) -> None:
        image = bytes(image) + bytes(-len(image) % 4)
        total = len(image)

        self.port.write_str(PROP_HEX)
        for offset in range(0, total, 4):
            if offset and offset % HEX_LINE_BYTES == 0:
                self.port.write_str("\r>")
                self.listener.upload_progress(offset, total)
            self.port.write_str("".join(f" {b:x}" for b in image[offset:offset + 4]))
        self.listener.upload_progress(total, total)

        checksum = (P2_MAGIC - word_sum(image)) & WORD_MASK
        trailer = "".join(f" {b:x}" for b in checksum.to_bytes(4, "little"))
        self.port.write_str(trailer + VERIFY_REQUEST)

    def _verify_ram(self) -> None:
        self.listener.verify_ram()
        value = self.port.read_byte(self.config.verify_timeout_ms)
        if value is None:
            raise Timeout(f"No checksum reply from {self.port.description}")
        if value != ACK:
            raise ChecksumError(f"Checksum error (reply 0x{value:02X})")
        logger.info(f"{self.port.description}: checksum ok")
