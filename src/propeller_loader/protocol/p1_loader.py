"""
P1 (P8X32A) Boot Loader Protocol

The P1 boot ROM listens on its serial pins after reset and speaks a bit-level
protocol timed against a calibration pulse:

1. Host sends 0xF9 (calibration), then 250 bytes each carrying one bit of an
   8-bit LFSR sequence seeded with 'P' (0xFE = 0, 0xFF = 1).
2. Host sends 258 x 0xF9 to clock back 250 response bits (the continuation
   of the same LFSR sequence) and 8 chip version bits, LSB first.
3. Host sends a command long, the image length in longs, then the image
   longs. Longs are encoded 3 bits per byte, 11 bytes per long.
4. Host clocks acknowledgement bits with 0xF9: 0 = OK, 1 = error. One bit
   after the RAM checksum, two more (program, verify) for EEPROM commands.

Image byte sum must be 0x14 (mod 256); with the two stack-marker longs the
ROM appends in RAM it comes to zero.
"""

import logging
import time
from typing import Iterator, Optional

from propeller_loader.core.errors import (
    ChecksumError,
    InvalidFirmware,
    NotAPropeller,
    PropellerLoaderError,
    ProtocolError,
    Timeout,
)
from propeller_loader.core.firmware import P1_IMAGE_CHECKSUM, byte_sum
from propeller_loader.protocol.base import (
    DOWNLOAD_RUN_FLASH,
    DOWNLOAD_RUN_RAM,
    PropellerLoader,
)

logger = logging.getLogger(__name__)

# Handshake
LFSR_SEED = ord("P")
LFSR_REQUEST_LEN = 250
LFSR_REPLY_LEN = 250
VERSION_BITS = 8
CALIBRATION = 0xF9

# Boot ROM commands
CMD_SHUTDOWN = 0
CMD_LOAD_RAM_RUN = 1
CMD_LOAD_EEPROM = 2
CMD_LOAD_EEPROM_RUN = 3

# Image layout
EEPROM_SIZE = 32768
MIN_IMAGE_SIZE = 16
CHECKSUM_OFFSET = 5
DBASE_OFFSET = 0x0A
STACK_MARKERS = bytes([0xFF, 0xFF, 0xF9, 0xFF, 0xFF, 0xFF, 0xF9, 0xFF])

ACK_CLOCK_MS = 25
PROGRESS_CHUNK_LONGS = 256


def lfsr(seed: int = LFSR_SEED) -> Iterator[int]:
    """Yield the P1 handshake bit sequence (8-bit LFSR, taps 7/5/4/1)."""
    while True:
        yield seed & 0x01
        seed = ((seed << 1) & 0xFE) | (((seed >> 7) ^ (seed >> 5) ^ (seed >> 4) ^ (seed >> 1)) & 1)


def build_handshake() -> bytes:
    """Calibration byte, 250 LFSR bits and 258 clock bytes, as one write."""
    bits = lfsr()
    request = bytes(next(bits) | 0xFE for _ in range(LFSR_REQUEST_LEN))
    clocks = bytes([CALIBRATION]) * (LFSR_REPLY_LEN + VERSION_BITS)
    return bytes([CALIBRATION]) + request + clocks


def expected_reply() -> list:
    """The 250 response bits a genuine P1 echoes back."""
    bits = lfsr()
    for _ in range(LFSR_REQUEST_LEN):
        next(bits)
    return [next(bits) for _ in range(LFSR_REPLY_LEN)]


def encode_long(value: int) -> bytes:
    """Encode a 32-bit value as 11 pulse-coded bytes, 3 bits per byte."""
    value &= 0xFFFFFFFF
    result = bytearray()
    for _ in range(10):
        result.append(0x92 | (value & 0x01) | ((value & 0x02) << 2) | ((value & 0x04) << 4))
        value >>= 3
    result.append(0xF2 | (value & 0x01) | ((value & 0x02) << 2))
    return bytes(result)


def apply_checksum(image: bytes) -> bytes:
    """Patch the header checksum byte so the image sums to 0x14."""
    data = bytearray(image)
    adjust = (byte_sum(data) - P1_IMAGE_CHECKSUM) & 0xFF
    data[CHECKSUM_OFFSET] = (data[CHECKSUM_OFFSET] - adjust) & 0xFF
    return bytes(data)


def bin_to_eeprom(image: bytes) -> bytes:
    """
    Expand a RAM image into a full 32 KiB EEPROM image.

    The stack markers go just below dbase, the rest is zero filled, so the
    whole EEPROM image sums to zero.
    """
    if len(image) > EEPROM_SIZE - len(STACK_MARKERS):
        raise InvalidFirmware(
            f"Code too long for EEPROM (max {EEPROM_SIZE - len(STACK_MARKERS)} bytes)"
        )
    dbase = image[DBASE_OFFSET] | (image[DBASE_OFFSET + 1] << 8)
    if dbase > EEPROM_SIZE or dbase - len(STACK_MARKERS) < len(image):
        raise InvalidFirmware(f"Invalid binary format (dbase 0x{dbase:04X})")
    data = bytearray(image)
    data.extend(bytes(dbase - len(STACK_MARKERS) - len(data)))
    data.extend(STACK_MARKERS)
    data.extend(bytes(EEPROM_SIZE - len(data)))
    return bytes(data)


def prepare_image(image: bytes, eeprom: bool = False) -> bytes:
    """
    Validate and frame an image for download.

    Args:
        image: Raw P1 binary image
        eeprom: Expand to a full EEPROM image

    Returns:
        Long-aligned image with the checksum byte fixed up
    """
    if len(image) < MIN_IMAGE_SIZE:
        raise InvalidFirmware(f"P1 image too short ({len(image)} bytes)")
    data = bytes(image) + bytes(-len(image) % 4)
    data = apply_checksum(data)
    if eeprom and len(data) < EEPROM_SIZE:
        data = bin_to_eeprom(data)
    return data


class P1Loader(PropellerLoader):
    """
    Loader for P8X32A chips.

    Example:
        loader = P1Loader(SerialComPort("/dev/ttyUSB0"))
        if loader.detect() == 1:
            loader.upload(firmware.binary_image, write_flash=True)
    """

    chip_version = 1

    def detect(self) -> int:
        """
        Return the chip version byte, or 0.

        Any failure inside the handshake counts as "no chip" and is only
        logged at debug level.
        """
        self.port.open()
        try:
            self.port.set_params(self.config.p1_baud)
            return self._hwfind()
        except PropellerLoaderError as e:
            logger.debug(f"P1 detection on {self.port.description} failed: {e}")
            return 0
        finally:
            self._close_quietly()

    def upload(self, image: bytes, write_flash: bool = False) -> None:
        prepared = prepare_image(image, eeprom=write_flash)

        self.port.open()
        try:
            self.port.set_params(self.config.p1_baud)
            version = self._hwfind()
            if version != self.chip_version:
                raise NotAPropeller(f"No propeller chip on port {self.port.name}")
            self._buffer_upload(
                DOWNLOAD_RUN_FLASH if write_flash else DOWNLOAD_RUN_RAM,
                prepared,
                "binary image",
            )
        finally:
            self._close_quietly()

    def _hwfind(self) -> int:
        self.port.hw_reset(self.config.p1_reset_delay_ms)

        self.port.write_bytes(build_handshake())

        for i, expected in enumerate(expected_reply()):
            # The first bit gets a single timeout window
            bit = self._read_bit(retries=0 if i == 0 else self.config.p1_bit_retries)
            if bit is None:
                logger.debug(f"{self.port.description}: no response at bit {i}")
                return 0
            if bit != expected:
                logger.debug(f"{self.port.description}: LFSR mismatch at bit {i}")
                self._drain()
                return 0

        version = 0
        for _ in range(VERSION_BITS):
            bit = self._read_bit(retries=self.config.p1_bit_retries)
            if bit is None:
                logger.debug(f"{self.port.description}: version bits missing")
                return 0
            version = (version >> 1) | (0x80 if bit else 0)

        logger.info(f"{self.port.description}: P1 handshake ok, version {version}")
        return version

    def _read_bit(self, retries: int) -> Optional[int]:
        for _ in range(retries + 1):
            value = self.port.read_byte(self.config.p1_bit_timeout_ms)
            if value is not None:
                return value & 0x01
        return None

    def _drain(self) -> None:
        for _ in range(self.config.p1_drain_count):
            if self.port.read_byte(self.config.p1_drain_timeout_ms) is None:
                break

    def _buffer_upload(self, type: int, image: bytes, text: str) -> None:
        self.listener.buffer_upload(type, image, text)

        command = CMD_LOAD_EEPROM_RUN if type == DOWNLOAD_RUN_FLASH else CMD_LOAD_RAM_RUN
        self.port.write_bytes(encode_long(command) + encode_long(len(image) // 4))

        total = len(image)
        step = PROGRESS_CHUNK_LONGS * 4
        for offset in range(0, total, step):
            chunk = image[offset:offset + step]
            self.port.write_bytes(
                b"".join(
                    encode_long(int.from_bytes(chunk[i:i + 4], "little"))
                    for i in range(0, len(chunk), 4)
                )
            )
            self.listener.upload_progress(min(offset + step, total), total)

        self.listener.verify_ram()
        if self._read_ack(self.config.verify_timeout_ms):
            raise ChecksumError("RAM checksum error")

        if type == DOWNLOAD_RUN_FLASH:
            self.listener.eeprom_write()
            if self._read_ack(self.config.eeprom_program_timeout_ms):
                raise ChecksumError("EEPROM programming error")
            self.listener.eeprom_verify()
            if self._read_ack(self.config.eeprom_verify_timeout_ms):
                raise ChecksumError("EEPROM verification error")

        logger.info(f"{self.port.description}: {total} bytes loaded")

    def _read_ack(self, timeout_ms: int) -> int:
        """Clock one acknowledgement bit out of the boot ROM."""
        deadline = time.monotonic() + timeout_ms / 1000
        while time.monotonic() < deadline:
            self.port.write_bytes(bytes([CALIBRATION]))
            value = self.port.read_byte(ACK_CLOCK_MS)
            if value is None:
                continue
            if value in (0xFE, 0xFF):
                return value & 0x01
            raise ProtocolError(f"Bad reply 0x{value:02X}")
        raise Timeout(f"No acknowledgement from {self.port.description}")
