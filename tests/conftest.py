"""Shared test doubles: a scripted in-memory port and recording listeners."""

from typing import List, Optional, Tuple

import pytest

from propeller_loader.config import LoaderConfig
from propeller_loader.core.errors import TransportError
from propeller_loader.protocol.base import PropellerLoaderListener
from propeller_loader.protocol.p1_loader import expected_reply
from propeller_loader.protocol.p2_loader import PROP_CHK


class ScriptedPort:
    """
    In-memory ComPort.

    `script` is a list of (trigger, reply) pairs consumed in order: once the
    trigger bytes appear in what has been written, the reply is queued for
    read_byte(). hw_reset() drops anything still queued, like a real purge.
    """

    def __init__(
        self,
        name: str = "/dev/ttyTEST",
        script: Optional[List[Tuple[bytes, bytes]]] = None,
        fail_open: bool = False,
    ):
        self._name = name
        self.script = list(script or [])
        self.fail_open = fail_open
        self.written = bytearray()
        self.rx = bytearray()
        self._cursor = 0
        self._open = False
        self.opened = 0
        self.closed = 0
        self.params = []
        self.resets = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._name

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        if self.fail_open:
            raise TransportError(f"Cannot open port {self._name}: busy")
        self._open = True
        self.opened += 1

    def close(self) -> None:
        self._open = False
        self.closed += 1

    def set_params(self, baud, data_bits=8, stop_bits=1, parity="N") -> None:
        self.params.append(baud)

    def hw_reset(self, delay_ms: int) -> None:
        self.resets.append(delay_ms)
        self.rx.clear()

    def read_byte(self, timeout_ms: int) -> Optional[int]:
        if not self._open:
            raise TransportError("not open")
        if self.rx:
            return self.rx.pop(0)
        return None

    def write_bytes(self, data: bytes) -> None:
        if not self._open:
            raise TransportError("not open")
        self.written += data
        while self.script:
            trigger, reply = self.script[0]
            index = self.written.find(trigger, self._cursor)
            if index < 0:
                break
            self._cursor = index + len(trigger)
            self.script.pop(0)
            self.rx += reply

    def write_str(self, text: str) -> None:
        self.write_bytes(text.encode("ascii"))

    def set_rts(self, enable: bool) -> None:
        pass

    def set_dtr(self, enable: bool) -> None:
        pass

    @property
    def text(self) -> str:
        return self.written.decode("latin-1")


class RecordingListener(PropellerLoaderListener):
    """Remembers every loader milestone."""

    def __init__(self):
        self.events = []
        self.progress = []

    def buffer_upload(self, type, image, text):
        self.events.append(("buffer_upload", type, text))

    def verify_ram(self):
        self.events.append(("verify_ram",))

    def eeprom_write(self):
        self.events.append(("eeprom_write",))

    def eeprom_verify(self):
        self.events.append(("eeprom_verify",))

    def upload_progress(self, sent, total):
        self.progress.append((sent, total))


def p1_reply(version: int = 1) -> bytes:
    """What a genuine P1 clocks back: 250 LFSR bits then 8 version bits."""
    bits = expected_reply() + [(version >> i) & 1 for i in range(8)]
    return bytes(0xFE | bit for bit in bits)


def p2_reply(revision: str = "G") -> bytes:
    return f"\r\nProp_Ver {revision}\r\n".encode("ascii")


P2_CHECK = PROP_CHK.encode("ascii")


def make_p1_image(size: int = 32) -> bytes:
    """A minimal Spin image header whose byte sum is 0x14."""
    data = bytearray(size)
    data[0:4] = (80_000_000).to_bytes(4, "little")
    data[4] = 0x6F
    data[6:8] = (0x0010).to_bytes(2, "little")
    data[8:10] = (size).to_bytes(2, "little")
    data[10:12] = (size + 8).to_bytes(2, "little")
    data[12:14] = (size - 4).to_bytes(2, "little")
    data[16:size] = bytes(range(1, size - 15))
    data[5] = (0x14 - sum(data)) & 0xFF
    return bytes(data)


@pytest.fixture
def config() -> LoaderConfig:
    """Config with short acknowledgement budgets."""
    return LoaderConfig(
        verify_timeout_ms=50,
        eeprom_program_timeout_ms=50,
        eeprom_verify_timeout_ms=50,
        p1_bit_retries=2,
        p1_drain_count=5,
    )


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()
