"""Port capability set shared by the serial and network transports."""

from __future__ import annotations

from typing import Optional, Protocol

DATABITS_8 = 8
STOPBITS_1 = 1
PARITY_NONE = "N"


class ComPort(Protocol):
    """
    Byte-oriented transport to a Propeller.

    Every transport failure raises TransportError. A read timeout is not a
    failure: read_byte() returns None.
    """

    @property
    def name(self) -> str:
        """Short name shown to the user."""

    @property
    def description(self) -> str:
        """Longer human-readable location."""

    @property
    def is_open(self) -> bool:
        """True while the transport is connected."""

    def open(self) -> None:
        ...

    def close(self) -> None:
        ...

    def set_params(
        self,
        baud: int,
        data_bits: int = DATABITS_8,
        stop_bits: int = STOPBITS_1,
        parity: str = PARITY_NONE,
    ) -> None:
        ...

    def hw_reset(self, delay_ms: int) -> None:
        """Pulse the reset line, wait delay_ms, then purge buffers."""

    def read_byte(self, timeout_ms: int) -> Optional[int]:
        """Return one unsigned byte, or None when nothing arrived in time."""

    def write_bytes(self, data: bytes) -> None:
        ...

    def write_str(self, text: str) -> None:
        ...

    def set_rts(self, enable: bool) -> None:
        ...

    def set_dtr(self, enable: bool) -> None:
        ...
