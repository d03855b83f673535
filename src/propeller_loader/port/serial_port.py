"""
Serial Port Transport

Handles low-level serial communication with Propeller boards attached to
a local USB/serial adapter.

This module provides:
- Serial port open/close and line configuration
- DTR/RTS reset pulse
- Single-byte reads with timeout
- Serial port enumeration
"""

import logging
import sys
import time
from typing import List, Optional

try:
    import serial
    import serial.tools.list_ports
except ImportError:
    raise ImportError("PySerial required: pip install pyserial")

from propeller_loader.core.errors import TransportError
from propeller_loader.port.base import DATABITS_8, PARITY_NONE, STOPBITS_1

logger = logging.getLogger(__name__)

_STOPBITS = {
    1: serial.STOPBITS_ONE,
    2: serial.STOPBITS_TWO,
}


def list_port_names() -> List[str]:
    """Return the device names of all serial ports known to the OS."""
    return sorted(port.device for port in serial.tools.list_ports.comports())


class SerialComPort:
    """
    Local serial transport.

    Example:
        port = SerialComPort("/dev/ttyUSB0")
        port.open()
        port.set_params(115200)
        port.hw_reset(90)
        port.write_bytes(b"\\xF9")
        value = port.read_byte(110)
        port.close()
    """

    def __init__(self, port_name: str):
        """
        Initialize transport.

        Args:
            port_name: Serial port (e.g., "/dev/ttyUSB0", "COM3")
        """
        self.port_name = port_name
        self.ser: Optional[serial.Serial] = None
        self._timeout: Optional[float] = None

    @property
    def name(self) -> str:
        return self.port_name

    @property
    def description(self) -> str:
        return self.port_name

    @property
    def is_open(self) -> bool:
        return bool(self.ser and self.ser.is_open)

    def open(self) -> None:
        """
        Open the serial port.

        Raises:
            TransportError: If port cannot be opened
        """
        try:
            self.ser = serial.Serial()
            self.ser.port = self.port_name
            self.ser.timeout = 0
            self._timeout = 0
            self.ser.open()
            logger.debug(f"Opened {self.port_name}")
        except (serial.SerialException, OSError) as e:
            self.ser = None
            raise TransportError(f"Cannot open port {self.port_name}: {e}", e) from e

    def close(self) -> None:
        """Close serial port."""
        if self.ser and self.ser.is_open:
            try:
                self.ser.close()
            except (serial.SerialException, OSError) as e:
                raise TransportError(f"Cannot close port {self.port_name}: {e}", e) from e
            finally:
                self.ser = None
            logger.debug(f"Closed {self.port_name}")

    def _require_open(self) -> "serial.Serial":
        if not self.ser or not self.ser.is_open:
            raise TransportError(f"Serial port {self.port_name} not open")
        return self.ser

    def set_params(
        self,
        baud: int,
        data_bits: int = DATABITS_8,
        stop_bits: int = STOPBITS_1,
        parity: str = PARITY_NONE,
    ) -> None:
        """
        Configure baud rate and framing.

        DTR/RTS are left low on Windows, where a default-on line state
        interferes with the reset pulse. Other platforms keep them high.
        """
        ser = self._require_open()
        line_state = sys.platform != "win32"
        try:
            ser.baudrate = baud
            ser.bytesize = data_bits
            ser.stopbits = _STOPBITS.get(stop_bits, serial.STOPBITS_ONE)
            ser.parity = parity
            ser.dtr = line_state
            ser.rts = line_state
            logger.debug(f"{self.port_name}: {baud} {data_bits}{parity}{stop_bits}")
        except (serial.SerialException, ValueError, OSError) as e:
            raise TransportError(f"Cannot configure {self.port_name}: {e}", e) from e

    def hw_reset(self, delay_ms: int) -> None:
        """
        Pulse DTR and RTS to reset the Propeller.

        Args:
            delay_ms: Time to wait after releasing reset, before purging
        """
        ser = self._require_open()
        try:
            ser.dtr = True
            ser.rts = True
            time.sleep(0.005)
            ser.dtr = False
            ser.rts = False
            time.sleep(delay_ms / 1000)
            ser.reset_input_buffer()
            ser.reset_output_buffer()
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Reset failed on {self.port_name}: {e}", e) from e

    def read_byte(self, timeout_ms: int) -> Optional[int]:
        """
        Read one byte.

        Args:
            timeout_ms: Maximum wait in milliseconds

        Returns:
            Unsigned byte value, or None on timeout

        Raises:
            TransportError: If read fails
        """
        ser = self._require_open()
        timeout = timeout_ms / 1000
        try:
            if timeout != self._timeout:
                ser.timeout = timeout
                self._timeout = timeout
            data = ser.read(1)
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Read error on {self.port_name}: {e}", e) from e

        if not data:
            return None
        return data[0]

    def write_bytes(self, data: bytes) -> None:
        """
        Send raw bytes.

        Raises:
            TransportError: If write fails
        """
        ser = self._require_open()
        try:
            written = ser.write(data)
            if written is not None and written != len(data):
                raise TransportError(
                    f"Incomplete write: sent {written}/{len(data)} bytes"
                )
            logger.debug(f">>> {data[:32].hex()}" + ("..." if len(data) > 32 else ""))
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Write error on {self.port_name}: {e}", e) from e

    def write_str(self, text: str) -> None:
        self.write_bytes(text.encode("ascii"))

    def set_rts(self, enable: bool) -> None:
        ser = self._require_open()
        try:
            ser.rts = enable
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Cannot set RTS on {self.port_name}: {e}", e) from e

    def set_dtr(self, enable: bool) -> None:
        ser = self._require_open()
        try:
            ser.dtr = enable
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Cannot set DTR on {self.port_name}: {e}", e) from e

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SerialComPort):
            return NotImplemented
        return self.port_name == other.port_name

    def __hash__(self) -> int:
        return hash(self.port_name)

    def __repr__(self) -> str:
        return f"SerialComPort({self.port_name!r})"
