"""
Network Bridge Transport

Talks to a Propeller behind a Wi-Fi/Ethernet serial bridge.

The bridge exposes two channels:
- HTTP control API (port 80): baud rate and reset pulse
    POST /wx/setting?name=baud-rate&value=<baud>
    POST /propeller/reset?reset-pin=<pin>
- Telnet serial data channel (port 23): raw bytes, with 0xFF escaped as
  0xFF 0xFF and option negotiation sequences interleaved by the bridge.
"""

import ipaddress
import logging
import socket
import time
from typing import Optional, Union

import httpx

from propeller_loader.config import LoaderConfig
from propeller_loader.core.errors import TransportError
from propeller_loader.port.base import DATABITS_8, PARITY_NONE, STOPBITS_1

logger = logging.getLogger(__name__)

# Telnet framing bytes
IAC = 0xFF
DONT = 0xFE
DO = 0xFD
WONT = 0xFC
WILL = 0xFB
SB = 0xFA
SE = 0xF0


class NetworkComPort:
    """
    Serial-over-IP transport for a discovery bridge.

    Example:
        port = NetworkComPort("wx-3d1a2b", "192.168.1.40", "18:fe:34:3d:1a:2b", "12")
        port.open()
        port.set_params(2000000)
        port.hw_reset(15)
        port.write_str("> Prop_Chk 0 0 0 0\\r")
        port.close()
    """

    def __init__(
        self,
        name: str,
        inet_addr: Union[str, ipaddress.IPv4Address],
        mac_addr: Optional[str] = None,
        reset_pin: Optional[str] = None,
        config: Optional[LoaderConfig] = None,
    ):
        self._name = name
        self.inet_addr = ipaddress.ip_address(str(inet_addr))
        self.mac_addr = mac_addr
        self.reset_pin = reset_pin
        self.config = config or LoaderConfig()

        self.sock: Optional[socket.socket] = None
        self._http: Optional[httpx.Client] = None
        self._rx = bytearray()
        self._pending = b""
        self._rts = False
        self._dtr = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return f"{self._name} ({self.inet_addr})"

    @property
    def is_open(self) -> bool:
        return self.sock is not None

    @property
    def base_url(self) -> str:
        return f"http://{self.inet_addr}:{self.config.http_port}"

    def open(self) -> None:
        """
        Connect the telnet data channel and the HTTP control client.

        Raises:
            TransportError: If the bridge is unreachable
        """
        address = (str(self.inet_addr), self.config.telnet_port)
        try:
            sock = socket.create_connection(address, timeout=self.config.connect_timeout_ms / 1000)
        except OSError as e:
            raise TransportError(f"Cannot connect to {self.description}: {e}", e) from e

        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        self.sock = sock
        self._rx.clear()
        self._pending = b""
        self._http = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(
                self.config.response_timeout_ms / 1000,
                connect=self.config.connect_timeout_ms / 1000,
            ),
        )
        logger.debug(f"Opened {self.description}")

    def close(self) -> None:
        """Close both channels."""
        sock, self.sock = self.sock, None
        http, self._http = self._http, None
        try:
            if http is not None:
                http.close()
            if sock is not None:
                sock.close()
                logger.debug(f"Closed {self.description}")
        except OSError as e:
            raise TransportError(f"Cannot close {self.description}: {e}", e) from e

    def _require_open(self) -> socket.socket:
        if self.sock is None:
            raise TransportError(f"Network port {self.description} not open")
        return self.sock

    def _control(self, path: str, **params) -> None:
        """POST to the bridge's HTTP control API."""
        self._require_open()
        try:
            response = self._http.post(path, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"HTTP {e.response.status_code} from {self.description} on {path}", e
            ) from e
        except httpx.RequestError as e:
            raise TransportError(f"Control request to {self.description} failed: {e}", e) from e

    def set_params(
        self,
        baud: int,
        data_bits: int = DATABITS_8,
        stop_bits: int = STOPBITS_1,
        parity: str = PARITY_NONE,
    ) -> None:
        """Set the bridge's serial baud rate. The bridge is fixed at 8N1."""
        if (data_bits, stop_bits, parity) != (DATABITS_8, STOPBITS_1, PARITY_NONE):
            logger.warning(
                f"{self.description}: framing {data_bits}{parity}{stop_bits} not supported, using 8N1"
            )
        self._control("/wx/setting", name="baud-rate", value=str(baud))

    def hw_reset(self, delay_ms: int) -> None:
        """Ask the bridge to pulse the Propeller reset pin, then purge input."""
        params = {}
        if self.reset_pin:
            params["reset-pin"] = self.reset_pin
        self._control("/propeller/reset", **params)
        time.sleep(delay_ms / 1000)
        self._purge()

    def _purge(self) -> None:
        sock = self._require_open()
        self._rx.clear()
        self._pending = b""
        sock.setblocking(False)
        try:
            while True:
                chunk = sock.recv(4096)
                if not chunk:
                    break
        except (BlockingIOError, InterruptedError):
            pass
        except OSError as e:
            raise TransportError(f"Purge failed on {self.description}: {e}", e) from e
        finally:
            sock.setblocking(True)

    def _decode(self, chunk: bytes) -> None:
        """Strip telnet framing from received bytes into the rx buffer."""
        data = self._pending + chunk
        self._pending = b""
        i = 0
        while i < len(data):
            b = data[i]
            if b != IAC:
                self._rx.append(b)
                i += 1
                continue
            if i + 1 >= len(data):
                self._pending = data[i:]
                break
            cmd = data[i + 1]
            if cmd == IAC:
                self._rx.append(IAC)
                i += 2
            elif cmd in (DO, DONT, WILL, WONT):
                if i + 2 >= len(data):
                    self._pending = data[i:]
                    break
                i += 3
            elif cmd == SB:
                end = data.find(bytes([IAC, SE]), i + 2)
                if end < 0:
                    self._pending = data[i:]
                    break
                i = end + 2
            else:
                i += 2

    def read_byte(self, timeout_ms: int) -> Optional[int]:
        """Read one byte from the data channel; None on timeout."""
        sock = self._require_open()
        deadline = time.monotonic() + timeout_ms / 1000
        while not self._rx:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            sock.settimeout(remaining)
            try:
                chunk = sock.recv(4096)
            except socket.timeout:
                return None
            except OSError as e:
                raise TransportError(f"Read error on {self.description}: {e}", e) from e
            if not chunk:
                raise TransportError(f"Connection to {self.description} closed by bridge")
            logger.debug(f"<<< {chunk[:32].hex()}")
            self._decode(chunk)
        return self._rx.pop(0)

    def write_bytes(self, data: bytes) -> None:
        sock = self._require_open()
        escaped = bytes(data).replace(b"\xff", b"\xff\xff")
        try:
            sock.settimeout(self.config.response_timeout_ms / 1000)
            sock.sendall(escaped)
            logger.debug(f">>> {data[:32].hex()}" + ("..." if len(data) > 32 else ""))
        except OSError as e:
            raise TransportError(f"Write error on {self.description}: {e}", e) from e

    def write_str(self, text: str) -> None:
        self.write_bytes(text.encode("ascii"))

    def set_rts(self, enable: bool) -> None:
        # The bridge drives reset itself; line states are only tracked.
        self._rts = enable

    def set_dtr(self, enable: bool) -> None:
        self._dtr = enable

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NetworkComPort):
            return NotImplemented
        return (self.inet_addr, self.mac_addr) == (other.inet_addr, other.mac_addr)

    def __hash__(self) -> int:
        return hash((self.inet_addr, self.mac_addr))

    def __repr__(self) -> str:
        return f"NetworkComPort({self._name!r}, {str(self.inet_addr)!r}, {self.mac_addr!r})"
