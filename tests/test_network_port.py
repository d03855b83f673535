"""Tests for the network bridge transport: telnet framing and HTTP control."""

import socket

import httpx
import pytest

from propeller_loader.config import LoaderConfig
from propeller_loader.core.errors import TransportError
from propeller_loader.port.network_port import NetworkComPort


class FakeSocket:
    """Stands in for the telnet data channel."""

    def __init__(self, chunks=None, buffered=b""):
        self.chunks = list(chunks or [])
        self.buffered = buffered
        self.sent = bytearray()
        self.blocking = True
        self.closed = False

    def setblocking(self, flag):
        self.blocking = flag

    def settimeout(self, timeout):
        pass

    def recv(self, size):
        if not self.blocking:
            if self.buffered:
                data, self.buffered = self.buffered, b""
                return data
            raise BlockingIOError()
        if not self.chunks:
            raise socket.timeout()
        return self.chunks.pop(0)

    def sendall(self, data):
        self.sent += data

    def close(self):
        self.closed = True


def make_port(handler=None, sock=None, reset_pin="12") -> NetworkComPort:
    port = NetworkComPort("wx-1", "192.168.1.40", "18:fe:34:00:00:01", reset_pin)
    port.sock = sock or FakeSocket()
    if handler is None:
        handler = lambda request: httpx.Response(200)  # noqa: E731
    port._http = httpx.Client(base_url=port.base_url, transport=httpx.MockTransport(handler))
    return port


class TestTelnetDecode:
    def test_plain_bytes(self):
        port = make_port()
        port._decode(b"Prop_Ver G\r")
        assert bytes(port._rx) == b"Prop_Ver G\r"

    def test_escaped_ff(self):
        port = make_port()
        port._decode(b"\x01\xff\xff\x02")
        assert bytes(port._rx) == b"\x01\xff\x02"

    def test_option_negotiation_dropped(self):
        port = make_port()
        port._decode(b"\xff\xfb\x01A\xff\xfd\x03B")
        assert bytes(port._rx) == b"AB"

    def test_subnegotiation_dropped(self):
        port = make_port()
        port._decode(b"A\xff\xfa\x2c\x01\x00\x00\xff\xf0B")
        assert bytes(port._rx) == b"AB"

    def test_split_sequence_resumes(self):
        port = make_port()
        port._decode(b"A\xff")
        assert bytes(port._rx) == b"A"
        port._decode(b"\xfb\x01B")
        assert bytes(port._rx) == b"AB"


class TestDataChannel:
    def test_write_escapes_ff(self):
        sock = FakeSocket()
        port = make_port(sock=sock)
        port.write_bytes(b"\xf9\xff\xfe")
        assert bytes(sock.sent) == b"\xf9\xff\xff\xfe"

    def test_read_byte_decodes(self):
        sock = FakeSocket(chunks=[b"\xff\xff\x2e"])
        port = make_port(sock=sock)
        assert port.read_byte(50) == 0xFF
        assert port.read_byte(50) == 0x2E
        assert port.read_byte(10) is None

    def test_connection_closed_by_bridge(self):
        port = make_port(sock=FakeSocket(chunks=[b""]))
        with pytest.raises(TransportError, match="closed"):
            port.read_byte(50)

    def test_not_open(self):
        port = NetworkComPort("wx-1", "192.168.1.40")
        assert not port.is_open
        with pytest.raises(TransportError):
            port.write_str("> Prop_Chk")
        with pytest.raises(TransportError):
            port.read_byte(10)

    def test_open_unreachable(self, monkeypatch):
        def refuse(address, timeout=None):
            raise ConnectionRefusedError("refused")

        monkeypatch.setattr(socket, "create_connection", refuse)
        port = NetworkComPort("wx-1", "192.168.1.40", config=LoaderConfig(connect_timeout_ms=10))
        with pytest.raises(TransportError, match="Cannot connect"):
            port.open()
        assert not port.is_open

    def test_close_releases_both_channels(self):
        sock = FakeSocket()
        port = make_port(sock=sock)
        port.close()
        assert sock.closed
        assert not port.is_open
        assert port._http is None


class TestHttpControl:
    def test_set_params_posts_baud(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200)

        make_port(handler).set_params(2000000)
        assert requests[0].method == "POST"
        assert requests[0].url.path == "/wx/setting"
        assert dict(requests[0].url.params) == {"name": "baud-rate", "value": "2000000"}

    def test_hw_reset_posts_pin_and_purges(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200)

        sock = FakeSocket(buffered=b"stale")
        port = make_port(handler, sock=sock)
        port._rx += b"old"
        port.hw_reset(0)

        assert requests[0].url.path == "/propeller/reset"
        assert requests[0].url.params["reset-pin"] == "12"
        assert sock.buffered == b""
        assert sock.blocking
        assert not port._rx

    def test_hw_reset_without_pin(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200)

        make_port(handler, reset_pin=None).hw_reset(0)
        assert "reset-pin" not in requests[0].url.params

    def test_http_error_is_transport_error(self):
        port = make_port(lambda request: httpx.Response(500))
        with pytest.raises(TransportError, match="HTTP 500"):
            port.set_params(115200)

    def test_request_error_is_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(TransportError, match="failed"):
            make_port(handler).hw_reset(0)


def test_identity_by_address_and_mac():
    a = NetworkComPort("wx-1", "192.168.1.40", "aa")
    b = NetworkComPort("renamed", "192.168.1.40", "aa")
    assert a == b
    assert hash(a) == hash(b)
    assert a.description == "wx-1 (192.168.1.40)"
