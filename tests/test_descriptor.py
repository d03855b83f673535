"""Tests for the discovery descriptor codec."""

import pytest

from propeller_loader.core.errors import ProtocolError
from propeller_loader.port.descriptor import DeviceDescriptor, parse_permissive_bool


@pytest.mark.parametrize("value", ["1", "active", "true", "enabled", True])
def test_true_spellings(value):
    assert parse_permissive_bool(value) is True


@pytest.mark.parametrize("value", ["0", "inactive", "false", "disabled", False])
def test_false_spellings(value):
    assert parse_permissive_bool(value) is False


@pytest.mark.parametrize("value", [None, "", "yes", "Enabled"])
def test_unknown_spellings(value):
    assert parse_permissive_bool(value) is None


class TestDescriptor:
    def test_full_reply(self):
        payload = (
            b'{"name": "wx-3d1a2b", "description": "Parallax WX", "reset pin": "12",'
            b' "rx pullup": "disabled", "mac address": "18:fe:34:3d:1a:2b", "firmware": "1.0"}'
        )
        descriptor = DeviceDescriptor.from_json(payload)
        assert descriptor.name == "wx-3d1a2b"
        assert descriptor.description == "Parallax WX"
        assert descriptor.reset_pin == "12"
        assert descriptor.rx_pullup is False
        assert descriptor.mac_address == "18:fe:34:3d:1a:2b"

    def test_numeric_reset_pin(self):
        descriptor = DeviceDescriptor.from_dict({"name": "wx", "mac address": "aa", "reset pin": 12})
        assert descriptor.reset_pin == "12"
        assert descriptor.rx_pullup is None

    def test_missing_mac_rejected(self):
        with pytest.raises(ProtocolError, match="mac address"):
            DeviceDescriptor.from_dict({"name": "wx"})

    @pytest.mark.parametrize("payload", [b"not json", b"\xff\xfe", b"[1, 2]"])
    def test_invalid_payload(self, payload):
        with pytest.raises(ProtocolError):
            DeviceDescriptor.from_json(payload)

    def test_to_dict(self):
        descriptor = DeviceDescriptor("wx", "Parallax WX", "12", True, "aa")
        assert descriptor.to_dict() == {
            "name": "wx",
            "description": "Parallax WX",
            "mac address": "aa",
            "reset pin": "12",
            "rx pullup": "enabled",
        }
        assert DeviceDescriptor.from_dict(descriptor.to_dict()) == descriptor
