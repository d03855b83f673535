"""Tests for the update controller, with scripted ports standing in for hardware."""

import ipaddress
import threading

import pytest

from conftest import P2_CHECK, ScriptedPort, make_p1_image, p1_reply, p2_reply

from propeller_loader.core.device import Device, DeviceStatus
from propeller_loader.core.errors import Cancelled, InvalidFirmware
from propeller_loader.core.firmware import Firmware
from propeller_loader.core.parameters import LoaderParameters
from propeller_loader.core.update import (
    NO_DEVICES_MESSAGE,
    MonitorListener,
    UpdateController,
    UpdateMonitor,
    confirm_message,
)
from propeller_loader.port.network_port import NetworkComPort
from propeller_loader.port.serial_port import SerialComPort
from propeller_loader.protocol.p1_loader import build_handshake
from propeller_loader.protocol.p2_loader import VERIFY_REQUEST

HANDSHAKE = build_handshake()
P1_ACK = (b"\xF9", b"\xFE")
P2_ACK = (VERIFY_REQUEST.encode("ascii"), b".")


class RecordingMonitor(UpdateMonitor):
    def __init__(self):
        self.calls = []

    def begin_task(self, name, total):
        self.calls.append(("begin_task", name, total))

    def set_task_name(self, name):
        self.calls.append(("set_task_name", name))

    def sub_task(self, text):
        self.calls.append(("sub_task", text))

    def worked(self, amount=1):
        self.calls.append(("worked", amount))

    def device_done(self, device, result):
        self.calls.append(("device_done", device.name, result.ok))

    def done(self):
        self.calls.append(("done",))

    def texts(self, kind):
        return [call[1] for call in self.calls if call[0] == kind]


class FakeDiscover:
    def __init__(self, devices=None, cancelled=False):
        self.devices = devices or []
        self.cancelled = cancelled
        self.calls = []

    def find(self, local=True, network=False, callback=None, cancel=None):
        self.calls.append((local, network))
        if self.cancelled:
            raise Cancelled("Discovery cancelled")
        return list(self.devices)


class ScriptedController(UpdateController):
    """Hands out ScriptedPorts keyed by serial port name."""

    def __init__(self, *args, ports=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.ports = ports or {}

    def make_port(self, device):
        return self.ports[device.serial_port]


def p1_firmware() -> Firmware:
    return Firmware.from_bytes(make_p1_image(32), "Demo P1")


def p2_firmware() -> Firmware:
    return Firmware(2, b"\x10\x20\x30", "Demo P2")


def p1_device(name="/dev/ttyUSB0") -> Device:
    return Device("P8X32A", 1, serial_port=name)


def p2_device(name="/dev/ttyUSB1") -> Device:
    return Device("P2X8C4M64P Rev B/C", 2, serial_port=name)


@pytest.fixture
def parameters():
    return LoaderParameters()


class TestRun:
    def test_no_firmware(self, parameters, config):
        with pytest.raises(InvalidFirmware):
            UpdateController(parameters, config, discover=FakeDiscover()).run()

    def test_no_devices_is_a_warning(self, parameters, config):
        parameters.update_from(p1_firmware())
        report = UpdateController(parameters, config, discover=FakeDiscover()).run()
        assert report.ok
        assert report.warnings == [NO_DEVICES_MESSAGE]
        assert report.devices == []

    def test_discovers_when_device_list_empty(self, parameters, config):
        parameters.update_from(p1_firmware())
        parameters.enable_network = True
        port = ScriptedPort("/dev/ttyUSB0", script=[(HANDSHAKE, p1_reply()), P1_ACK])
        discover = FakeDiscover([p1_device()])

        report = ScriptedController(
            parameters, config, discover=discover, ports={"/dev/ttyUSB0": port}
        ).run(write_flash=False)

        assert discover.calls == [(True, True)]
        assert parameters.devices == [p1_device()]
        assert report.ok
        assert report.updated == 1
        assert report.target == "RAM"
        assert parameters.devices[0].status == DeviceStatus.OK

    def test_only_matching_versions_updated(self, parameters, config):
        parameters.update_from(p2_firmware())
        parameters.set_devices([p1_device(), p2_device()])
        p2 = ScriptedPort("/dev/ttyUSB1", script=[(P2_CHECK, p2_reply()), P2_ACK])

        report = ScriptedController(
            parameters, config, discover=FakeDiscover(), ports={"/dev/ttyUSB1": p2}
        ).run(write_flash=False)

        assert [result.port for result in report.devices] == ["/dev/ttyUSB1"]
        assert report.devices[0].version == 2
        assert report.devices[0].bytes_len == 3
        assert report.ok
        assert report.devices[0].ok
        statuses = {device.serial_port: device.status for device in parameters.devices}
        assert statuses == {"/dev/ttyUSB0": DeviceStatus.NONE, "/dev/ttyUSB1": DeviceStatus.OK}

    def test_unselected_devices_skipped(self, parameters, config):
        parameters.update_from(p1_firmware())
        first, second = p1_device("/dev/ttyUSB0"), p1_device("/dev/ttyUSB2")
        parameters.set_devices([first, second])
        parameters.update_all = False
        parameters.set_device_selection(second, True)
        port = ScriptedPort("/dev/ttyUSB2", script=[(HANDSHAKE, p1_reply()), P1_ACK])

        report = ScriptedController(
            parameters, config, discover=FakeDiscover(), ports={"/dev/ttyUSB2": port}
        ).run(write_flash=False)

        assert [result.port for result in report.devices] == ["/dev/ttyUSB2"]
        assert first.status == DeviceStatus.NONE

    def test_failure_does_not_stop_batch(self, parameters, config):
        parameters.update_from(p1_firmware())
        parameters.set_devices([p1_device("/dev/ttyUSB0"), p1_device("/dev/ttyUSB2")])
        ports = {
            "/dev/ttyUSB0": ScriptedPort("/dev/ttyUSB0"),
            "/dev/ttyUSB2": ScriptedPort("/dev/ttyUSB2", script=[(HANDSHAKE, p1_reply()), P1_ACK]),
        }
        report = ScriptedController(
            parameters, config, discover=FakeDiscover(), ports=ports
        ).run(write_flash=False)

        assert not report.ok
        assert [result.ok for result in report.devices] == [False, True]
        assert "No propeller chip" in report.devices[0].error
        assert report.errors == [f"/dev/ttyUSB0: {report.devices[0].error}"]
        statuses = [device.status for device in parameters.devices]
        assert statuses == [DeviceStatus.ERROR, DeviceStatus.OK]

    def test_previous_status_cleared(self, parameters, config):
        parameters.update_from(p1_firmware())
        device = p1_device()
        device.status = DeviceStatus.ERROR
        parameters.set_devices([device])
        port = ScriptedPort("/dev/ttyUSB0", script=[(HANDSHAKE, p1_reply()), P1_ACK])
        statuses = []

        class Monitor(UpdateMonitor):
            def begin_task(self, name, total):
                statuses.append(device.status)

        ScriptedController(
            parameters, config, monitor=Monitor(), discover=FakeDiscover(),
            ports={"/dev/ttyUSB0": port},
        ).run(write_flash=False)

        assert statuses == [DeviceStatus.NONE]
        assert device.status == DeviceStatus.OK

    def test_flash_by_default(self, parameters, config):
        parameters.update_from(p1_firmware())
        parameters.set_devices([p1_device()])
        port = ScriptedPort(
            "/dev/ttyUSB0", script=[(HANDSHAKE, p1_reply()), P1_ACK, P1_ACK, P1_ACK]
        )
        report = ScriptedController(
            parameters, config, discover=FakeDiscover(), ports={"/dev/ttyUSB0": port}
        ).run()
        assert report.ok
        assert report.target == "flash"


class TestConfirmAndCancel:
    def test_confirm_gets_device_count(self, parameters, config):
        parameters.update_from(p1_firmware())
        parameters.set_devices([p1_device()])
        port = ScriptedPort("/dev/ttyUSB0", script=[(HANDSHAKE, p1_reply()), P1_ACK])
        asked = []

        def confirm(message):
            asked.append(message)
            return True

        ScriptedController(
            parameters, config, confirm=confirm, discover=FakeDiscover(),
            ports={"/dev/ttyUSB0": port},
        ).run(write_flash=False)
        assert asked == [confirm_message(1)]

    def test_refused_confirmation(self, parameters, config):
        parameters.update_from(p1_firmware())
        parameters.set_devices([p1_device()])
        port = ScriptedPort("/dev/ttyUSB0")

        report = ScriptedController(
            parameters, config, confirm=lambda message: False, discover=FakeDiscover(),
            ports={"/dev/ttyUSB0": port},
        ).run()

        assert report.cancelled
        assert report.devices == []
        assert port.opened == 0

    def test_cancel_during_discovery(self, parameters, config):
        parameters.update_from(p1_firmware())
        report = UpdateController(
            parameters, config, discover=FakeDiscover(cancelled=True)
        ).run()
        assert report.cancelled
        assert parameters.devices == []

    def test_cancel_before_next_device(self, parameters, config):
        parameters.update_from(p1_firmware())
        parameters.set_devices([p1_device("/dev/ttyUSB0"), p1_device("/dev/ttyUSB2")])
        cancel = threading.Event()
        ports = {
            "/dev/ttyUSB0": ScriptedPort("/dev/ttyUSB0", script=[(HANDSHAKE, p1_reply()), P1_ACK]),
            "/dev/ttyUSB2": ScriptedPort("/dev/ttyUSB2"),
        }

        class Monitor(UpdateMonitor):
            def device_done(self, device, result):
                cancel.set()

        report = ScriptedController(
            parameters, config, monitor=Monitor(), discover=FakeDiscover(), ports=ports
        ).run(write_flash=False, cancel=cancel)

        assert report.cancelled
        assert len(report.devices) == 1
        assert ports["/dev/ttyUSB2"].opened == 0


class TestMonitor:
    def test_task_names_and_sub_tasks(self, parameters, config):
        parameters.update_from(p1_firmware())
        parameters.set_devices([p1_device()])
        port = ScriptedPort(
            "/dev/ttyUSB0", script=[(HANDSHAKE, p1_reply()), P1_ACK, P1_ACK, P1_ACK]
        )
        monitor = RecordingMonitor()

        ScriptedController(
            parameters, config, monitor=monitor, discover=FakeDiscover(),
            ports={"/dev/ttyUSB0": port},
        ).run(write_flash=True)

        assert monitor.calls[0] == ("begin_task", "Firmware upload", 1)
        assert monitor.texts("set_task_name") == ["Firmware upload to /dev/ttyUSB0"]
        assert monitor.texts("sub_task") == [
            "Loading binary image to RAM",
            "Verifying RAM ... ",
            "Writing EEPROM ... ",
            "Verifying EEPROM ... ",
        ]
        assert ("device_done", "P8X32A", True) in monitor.calls
        assert monitor.calls[-1] == ("done",)

    def test_listener_relays_progress(self):
        progress = []

        class Monitor(UpdateMonitor):
            def upload_progress(self, sent, total):
                progress.append((sent, total))

        MonitorListener(Monitor()).upload_progress(10, 20)
        assert progress == [(10, 20)]


def test_logs_captured_into_report(parameters, config):
    parameters.update_from(p1_firmware())
    parameters.set_devices([p1_device()])
    port = ScriptedPort("/dev/ttyUSB0", script=[(HANDSHAKE, p1_reply()), P1_ACK])
    report = ScriptedController(
        parameters, config, discover=FakeDiscover(), ports={"/dev/ttyUSB0": port}
    ).run(write_flash=False)
    assert any("Firmware upload to /dev/ttyUSB0 done" in line for line in report.logs)
    assert report.to_dict()["logs"] == report.logs


def test_start_posts_mutations(parameters, config):
    """Background runs leave device state to the owning thread."""
    parameters.update_from(p1_firmware())
    device = p1_device()
    parameters.set_devices([device])
    port = ScriptedPort("/dev/ttyUSB0", script=[(HANDSHAKE, p1_reply()), P1_ACK])
    controller = ScriptedController(
        parameters, config, discover=FakeDiscover(), ports={"/dev/ttyUSB0": port}
    )

    report = controller.start(write_flash=False).result(timeout=10)

    assert report.ok
    assert device.status == DeviceStatus.NONE
    assert parameters.process_pending() > 0
    assert device.status == DeviceStatus.OK


class TestMakePort:
    def test_serial_device(self, parameters, config):
        port = UpdateController(parameters, config, discover=FakeDiscover()).make_port(p1_device())
        assert isinstance(port, SerialComPort)
        assert port.name == "/dev/ttyUSB0"
        assert not port.is_open

    def test_network_device(self, parameters, config):
        device = Device.network("wx-bench", 2, "192.168.1.40", "18:fe:34:aa:bb:cc", reset_pin="DTR")
        port = UpdateController(parameters, config, discover=FakeDiscover()).make_port(device)
        assert isinstance(port, NetworkComPort)
        assert port.name == "wx-bench"
        assert port.inet_addr == ipaddress.ip_address("192.168.1.40")
        assert port.mac_addr == "18:fe:34:aa:bb:cc"
        assert port.reset_pin == "DTR"
        assert port.config is config
        assert port.sock is None
