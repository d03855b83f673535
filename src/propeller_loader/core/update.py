"""
Firmware update controller.

Drives one firmware onto a batch of devices, one device at a time:

1. Discover devices if the parameters hold none yet
2. Keep the devices whose chip generation matches the firmware
3. Ask for confirmation
4. Upload to each device with the matching loader, recording ok/error

A failing device never stops the batch. The front-end follows progress
through an UpdateMonitor and gets an UpdateReport at the end.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from typing import Callable, List, Optional

from propeller_loader.config import LoaderConfig
from propeller_loader.core.device import Device, DeviceStatus
from propeller_loader.core.discovery import DeviceDiscover
from propeller_loader.core.errors import Cancelled, InvalidFirmware, PropellerLoaderError
from propeller_loader.core.firmware import Firmware
from propeller_loader.core.parameters import LoaderParameters
from propeller_loader.core.results import DeviceResult, UpdateReport
from propeller_loader.port.base import ComPort
from propeller_loader.port.network_port import NetworkComPort
from propeller_loader.port.serial_port import SerialComPort
from propeller_loader.protocol.base import PropellerLoader, PropellerLoaderListener
from propeller_loader.protocol.p1_loader import P1Loader
from propeller_loader.protocol.p2_loader import P2Loader

logger = logging.getLogger(__name__)

NO_DEVICES_MESSAGE = "Found 0 device(s) to update."

ConfirmCallback = Callable[[str], bool]


class _ListLogHandler(logging.Handler):
    """Capture log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "propeller_loader"):
    """Capture logs for an update batch into a list."""
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


def confirm_message(count: int) -> str:
    return f"Found {count} device(s). Confirm firmware update?"


class UpdateMonitor:
    """
    Progress sink for an update batch.

    Every hook is a no-op here; front-ends override what they render.
    """

    def begin_task(self, name: str, total: int) -> None:
        pass

    def set_task_name(self, name: str) -> None:
        pass

    def sub_task(self, text: str) -> None:
        pass

    def upload_progress(self, sent: int, total: int) -> None:
        pass

    def worked(self, amount: int = 1) -> None:
        pass

    def device_done(self, device: Device, result: DeviceResult) -> None:
        pass

    def done(self) -> None:
        pass


class MonitorListener(PropellerLoaderListener):
    """Relays loader milestones to an UpdateMonitor as sub-task texts."""

    def __init__(self, monitor: UpdateMonitor):
        self.monitor = monitor

    def buffer_upload(self, type: int, image: bytes, text: str) -> None:
        self.monitor.sub_task(f"Loading {text} to RAM")

    def verify_ram(self) -> None:
        self.monitor.sub_task("Verifying RAM ... ")

    def eeprom_write(self) -> None:
        self.monitor.sub_task("Writing EEPROM ... ")

    def eeprom_verify(self) -> None:
        self.monitor.sub_task("Verifying EEPROM ... ")

    def upload_progress(self, sent: int, total: int) -> None:
        self.monitor.upload_progress(sent, total)


class UpdateController:
    """
    Example:
        controller = UpdateController(parameters, config, monitor, confirm=ask_user)
        report = controller.run(write_flash=True)
        print(report.to_summary())
    """

    def __init__(
        self,
        parameters: LoaderParameters,
        config: Optional[LoaderConfig] = None,
        monitor: Optional[UpdateMonitor] = None,
        confirm: Optional[ConfirmCallback] = None,
        discover: Optional[DeviceDiscover] = None,
    ):
        self.parameters = parameters
        self.config = config or LoaderConfig()
        self.monitor = monitor or UpdateMonitor()
        self.confirm = confirm
        self.discover = discover or DeviceDiscover(self.config)
        self._post_mutations = False

    def start(
        self,
        write_flash: Optional[bool] = None,
        cancel: Optional[threading.Event] = None,
    ) -> "Future[UpdateReport]":
        """
        Run the batch on a background worker.

        Parameter mutations are posted to the parameters queue; the owning
        thread applies them with process_pending().
        """
        self._post_mutations = True
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="propeller-update")
        future = executor.submit(self.run, write_flash, cancel)
        executor.shutdown(wait=False)
        return future

    def run(
        self,
        write_flash: Optional[bool] = None,
        cancel: Optional[threading.Event] = None,
    ) -> UpdateReport:
        """
        Update every selected device that matches the selected firmware.

        Args:
            write_flash: Program EEPROM/flash; defaults from the config
            cancel: Set to stop before the next device

        Returns:
            UpdateReport with one DeviceResult per attempted device

        Raises:
            InvalidFirmware: If no firmware is selected
        """
        if write_flash is None:
            write_flash = self.config.write_flash_default
        firmware = self.parameters.firmware
        if firmware is None:
            raise InvalidFirmware("No firmware selected")

        with _capture_logs() as logs:
            report = UpdateReport(
                ok=True,
                firmware=firmware.description,
                target="flash" if write_flash else "RAM",
            )
            report.logs = logs

            try:
                targets = self.select_targets(firmware, cancel)
            except Cancelled:
                logger.info("Update cancelled during discovery")
                report.mark_cancelled()
                return report

            if not targets:
                logger.info(NO_DEVICES_MESSAGE)
                report.add_warning(NO_DEVICES_MESSAGE)
                return report

            if self.confirm is not None and not self.confirm(confirm_message(len(targets))):
                logger.info("Update not confirmed")
                report.mark_cancelled()
                return report

            for device in targets:
                self._apply(device.clear_status)

            self.monitor.begin_task("Firmware upload", len(targets))
            for device in targets:
                if cancel is not None and cancel.is_set():
                    logger.info("Update cancelled")
                    report.mark_cancelled()
                    break
                result = self.update_device(device, firmware, write_flash)
                report.add_device(result)
                self.monitor.device_done(device, result)
                self.monitor.worked(1)
            self.monitor.done()

            logger.info(f"Update finished: {report.updated} updated, {report.failed} failed")
            return report

    def select_targets(
        self, firmware: Firmware, cancel: Optional[threading.Event] = None
    ) -> List[Device]:
        """Devices to update: discovered or selected, matching the firmware version."""
        if not self.parameters.devices:
            devices = self.discover.find(
                local=self.parameters.enable_local,
                network=self.parameters.enable_network,
                cancel=cancel,
            )
            self._apply(lambda: self.parameters.set_devices(devices))
            candidates = devices
        else:
            candidates = self.parameters.selected_devices()

        targets = [device for device in candidates if device.version == firmware.binary_version]
        skipped = len(candidates) - len(targets)
        if skipped:
            logger.info(f"Skipping {skipped} device(s) not matching P{firmware.binary_version}")
        return targets

    def update_device(self, device: Device, firmware: Firmware, write_flash: bool) -> DeviceResult:
        port = self.make_port(device)
        self.monitor.set_task_name(f"Firmware upload to {port.description}")
        loader = self.make_loader(firmware, port, MonitorListener(self.monitor))

        try:
            loader.upload(firmware.binary_image, write_flash)
        except PropellerLoaderError as e:
            logger.error(f"Firmware upload to {port.description} failed: {e}")
            self._set_status(device, DeviceStatus.ERROR)
            return DeviceResult(
                ok=False,
                device=device.name,
                port=port.description,
                version=device.version,
                bytes_len=len(firmware.binary_image),
                error=str(e),
            )

        logger.info(f"Firmware upload to {port.description} done")
        self._set_status(device, DeviceStatus.OK)
        return DeviceResult(
            ok=True,
            device=device.name,
            port=port.description,
            version=device.version,
            bytes_len=len(firmware.binary_image),
        )

    def make_port(self, device: Device) -> ComPort:
        if device.serial_port:
            return SerialComPort(device.serial_port)
        return NetworkComPort(
            device.name,
            device.inet_addr,
            device.mac_addr,
            device.reset_pin,
            config=self.config,
        )

    def make_loader(
        self, firmware: Firmware, port: ComPort, listener: PropellerLoaderListener
    ) -> PropellerLoader:
        if firmware.binary_version == 1:
            return P1Loader(port, listener, self.config)
        return P2Loader(port, listener, self.config)

    def _set_status(self, device: Device, status: DeviceStatus) -> None:
        def apply():
            device.status = status
        self._apply(apply)

    def _apply(self, fn: Callable[[], None]) -> None:
        if self._post_mutations:
            self.parameters.post(fn)
        else:
            fn()
