"""
Application facade.

Loader binds a front-end to the parameters, discovery and the update
controller. It holds no widgets: front-ends read `view`, `firmware_label`
and the parameters, and subscribe to parameter change events.
"""

import logging
import threading
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from propeller_loader.config import LoaderConfig
from propeller_loader.core.device import Device
from propeller_loader.core.discovery import DeviceDiscover
from propeller_loader.core.firmware import Firmware, FirmwarePack, load_firmware_file
from propeller_loader.core.parameters import LoaderParameters
from propeller_loader.core.results import UpdateReport
from propeller_loader.core.update import ConfirmCallback, UpdateController, UpdateMonitor

logger = logging.getLogger(__name__)

APP_TITLE = "Propeller Firmware Loader"


class View(Enum):
    """Which firmware pane a front-end shows."""
    LIST = "list"
    INFO = "info"


class Loader:
    """
    Example:
        app = Loader(LoaderConfig.from_env())
        app.handle_file_selection("firmware.json")
        app.discover()
        report = app.start_update(confirm=lambda message: True)
    """

    def __init__(
        self,
        config: Optional[LoaderConfig] = None,
        parameters: Optional[LoaderParameters] = None,
    ):
        self.config = config or LoaderConfig.from_env()
        self.parameters = parameters or LoaderParameters()
        self.embedded_firmware = False

    def set_embedded_firmware(self, embedded: bool) -> None:
        """Firmware ships with the tool: no file selection, list view only."""
        self.embedded_firmware = embedded

    @property
    def view(self) -> View:
        if self.embedded_firmware or self.parameters.firmware_list:
            return View.LIST
        return View.INFO

    @property
    def firmware_label(self) -> str:
        """Path text shown next to the file selector."""
        return self.relative_file_path(self.parameters.file)

    def update_from(
        self,
        file: Optional[Union[str, Path]],
        source: Union[Firmware, FirmwarePack],
    ) -> None:
        """Record the selected file and install its firmware(s)."""
        self.parameters.file = file
        self.parameters.update_from(source)

    def handle_file_selection(self, file: Union[str, Path]) -> Union[Firmware, FirmwarePack]:
        """
        Load a firmware or firmware pack by file type and install it.

        Raises:
            InvalidFirmware: If the file cannot be loaded
        """
        source = load_firmware_file(file)
        self.update_from(file, source)
        logger.info(f"Selected {self.relative_file_path(file)}")
        return source

    def relative_file_path(self, file: Optional[Union[str, Path]]) -> str:
        """
        Path relative to APP_DIR (or the working directory), when under it.
        """
        if file is None:
            return ""
        path = Path(file).absolute()
        base = (self.config.app_dir or Path.cwd()).absolute()
        try:
            return str(path.relative_to(base))
        except ValueError:
            return str(path)

    def discover(self, cancel: Optional[threading.Event] = None) -> List[Device]:
        """Run discovery with the parameters' flags and reconcile the device list."""
        discover = DeviceDiscover(self.config)
        discover.find(
            local=self.parameters.enable_local,
            network=self.parameters.enable_network,
            callback=self.parameters.set_devices,
            cancel=cancel,
        )
        return self.parameters.devices

    def start_update(
        self,
        write_flash: Optional[bool] = None,
        monitor: Optional[UpdateMonitor] = None,
        confirm: Optional[ConfirmCallback] = None,
        cancel: Optional[threading.Event] = None,
    ) -> UpdateReport:
        controller = UpdateController(
            self.parameters,
            self.config,
            monitor=monitor,
            confirm=confirm,
        )
        return controller.run(write_flash=write_flash, cancel=cancel)
