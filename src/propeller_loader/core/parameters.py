"""
Loader parameters: the shared state between front-end, discovery and the
update controller.

All mutation happens on the thread that owns the parameters. Worker threads
hand mutations over with post(); the owner applies them with
process_pending().
"""

import logging
import queue
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from propeller_loader.core.device import Device
from propeller_loader.core.firmware import Firmware, FirmwarePack

logger = logging.getLogger(__name__)


class Property(Enum):
    FILE = "file"
    FIRMWARE_LIST = "firmwareList"
    FIRMWARE = "firmware"
    UPDATE_ALL = "updateAll"
    DEVICES = "devices"
    ENABLE_LOCAL = "enableLocal"
    ENABLE_NETWORK = "enableNetwork"
    DEVICE_SELECTION = "deviceSelection"


# Collections are mutated in place, so these always notify
_ALWAYS_NOTIFY = (Property.FIRMWARE_LIST, Property.DEVICES, Property.DEVICE_SELECTION)


@dataclass(frozen=True)
class PropertyChangeEvent:
    property: Property
    old_value: Any
    new_value: Any


PropertyListener = Callable[[PropertyChangeEvent], None]


class LoaderParameters:
    """
    Firmware selection, device list and discovery flags.

    Invariants:
        - firmware is None, or an element of firmware_list when that list
          is not empty
        - devices holds no two entries with the same location
    """

    def __init__(self):
        self._file: Optional[Path] = None
        self._firmware_list: List[Firmware] = []
        self._firmware: Optional[Firmware] = None
        self._update_all = True
        self._devices: List[Device] = []
        self._enable_local = True
        self._enable_network = False

        self._listeners: Dict[Optional[Property], List[PropertyListener]] = {}
        self._pending: "queue.Queue[Callable[[], Any]]" = queue.Queue()

    # Listeners

    def add_listener(self, listener: PropertyListener, property: Optional[Property] = None) -> None:
        """Register for one property, or for all of them when property is None."""
        self._listeners.setdefault(property, []).append(listener)

    def remove_listener(self, listener: PropertyListener, property: Optional[Property] = None) -> None:
        listeners = self._listeners.get(property, [])
        if listener in listeners:
            listeners.remove(listener)

    def _fire(self, property: Property, old_value: Any, new_value: Any) -> None:
        if property not in _ALWAYS_NOTIFY and old_value == new_value:
            return
        event = PropertyChangeEvent(property, old_value, new_value)
        for listener in list(self._listeners.get(None, [])) + list(self._listeners.get(property, [])):
            listener(event)

    # Single-writer queue

    def post(self, fn: Callable[[], Any]) -> None:
        """Queue a mutation from any thread."""
        self._pending.put(fn)

    def process_pending(self) -> int:
        """Apply queued mutations on the owning thread. Returns how many ran."""
        count = 0
        while True:
            try:
                fn = self._pending.get_nowait()
            except queue.Empty:
                return count
            fn()
            count += 1

    # Properties

    @property
    def file(self) -> Optional[Path]:
        return self._file

    @file.setter
    def file(self, value: Optional[Union[str, Path]]) -> None:
        old, self._file = self._file, None if value is None else Path(value)
        self._fire(Property.FILE, old, self._file)

    @property
    def firmware_list(self) -> List[Firmware]:
        return list(self._firmware_list)

    @firmware_list.setter
    def firmware_list(self, firmwares: List[Firmware]) -> None:
        self._firmware_list[:] = firmwares
        if self._firmware is not None and self._firmware_list and self._firmware not in self._firmware_list:
            self.firmware = None
        self._fire(Property.FIRMWARE_LIST, None, self.firmware_list)

    @property
    def firmware(self) -> Optional[Firmware]:
        return self._firmware

    @firmware.setter
    def firmware(self, value: Optional[Firmware]) -> None:
        if value is not None and self._firmware_list and value not in self._firmware_list:
            raise ValueError(f"{value!r} is not in the firmware list")
        old, self._firmware = self._firmware, value
        self._fire(Property.FIRMWARE, old, value)

    @property
    def update_all(self) -> bool:
        return self._update_all

    @update_all.setter
    def update_all(self, value: bool) -> None:
        old, self._update_all = self._update_all, bool(value)
        self._fire(Property.UPDATE_ALL, old, self._update_all)

    @property
    def enable_local(self) -> bool:
        return self._enable_local

    @enable_local.setter
    def enable_local(self, value: bool) -> None:
        old, self._enable_local = self._enable_local, bool(value)
        self._fire(Property.ENABLE_LOCAL, old, self._enable_local)

    @property
    def enable_network(self) -> bool:
        return self._enable_network

    @enable_network.setter
    def enable_network(self, value: bool) -> None:
        old, self._enable_network = self._enable_network, bool(value)
        self._fire(Property.ENABLE_NETWORK, old, self._enable_network)

    @property
    def devices(self) -> List[Device]:
        return list(self._devices)

    # Updates

    def update_from(self, source: Union[Firmware, FirmwarePack]) -> None:
        """
        Install a firmware selection.

        A single Firmware empties the firmware list and becomes the selection.
        A FirmwarePack replaces the list, selects its first entry and copies
        its discovery flags.
        """
        if isinstance(source, FirmwarePack):
            self.firmware_list = source.firmware_list
            self.firmware = source.firmware_list[0] if source.firmware_list else None
            self.enable_local = source.enable_local
            self.enable_network = source.enable_network
        elif isinstance(source, Firmware):
            self.firmware_list = []
            self.firmware = source
        else:
            raise TypeError(f"Cannot update from {type(source).__name__}")

    def set_devices(self, devices: List[Device]) -> None:
        """
        Reconcile the device list with a new discovery result.

        Devices already present keep their object (and so their selection
        and status); new ones are appended, missing ones removed.
        """
        for device in devices:
            if device not in self._devices:
                self._devices.append(device)
        incoming = set(devices)
        self._devices[:] = [device for device in self._devices if device in incoming]
        logger.debug(f"Device list now has {len(self._devices)} entries")
        self._fire(Property.DEVICES, None, self.devices)

    def set_device_selection(self, device: Device, selected: bool) -> None:
        if device.selected != selected:
            device.selected = selected
            self._fire(Property.DEVICE_SELECTION, None, device)

    # Derived state

    @property
    def can_update(self) -> bool:
        if self._firmware is None or self._firmware.binary_version == 0:
            return False
        return self._update_all or any(device.selected for device in self._devices)

    def selected_devices(self) -> List[Device]:
        if self._update_all:
            return list(self._devices)
        return [device for device in self._devices if device.selected]
