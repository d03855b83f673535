"""
Device discovery.

Finds Propellers behind local serial ports and behind network bridges on
the local segment, and returns one merged, sorted list.

Local ports are probed for a P2 first (its 2 Mbaud handshake is less
disturbing for unrelated devices), then for a P1. Network bridges answer a
4-byte zero datagram on UDP port 32420 with a JSON descriptor; each bridge
is then asked for a P2 over its serial channel.
"""

import ipaddress
import logging
import socket
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Tuple

import psutil

from propeller_loader.config import LoaderConfig
from propeller_loader.core.device import Device, get_version_text
from propeller_loader.core.errors import Cancelled, PropellerLoaderError, ProtocolError
from propeller_loader.port.descriptor import DeviceDescriptor
from propeller_loader.port.network_port import NetworkComPort
from propeller_loader.port.serial_port import SerialComPort, list_port_names
from propeller_loader.protocol.p1_loader import P1Loader
from propeller_loader.protocol.p2_loader import P2Loader

logger = logging.getLogger(__name__)

DISCOVER_REQUEST = bytes(4)
MAX_DATAGRAM = 2048

DiscoverCallback = Callable[[List[Device]], None]


def broadcast_addresses() -> List[str]:
    """IPv4 broadcast addresses of every up, non-loopback interface."""
    stats = psutil.net_if_stats()
    result = []
    for name, addrs in psutil.net_if_addrs().items():
        stat = stats.get(name)
        if stat is None or not stat.isup:
            continue
        for addr in addrs:
            if addr.family != socket.AF_INET or not addr.broadcast:
                continue
            if ipaddress.ip_address(addr.address).is_loopback:
                continue
            if addr.broadcast not in result:
                result.append(addr.broadcast)
    return result


def merge_devices(*groups: List[Device]) -> List[Device]:
    """Concatenate, drop duplicate locations (first wins), sort."""
    seen = set()
    merged = []
    for group in groups:
        for device in group:
            if device in seen:
                continue
            seen.add(device)
            merged.append(device)
    return sorted(merged)


class DeviceDiscover:
    """
    Probe local serial ports and network bridges for Propellers.

    Example:
        discover = DeviceDiscover(LoaderConfig.from_env())
        devices = discover.find(local=True, network=True)
    """

    def __init__(self, config: Optional[LoaderConfig] = None):
        self.config = config or LoaderConfig()

    def find(
        self,
        local: bool = True,
        network: bool = False,
        callback: Optional[DiscoverCallback] = None,
        cancel: Optional[threading.Event] = None,
    ) -> List[Device]:
        """
        Run the enabled scans and publish the merged result.

        Args:
            local: Probe serial ports
            network: Probe network bridges
            callback: Receives the merged, sorted list once
            cancel: Set to stop between ports and datagram attempts

        Returns:
            Merged, sorted device list

        Raises:
            Cancelled: If cancel was set; callback is not invoked
        """
        with ThreadPoolExecutor(max_workers=2) as pool:
            local_future = pool.submit(self.find_local_devices, cancel) if local else None
            network_future = pool.submit(self.find_network_devices, cancel) if network else None
            local_devices = local_future.result() if local_future else []
            network_devices = network_future.result() if network_future else []

        if cancel is not None and cancel.is_set():
            raise Cancelled("Discovery cancelled")

        devices = merge_devices(local_devices, network_devices)
        logger.info(f"Discovery found {len(devices)} device(s)")
        if callback is not None:
            callback(devices)
        return devices

    # Local

    def find_local_devices(self, cancel: Optional[threading.Event] = None) -> List[Device]:
        names = list_port_names()
        if not names:
            return []
        logger.debug(f"Probing serial ports: {', '.join(names)}")
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            results = list(pool.map(lambda name: self.probe_port(name, cancel), names))
        return [device for device in results if device is not None]

    def probe_port(
        self, port_name: str, cancel: Optional[threading.Event] = None
    ) -> Optional[Device]:
        """
        Identify the chip behind one serial port.

        Open failures, access errors and silence all mean "no device".
        """
        if cancel is not None and cancel.is_set():
            return None

        port = SerialComPort(port_name)
        try:
            rc = P2Loader(port, config=self.config).detect()
            if rc != 0:
                return Device(get_version_text(rc), 2, serial_port=port_name)

            rc = P1Loader(port, config=self.config).detect()
        except PropellerLoaderError as e:
            logger.debug(f"{port_name}: {e}")
            return None

        if rc == 1:
            return Device(get_version_text(rc), 1, serial_port=port_name)
        if rc != 0:
            logger.debug(f"{port_name}: P1 handshake returned version {rc}, ignored")
        return None

    # Network

    def find_network_devices(self, cancel: Optional[threading.Event] = None) -> List[Device]:
        devices = []
        # Addresses share the discovery port, so they are probed in turn
        for address in broadcast_addresses():
            if cancel is not None and cancel.is_set():
                break
            devices.extend(self.probe_broadcast(address, cancel))
        return devices

    def probe_broadcast(
        self, address: str, cancel: Optional[threading.Event] = None
    ) -> List[Device]:
        """Discover bridges answering on one broadcast address and probe each."""
        try:
            answers = self.collect_descriptors(address, cancel)
        except OSError as e:
            logger.warning(f"Discovery on {address} failed: {e}")
            return []

        devices = []
        for descriptor, responder in answers:
            if cancel is not None and cancel.is_set():
                break
            devices.append(self.probe_bridge(descriptor, responder))
        return devices

    def collect_descriptors(
        self, address: str, cancel: Optional[threading.Event] = None
    ) -> List[Tuple[DeviceDescriptor, str]]:
        """
        Broadcast discovery requests and gather descriptor replies.

        Returns:
            (descriptor, responder ip) pairs, one per MAC address
        """
        port = self.config.discover_port
        found: Dict[str, Tuple[DeviceDescriptor, str]] = {}

        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.bind(("", port))
            sock.settimeout(self.config.discover_reply_timeout_ms / 1000)

            for attempt in range(self.config.discover_attempts):
                if found:
                    break
                if cancel is not None and cancel.is_set():
                    break
                logger.debug(f"Discover request {attempt + 1} to {address}:{port}")
                sock.sendto(DISCOVER_REQUEST, (address, port))

                while cancel is None or not cancel.is_set():
                    try:
                        data, (responder, _) = sock.recvfrom(MAX_DATAGRAM)
                    except socket.timeout:
                        break
                    # Our own request echoes back with a zero first byte
                    if not data or data[0] == 0:
                        continue
                    try:
                        descriptor = DeviceDescriptor.from_json(data)
                    except ProtocolError as e:
                        logger.debug(f"Ignoring reply from {responder}: {e}")
                        continue
                    found.setdefault(descriptor.mac_address, (descriptor, responder))

        return list(found.values())

    def probe_bridge(self, descriptor: DeviceDescriptor, responder: str) -> Device:
        """
        Ask a bridge which chip it carries.

        A bridge whose chip stays silent is still listed, as a P1 named after
        the bridge.
        """
        port = NetworkComPort(
            descriptor.name,
            responder,
            descriptor.mac_address,
            descriptor.reset_pin,
            config=self.config,
        )
        loader = P2Loader(port, config=self.config)
        for _ in range(self.config.network_p2_attempts):
            try:
                rc = loader.detect()
            except PropellerLoaderError as e:
                logger.debug(f"{port.description}: {e}")
                rc = 0
            if rc != 0:
                return Device.network(
                    get_version_text(rc),
                    2,
                    responder,
                    descriptor.mac_address,
                    descriptor.reset_pin,
                )

        return Device.network(
            descriptor.name,
            1,
            responder,
            descriptor.mac_address,
            descriptor.reset_pin,
        )
