"""Transport layer - local serial ports and network bridges."""

from .base import ComPort, DATABITS_8, STOPBITS_1, PARITY_NONE
from .descriptor import DeviceDescriptor, parse_permissive_bool
from .network_port import NetworkComPort
from .serial_port import SerialComPort, list_port_names

__all__ = [
    "ComPort",
    "DATABITS_8",
    "STOPBITS_1",
    "PARITY_NONE",
    "DeviceDescriptor",
    "parse_permissive_bool",
    "NetworkComPort",
    "SerialComPort",
    "list_port_names",
]
