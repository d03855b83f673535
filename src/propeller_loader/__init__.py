"""
Propeller Loader - firmware updates for Parallax Propeller P1/P2 boards

Discovers boards on local serial ports and behind network bridges, and
flashes firmware images and firmware packs onto them.
"""

__version__ = "0.1.0"

from propeller_loader.config import LoaderConfig
from propeller_loader.app import Loader

__all__ = [
    "LoaderConfig",
    "Loader",
    "__version__",
]
