"""
Runtime configuration for Propeller Loader.

A single LoaderConfig instance is created by the front-end and handed to
ports, loaders, discovery and the update controller. Nothing reads the
environment after construction.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

ENV_APP_DIR = "APP_DIR"
ENV_WRITE_TO_RAM = "LOADER_WRITE_TO_RAM"
ENV_FLASH_LOADER = "LOADER_P2_FLASH_LOADER"


@dataclass
class LoaderConfig:
    """
    Timing and environment settings.

    All timeouts are in milliseconds, matching the units used on the wire
    protocol documentation.
    """
    # Line settings
    p1_baud: int = 115200
    p2_baud: int = 2000000
    p1_reset_delay_ms: int = 90
    p2_reset_delay_ms: int = 15

    # P1 handshake
    p1_bit_timeout_ms: int = 110
    p1_bit_retries: int = 100
    p1_drain_count: int = 300
    p1_drain_timeout_ms: int = 50

    # P2 handshake
    p2_line_timeout_ms: int = 50

    # Upload acknowledgements
    verify_timeout_ms: int = 10000
    eeprom_program_timeout_ms: int = 5000
    eeprom_verify_timeout_ms: int = 2500

    # Network discovery and bridges
    discover_port: int = 32420
    discover_reply_timeout_ms: int = 250
    discover_attempts: int = 3
    network_p2_attempts: int = 3
    http_port: int = 80
    telnet_port: int = 23
    connect_timeout_ms: int = 3000
    response_timeout_ms: int = 3000

    max_workers: int = 8

    # Feature flags / environment
    use_hex_upload: bool = False
    flash_loader_path: Optional[Path] = None
    app_dir: Optional[Path] = None
    write_to_ram: bool = False

    @property
    def write_flash_default(self) -> bool:
        """Default upload target: flash unless LOADER_WRITE_TO_RAM is set."""
        return not self.write_to_ram

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "LoaderConfig":
        """
        Build a config from environment variables.

        Args:
            environ: Mapping to read instead of os.environ
            **overrides: Field values that win over the environment

        Returns:
            LoaderConfig instance
        """
        env = os.environ if environ is None else environ

        values = {}
        app_dir = env.get(ENV_APP_DIR)
        if app_dir:
            values["app_dir"] = Path(app_dir)
        if env.get(ENV_WRITE_TO_RAM) is not None:
            values["write_to_ram"] = True
        flash_loader = env.get(ENV_FLASH_LOADER)
        if flash_loader:
            values["flash_loader_path"] = Path(flash_loader)

        values.update(overrides)
        return cls(**values)
