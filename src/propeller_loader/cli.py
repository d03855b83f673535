"""
Propeller Loader CLI

Command-line interface for discovering Propeller boards and flashing
firmware images and firmware packs onto them.
"""

import sys
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import Progress, BarColumn, TextColumn

from propeller_loader import __version__
from propeller_loader.app import APP_TITLE, Loader
from propeller_loader.config import LoaderConfig
from propeller_loader.core.device import Device, DeviceStatus
from propeller_loader.core.discovery import DeviceDiscover
from propeller_loader.core.errors import PropellerLoaderError
from propeller_loader.core.firmware import Firmware, FirmwarePack, load_firmware_file
from propeller_loader.core.results import DeviceResult, UpdateReport
from propeller_loader.core.update import UpdateMonitor

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("propeller_loader")

# Setup Rich console
console = Console()

app = typer.Typer(help="Propeller Loader - firmware updates for P1/P2 boards over serial and network")


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    """Print success message."""
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    """Print warning message."""
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    """Print error message."""
    console.print(f"❌ {text}", style="red")


def make_config(hex_upload: bool = False) -> LoaderConfig:
    """Config from the environment, with CLI overrides."""
    overrides = {}
    if hex_upload:
        overrides["use_hex_upload"] = True
    return LoaderConfig.from_env(**overrides)


def device_table(devices: List[Device], title: str = "Devices") -> Table:
    table = Table(title=title)
    table.add_column("#", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Version", style="magenta")
    table.add_column("Port", style="green")
    table.add_column("MAC", style="dim")
    table.add_column("Status", style="yellow")

    for i, device in enumerate(devices, 1):
        status = "" if device.status == DeviceStatus.NONE else device.status.value
        table.add_row(
            str(i),
            device.name or "-",
            f"P{device.version}",
            device.port_description,
            device.mac_addr or "-",
            status,
        )
    return table


def firmware_table(firmwares: List[Firmware], title: str = "Firmware") -> Table:
    table = Table(title=title)
    table.add_column("#", style="dim")
    table.add_column("Description", style="cyan")
    table.add_column("Chip", style="magenta")
    table.add_column("Bytes", style="green")

    for i, firmware in enumerate(firmwares, 1):
        table.add_row(
            str(i),
            firmware.description or "-",
            f"P{firmware.binary_version}",
            f"{len(firmware.binary_image):,}",
        )
    return table


class RichUpdateMonitor(UpdateMonitor):
    """Renders update progress with a rich progress bar."""

    def __init__(self, progress: Progress):
        self.progress = progress
        self.batch_task = None
        self.upload_task = None
        self.task_name = ""

    def begin_task(self, name: str, total: int) -> None:
        self.batch_task = self.progress.add_task(name, total=total)

    def set_task_name(self, name: str) -> None:
        self.task_name = name
        if self.upload_task is not None:
            self.progress.remove_task(self.upload_task)
        self.upload_task = self.progress.add_task(name, total=None)

    def sub_task(self, text: str) -> None:
        if self.upload_task is not None:
            self.progress.update(self.upload_task, description=f"{self.task_name}: {text}")

    def upload_progress(self, sent: int, total: int) -> None:
        if self.upload_task is not None:
            self.progress.update(self.upload_task, completed=sent, total=total)

    def worked(self, amount: int = 1) -> None:
        if self.batch_task is not None:
            self.progress.update(self.batch_task, advance=amount)

    def device_done(self, device: Device, result: DeviceResult) -> None:
        if result.ok:
            self.progress.console.print(f"✓ {device.name} ({result.port})", style="green")
        else:
            self.progress.console.print(f"❌ {device.name} ({result.port}): {result.error}", style="red")


def print_report(report: UpdateReport, output_json: bool = False) -> None:
    if output_json:
        console.print_json(json.dumps(report.to_dict()))
        return

    console.print(report.to_summary())
    if report.cancelled:
        print_warning("Update cancelled")
    elif report.ok and report.devices:
        print_success(f"{report.updated} device(s) updated")
    elif report.ok:
        for warning in report.warnings:
            print_warning(warning)


@app.callback()
def main_options(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show wire traffic and debug logs"),
) -> None:
    """Propeller Loader."""
    if verbose:
        logger.setLevel(logging.DEBUG)


@app.command()
def version() -> None:
    """Show version."""
    console.print(f"{APP_TITLE} {__version__}")


@app.command()
def ports() -> None:
    """List available serial ports."""
    print_header("Available Serial Ports")

    import serial.tools.list_ports

    ports_list = sorted(serial.tools.list_ports.comports(), key=lambda p: p.device)

    if not ports_list:
        print_warning("No serial ports found")
        return

    table = Table(title="Serial Ports")
    table.add_column("Port", style="cyan")
    table.add_column("Device", style="magenta")
    table.add_column("Description", style="green")

    for port in ports_list:
        table.add_row(port.device, port.name or "-", port.description or "-")

    console.print(table)


@app.command()
def discover(
    local: bool = typer.Option(True, "--local/--no-local", help="Probe local serial ports"),
    network: bool = typer.Option(False, "--network/--no-network", help="Probe network bridges"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """Find Propeller boards on serial ports and on the local network."""
    if not output_json:
        print_header("Device Discovery")

    config = make_config()
    with console.status("Probing ports...", spinner="dots"):
        devices = DeviceDiscover(config).find(local=local, network=network)

    if output_json:
        console.print_json(json.dumps([
            {
                "name": device.name,
                "version": device.version,
                "port": device.port_description,
                "serial_port": device.serial_port,
                "inet_addr": str(device.inet_addr) if device.inet_addr else None,
                "mac_addr": device.mac_addr,
                "reset_pin": device.reset_pin,
            }
            for device in devices
        ]))
        return

    if not devices:
        print_warning("No devices found")
        return

    console.print(device_table(devices, title=f"Found {len(devices)} Device(s)"))


@app.command()
def info(
    file: Path = typer.Argument(..., help="Firmware image (.binary/.bin) or pack (.json)"),
) -> None:
    """Show what a firmware file or firmware pack contains."""
    print_header("Firmware Info")

    config = make_config()
    loader = Loader(config)
    try:
        source = load_firmware_file(file)
    except PropellerLoaderError as e:
        print_error(str(e))
        raise typer.Exit(1)

    console.print(f"File: {loader.relative_file_path(file)}")
    if isinstance(source, FirmwarePack):
        console.print(f"Local discovery:   {'enabled' if source.enable_local else 'disabled'}")
        console.print(f"Network discovery: {'enabled' if source.enable_network else 'disabled'}")
        if not source.firmware_list:
            print_warning("Pack contains no firmware")
            return
        console.print(firmware_table(source.firmware_list, title="Firmware Pack"))
    else:
        console.print(firmware_table([source]))


@app.command()
def pack(
    images: List[Path] = typer.Argument(..., help="Raw firmware images to bundle"),
    output: Path = typer.Option(..., "--output", "-o", help="Pack file to write (.json)"),
    description: Optional[List[str]] = typer.Option(
        None, "--description", "-d", help="Description per image, in order"
    ),
    enable_local: bool = typer.Option(True, "--local/--no-local", help="Pack enables local discovery"),
    enable_network: bool = typer.Option(False, "--network/--no-network", help="Pack enables network discovery"),
) -> None:
    """Bundle raw images into a firmware pack."""
    print_header("Build Firmware Pack")

    try:
        firmware_pack = FirmwarePack.from_images(
            images, enable_local=enable_local, enable_network=enable_network
        )
    except PropellerLoaderError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if description:
        if len(description) > len(firmware_pack.firmware_list):
            print_error("More descriptions than images")
            raise typer.Exit(1)
        for i, text in enumerate(description):
            firmware_pack.firmware_list[i] = replace(firmware_pack.firmware_list[i], description=text)

    firmware_pack.save(output)
    console.print(firmware_table(firmware_pack.firmware_list, title="Firmware Pack"))
    print_success(f"Pack written to {output}")


@app.command()
def update(
    file: Path = typer.Argument(..., help="Firmware image (.binary/.bin) or pack (.json)"),
    port: Optional[List[str]] = typer.Option(
        None, "--port", "-p", help="Serial port to update (repeatable); default: discover"
    ),
    index: int = typer.Option(1, "--index", "-n", help="Firmware to use from a pack (1-based)"),
    flash: Optional[bool] = typer.Option(
        None,
        "--flash/--ram",
        help=(
            "Write to EEPROM/flash or RAM only (default: flash unless LOADER_WRITE_TO_RAM is set). "
            "P2 flash writes need the flash loader blob: set LOADER_P2_FLASH_LOADER to its path "
            "or use --ram"
        ),
    ),
    local: Optional[bool] = typer.Option(None, "--local/--no-local", help="Override local discovery"),
    network: Optional[bool] = typer.Option(None, "--network/--no-network", help="Override network discovery"),
    hex_upload: bool = typer.Option(False, "--hex-upload", help="Use the P2 Prop_Hex framing"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output report as JSON"),
) -> None:
    """Flash a firmware onto every matching device."""
    print_header("Firmware Update")

    config = make_config(hex_upload=hex_upload)
    loader = Loader(config)
    parameters = loader.parameters

    try:
        loader.handle_file_selection(file)
    except PropellerLoaderError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if parameters.firmware_list:
        if not 1 <= index <= len(parameters.firmware_list):
            print_error(f"Index {index} out of range (pack has {len(parameters.firmware_list)} firmware)")
            raise typer.Exit(1)
        parameters.firmware = parameters.firmware_list[index - 1]
    if parameters.firmware is None:
        print_error("No firmware to flash")
        raise typer.Exit(1)

    if local is not None:
        parameters.enable_local = local
    if network is not None:
        parameters.enable_network = network

    firmware = parameters.firmware
    console.print(f"File:     {loader.firmware_label}")
    console.print(f"Firmware: {firmware.description or '-'} (P{firmware.binary_version})")

    if port:
        probe = DeviceDiscover(config)
        devices = []
        for name in port:
            device = probe.probe_port(name)
            if device is None:
                print_warning(f"No Propeller found on {name}")
            else:
                devices.append(device)
        if not devices:
            print_error("No devices to update")
            raise typer.Exit(1)
        parameters.set_devices(devices)

    def confirm(message: str) -> bool:
        return yes or typer.confirm(message)

    with Progress(
        TextColumn("[{task.description}]"),
        BarColumn(),
        TextColumn("[{task.percentage:.0f}%]"),
        console=console,
    ) as progress:
        report = loader.start_update(
            write_flash=flash,
            monitor=RichUpdateMonitor(progress),
            confirm=confirm,
        )

    print_report(report, output_json=output_json)
    if parameters.devices and not output_json:
        console.print(device_table(parameters.devices))

    if not report.ok and not report.cancelled:
        raise typer.Exit(1)


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        console.print(f"\n[red bold]Fatal error:[/red bold] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
