"""
Result objects for update batches.

Provides one result structure that the CLI and any other front-end can use
to display the outcome of a firmware update consistently.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class DeviceResult:
    """
    Outcome for one device in a batch.

    Attributes:
        ok: Whether the upload was accepted by the chip
        device: Chip or bridge name
        port: Port description the upload went through
        version: Chip generation (1 or 2)
        bytes_len: Image size sent
        error: Failure text when not ok
    """
    ok: bool
    device: str
    port: str
    version: int = 0
    bytes_len: int = 0
    error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "device": self.device,
            "port": self.port,
            "version": self.version,
            "bytes_len": self.bytes_len,
            "error": self.error,
        }


@dataclass
class UpdateReport:
    """
    Unified result object for a firmware update batch.

    Attributes:
        ok: True when no device failed and the batch was not cancelled
        operation: Name of the operation
        firmware: Description of the firmware sent
        target: "RAM" or "flash"
        cancelled: The batch stopped before every device was handled
        devices: Per-device outcomes, in upload order
        warnings: Non-blocking issues encountered
        errors: Failures, one line per failed device
        logs: Captured log lines from the batch
    """
    ok: bool
    operation: str = "firmware_update"
    firmware: str = ""
    target: str = ""
    cancelled: bool = False
    devices: List[DeviceResult] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)

    @property
    def updated(self) -> int:
        return sum(1 for result in self.devices if result.ok)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.devices if not result.ok)

    def add_device(self, result: DeviceResult) -> None:
        """Record a device outcome; a failure marks the batch failed."""
        self.devices.append(result)
        if not result.ok:
            self.add_error(f"{result.port}: {result.error}")

    def add_warning(self, message: str) -> None:
        """Add a warning message."""
        self.warnings.append(message)

    def add_error(self, message: str) -> None:
        """Add an error message and mark result as failed."""
        self.errors.append(message)
        self.ok = False

    def mark_cancelled(self) -> None:
        self.cancelled = True
        self.ok = False

    def to_summary(self) -> str:
        """
        Generate a human-readable summary string.

        Suitable for CLI output or simple logging.
        """
        if self.cancelled:
            status = "CANCELLED"
        else:
            status = "SUCCESS" if self.ok else "FAILED"
        lines = [f"[{status}] {self.operation}"]

        if self.firmware:
            lines.append(f"  Firmware: {self.firmware}")
        if self.target:
            lines.append(f"  Target: {self.target}")
        lines.append(f"  Devices: {self.updated} updated, {self.failed} failed")

        for result in self.devices:
            mark = "ok" if result.ok else "error"
            lines.append(f"    - {result.device} ({result.port}): {mark}")

        if self.warnings:
            lines.append("  Warnings:")
            for warn in self.warnings:
                lines.append(f"    - {warn}")

        if self.errors:
            lines.append("  Errors:")
            for err in self.errors:
                lines.append(f"    - {err}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "ok": self.ok,
            "operation": self.operation,
            "firmware": self.firmware,
            "target": self.target,
            "cancelled": self.cancelled,
            "devices": [result.to_dict() for result in self.devices],
            "warnings": self.warnings,
            "errors": self.errors,
            "logs": self.logs,
        }
