"""Serial port utilities for sketchlink."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import click
import serial
from serial.tools.list_ports import comports

from sketchlink.config import load_project_config
from sketchlink.errors import PortBusyError, PortIOError, PortPermissionError

_BYTESIZES = {
    5: serial.FIVEBITS,
    6: serial.SIXBITS,
    7: serial.SEVENBITS,
    8: serial.EIGHTBITS,
}

_STOPBITS = {
    1: serial.STOPBITS_ONE,
    2: serial.STOPBITS_TWO,
}

_PARITIES = {
    "none": serial.PARITY_NONE,
    "even": serial.PARITY_EVEN,
    "odd": serial.PARITY_ODD,
    "mark": serial.PARITY_MARK,
    "space": serial.PARITY_SPACE,
}


@dataclass(frozen=True)
class SerialConfig:
    baud_rate: int
    data_bits: int = 8
    stop_bits: int = 1
    parity: str = "none"

    def __post_init__(self):
        if not isinstance(self.baud_rate, int) or self.baud_rate <= 0:
            raise ValueError(f"baud_rate must be a positive integer, got {self.baud_rate!r}")
        if self.data_bits not in _BYTESIZES:
            raise ValueError(f"data_bits must be one of 5, 6, 7, 8, got {self.data_bits!r}")
        if self.stop_bits not in _STOPBITS:
            raise ValueError(f"stop_bits must be 1 or 2, got {self.stop_bits!r}")
        if self.parity not in _PARITIES:
            raise ValueError(f"parity must be one of {', '.join(_PARITIES)}, got {self.parity!r}")

    @classmethod
    def from_settings(cls, settings, baud_rate: int | None = None) -> SerialConfig:
        """Build from the [serial] section of a ProjectConfig."""
        return cls(
            baud_rate=baud_rate or settings.baud_rate,
            data_bits=settings.data_bits,
            stop_bits=settings.stop_bits,
            parity=settings.parity,
        )

    def to_dict(self) -> dict:
        return {
            "baud_rate": self.baud_rate,
            "data_bits": self.data_bits,
            "stop_bits": self.stop_bits,
            "parity": self.parity,
        }


@dataclass
class PortInfo:
    device: str
    description: str
    hwid: str
    vid: int | None = None
    pid: int | None = None


def list_serial_ports() -> list[PortInfo]:
    """List serial ports known to the operating system."""
    ports = []
    for p in comports():
        ports.append(PortInfo(
            device=p.device,
            description=p.description,
            hwid=p.hwid,
            vid=p.vid,
            pid=p.pid,
        ))
    return ports


def open_serial(port: str, config: SerialConfig, timeout: float = 0.1) -> serial.Serial:
    """Open a serial port with structured error handling."""
    try:
        return serial.Serial(
            port=port,
            baudrate=config.baud_rate,
            bytesize=_BYTESIZES[config.data_bits],
            stopbits=_STOPBITS[config.stop_bits],
            parity=_PARITIES[config.parity],
            timeout=timeout,
        )
    except PermissionError as e:
        raise PortPermissionError(str(e)) from e
    except serial.SerialException as e:
        msg = str(e).lower()
        if "busy" in msg or "resource" in msg:
            raise PortBusyError(str(e)) from e
        if "permission" in msg or "access is denied" in msg:
            raise PortPermissionError(str(e)) from e
        raise PortIOError(str(e)) from e


def resolve_port_and_baud(
    cli_port: str | None,
    cli_baud: int | None,
    project_dir: Path | str,
) -> tuple[str, int]:
    """Resolve port and baud rate from CLI flags or config.

    Resolution order: CLI flag > sketchlink.toml > default (115200 baud).
    """
    config = load_project_config(project_dir)
    port = cli_port or config.serial.port
    baud = cli_baud or config.serial.baud_rate

    if port is None:
        raise click.UsageError(
            "No serial port specified. Use --port or set serial.port in sketchlink.toml"
        )

    return port, baud
