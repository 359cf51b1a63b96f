"""Project configuration for sketchlink."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

try:
    import tomllib
except ImportError:
    try:
        import tomli as tomllib  # type: ignore[no-redef]
    except ImportError:
        tomllib = None  # type: ignore[assignment]

CONFIG_FILENAME = "sketchlink.toml"
CLI_PATH_ENV = "SKETCHLINK_CLI_PATH"


@dataclass
class ToolchainSettings:
    cli_path: str = "arduino-cli"
    data_dir: str | None = None


@dataclass
class SerialSettings:
    port: str | None = None
    baud_rate: int = 115200
    data_bits: int = 8
    stop_bits: int = 1
    parity: str = "none"
    connect_timeout: float = 5.0


@dataclass
class BuildSettings:
    fqbn: str | None = None


@dataclass
class ProjectConfig:
    toolchain: ToolchainSettings = field(default_factory=ToolchainSettings)
    serial: SerialSettings = field(default_factory=SerialSettings)
    build: BuildSettings = field(default_factory=BuildSettings)


def _read_toml(toml_path: Path) -> dict:
    if tomllib is None:
        raise ImportError("No TOML parser available (need Python 3.11+ or tomli)")
    with open(toml_path, "rb") as f:
        return tomllib.load(f)


def load_project_config(project_dir: Path | str, *, required: bool = False) -> ProjectConfig:
    """Parse sketchlink.toml and return a typed ProjectConfig.

    A missing file yields the defaults unless ``required`` is set. The
    SKETCHLINK_CLI_PATH environment variable overrides toolchain.cli_path.
    """
    project_dir = Path(project_dir)
    toml_path = project_dir / CONFIG_FILENAME
    if toml_path.exists():
        data = _read_toml(toml_path)
    elif required:
        raise FileNotFoundError(f"{CONFIG_FILENAME} not found in {project_dir}")
    else:
        data = {}

    tc_data = data.get("toolchain", {})
    serial_data = data.get("serial", {})
    build_data = data.get("build", {})

    toolchain = ToolchainSettings(
        cli_path=os.environ.get(CLI_PATH_ENV) or tc_data.get("cli_path", "arduino-cli"),
        data_dir=tc_data.get("data_dir"),
    )
    serial = SerialSettings(
        port=serial_data.get("port"),
        baud_rate=serial_data.get("baud_rate", 115200),
        data_bits=serial_data.get("data_bits", 8),
        stop_bits=serial_data.get("stop_bits", 1),
        parity=serial_data.get("parity", "none"),
        connect_timeout=float(serial_data.get("connect_timeout", 5.0)),
    )
    build = BuildSettings(fqbn=build_data.get("fqbn"))

    return ProjectConfig(toolchain=toolchain, serial=serial, build=build)


def get_config_value(project_dir: Path | str, key: str):
    """Dotted key lookup, e.g. 'serial.baud_rate', 'build.fqbn'."""
    toml_path = Path(project_dir) / CONFIG_FILENAME
    if not toml_path.exists() or tomllib is None:
        return None

    data = _read_toml(toml_path)
    section, sep, name = key.partition(".")
    if not sep:
        return data.get(key)
    table = data.get(section)
    return table.get(name) if isinstance(table, dict) else None


def _coerce(value):
    """Turn numeric strings from the command line into numbers."""
    if not isinstance(value, str):
        return value
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            pass
    return value


def _toml_literal(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _find_entry(lines: list[str], section: str, name: str) -> tuple[int | None, int | None, int]:
    """Locate a section and a key inside it.

    Returns (header index, key index, index where the section ends).
    """
    header = f"[{section}]"
    key_re = re.compile(rf"^{re.escape(name)}\s*=")
    header_idx = key_idx = None
    end = len(lines)
    for i, line in enumerate(lines):
        stripped = line.strip()
        is_header = stripped.startswith("[") and stripped.endswith("]")
        if header_idx is None:
            if stripped == header:
                header_idx = i
            continue
        if is_header:
            end = i
            break
        if key_idx is None and key_re.match(stripped):
            key_idx = i
    return header_idx, key_idx, end


def set_config_value(project_dir: Path | str, key: str, value) -> None:
    """Write a value to sketchlink.toml, editing the file line by line.

    Comments and the order of existing entries are preserved.
    """
    section, sep, name = key.partition(".")
    if not sep or not section or not name:
        raise ValueError(f"Key must be dotted (section.key), got: {key}")

    toml_path = Path(project_dir) / CONFIG_FILENAME
    lines = toml_path.read_text().splitlines(keepends=True) if toml_path.exists() else []
    if lines and not lines[-1].endswith("\n"):
        lines[-1] += "\n"

    entry = f"{name} = {_toml_literal(_coerce(value))}\n"
    header_idx, key_idx, end = _find_entry(lines, section, name)
    if key_idx is not None:
        lines[key_idx] = entry
    elif header_idx is not None:
        # Keep blank lines that separate this section from the next one.
        while end > header_idx + 1 and not lines[end - 1].strip():
            end -= 1
        lines.insert(end, entry)
    else:
        if lines:
            lines.append("\n")
        lines += [f"[{section}]\n", entry]

    toml_path.write_text("".join(lines))


def list_config(project_dir: Path | str) -> dict:
    """Return a flat dotted-key dict of all config values."""
    toml_path = Path(project_dir) / CONFIG_FILENAME
    if not toml_path.exists() or tomllib is None:
        return {}

    result = {}
    for section, values in _read_toml(toml_path).items():
        if isinstance(values, dict):
            for k, v in values.items():
                result[f"{section}.{k}"] = v
        else:
            result[section] = values
    return result
