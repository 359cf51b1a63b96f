"""CLI entry point for sketchlink."""

import asyncio
import json as jsonmod
import logging
from pathlib import Path

import click

from sketchlink.build import BuildOrchestrator
from sketchlink.config import load_project_config, get_config_value, set_config_value, list_config
from sketchlink.errors import ChannelError
from sketchlink.events import BuildEvent, ChannelEvent
from sketchlink.registry import BoardPortRegistry
from sketchlink.serial.channel import DeviceChannel
from sketchlink.serial.port import SerialConfig, list_serial_ports, resolve_port_and_baud
from sketchlink.toolchains.arduino import ArduinoCli


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def main(verbose):
    """Compile, upload and talk to microcontroller boards."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _project():
    project_dir = Path.cwd()
    return project_dir, load_project_config(project_dir)


def _resolve_board(board, config):
    board = board or config.build.fqbn
    if not board:
        raise click.UsageError("No board specified. Use --board or set build.fqbn in sketchlink.toml")
    return board


def _echo_diagnostic(d):
    click.echo(f"{d.file}:{d.line}:{d.column}: {d.severity.value}: {d.message}", err=True)
    if d.suggestion:
        click.echo(f"  hint: {d.suggestion}", err=True)


# ---------------------------------------------------------------------------
# Build commands
# ---------------------------------------------------------------------------

@main.command("compile")
@click.argument("sketch", type=click.Path(exists=True))
@click.option("--board", type=str, help="Board FQBN (e.g. arduino:avr:uno).")
@click.option("--json", "use_json", is_flag=True, help="Output JSON.")
def compile_cmd(sketch, board, use_json):
    """Compile a sketch."""
    _, config = _project()
    board = _resolve_board(board, config)
    orchestrator = BuildOrchestrator(ArduinoCli.from_config(config))
    if not use_json:
        orchestrator.on(BuildEvent.OUTPUT, click.echo)

    result = asyncio.run(orchestrator.compile(sketch, board))

    if use_json:
        click.echo(jsonmod.dumps(result.to_dict(), indent=2))
    else:
        for d in result.diagnostics:
            _echo_diagnostic(d)
        if result.success:
            click.echo(f"Compiled {sketch} for {board}")
            if result.artifact_path:
                click.echo(f"  artifact: {result.artifact_path}")
            for lib in result.used_libraries:
                click.echo(f"  library: {lib}")
        else:
            click.echo(f"Error: compilation of {sketch} failed.", err=True)

    if not result.success:
        raise SystemExit(1)


@main.command("upload")
@click.argument("sketch", type=click.Path(exists=True))
@click.option("--port", type=str, help="Serial port.")
@click.option("--board", type=str, help="Board FQBN (e.g. arduino:avr:uno).")
@click.option("--json", "use_json", is_flag=True, help="Output JSON.")
def upload_cmd(sketch, port, board, use_json):
    """Upload a compiled sketch to a board."""
    _, config = _project()
    board = _resolve_board(board, config)
    port = port or config.serial.port
    if not port:
        raise click.UsageError("No serial port specified. Use --port or set serial.port in sketchlink.toml")

    orchestrator = BuildOrchestrator(ArduinoCli.from_config(config))
    if not use_json:
        orchestrator.on(BuildEvent.OUTPUT, click.echo)

    result = asyncio.run(orchestrator.upload(sketch, board, port))

    if use_json:
        click.echo(jsonmod.dumps(result.to_dict(), indent=2))
    elif result.success:
        click.echo(f"Uploaded {sketch} to {port}")
    else:
        for d in result.diagnostics:
            _echo_diagnostic(d)

    if not result.success:
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# Registry commands
# ---------------------------------------------------------------------------

@main.command()
@click.option("--json", "use_json", is_flag=True, help="Output JSON.")
def boards(use_json):
    """List boards known to the toolchain."""
    _, config = _project()
    registry = BoardPortRegistry(ArduinoCli.from_config(config))
    found = asyncio.run(registry.list_boards())
    if use_json:
        data = [{"fqbn": b.fqbn, "name": b.name, "platform": b.platform_id} for b in found]
        click.echo(jsonmod.dumps(data, indent=2))
        return
    if not found:
        click.echo("No boards found. Install a core with 'arduino-cli core install'.")
        return
    for b in found:
        click.echo(f"  {b.fqbn:<40} {b.name}")


@main.command()
@click.option("--local", is_flag=True, help="List OS serial ports without the toolchain.")
@click.option("--json", "use_json", is_flag=True, help="Output JSON.")
def ports(local, use_json):
    """List communication ports and the boards detected on them."""
    if local:
        found = list_serial_ports()
        if use_json:
            data = [{"device": p.device, "description": p.description, "hwid": p.hwid} for p in found]
            click.echo(jsonmod.dumps(data, indent=2))
        elif not found:
            click.echo("No serial ports found.")
        else:
            for p in found:
                click.echo(f"  {p.device:<25} {p.description}")
        return

    _, config = _project()
    registry = BoardPortRegistry(ArduinoCli.from_config(config))
    found = asyncio.run(registry.list_ports())
    if use_json:
        data = [{
            "address": p.address,
            "label": p.label,
            "protocol": p.protocol,
            "boards": [{"fqbn": b.fqbn, "name": b.name} for b in p.boards],
        } for p in found]
        click.echo(jsonmod.dumps(data, indent=2))
        return
    if not found:
        click.echo("No ports found.")
        return
    for p in found:
        names = ", ".join(b.name for b in p.boards)
        suffix = f" ({names})" if names else ""
        click.echo(f"  {p.address:<25} {p.protocol}{suffix}")


@main.group()
def lib():
    """Search, install and list libraries."""
    pass


@lib.command("search")
@click.argument("query")
def lib_search_cmd(query):
    """Search the library index."""
    _, config = _project()
    registry = BoardPortRegistry(ArduinoCli.from_config(config))
    found = asyncio.run(registry.search_libraries(query))
    if not found:
        click.echo(f"No libraries matching '{query}'.")
        return
    for library in found:
        click.echo(f"  {library.name:<30} {library.version:<10} {library.sentence}")


@lib.command("install")
@click.argument("name")
@click.option("--version", "version", type=str, help="Library version.")
def lib_install_cmd(name, version):
    """Install a library."""
    _, config = _project()
    registry = BoardPortRegistry(ArduinoCli.from_config(config))
    if asyncio.run(registry.install_library(name, version)):
        click.echo(f"Installed {name}")
    else:
        click.echo(f"Error: could not install {name}", err=True)
        raise SystemExit(1)


@lib.command("list")
def lib_list_cmd():
    """List installed libraries."""
    _, config = _project()
    registry = BoardPortRegistry(ArduinoCli.from_config(config))
    found = asyncio.run(registry.list_installed_libraries())
    if not found:
        click.echo("No libraries installed.")
        return
    for library in found:
        click.echo(f"  {library.name:<30} {library.version}")


# ---------------------------------------------------------------------------
# Serial commands
# ---------------------------------------------------------------------------

def _open_channel(port, baud):
    project_dir, config = _project()
    port, baud = resolve_port_and_baud(port, baud, project_dir)
    serial_config = SerialConfig.from_settings(config.serial, baud_rate=baud)
    channel = DeviceChannel(connect_timeout=config.serial.connect_timeout)
    return channel, port, serial_config


async def _monitor(channel, port, serial_config, duration, reset, plot_only):
    channel.on(ChannelEvent.ERROR, lambda e: click.echo(f"Error: {e}", err=True))
    if plot_only:
        channel.on(ChannelEvent.PLOT_DATA, lambda values: click.echo(",".join(f"{v:g}" for v in values)))
    else:
        channel.on(ChannelEvent.DATA, click.echo)

    await channel.connect(port, serial_config)
    try:
        if reset:
            await channel.reset_device()
        if duration:
            await asyncio.sleep(duration)
        else:
            await asyncio.Event().wait()
    finally:
        await channel.disconnect()


@main.command()
@click.option("--port", type=str, help="Serial port.")
@click.option("--baud", type=int, help="Baud rate.")
@click.option("--duration", type=float, help="Monitor duration in seconds.")
@click.option("--reset", is_flag=True, help="Reset the board after connecting.")
@click.option("--plot", "plot_only", is_flag=True, help="Only print plotter lines as CSV.")
def monitor(port, baud, duration, reset, plot_only):
    """Stream serial output continuously."""
    channel, port, serial_config = _open_channel(port, baud)
    try:
        asyncio.run(_monitor(channel, port, serial_config, duration, reset, plot_only))
    except ChannelError as e:
        click.echo(f"Error: {e.message}", err=True)
        raise SystemExit(e.exit_code)
    except KeyboardInterrupt:
        pass


async def _send(channel, port, serial_config, text):
    await channel.connect(port, serial_config)
    try:
        await channel.write(text)
    finally:
        await channel.disconnect()


@main.command()
@click.argument("text")
@click.option("--port", type=str, help="Serial port.")
@click.option("--baud", type=int, help="Baud rate.")
def send(text, port, baud):
    """Send a line of text to the board."""
    channel, port, serial_config = _open_channel(port, baud)
    try:
        asyncio.run(_send(channel, port, serial_config, text))
    except ChannelError as e:
        click.echo(f"Error: {e.message}", err=True)
        raise SystemExit(e.exit_code)
    click.echo(f"Sent to {port}: {text}")


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

@main.command()
def doctor():
    """Check your environment."""
    _, config = _project()
    ok = True

    cli = ArduinoCli.from_config(config)
    result = cli.doctor()
    if result["ok"]:
        click.echo(f"[OK] {result['message']}")
        version = asyncio.run(cli.version())
        if version:
            click.echo(f"     {version}")
    else:
        click.echo(f"[!!] {result['message']}")
        ok = False

    found = list_serial_ports()
    if found:
        click.echo("[OK] Serial ports found:")
        for p in found:
            click.echo(f"     {p.device}")
    else:
        click.echo("[!!] No serial ports detected. Is a board connected via USB?")
        ok = False

    if ok:
        click.echo("\nAll checks passed.")
    else:
        click.echo("\nSome checks failed. Fix the issues above.")


@main.command("config")
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--list", "show_list", is_flag=True, help="Show all config values.")
def config_cmd(key, value, show_list):
    """Get or set sketchlink.toml configuration values."""
    project_dir = Path.cwd()

    if show_list:
        values = list_config(project_dir)
        if not values:
            click.echo("No configuration found.")
            return
        for k, v in sorted(values.items()):
            click.echo(f"  {k} = {v}")
        return

    if key and value:
        set_config_value(project_dir, key, value)
        click.echo(f"Set {key} = {value}")
        return

    if key:
        val = get_config_value(project_dir, key)
        if val is None:
            click.echo(f"{key} is not set.")
        else:
            click.echo(f"{key} = {val}")
        return

    click.echo("Usage: sketchlink config <KEY> [VALUE] or sketchlink config --list")
