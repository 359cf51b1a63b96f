"""Board, port and library listings from arduino-cli."""

from __future__ import annotations

import json
import logging

from sketchlink.errors import MalformedResponse, ToolchainError
from sketchlink.models import Board, Library, Port
from sketchlink.toolchains.arduino import ArduinoCli

log = logging.getLogger(__name__)


def decode_json(stdout: str):
    """Decode toolchain JSON output. Blank output decodes to None."""
    text = stdout.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedResponse(f"Invalid JSON from toolchain: {e}") from e


def _entries(data, *keys: str) -> list:
    """Return the list under the first present key, or data itself if a list."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in keys:
            value = data.get(key)
            if value is not None:
                if not isinstance(value, list):
                    raise MalformedResponse(f"Expected a list under '{key}'")
                return value
        return []
    raise MalformedResponse(f"Unexpected JSON type: {type(data).__name__}")


def parse_board(entry: dict) -> Board:
    platform = entry.get("platform")
    platform_name = entry.get("platform_name")
    if isinstance(platform, dict):
        # Newer arduino-cli nests platform metadata.
        platform_id = platform.get("metadata", {}).get("id", "")
        platform_name = platform_name or platform.get("release", {}).get("name")
    else:
        platform_id = platform or ""
    return Board(
        fqbn=entry.get("fqbn", ""),
        name=entry.get("name", ""),
        platform_id=platform_id,
        platform_name=platform_name,
    )


def parse_port(entry: dict) -> Port | None:
    port_info = entry.get("port", entry)
    address = port_info.get("address", "")
    if not address:
        return None
    boards = entry.get("matching_boards")
    if boards is None:
        boards = entry.get("boards") or []
    return Port(
        address=address,
        label=port_info.get("label") or address,
        protocol=port_info.get("protocol", ""),
        protocol_label=port_info.get("protocol_label"),
        boards=tuple(parse_board(b) for b in boards if isinstance(b, dict)),
    )


def parse_library(entry: dict) -> Library:
    lib = entry.get("library", entry)
    version = lib.get("latest_version") or lib.get("version") or ""
    latest = lib.get("latest")
    if not version and isinstance(latest, dict):
        version = latest.get("version", "")
        lib = {**latest, **lib}
    return Library(
        name=lib.get("name", ""),
        version=version,
        author=lib.get("author", ""),
        sentence=lib.get("sentence", ""),
        website=lib.get("website", ""),
        category=lib.get("category", ""),
        architectures=tuple(lib.get("architectures") or ()),
        provides_includes=tuple(lib.get("provides_includes") or ()),
    )


class BoardPortRegistry:
    """Queries arduino-cli for boards, ports and libraries.

    Listing failures of any kind (missing binary, non-zero exit, blank or
    malformed output) produce an empty list and a warning, never an error.
    """

    def __init__(self, cli: ArduinoCli | None = None):
        self.cli = cli or ArduinoCli()

    async def list_boards(self) -> list[Board]:
        data = await self._query(self.cli.board_listall_args(), "board list")
        return self._build(data, ("boards",), parse_board, "board list")

    async def list_ports(self) -> list[Port]:
        data = await self._query(self.cli.board_list_args(), "port list")
        ports = self._build(data, ("detected_ports", "ports"), parse_port, "port list")
        return [p for p in ports if p is not None]

    async def search_libraries(self, query: str) -> list[Library]:
        data = await self._query(self.cli.lib_search_args(query), "library search")
        return self._build(data, ("libraries",), parse_library, "library search")

    async def list_installed_libraries(self) -> list[Library]:
        data = await self._query(self.cli.lib_list_args(), "installed library list")
        return self._build(data, ("installed_libraries",), parse_library, "installed library list")

    async def install_library(self, name: str, version: str | None = None) -> bool:
        result = await self.cli.run(self.cli.lib_install_args(name, version))
        try:
            result.check()
        except ToolchainError as e:
            log.warning("Failed to install library %s: %s", name, e)
            return False
        return True

    async def _query(self, args: list[str], what: str):
        result = await self.cli.run(args)
        try:
            data = decode_json(result.check().stdout)
        except ToolchainError as e:
            log.warning("Failed to get %s: %s", what, e)
            return None
        if data is None:
            log.warning("No %s data available from arduino-cli", what)
        return data

    def _build(self, data, keys: tuple[str, ...], parse, what: str) -> list:
        if data is None:
            return []
        try:
            return [parse(entry) for entry in _entries(data, *keys) if isinstance(entry, dict)]
        except (MalformedResponse, AttributeError, TypeError) as e:
            log.warning("Unexpected %s format: %s", what, e)
            return []
