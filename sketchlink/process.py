"""Async one-shot subprocess invocation for sketchlink."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from sketchlink.errors import ProcessSpawnError, ToolchainFailure

log = logging.getLogger(__name__)

# Output is read in blocks and split into lines locally.
_READ_SIZE = 64 * 1024


@dataclass(frozen=True)
class ProcessResult:
    """A process that ran to completion."""
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def check(self) -> ProcessResult:
        """Return self, or raise ToolchainFailure on a non-zero exit."""
        if not self.ok:
            detail = self.stderr.strip().splitlines()
            message = f"exit code {self.exit_code}"
            if detail:
                message += f": {detail[-1]}"
            raise ToolchainFailure(message, self.exit_code)
        return self


@dataclass(frozen=True)
class SpawnFailure:
    """A process that could not be started at all."""
    message: str

    ok = False

    def check(self):
        raise ProcessSpawnError(self.message)


def format_command(argv: list[str]) -> str:
    return " ".join(f'"{arg}"' if " " in arg else arg for arg in argv)


async def run_process(
    argv: list[str],
    *,
    cwd: Path | str | None = None,
    env_extras: dict[str, str] | None = None,
    on_line: Callable[[str], None] | None = None,
) -> ProcessResult | SpawnFailure:
    """Run a command and collect its exit code, stdout and stderr.

    Each decoded output line is passed to ``on_line`` as it arrives. Spawn
    failures are returned as ``SpawnFailure`` rather than raised.
    """
    env = os.environ.copy()
    if env_extras:
        env.update(env_extras)

    cmd_str = format_command(argv)
    log.debug("Running command: %s", cmd_str)
    if cwd:
        log.debug("  Working dir: %s", cwd)

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd else None,
            env=env,
        )
    except FileNotFoundError:
        message = f"Command '{argv[0]}' not found. Is it installed and on PATH?"
        log.error(message)
        return SpawnFailure(message)
    except PermissionError as e:
        message = f"Permission denied running '{argv[0]}': {e}"
        log.error(message)
        return SpawnFailure(message)
    except OSError as e:
        message = f"Could not start '{argv[0]}': {e}"
        log.error(message)
        return SpawnFailure(message)

    try:
        stdout, stderr = await asyncio.gather(
            _collect(process.stdout, on_line),
            _collect(process.stderr, on_line),
        )
        exit_code = await process.wait()
    finally:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()

    level = logging.DEBUG if exit_code == 0 else logging.WARNING
    log.log(level, "Command finished: code=%s cmd=%s", exit_code, cmd_str)
    if stderr.strip():
        log.log(level, "STDERR:\n---\n%s\n---", stderr.strip())

    return ProcessResult(exit_code=exit_code, stdout=stdout, stderr=stderr)


async def _collect(stream: asyncio.StreamReader | None, on_line) -> str:
    """Read a stream to EOF, splitting lines here so no line is too long."""
    if stream is None:
        return ""
    chunks: list[str] = []
    pending: list[bytes] = []
    while True:
        block = await stream.read(_READ_SIZE)
        if not block:
            break
        pending.append(block)
        if b"\n" not in block:
            continue
        *lines, rest = b"".join(pending).split(b"\n")
        pending = [rest] if rest else []
        for raw in lines:
            _emit(raw + b"\n", chunks, on_line)
    if pending:
        _emit(b"".join(pending), chunks, on_line)
    return "".join(chunks)


def _emit(raw: bytes, chunks: list[str], on_line) -> None:
    text = raw.decode("utf-8", errors="replace")
    chunks.append(text)
    if on_line is not None:
        on_line(text.rstrip("\r\n"))
