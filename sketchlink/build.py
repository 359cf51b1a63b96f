"""Compile and upload orchestration for sketchlink."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from contextlib import asynccontextmanager
from pathlib import Path

from sketchlink.diagnostics import DiagnosticParser
from sketchlink.events import BuildEvent, EventHub
from sketchlink.models import CompileResult, Diagnostic, Severity, UploadResult
from sketchlink.process import SpawnFailure
from sketchlink.toolchains.arduino import ArduinoCli

log = logging.getLogger(__name__)

BUILD_DIR_NAME = "build"

# Tried in order; the first existing file is the artifact.
ARTIFACT_EXTENSIONS = (".hex", ".bin", ".uf2")

UPLOAD_FAILED_MESSAGE = "Upload failed. Check board connection and port selection."

_USING_LIBRARY_RE = re.compile(r"Using library (.+?) at version (\S+)")


def sketch_dir(sketch_path: Path) -> Path:
    """Return the sketch folder, whether given the folder or its ``.ino``."""
    return sketch_path if sketch_path.is_dir() else sketch_path.parent


def build_dir_for(sketch_path: Path) -> Path:
    """Return the per-sketch build directory (``build/`` inside the sketch folder)."""
    return sketch_dir(sketch_path) / BUILD_DIR_NAME


def find_artifact(build_dir: Path, sketch_name: str) -> Path | None:
    for ext in ARTIFACT_EXTENSIONS:
        candidate = build_dir / f"{sketch_name}.ino{ext}"
        if candidate.is_file():
            return candidate
    return None


def extract_used_libraries(log_text: str) -> list[str]:
    """Return ``name@version`` for each "Using library" line, in order."""
    return [f"{m.group(1)}@{m.group(2)}" for m in _USING_LIBRARY_RE.finditer(log_text)]


def _structured_summary(stdout: str) -> dict | None:
    """Decode the JSON summary arduino-cli prints with ``--format json``."""
    text = stdout.strip()
    if not text.startswith("{"):
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def _failure_diagnostic(sketch_path: Path, message: str) -> Diagnostic:
    return Diagnostic(
        file=str(sketch_path),
        line=1,
        column=1,
        severity=Severity.ERROR,
        message=message,
    )


class _SketchLocks:
    """One lock per sketch path, dropped once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._entries: dict[str, list] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @asynccontextmanager
    async def hold(self, key: str):
        entry = self._entries.setdefault(key, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[key]


class BuildOrchestrator:
    """Runs compile and upload through arduino-cli.

    Operations on the same sketch path are serialized; different sketches
    build concurrently. Toolchain and spawn failures come back as results
    with ``success=False``; nothing is raised for them.
    """

    def __init__(self, cli: ArduinoCli | None = None, parser: DiagnosticParser | None = None):
        self.cli = cli or ArduinoCli()
        self.parser = parser or DiagnosticParser()
        self.events = EventHub(BuildEvent)
        self._locks = _SketchLocks()

    def on(self, event, listener) -> None:
        self.events.on(event, listener)

    async def compile(self, sketch_path: Path | str, fqbn: str) -> CompileResult:
        sketch_path = Path(sketch_path)
        async with self._locks.hold(str(sketch_dir(sketch_path).resolve())):
            return await self._compile(sketch_path, fqbn)

    async def upload(self, sketch_path: Path | str, fqbn: str, port: str) -> UploadResult:
        sketch_path = Path(sketch_path)
        async with self._locks.hold(str(sketch_dir(sketch_path).resolve())):
            return await self._upload(sketch_path, fqbn, port)

    async def _compile(self, sketch_path: Path, fqbn: str) -> CompileResult:
        build_dir = build_dir_for(sketch_path)
        self._progress("compiling", sketch_path)
        try:
            build_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            log.error("Could not create build directory %s: %s", build_dir, e)
            self._progress("failed", sketch_path)
            return CompileResult(
                success=False,
                raw_output="",
                diagnostics=(_failure_diagnostic(sketch_path, f"Compilation failed: {e}"),),
                sketch_path=sketch_path,
            )

        result = await self.cli.run(
            self.cli.compile_args(sketch_path, fqbn, build_dir),
            on_line=self._output,
        )
        if isinstance(result, SpawnFailure):
            self._progress("failed", sketch_path)
            return CompileResult(
                success=False,
                raw_output="",
                diagnostics=(_failure_diagnostic(sketch_path, f"Compilation failed: {result.message}"),),
                sketch_path=sketch_path,
            )

        log_text = result.stdout
        error_text = result.stderr
        summary = _structured_summary(result.stdout)
        if summary is not None:
            log_text = summary.get("compiler_out") or ""
            if not error_text.strip():
                error_text = summary.get("compiler_err") or ""

        artifact = None
        if result.ok:
            name = sketch_path.name if sketch_path.is_dir() else sketch_path.stem
            artifact = find_artifact(build_dir, name)
            if artifact is None:
                log.warning("Compile succeeded but no artifact found in %s", build_dir)

        self._progress("done" if result.ok else "failed", sketch_path)
        return CompileResult(
            success=result.ok,
            raw_output=result.stdout,
            diagnostics=tuple(self.parser.parse(error_text)),
            artifact_path=artifact,
            used_libraries=tuple(extract_used_libraries(log_text)),
            sketch_path=sketch_path,
        )

    async def _upload(self, sketch_path: Path, fqbn: str, port: str) -> UploadResult:
        build_dir = build_dir_for(sketch_path)
        input_dir = build_dir if build_dir.is_dir() else None
        self._progress("uploading", sketch_path)

        result = await self.cli.run(
            self.cli.upload_args(sketch_path, fqbn, port, input_dir),
            on_line=self._output,
        )
        if isinstance(result, SpawnFailure):
            self._progress("failed", sketch_path)
            return UploadResult(
                success=False,
                raw_output="",
                diagnostics=(_failure_diagnostic(sketch_path, f"Upload failed: {result.message}"),),
            )

        diagnostics: tuple[Diagnostic, ...] = ()
        if not result.ok:
            diagnostics = (_failure_diagnostic(sketch_path, UPLOAD_FAILED_MESSAGE),)

        self._progress("done" if result.ok else "failed", sketch_path)
        return UploadResult(
            success=result.ok,
            raw_output=result.stdout + "\n" + result.stderr,
            diagnostics=diagnostics,
        )

    def _progress(self, stage: str, sketch_path: Path) -> None:
        self.events.emit(BuildEvent.PROGRESS, {"stage": stage, "sketch": str(sketch_path)})

    def _output(self, line: str) -> None:
        self.events.emit(BuildEvent.OUTPUT, line)
