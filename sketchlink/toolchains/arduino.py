"""arduino-cli invocation for sketchlink."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Callable

from sketchlink.process import ProcessResult, SpawnFailure, run_process

DEFAULT_CLI_PATH = "arduino-cli"


class ArduinoCli:
    """Builds arduino-cli command lines and runs them one process per call."""

    def __init__(self, cli_path: str | None = None, data_dir: Path | str | None = None) -> None:
        self.cli_path = cli_path or DEFAULT_CLI_PATH
        self.data_dir = Path(data_dir).expanduser() if data_dir else None

    @classmethod
    def from_config(cls, config) -> ArduinoCli:
        """Create from a ProjectConfig."""
        return cls(cli_path=config.toolchain.cli_path, data_dir=config.toolchain.data_dir)

    # -- Command lines ---------------------------------------------------------

    def compile_args(self, sketch_path: Path, fqbn: str, build_dir: Path) -> list[str]:
        return [
            "compile",
            "--fqbn", fqbn,
            "--build-path", str(build_dir),
            "--output-dir", str(build_dir),
            "--verbose",
            "--format", "json",
            str(sketch_path),
        ]

    def upload_args(
        self, sketch_path: Path, fqbn: str, port: str, input_dir: Path | None = None,
    ) -> list[str]:
        args = ["upload", "--fqbn", fqbn, "--port", port, "--verbose"]
        if input_dir is not None:
            args += ["--input-dir", str(input_dir)]
        args.append(str(sketch_path))
        return args

    def board_listall_args(self) -> list[str]:
        return ["board", "listall", "--format", "json"]

    def board_list_args(self) -> list[str]:
        return ["board", "list", "--format", "json"]

    def lib_search_args(self, query: str) -> list[str]:
        return ["lib", "search", query, "--format", "json"]

    def lib_install_args(self, name: str, version: str | None = None) -> list[str]:
        return ["lib", "install", f"{name}@{version}" if version else name]

    def lib_list_args(self) -> list[str]:
        return ["lib", "list", "--format", "json"]

    # -- Execution -------------------------------------------------------------

    def environment(self) -> dict[str, str]:
        if self.data_dir is None:
            return {}
        return {"ARDUINO_DIRECTORIES_DATA": str(self.data_dir)}

    async def run(
        self,
        args: list[str],
        *,
        cwd: Path | None = None,
        on_line: Callable[[str], None] | None = None,
    ) -> ProcessResult | SpawnFailure:
        return await run_process(
            [self.cli_path, *args],
            cwd=cwd,
            env_extras=self.environment(),
            on_line=on_line,
        )

    async def version(self) -> str | None:
        """Return the arduino-cli version line, or None if it cannot run."""
        result = await self.run(["version"])
        if not result.ok:
            return None
        return result.stdout.strip() or None

    def doctor(self) -> dict:
        """Check if arduino-cli is installed."""
        path = shutil.which(self.cli_path)
        if path:
            return {"ok": True, "message": f"arduino-cli found at {path}"}
        return {
            "ok": False,
            "message": f"{self.cli_path} not found. Install from https://arduino.github.io/arduino-cli/",
        }
