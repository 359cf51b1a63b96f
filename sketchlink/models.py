"""Result and descriptor types shared across sketchlink."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    NOTE = "note"


@dataclass(frozen=True)
class Diagnostic:
    """A single compiler message tied to a source location."""
    file: str
    line: int
    column: int
    severity: Severity
    message: str
    suggestion: str | None = None

    def to_dict(self) -> dict:
        return {
            "file": self.file,
            "line": self.line,
            "column": self.column,
            "severity": self.severity.value,
            "message": self.message,
            "suggestion": self.suggestion,
        }


@dataclass(frozen=True)
class CompileResult:
    success: bool
    raw_output: str
    diagnostics: tuple[Diagnostic, ...] = ()
    artifact_path: Path | None = None
    used_libraries: tuple[str, ...] = ()
    sketch_path: Path | None = None

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity is Severity.ERROR]

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity is Severity.WARNING]

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "sketch_path": str(self.sketch_path) if self.sketch_path else None,
            "artifact_path": str(self.artifact_path) if self.artifact_path else None,
            "used_libraries": list(self.used_libraries),
            "errors": [d.to_dict() for d in self.errors],
            "warnings": [d.to_dict() for d in self.warnings],
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }


@dataclass(frozen=True)
class UploadResult:
    success: bool
    raw_output: str
    diagnostics: tuple[Diagnostic, ...] = ()

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }


@dataclass(frozen=True)
class Board:
    """A target board as reported by the toolchain."""
    fqbn: str
    name: str
    platform_id: str = ""
    platform_name: str | None = None


@dataclass(frozen=True)
class Port:
    """A communication port, optionally with the boards detected on it."""
    address: str
    label: str
    protocol: str
    protocol_label: str | None = None
    boards: tuple[Board, ...] = ()


@dataclass(frozen=True)
class Library:
    name: str
    version: str = ""
    author: str = ""
    sentence: str = ""
    website: str = ""
    category: str = ""
    architectures: tuple[str, ...] = field(default_factory=tuple)
    provides_includes: tuple[str, ...] = field(default_factory=tuple)
