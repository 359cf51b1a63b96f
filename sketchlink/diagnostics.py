"""Stateless compiler-output parser for sketchlink."""

from __future__ import annotations

import re
from pathlib import Path

from sketchlink.models import Diagnostic, Severity

# GCC style: file:line:column: severity: message
_WITH_COLUMN_RE = re.compile(r"^(.+?):(\d+):(\d+):\s+(error|warning|note):\s+(.+)$")

# Same without the column
_WITHOUT_COLUMN_RE = re.compile(r"^(.+?):(\d+):\s+(error|warning|note):\s+(.+)$")

# Ordered (needles, suggestion) rules matched against the lower-cased message.
SUGGESTION_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("was not declared",),
     "Check if the variable or function is declared before use, or if you need to include a library."),
    (("expected ';'",),
     "Add a semicolon at the end of the statement."),
    (("undeclared",),
     "Make sure to declare the variable or include the necessary library."),
    (("no matching function",),
     "Check the function name and parameters. You might need to include a library or declare the function."),
    (("does not name a type",),
     "Check if you've included the necessary header file or library for this type."),
    (("expected ')'", "expected '('"),
     "Check for missing or extra parentheses in your code."),
    (("expected '}'", "expected '{'"),
     "Check for missing or extra braces in your code blocks."),
    (("no such file or directory",),
     "A header could not be found. Install the library that provides it."),
)


def suggest(message: str) -> str | None:
    """Return a fix hint for a compiler message, or None."""
    lowered = message.lower()
    for needles, suggestion in SUGGESTION_RULES:
        if any(needle in lowered for needle in needles):
            return suggestion
    return None


class DiagnosticParser:
    """Turn raw compiler text into a list of diagnostics.

    Lines that do not look like ``file:line[:column]: severity: message`` are
    build-log noise and produce nothing.
    """

    def __init__(self, base_dir: Path | str | None = None):
        self.base_dir = Path(base_dir) if base_dir is not None else None

    def parse(self, raw_text: str) -> list[Diagnostic]:
        diagnostics = []
        for line in raw_text.splitlines():
            diagnostic = self.parse_line(line)
            if diagnostic is not None:
                diagnostics.append(diagnostic)
        return diagnostics

    def parse_line(self, line: str) -> Diagnostic | None:
        line = line.rstrip("\r")

        m = _WITH_COLUMN_RE.match(line)
        if m:
            file, lineno, column, severity, message = m.groups()
        else:
            m = _WITHOUT_COLUMN_RE.match(line)
            if not m:
                return None
            file, lineno, severity, message = m.groups()
            column = "1"

        lineno_value = int(lineno)
        if lineno_value < 1:
            return None

        message = message.strip()
        return Diagnostic(
            file=self._normalize_path(file.strip()),
            line=lineno_value,
            column=max(int(column), 1),
            severity=Severity(severity),
            message=message,
            suggestion=suggest(message),
        )

    def _normalize_path(self, file: str) -> str:
        """Make absolute paths under the base directory relative to it."""
        path = Path(file)
        if not path.is_absolute():
            return file
        base = self.base_dir if self.base_dir is not None else Path.cwd()
        try:
            return str(path.relative_to(base))
        except ValueError:
            return file


def parse_diagnostics(raw_text: str) -> list[Diagnostic]:
    """Parse compiler text relative to the current working directory."""
    return DiagnosticParser().parse(raw_text)
