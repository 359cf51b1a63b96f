"""Stateless per-line classification of serial output."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field

# Plotter lines separate values with commas, spaces or tabs.
_SEPARATOR_RE = re.compile(r"[,\s]+")


def parse_numeric_values(line: str) -> list[float]:
    """Return every token of the line that parses as a finite number."""
    values = []
    for token in _SEPARATOR_RE.split(line.strip()):
        if not token:
            continue
        try:
            value = float(token)
        except ValueError:
            continue
        if math.isfinite(value):
            values.append(value)
    return values


def is_plotter_data(line: str) -> bool:
    """True if the line carries more than one numeric value."""
    return len(parse_numeric_values(line)) > 1


@dataclass(frozen=True)
class SerialLine:
    """One line received from the device."""
    raw: str
    text: str
    values: tuple[float, ...] = field(default_factory=tuple)

    @property
    def is_plot(self) -> bool:
        return len(self.values) > 1

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "plot": self.is_plot,
            "values": list(self.values) if self.is_plot else [],
        }


def classify_line(raw: str) -> SerialLine | None:
    """Classify a received line. Blank lines yield None."""
    text = raw.strip()
    if not text:
        return None
    return SerialLine(raw=raw, text=text, values=tuple(parse_numeric_values(text)))
