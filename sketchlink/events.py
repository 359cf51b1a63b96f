"""Callback registration for build and device channel notifications."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable

log = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class BuildEvent(str, Enum):
    PROGRESS = "progress"
    OUTPUT = "output"


class ChannelEvent(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    DATA = "data"
    RAW_DATA = "raw_data"
    PLOT_DATA = "plot_data"
    ERROR = "error"
    SENT = "sent"


class EventHub:
    """Holds at most one listener per event category.

    Registering a listener for a category replaces the previous one. Events
    are delivered synchronously in the order they are emitted.
    """

    def __init__(self, categories: type[Enum]):
        self._categories = categories
        self._listeners: dict[Enum, Listener] = {}

    def on(self, event: Enum | str, listener: Listener) -> None:
        self._listeners[self._category(event)] = listener

    def off(self, event: Enum | str) -> None:
        self._listeners.pop(self._category(event), None)

    def clear(self) -> None:
        self._listeners.clear()

    def has_listener(self, event: Enum | str) -> bool:
        return self._category(event) in self._listeners

    def emit(self, event: Enum | str, payload: Any = None) -> None:
        listener = self._listeners.get(self._category(event))
        if listener is None:
            return
        try:
            listener(payload)
        except Exception:
            log.exception("Listener for %r event failed", self._category(event).value)

    def _category(self, event: Enum | str) -> Enum:
        if isinstance(event, self._categories):
            return event
        try:
            return self._categories(event)
        except ValueError:
            raise ValueError(
                f"Unknown event {event!r}. Expected one of: "
                f"{', '.join(c.value for c in self._categories)}"
            ) from None
