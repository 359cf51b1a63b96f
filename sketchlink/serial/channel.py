"""Live serial connection to a device."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable

import serial

from sketchlink.errors import ChannelError, ConnectionTimeout, NotConnectedError, PortIOError
from sketchlink.events import ChannelEvent, EventHub
from sketchlink.serial.parser import classify_line
from sketchlink.serial.port import SerialConfig, open_serial

log = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 5.0
RESET_PULSE_INTERVAL = 0.1
DEFAULT_HISTORY_SIZE = 1000
MIN_HISTORY_SIZE = 100

# Unterminated input is delivered as a line once it reaches this size.
MAX_LINE_BYTES = 4096

_PORT_ERRORS = (serial.SerialException, OSError)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionStatus:
    state: ConnectionState
    port: str | None = None
    config: SerialConfig | None = None

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "port": self.port,
            "config": self.config.to_dict() if self.config else None,
        }


def _close_quietly(ser) -> None:
    try:
        ser.close()
    except _PORT_ERRORS as e:
        log.warning("Error closing serial port: %s", e)


class DeviceChannel:
    """Owns at most one open serial port.

    connect, disconnect, write, write_raw, set_dtr, set_rts and reset_device
    run one at a time. Received lines are delivered through ``events`` in the
    order they arrive:

    * ``data``: the trimmed line
    * ``raw_data``: the line as received, without its newline
    * ``plot_data``: the numeric values, only for plotter lines
    """

    def __init__(
        self,
        *,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        port_factory: Callable[[str, SerialConfig], object] = open_serial,
        history_size: int = DEFAULT_HISTORY_SIZE,
        reset_interval: float = RESET_PULSE_INTERVAL,
    ):
        self.connect_timeout = connect_timeout
        self.reset_interval = reset_interval
        self.events = EventHub(ChannelEvent)
        self._port_factory = port_factory
        self._lock = asyncio.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._serial = None
        self._port: str | None = None
        self._config: SerialConfig | None = None
        self._reader: asyncio.Task | None = None
        self._history: deque[str] = deque(maxlen=max(MIN_HISTORY_SIZE, history_size))

    @property
    def state(self) -> ConnectionState:
        return self._state

    def status(self) -> ConnectionStatus:
        return ConnectionStatus(state=self._state, port=self._port, config=self._config)

    def on(self, event, listener) -> None:
        self.events.on(event, listener)

    # -- Lifecycle -------------------------------------------------------------

    async def connect(self, port: str, config: SerialConfig) -> None:
        """Open ``port``, closing any current connection first.

        Raises ConnectionTimeout if the port is not open within
        ``connect_timeout`` seconds and PortIOError if opening fails.
        """
        async with self._lock:
            if self._serial is not None or self._state is not ConnectionState.DISCONNECTED:
                error = await self._close()
                if error is not None:
                    log.warning("Ignoring close error before reconnect: %s", error)

            self._state = ConnectionState.CONNECTING
            loop = asyncio.get_running_loop()
            opening = loop.run_in_executor(None, self._port_factory, port, config)
            try:
                done, _ = await asyncio.wait({opening}, timeout=self.connect_timeout)
            except asyncio.CancelledError:
                opening.add_done_callback(self._discard_late_port)
                self._state = ConnectionState.DISCONNECTED
                raise

            if not done:
                opening.add_done_callback(self._discard_late_port)
                raise self._fail_connect(ConnectionTimeout(
                    f"Connection to {port} timed out after {self.connect_timeout:g}s"
                ))

            try:
                ser = opening.result()
            except ChannelError as e:
                raise self._fail_connect(e)
            except _PORT_ERRORS as e:
                raise self._fail_connect(PortIOError(str(e))) from e

            self._serial = ser
            self._port = port
            self._config = config
            self._state = ConnectionState.CONNECTED
            log.info("Connected to %s at %s baud", port, config.baud_rate)
            self.events.emit(ChannelEvent.CONNECTED, {"port": port, "config": config})
            self._reader = asyncio.create_task(self._read_loop(ser))

    async def disconnect(self) -> None:
        """Close the port. Safe to call when already disconnected.

        State is reset even when closing fails; the failure is then raised as
        PortIOError.
        """
        async with self._lock:
            error = await self._close()
        if error is not None:
            raise error

    # -- Output ----------------------------------------------------------------

    async def write(self, text: str) -> None:
        """Send ``text`` followed by a newline."""
        async with self._lock:
            await self._write_bytes((text + "\n").encode("utf-8"))
            self.events.emit(ChannelEvent.SENT, text)

    async def write_raw(self, data: bytes | str) -> None:
        """Send bytes exactly as given, without a line terminator."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        async with self._lock:
            await self._write_bytes(bytes(data))
            self.events.emit(ChannelEvent.SENT, data)

    # -- Control lines ---------------------------------------------------------

    async def set_dtr(self, value: bool) -> None:
        async with self._lock:
            await self._set_line("dtr", value)

    async def set_rts(self, value: bool) -> None:
        async with self._lock:
            await self._set_line("rts", value)

    async def reset_device(self) -> None:
        """Pulse DTR low, high, low to trigger the board's auto-reset."""
        async with self._lock:
            await self._set_line("dtr", False)
            await asyncio.sleep(self.reset_interval)
            await self._set_line("dtr", True)
            await asyncio.sleep(self.reset_interval)
            await self._set_line("dtr", False)

    # -- History ---------------------------------------------------------------

    def history(self) -> list[str]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    def set_history_size(self, size: int) -> None:
        self._history = deque(self._history, maxlen=max(MIN_HISTORY_SIZE, size))

    # -- Internals -------------------------------------------------------------

    def _require_connected(self):
        if self._state is not ConnectionState.CONNECTED or self._serial is None:
            raise NotConnectedError("Serial port not connected")
        return self._serial

    async def _write_bytes(self, data: bytes) -> None:
        ser = self._require_connected()

        def _write():
            ser.write(data)
            ser.flush()

        try:
            await asyncio.to_thread(_write)
        except _PORT_ERRORS as e:
            log.error("Failed to write to serial port: %s", e)
            raise PortIOError(f"Failed to write to {self._port}: {e}") from e

    async def _set_line(self, name: str, value: bool) -> None:
        ser = self._require_connected()
        try:
            await asyncio.to_thread(setattr, ser, name, value)
        except _PORT_ERRORS as e:
            raise PortIOError(f"Failed to set {name.upper()} on {self._port}: {e}") from e

    def _fail_connect(self, error: ChannelError) -> ChannelError:
        self._state = ConnectionState.ERROR
        log.error("Failed to connect: %s", error.message)
        self.events.emit(ChannelEvent.ERROR, error)
        self._state = ConnectionState.DISCONNECTED
        return error

    def _discard_late_port(self, opening: asyncio.Future) -> None:
        if opening.cancelled() or opening.exception() is not None:
            return
        log.info("Closing port that opened after the connect deadline")
        _close_quietly(opening.result())

    async def _close(self) -> PortIOError | None:
        ser = self._serial
        was_open = ser is not None or self._state is not ConnectionState.DISCONNECTED
        reader = self._reader
        self._serial = None
        self._reader = None

        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            await asyncio.wait({reader})

        error = None
        try:
            if ser is not None:
                await asyncio.to_thread(ser.close)
                log.info("Serial port %s closed", self._port)
        except _PORT_ERRORS as e:
            log.error("Error closing serial port: %s", e)
            error = PortIOError(f"Failed to close {self._port}: {e}")
        finally:
            self._port = None
            self._config = None
            self._state = ConnectionState.DISCONNECTED

        if was_open:
            self.events.emit(ChannelEvent.DISCONNECTED, None)
        return error

    async def _read_loop(self, ser) -> None:
        pending = b""
        while self._serial is ser:
            try:
                chunk = await asyncio.to_thread(ser.readline)
            except _PORT_ERRORS as e:
                await self._port_failed(ser, e)
                return
            if not chunk:
                continue
            pending += chunk
            if pending.endswith(b"\n"):
                pending = pending[:-1]
            elif len(pending) < MAX_LINE_BYTES:
                continue
            else:
                log.debug("Flushing %d bytes received without a newline", len(pending))
            raw = pending.decode("utf-8", errors="replace")
            pending = b""
            self._dispatch(raw)

    def _dispatch(self, raw: str) -> None:
        line = classify_line(raw)
        if line is None:
            return
        self._history.append(line.text)
        self.events.emit(ChannelEvent.DATA, line.text)
        self.events.emit(ChannelEvent.RAW_DATA, raw)
        if line.is_plot:
            self.events.emit(ChannelEvent.PLOT_DATA, list(line.values))

    async def _port_failed(self, ser, exc: Exception) -> None:
        async with self._lock:
            if self._serial is not ser:
                return
            log.error("Serial port error: %s", exc)
            self._serial = None
            self._reader = None
            self._state = ConnectionState.ERROR
            await asyncio.to_thread(_close_quietly, ser)
            self.events.emit(ChannelEvent.ERROR, PortIOError(f"Serial port error: {exc}"))
