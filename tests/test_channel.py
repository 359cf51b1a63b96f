"""Tests for the live device channel."""

import asyncio
import queue
import time

import pytest
import serial

from sketchlink.errors import ConnectionTimeout, NotConnectedError, PortBusyError, PortIOError
from sketchlink.serial.channel import (
    MAX_LINE_BYTES,
    MIN_HISTORY_SIZE,
    ConnectionState,
    DeviceChannel,
)
from sketchlink.serial.port import SerialConfig

CONFIG = SerialConfig(115200)


class FakeSerial:
    """Fake serial port fed from a queue of byte chunks."""

    def __init__(self, chunks=()):
        self._incoming = queue.Queue()
        for chunk in chunks:
            self.feed(chunk)
        self.written = []
        self.dtr_values = []
        self.rts = None
        self.is_open = True
        self.fail_reads = False
        self.fail_writes = False
        self.fail_close = False
        self.ops = []

    def feed(self, chunk):
        self._incoming.put(chunk.encode() if isinstance(chunk, str) else chunk)

    def readline(self):
        if self.fail_reads:
            raise serial.SerialException("device reports readiness to read but returned no data")
        try:
            return self._incoming.get(timeout=0.02)
        except queue.Empty:
            return b""

    def write(self, data):
        if self.fail_writes:
            raise serial.SerialException("write failed")
        self.written.append(data)

    def flush(self):
        pass

    def close(self):
        self.ops.append("close")
        if self.fail_close:
            raise OSError(5, "Input/output error")
        self.is_open = False

    @property
    def dtr(self):
        return self.dtr_values[-1] if self.dtr_values else None

    @dtr.setter
    def dtr(self, value):
        self.dtr_values.append(value)
        self.ops.append(("dtr", value))


class Recorder:
    """Collects every channel event by name."""

    def __init__(self, channel):
        self.events = []
        for name in ("connected", "disconnected", "data", "raw_data", "plot_data", "error", "sent"):
            channel.on(name, lambda payload, name=name: self.events.append((name, payload)))

    def named(self, name):
        return [payload for event, payload in self.events if event == name]


def _channel(fake, **kwargs):
    return DeviceChannel(port_factory=lambda port, config: fake, **kwargs)


async def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestConnect:
    def test_connect_and_disconnect(self):
        fake = FakeSerial()
        channel = _channel(fake)
        recorder = Recorder(channel)

        async def scenario():
            await channel.connect("/dev/ttyACM0", CONFIG)
            assert channel.state is ConnectionState.CONNECTED
            assert channel.status().to_dict() == {
                "state": "connected",
                "port": "/dev/ttyACM0",
                "config": CONFIG.to_dict(),
            }
            await channel.disconnect()

        asyncio.run(scenario())
        assert channel.state is ConnectionState.DISCONNECTED
        assert not fake.is_open
        assert recorder.named("connected") == [{"port": "/dev/ttyACM0", "config": CONFIG}]
        assert len(recorder.named("disconnected")) == 1

    def test_double_disconnect_is_safe(self):
        channel = _channel(FakeSerial())
        recorder = Recorder(channel)

        async def scenario():
            await channel.connect("/dev/ttyACM0", CONFIG)
            await channel.disconnect()
            await channel.disconnect()

        asyncio.run(scenario())
        assert len(recorder.named("disconnected")) == 1

    def test_disconnect_resets_state_when_close_fails(self):
        fake = FakeSerial()
        fake.fail_close = True
        channel = _channel(fake)
        recorder = Recorder(channel)

        async def scenario():
            await channel.connect("/dev/ttyACM0", CONFIG)
            with pytest.raises(PortIOError) as exc_info:
                await channel.disconnect()
            assert "Input/output error" in exc_info.value.message
            assert channel.state is ConnectionState.DISCONNECTED
            assert channel.status().port is None
            await channel.disconnect()

        asyncio.run(scenario())
        assert channel.state is ConnectionState.DISCONNECTED
        assert fake.ops.count("close") == 1
        assert len(recorder.named("disconnected")) == 1

    def test_disconnect_when_never_connected(self):
        channel = _channel(FakeSerial())
        recorder = Recorder(channel)
        asyncio.run(channel.disconnect())
        assert recorder.events == []

    def test_reconnect_closes_previous_port(self):
        first, second = FakeSerial(), FakeSerial()
        ports = iter([first, second])
        channel = DeviceChannel(port_factory=lambda port, config: next(ports))

        async def scenario():
            await channel.connect("/dev/ttyACM0", CONFIG)
            await channel.connect("/dev/ttyACM1", CONFIG)
            assert channel.status().port == "/dev/ttyACM1"
            await channel.disconnect()

        asyncio.run(scenario())
        assert not first.is_open
        assert not second.is_open

    def test_open_failure(self):
        def factory(port, config):
            raise PortBusyError("Device or resource busy")

        channel = DeviceChannel(port_factory=factory)
        recorder = Recorder(channel)
        with pytest.raises(PortBusyError):
            asyncio.run(channel.connect("/dev/ttyACM0", CONFIG))
        assert channel.state is ConnectionState.DISCONNECTED
        assert isinstance(recorder.named("error")[0], PortBusyError)

    def test_raw_serial_exception_wrapped(self):
        def factory(port, config):
            raise serial.SerialException("could not open port")

        channel = DeviceChannel(port_factory=factory)
        with pytest.raises(PortIOError):
            asyncio.run(channel.connect("/dev/ttyACM0", CONFIG))
        assert channel.state is ConnectionState.DISCONNECTED

    def test_timeout_closes_late_port(self):
        fake = FakeSerial()

        def slow_factory(port, config):
            time.sleep(0.3)
            return fake

        channel = DeviceChannel(port_factory=slow_factory, connect_timeout=0.05)
        recorder = Recorder(channel)

        async def scenario():
            with pytest.raises(ConnectionTimeout):
                await channel.connect("/dev/ttyACM0", CONFIG)
            assert channel.state is ConnectionState.DISCONNECTED
            await _wait_for(lambda: not fake.is_open)

        asyncio.run(scenario())
        assert isinstance(recorder.named("error")[0], ConnectionTimeout)
        assert recorder.named("connected") == []


class TestReceive:
    def test_lines_dispatched_in_order(self):
        fake = FakeSerial(["hello\r\n", "1,2,3\n", "  \n", "done\n"])
        channel = _channel(fake)
        recorder = Recorder(channel)

        async def scenario():
            await channel.connect("/dev/ttyACM0", CONFIG)
            await _wait_for(lambda: len(recorder.named("data")) == 3)
            await channel.disconnect()

        asyncio.run(scenario())
        assert recorder.named("data") == ["hello", "1,2,3", "done"]
        assert recorder.named("raw_data") == ["hello\r", "1,2,3", "done"]
        assert recorder.named("plot_data") == [[1.0, 2.0, 3.0]]
        assert channel.history() == ["hello", "1,2,3", "done"]

    def test_partial_chunks_joined(self):
        fake = FakeSerial([b"tem", b"p=21\n"])
        channel = _channel(fake)
        recorder = Recorder(channel)

        async def scenario():
            await channel.connect("/dev/ttyACM0", CONFIG)
            await _wait_for(lambda: recorder.named("data"))
            await channel.disconnect()

        asyncio.run(scenario())
        assert recorder.named("data") == ["temp=21"]

    def test_unterminated_input_flushed_at_cap(self):
        fake = FakeSerial([b"x" * (MAX_LINE_BYTES + 904), b"ok\n"])
        channel = _channel(fake)
        recorder = Recorder(channel)

        async def scenario():
            await channel.connect("/dev/ttyACM0", CONFIG)
            await _wait_for(lambda: len(recorder.named("data")) == 2)
            await channel.disconnect()

        asyncio.run(scenario())
        assert recorder.named("data") == ["x" * (MAX_LINE_BYTES + 904), "ok"]

    def test_read_error_puts_channel_in_error_state(self):
        fake = FakeSerial()
        channel = _channel(fake)
        recorder = Recorder(channel)

        async def scenario():
            await channel.connect("/dev/ttyACM0", CONFIG)
            fake.fail_reads = True
            await _wait_for(lambda: channel.state is ConnectionState.ERROR)
            assert not fake.is_open
            with pytest.raises(NotConnectedError):
                await channel.write("ping")
            await channel.disconnect()

        asyncio.run(scenario())
        assert isinstance(recorder.named("error")[0], PortIOError)
        assert channel.state is ConnectionState.DISCONNECTED
        assert len(recorder.named("disconnected")) == 1


class TestWrite:
    def test_write_appends_newline(self):
        fake = FakeSerial()
        channel = _channel(fake)
        recorder = Recorder(channel)

        async def scenario():
            await channel.connect("/dev/ttyACM0", CONFIG)
            await channel.write("led on")
            await channel.write_raw(b"\x01\x02")
            await channel.disconnect()

        asyncio.run(scenario())
        assert fake.written == [b"led on\n", b"\x01\x02"]
        assert recorder.named("sent") == ["led on", b"\x01\x02"]

    def test_write_while_disconnected(self):
        fake = FakeSerial()
        channel = _channel(fake)

        async def scenario():
            await channel.connect("/dev/ttyACM0", CONFIG)
            await channel.disconnect()
            with pytest.raises(NotConnectedError) as exc_info:
                await channel.write("hello")
            assert exc_info.value.message == "Serial port not connected"
            with pytest.raises(NotConnectedError):
                await channel.write_raw(b"\x00")

        asyncio.run(scenario())
        assert fake.written == []

    def test_write_before_connect_opens_nothing(self):
        calls = []
        channel = DeviceChannel(port_factory=lambda port, config: calls.append(port))
        with pytest.raises(NotConnectedError):
            asyncio.run(channel.write("hello"))
        assert calls == []

    def test_write_failure_keeps_connection(self):
        fake = FakeSerial()
        channel = _channel(fake)

        async def scenario():
            await channel.connect("/dev/ttyACM0", CONFIG)
            fake.fail_writes = True
            with pytest.raises(PortIOError):
                await channel.write("hello")
            assert channel.state is ConnectionState.CONNECTED
            fake.fail_writes = False
            await channel.write("again")
            await channel.disconnect()

        asyncio.run(scenario())
        assert fake.written == [b"again\n"]


class TestControlLines:
    def test_reset_pulses_dtr(self):
        fake = FakeSerial()
        channel = _channel(fake, reset_interval=0)

        async def scenario():
            await channel.connect("/dev/ttyACM0", CONFIG)
            await channel.reset_device()
            await channel.disconnect()

        asyncio.run(scenario())
        assert fake.dtr_values == [False, True, False]

    def test_reset_completes_before_disconnect(self):
        fake = FakeSerial()
        channel = _channel(fake, reset_interval=0.05)

        async def scenario():
            await channel.connect("/dev/ttyACM0", CONFIG)
            await asyncio.gather(channel.reset_device(), channel.disconnect())

        asyncio.run(scenario())
        assert fake.ops == [("dtr", False), ("dtr", True), ("dtr", False), "close"]
        assert channel.state is ConnectionState.DISCONNECTED

    def test_set_rts(self):
        fake = FakeSerial()
        channel = _channel(fake)

        async def scenario():
            await channel.connect("/dev/ttyACM0", CONFIG)
            await channel.set_rts(True)
            await channel.disconnect()

        asyncio.run(scenario())
        assert fake.rts is True

    def test_reset_requires_connection(self):
        with pytest.raises(NotConnectedError):
            asyncio.run(DeviceChannel().reset_device())


class TestHistory:
    def test_size_has_floor(self):
        channel = DeviceChannel(history_size=10)
        for i in range(150):
            channel._dispatch(f"line {i}")
        history = channel.history()
        assert len(history) == MIN_HISTORY_SIZE
        assert history[0] == "line 50"

    def test_shrink_keeps_newest(self):
        channel = DeviceChannel()
        for i in range(300):
            channel._dispatch(f"line {i}")
        channel.set_history_size(150)
        assert channel.history()[0] == "line 150"
        assert len(channel.history()) == 150

    def test_clear(self):
        channel = DeviceChannel()
        channel._dispatch("hello")
        channel.clear_history()
        assert channel.history() == []
