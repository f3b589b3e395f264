import asyncio
import os
import sys
import time

import pytest
import serial

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from server.commands import DeviceCommand
from server.serial_channel import SerialChannel
from server.transport import OpenResult, SendStatus

CMD = DeviceCommand(angle=90, direction=1, speed=10, interval=4000)


class FakeSerial:
    def __init__(self, port, baudrate, timeout=None, write_timeout=None, reply=b""):
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.is_open = True
        self.written = []
        self.reply = reply
        self.fail_writes = False

    def write(self, data):
        if self.fail_writes:
            raise serial.SerialException("write failed: device disconnected")
        self.written.append(data)
        return len(data)

    def flush(self):
        pass

    def readline(self):
        return self.reply

    def close(self):
        self.is_open = False


def _factory(failures=0, reply=b""):
    calls = []
    opened = []

    def factory(port, baudrate, **kwargs):
        calls.append(port)
        if len(calls) <= failures:
            raise serial.SerialException(f"[Errno 16] could not open port {port}: Resource busy")
        port_obj = FakeSerial(port, baudrate, reply=reply, **kwargs)
        opened.append(port_obj)
        return port_obj

    factory.calls = calls
    factory.opened = opened
    return factory


def _channel(factory, **kw):
    kw.setdefault("open_backoff", 0)
    kw.setdefault("reconnect_delay", 0.01)
    return SerialChannel("/dev/ttyTEST", 115200, serial_factory=factory, **kw)


def test_busy_port_is_retried():
    factory = _factory(failures=2)
    ch = _channel(factory, open_attempts=4)
    assert asyncio.run(ch.open()) is OpenResult.CONNECTED
    assert len(factory.calls) == 3
    assert ch.is_connected
    assert ch.state == "open"


def test_gives_up_after_attempts():
    factory = _factory(failures=100)
    ch = _channel(factory, open_attempts=3)
    assert asyncio.run(ch.open()) is OpenResult.UNAVAILABLE
    assert len(factory.calls) == 3
    assert not ch.is_connected
    assert ch.state == "closed"


def test_send_writes_newline_json():
    factory = _factory()
    ch = _channel(factory)

    async def run():
        await ch.open()
        return await ch.send(CMD)

    result = asyncio.run(run())
    assert result.status is SendStatus.UNACKNOWLEDGED
    assert factory.opened[0].written == [CMD.to_json().encode()]
    assert factory.opened[0].baudrate == 115200


def test_reply_line_is_acknowledgement():
    factory = _factory(reply=b"ok\r\n")
    ch = _channel(factory)

    async def run():
        await ch.open()
        return await ch.send(CMD)

    result = asyncio.run(run())
    assert result.status is SendStatus.ACKNOWLEDGED
    assert result.reply == "ok"


def test_csv_wire_format_without_ack_wait():
    factory = _factory(reply=b"ignored\n")
    ch = _channel(factory, wire_format="csv", ack_timeout=0)

    async def run():
        await ch.open()
        return await ch.send(CMD)

    result = asyncio.run(run())
    assert result.status is SendStatus.UNACKNOWLEDGED
    assert factory.opened[0].written == [b"90,1\n"]


def test_send_when_closed_is_an_error_result():
    ch = _channel(_factory())
    result = asyncio.run(ch.send(CMD))
    assert result.status is SendStatus.TRANSPORT_ERROR
    assert "not open" in result.error
    assert not result.ok


def test_close_without_open_is_safe():
    ch = _channel(_factory())
    asyncio.run(ch.close())
    asyncio.run(ch.close())
    assert ch.state == "closed"


def test_lost_port_reopens_itself():
    factory = _factory()
    ch = _channel(factory)

    async def run():
        await ch.open()
        factory.opened[0].fail_writes = True
        result = await ch.send(CMD)
        assert result.status is SendStatus.TRANSPORT_ERROR
        assert not ch.is_connected
        for _ in range(200):
            if ch.is_connected:
                break
            await asyncio.sleep(0.01)
        connected = ch.is_connected
        await ch.close()
        return connected

    assert asyncio.run(run())
    assert len(factory.opened) == 2
    assert not factory.opened[0].is_open


def test_close_stops_reconnect_loop():
    factory = _factory()
    ch = _channel(factory, reconnect_delay=0.05)

    async def run():
        await ch.open()
        factory.opened[0].fail_writes = True
        await ch.send(CMD)
        await ch.close()
        await asyncio.sleep(0.15)

    asyncio.run(run())
    assert len(factory.opened) == 1
    assert not ch.is_connected


def test_reconnect_reopens():
    factory = _factory()
    ch = _channel(factory)

    async def run():
        await ch.open()
        return await ch.reconnect()

    assert asyncio.run(run()) is OpenResult.CONNECTED
    assert len(factory.opened) == 2
    assert not factory.opened[0].is_open


def test_close_during_reopen_releases_late_port():
    factory = _factory()

    def slow_factory(port, baudrate, **kwargs):
        if factory.opened:
            time.sleep(0.2)
        return factory(port, baudrate, **kwargs)

    ch = _channel(slow_factory)

    async def run():
        await ch.open()
        factory.opened[0].fail_writes = True
        await ch.send(CMD)
        await asyncio.sleep(0.05)
        await ch.close()
        await asyncio.sleep(0.4)

    asyncio.run(run())
    assert len(factory.opened) == 2
    assert not factory.opened[1].is_open
    assert not ch.is_connected


def test_cancelled_open_releases_late_port():
    factory = _factory()

    def slow_factory(port, baudrate, **kwargs):
        time.sleep(0.2)
        return factory(port, baudrate, **kwargs)

    ch = _channel(slow_factory)

    async def run():
        task = asyncio.get_running_loop().create_task(ch.open())
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0.4)

    asyncio.run(run())
    assert len(factory.opened) == 1
    assert not factory.opened[0].is_open
    assert not ch.is_connected
