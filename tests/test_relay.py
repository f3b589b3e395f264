import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from metrics import RelayLogger
from server.commands import DeviceCommand
from server.relay import ScrollRelay
from server.schemas import ScrollMetrics
from server.transport import OpenResult, SendResult, SendStatus


class RecordingChannel:
    name = "fake"
    is_connected = True

    def __init__(self, fail=False, explode=False):
        self.sent = []
        self.fail = fail
        self.explode = explode

    async def open(self):
        return OpenResult.CONNECTED

    async def send(self, command):
        self.sent.append(command)
        if self.explode:
            raise RuntimeError("boom")
        if self.fail:
            return SendResult(SendStatus.TRANSPORT_ERROR, command.to_json(), error="Serial port not open")
        return SendResult(SendStatus.UNACKNOWLEDGED, command.to_json())

    async def close(self):
        pass

    async def reconnect(self):
        return OpenResult.CONNECTED


def test_burst_relays_only_last():
    ch = RecordingChannel()

    async def run():
        relay = ScrollRelay(ch, debounce_ms=50)
        for pos in (10, 20, 30, 40, 200):
            relay.submit(ScrollMetrics(scroll_position=pos, direction="down"))
            await asyncio.sleep(0.005)
        await relay.wait_idle()
        return relay

    relay = asyncio.run(run())
    assert len(ch.sent) == 1
    assert ch.sent[0].angle == 141
    assert ch.sent[0].direction == 1
    assert relay.relay_count == 1


def test_quiet_periods_relay_each():
    ch = RecordingChannel()

    async def run():
        relay = ScrollRelay(ch, debounce_ms=20)
        relay.submit(ScrollMetrics(scroll_position=0))
        await relay.wait_idle()
        relay.submit(ScrollMetrics(scroll_position=255))
        await relay.wait_idle()

    asyncio.run(run())
    assert [c.angle for c in ch.sent] == [0, 180]


def test_failure_is_recorded_not_raised(tmp_path):
    ch = RecordingChannel(fail=True)
    log = RelayLogger(str(tmp_path / "relay.db"))

    async def run():
        relay = ScrollRelay(ch, debounce_ms=10, relay_log=log)
        relay.submit(ScrollMetrics(scroll_position=100))
        await relay.wait_idle()
        return relay

    relay = asyncio.run(run())
    assert relay.last_result.status is SendStatus.TRANSPORT_ERROR
    rows = log.recent()
    assert rows[0]["status"] == "transport_error"
    assert rows[0]["error"] == "Serial port not open"
    assert rows[0]["transport"] == "fake"
    log.close()


def test_unexpected_exception_becomes_result():
    ch = RecordingChannel(explode=True)
    relay = ScrollRelay(ch)
    result = asyncio.run(relay.deliver(DeviceCommand(1, 0, 0, 0)))
    assert result.status is SendStatus.TRANSPORT_ERROR
    assert result.error == "boom"
    assert relay.last_command == DeviceCommand(1, 0, 0, 0)


def test_cancel_drops_pending():
    ch = RecordingChannel()

    async def run():
        relay = ScrollRelay(ch, debounce_ms=1000)
        relay.submit(ScrollMetrics(scroll_position=10))
        await relay.cancel()

    asyncio.run(run())
    assert ch.sent == []


def test_relay_logger_in_memory():
    log = RelayLogger(None)
    log.log(transport="serial", status="unacknowledged", angle=1)
    assert log.count == 1
    assert log.recent() == []
    log.close()
