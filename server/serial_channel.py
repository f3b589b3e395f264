from __future__ import annotations

import asyncio
import errno
import logging
import time
from contextlib import suppress
from typing import Optional

import serial

from .commands import DeviceCommand
from .transport import OpenResult, SendResult, SendStatus

logger = logging.getLogger(__name__)

_SERIAL_ERRORS = (serial.SerialException, OSError)


def _is_busy(exc: BaseException) -> bool:
    """True when the port is held by another process."""
    if getattr(exc, "errno", None) == errno.EBUSY:
        return True
    return "busy" in str(exc).lower()


class SerialChannel:
    """USB-serial link to the motor controller.

    ``open`` makes up to ``open_attempts`` tries with a fixed backoff. When an
    open port is lost (write failure, unplugged board) the channel keeps
    trying to reopen it every ``reconnect_delay`` seconds until ``close`` is
    called. Commands sent while the port is down are dropped, not queued.
    """

    name = "serial"

    def __init__(
        self,
        port: str,
        baud_rate: int = 115200,
        *,
        wire_format: str = "json",
        open_attempts: int = 4,
        open_backoff: float = 1.0,
        reconnect_delay: float = 1.0,
        ack_timeout: float = 1.0,
        write_timeout: float = 1.0,
        serial_factory=None,
    ) -> None:
        self.port = port
        self.baud_rate = baud_rate
        self.wire_format = wire_format
        self.open_attempts = max(1, int(open_attempts))
        self.open_backoff = open_backoff
        self.reconnect_delay = reconnect_delay
        self.ack_timeout = ack_timeout
        self.write_timeout = write_timeout
        self._factory = serial_factory or serial.Serial
        self._serial = None
        self._closing = False
        self._reconnect_task: Optional[asyncio.Task] = None
        self._write_lock = asyncio.Lock()
        self.state = "closed"

    @property
    def is_connected(self) -> bool:
        return self._serial is not None and bool(getattr(self._serial, "is_open", True))

    def _open_port(self):
        return self._factory(
            self.port,
            self.baud_rate,
            timeout=self.ack_timeout,
            write_timeout=self.write_timeout,
        )

    async def _open_in_thread(self):
        opening = asyncio.ensure_future(asyncio.to_thread(self._open_port))
        try:
            return await asyncio.shield(opening)
        except asyncio.CancelledError:
            # the worker thread may still hand back an open port
            opening.add_done_callback(self._discard_late_port)
            raise

    def _discard_late_port(self, opening: asyncio.Future) -> None:
        if opening.cancelled() or opening.exception() is not None:
            return
        port = opening.result()
        try:
            port.close()
        except _SERIAL_ERRORS as e:
            logger.warning("Error closing serial port %s: %s", self.port, e)
        else:
            logger.info("Released serial port %s opened after cancellation", self.port)

    async def open(self) -> OpenResult:
        self._closing = False
        if self.is_connected:
            return OpenResult.CONNECTED
        self.state = "opening"
        for attempt in range(1, self.open_attempts + 1):
            logger.info("Opening serial port %s (attempt %d/%d)", self.port, attempt, self.open_attempts)
            try:
                self._serial = await self._open_in_thread()
            except _SERIAL_ERRORS as e:
                if _is_busy(e):
                    logger.warning("Serial port %s is busy: %s", self.port, e)
                else:
                    logger.warning("Error opening serial port %s: %s", self.port, e)
                if attempt < self.open_attempts:
                    await asyncio.sleep(self.open_backoff)
                continue
            if self._closing:
                # close() was called while the open was in flight
                self._release()
                return OpenResult.UNAVAILABLE
            self.state = "open"
            logger.info("Serial port %s opened at %d baud", self.port, self.baud_rate)
            return OpenResult.CONNECTED
        self.state = "closed"
        logger.error("Giving up on serial port %s after %d attempts", self.port, self.open_attempts)
        return OpenResult.UNAVAILABLE

    def _exchange(self, payload: str) -> Optional[str]:
        port = self._serial
        port.write(payload.encode("utf-8"))
        port.flush()
        if self.ack_timeout <= 0:
            return None
        line = port.readline()
        return line.decode("utf-8", errors="replace").strip() or None

    async def send(self, command: DeviceCommand) -> SendResult:
        payload = command.encode(self.wire_format)
        if not self.is_connected:
            logger.warning("Serial port not open, dropping command %s", payload.strip())
            return SendResult(SendStatus.TRANSPORT_ERROR, payload, error="Serial port not open")
        start = time.time()
        async with self._write_lock:
            try:
                reply = await asyncio.to_thread(self._exchange, payload)
            except _SERIAL_ERRORS as e:
                logger.error("Error writing to serial port %s: %s", self.port, e)
                self._connection_lost()
                return SendResult(
                    SendStatus.TRANSPORT_ERROR, payload, error=str(e), latency=time.time() - start
                )
        latency = time.time() - start
        if reply is None:
            logger.debug("Sent %s (no reply)", payload.strip())
            return SendResult(SendStatus.UNACKNOWLEDGED, payload, latency=latency)
        logger.info("Device replied to %s: %s", payload.strip(), reply)
        return SendResult(SendStatus.ACKNOWLEDGED, payload, reply=reply, latency=latency)

    def _release(self) -> None:
        port, self._serial = self._serial, None
        self.state = "closed"
        if port is None:
            return
        try:
            port.close()
        except _SERIAL_ERRORS as e:
            logger.warning("Error closing serial port %s: %s", self.port, e)

    def _connection_lost(self) -> None:
        self._release()
        if self._closing:
            return
        if self._reconnect_task is None or self._reconnect_task.done():
            logger.info("Serial port %s closed, reopening in %.1fs", self.port, self.reconnect_delay)
            self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        while not self._closing:
            await asyncio.sleep(self.reconnect_delay)
            if self._closing:
                return
            try:
                self._serial = await self._open_in_thread()
            except _SERIAL_ERRORS as e:
                logger.warning("Reopening serial port %s failed: %s", self.port, e)
                continue
            self.state = "open"
            logger.info("Serial port %s reopened", self.port)
            return

    async def close(self) -> None:
        self._closing = True
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        if self._serial is not None:
            await asyncio.to_thread(self._release)
            logger.info("Serial port %s closed", self.port)
        self.state = "closed"

    async def reconnect(self) -> OpenResult:
        await self.close()
        return await self.open()
