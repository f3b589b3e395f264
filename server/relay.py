from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from metrics import RelayLogger

from .commands import DeviceCommand, metrics_to_command
from .schemas import ScrollMetrics
from .transport import DeviceChannel, SendResult, SendStatus

logger = logging.getLogger(__name__)


class ScrollRelay:
    """Debounced forwarding of scroll snapshots to the device channel.

    Every ``submit`` cancels the pending timer and starts a new one, so only
    the last snapshot of a burst reaches the device. Once the quiet period
    has elapsed the delivery runs to completion even if new snapshots arrive.
    """

    def __init__(
        self,
        channel: DeviceChannel,
        debounce_ms: int = 400,
        *,
        build_command: Callable[[ScrollMetrics], DeviceCommand] = metrics_to_command,
        relay_log: Optional[RelayLogger] = None,
    ) -> None:
        self.channel = channel
        self.debounce_ms = debounce_ms
        self.build_command = build_command
        self.relay_log = relay_log or RelayLogger(None)
        self.last_result: Optional[SendResult] = None
        self.last_command: Optional[DeviceCommand] = None
        self._pending: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def relay_count(self) -> int:
        return self.relay_log.count

    def submit(self, metrics: ScrollMetrics) -> None:
        """Schedule ``metrics`` for delivery after the debounce window."""
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        task = asyncio.get_running_loop().create_task(self._deliver_later(metrics))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self._pending = task

    async def _deliver_later(self, metrics: ScrollMetrics) -> None:
        await asyncio.sleep(self.debounce_ms / 1000.0)
        if self._pending is asyncio.current_task():
            self._pending = None
        logger.debug("Debounce elapsed after %dms, relaying", self.debounce_ms)
        await self.deliver(self.build_command(metrics))

    async def deliver(self, command: DeviceCommand) -> SendResult:
        """Send ``command`` now and record the outcome. Never raises transport errors."""
        start = time.time()
        try:
            result = await self.channel.send(command)
        except Exception as e:
            logger.exception("Unexpected error relaying to %s", self.channel.name)
            result = SendResult(SendStatus.TRANSPORT_ERROR, error=str(e) or type(e).__name__)
        result.latency = time.time() - start
        self.last_command = command
        self.last_result = result
        if result.ok:
            logger.info("Relayed %s via %s: %s", command, self.channel.name, result.status.value)
        else:
            logger.warning("Relay via %s failed: %s", self.channel.name, result.error)
        self.relay_log.log(
            transport=self.channel.name,
            status=result.status.value,
            angle=command.angle,
            direction=command.direction,
            speed=command.speed,
            latency=result.latency,
            error=result.error,
        )
        return result

    async def wait_idle(self) -> None:
        """Wait until no timer or delivery is outstanding."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.wait_idle()
        self._pending = None
