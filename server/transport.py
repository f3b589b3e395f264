"""Result types shared by the device transports and the channel factory."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from .commands import DeviceCommand


class OpenResult(str, Enum):
    CONNECTED = "connected"
    UNAVAILABLE = "unavailable"


class SendStatus(str, Enum):
    ACKNOWLEDGED = "acknowledged"
    UNACKNOWLEDGED = "unacknowledged"
    TRANSPORT_ERROR = "transport_error"


@dataclass
class SendResult:
    status: SendStatus
    payload: str = ""
    error: Optional[str] = None
    reply: Optional[str] = None
    device_count: Optional[int] = None
    latency: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is not SendStatus.TRANSPORT_ERROR

    def to_dict(self) -> dict:
        out = {"status": self.status.value, "payload": self.payload}
        if self.error is not None:
            out["error"] = self.error
        if self.reply is not None:
            out["reply"] = self.reply
        if self.device_count is not None:
            out["deviceCount"] = self.device_count
        return out


class DeviceChannel(Protocol):
    """Interface implemented by ``SerialChannel`` and ``WebSocketChannel``."""

    name: str

    @property
    def is_connected(self) -> bool: ...

    async def open(self) -> OpenResult: ...

    async def send(self, command: DeviceCommand) -> SendResult: ...

    async def close(self) -> None: ...

    async def reconnect(self) -> OpenResult: ...


def build_channel(settings) -> DeviceChannel:
    """Create the channel selected by ``settings.transport``."""
    from .serial_channel import SerialChannel
    from .websocket_channel import WebSocketChannel

    if settings.transport == "websocket":
        return WebSocketChannel()
    if settings.transport != "serial":
        raise ValueError(f"Unknown transport: {settings.transport}")
    return SerialChannel(
        settings.serial_port,
        settings.baud_rate,
        wire_format=settings.wire_format,
        open_attempts=settings.open_attempts,
        open_backoff=settings.open_backoff_s,
        reconnect_delay=settings.reconnect_delay_s,
        ack_timeout=settings.ack_timeout_s,
        write_timeout=settings.write_timeout_s,
    )
