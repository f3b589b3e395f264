from __future__ import annotations

import json
import logging
from typing import Optional

from fastapi import WebSocket, WebSocketDisconnect

from .commands import DeviceCommand
from .transport import OpenResult, SendResult, SendStatus

logger = logging.getLogger(__name__)

WELCOME = 'Send {"type":"register","deviceId":"esp32_1"} to register'


def scroll_message(command: DeviceCommand) -> dict:
    return {"type": "scroll_data", **command.to_dict()}


class WebSocketChannel:
    """Broadcast commands to ESP32 boards connected on the ``/esp32`` socket.

    Boards register with ``{"type": "register", "deviceId": ...}``. The last
    command is replayed to a board right after it registers.
    """

    name = "websocket"

    def __init__(self) -> None:
        self.clients: dict[str, WebSocket] = {}
        self.last_command: Optional[DeviceCommand] = None

    @property
    def is_connected(self) -> bool:
        return bool(self.clients)

    def connected_devices(self) -> list[str]:
        return list(self.clients)

    async def open(self) -> OpenResult:
        return OpenResult.CONNECTED

    async def close(self) -> None:
        clients, self.clients = self.clients, {}
        for device_id, ws in clients.items():
            try:
                await ws.close()
            except RuntimeError as e:
                logger.debug("Socket for %s already closed: %s", device_id, e)

    async def reconnect(self) -> OpenResult:
        await self.close()
        return await self.open()

    async def send(self, command: DeviceCommand) -> SendResult:
        self.last_command = command
        message = scroll_message(command)
        payload = json.dumps(message)
        dropped = []
        for device_id, ws in list(self.clients.items()):
            try:
                await ws.send_text(payload)
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.warning("Failed to send to %s: %s", device_id, e)
                dropped.append(device_id)
        for device_id in dropped:
            self.clients.pop(device_id, None)
        logger.debug("Sent %s to %d devices", payload, len(self.clients))
        return SendResult(SendStatus.UNACKNOWLEDGED, payload, device_count=len(self.clients))

    async def handle(self, ws: WebSocket) -> None:
        """Serve one device connection until it disconnects."""
        await ws.accept()
        device_id = None
        client = ws.client.host if ws.client else "unknown"
        logger.info("ESP32 connected from %s", client)
        await ws.send_json({"type": "welcome", "message": WELCOME})
        try:
            while True:
                raw = await ws.receive_text()
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Non-JSON message from %s: %r", device_id or client, raw)
                    continue
                if not isinstance(message, dict):
                    continue
                if message.get("type") == "register":
                    device_id = str(message.get("deviceId") or f"esp32_{len(self.clients) + 1}")
                    self.clients[device_id] = ws
                    logger.info("ESP32 registered: %s", device_id)
                    await ws.send_json(
                        {"type": "registered", "message": f"Hello {device_id}! You are connected."}
                    )
                    if self.last_command is not None:
                        await ws.send_json(scroll_message(self.last_command))
                else:
                    logger.info("Message from %s: %s", device_id or client, message)
        except WebSocketDisconnect:
            logger.warning("ESP32 disconnected: %s", device_id or client)
        finally:
            if device_id is not None and self.clients.get(device_id) is ws:
                del self.clients[device_id]
