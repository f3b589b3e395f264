"""Stand-in ESP32 for checking the WebSocket transport by hand.

Run the backend with the websocket transport first:

    python run_server.py --transport websocket

Then execute this script. It connects to ``ws://localhost:3001/esp32``,
registers as a device and prints every command the server relays. Scroll the
feed (or run ``scripts/simulate_scroll.py``) to see commands arrive.
"""

import argparse
import asyncio
import json

import websockets


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fake ESP32 WebSocket client")
    parser.add_argument("--uri", default="ws://localhost:3001/esp32", help="Device socket URI")
    parser.add_argument("--device-id", default="esp32_1", help="Identifier to register with")
    parser.add_argument("--count", type=int, default=0, help="Stop after this many commands (0 = forever)")
    return parser.parse_args()


async def main(uri: str, device_id: str, count: int) -> None:
    async with websockets.connect(uri) as ws:
        print("Server says:", json.loads(await ws.recv()))
        await ws.send(json.dumps({"type": "register", "deviceId": device_id}))
        received = 0
        async for raw in ws:
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                print("Non-JSON message:", raw)
                continue
            if message.get("type") == "scroll_data":
                received += 1
                print(
                    f"angle={message['angle']:3d} direction={message['direction']} "
                    f"speed={message['speed']:3d} interval={message['interval']}ms"
                )
                if count and received >= count:
                    break
            else:
                print("Server says:", message)


if __name__ == "__main__":
    args = parse_args()
    asyncio.run(main(args.uri, args.device_id, args.count))
