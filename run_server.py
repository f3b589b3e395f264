"""Launch the scroll relay web server."""

from __future__ import annotations

import argparse
import logging

import uvicorn

from utils.config import DEFAULT_CONFIG, load_settings


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Start the scroll relay server")
    parser.add_argument("--config", default=str(DEFAULT_CONFIG), help="YAML configuration file")
    parser.add_argument("--host", help="Interface to bind")
    parser.add_argument("--port", type=int, help="HTTP port")
    parser.add_argument("--transport", choices=["serial", "websocket"], help="Device transport")
    parser.add_argument("--serial-port", dest="serial_port", help="Serial device path")
    parser.add_argument("--baud", dest="baud_rate", type=int, help="Serial baud rate")
    parser.add_argument("--debounce-ms", dest="debounce_ms", type=int, help="Relay debounce window")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = load_settings(
        args.config,
        host=args.host,
        port=args.port,
        transport=args.transport,
        serial_port=args.serial_port,
        baud_rate=args.baud_rate,
        debounce_ms=args.debounce_ms,
    )
    logging.basicConfig(
        level=getattr(logging, str(settings.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    from server.app import create_app

    app = create_app(settings)
    logging.getLogger(__name__).info(
        "Listening on http://%s:%d (debug panel: /scroll-speeds, transport: %s)",
        settings.host,
        settings.port,
        settings.transport,
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=str(settings.log_level).lower())


if __name__ == "__main__":
    main()
