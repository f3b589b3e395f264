"""Derivation and wire encoding of device motion commands."""

from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass

MAX_ANGLE = 180
MAX_SPEED_BYTE = 255
POSITION_FULL_SCALE = 255


@dataclass(frozen=True)
class DeviceCommand:
    angle: int
    direction: int
    speed: int
    interval: int

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":")) + "\n"

    def to_csv(self) -> str:
        return f"{self.angle},{self.direction}\n"

    def encode(self, wire_format: str = "json") -> str:
        """Return the newline-terminated wire form of the command."""
        if wire_format == "csv":
            return self.to_csv()
        if wire_format != "json":
            raise ValueError(f"Unknown wire format: {wire_format}")
        return self.to_json()

    def to_dict(self) -> dict:
        return asdict(self)


def _finite(value) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) else 0.0


def scroll_to_angle(scroll_position: float) -> int:
    """Map a 0..255 scroll position to a 0..180 servo angle, clamping outliers."""
    angle = math.floor(_finite(scroll_position) * MAX_ANGLE / POSITION_FULL_SCALE + 0.5)
    return min(MAX_ANGLE, max(0, angle))


def speed_to_byte(speed: float, full_scale: float = 2000.0) -> int:
    speed = abs(_finite(speed))
    if full_scale <= 0:
        return 0
    return min(MAX_SPEED_BYTE, max(0, round(min(speed, full_scale) / full_scale * MAX_SPEED_BYTE)))


def speed_to_interval(speed_byte: int, min_interval: int = 100, max_interval: int = 5000) -> int:
    """Step interval in ms: ``max_interval`` at speed 1 down to ``min_interval`` at 255."""
    if speed_byte <= 0:
        return 0
    frac = (min(speed_byte, MAX_SPEED_BYTE) - 1) / (MAX_SPEED_BYTE - 1)
    return round(max_interval - frac * (max_interval - min_interval))


def metrics_to_command(
    metrics,
    *,
    full_scale: float = 2000.0,
    min_interval: int = 100,
    max_interval: int = 5000,
) -> DeviceCommand:
    """Build the command for a ``ScrollMetrics`` snapshot."""
    speed = speed_to_byte(metrics.current_speed, full_scale)
    return DeviceCommand(
        angle=scroll_to_angle(metrics.scroll_position),
        direction=1 if metrics.direction == "down" else 0,
        speed=speed,
        interval=speed_to_interval(speed, min_interval, max_interval),
    )


def manual_command(
    speed: int, direction: int, angle: int | None = None, *, min_interval: int = 100, max_interval: int = 5000
) -> DeviceCommand:
    """Command for the dashboard motor-test buttons; ``angle`` defaults to the speed mapped like a position."""
    speed = min(MAX_SPEED_BYTE, max(0, int(speed)))
    return DeviceCommand(
        angle=scroll_to_angle(speed) if angle is None else min(MAX_ANGLE, max(0, int(angle))),
        direction=1 if direction else 0,
        speed=speed,
        interval=speed_to_interval(speed, min_interval, max_interval),
    )
