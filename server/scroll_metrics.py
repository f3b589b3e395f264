from __future__ import annotations

import logging
import math
import time
from collections import deque
from typing import Optional

from .schemas import ScrollMetrics, ScrollSample

logger = logging.getLogger(__name__)


def _now_ms() -> float:
    return time.time() * 1000.0


class ScrollAggregator:
    """Derive speed, direction and container position from raw scroll samples.

    ``average_speed`` is a simple moving average over the last ``window``
    instantaneous speeds. The first sample of a session only records the
    position: it has no previous sample to measure a speed against.
    """

    def __init__(self, window: int = 10, clock=_now_ms) -> None:
        self.window = max(1, int(window))
        self._clock = clock
        self.reset()

    def reset(self) -> None:
        self._speeds: deque[float] = deque(maxlen=self.window)
        self._last_position: Optional[float] = None
        self._last_time: Optional[float] = None
        self._container_entered: Optional[float] = None
        self._metrics = ScrollMetrics()

    def snapshot(self) -> ScrollMetrics:
        return self._metrics

    def update(self, sample: ScrollSample) -> ScrollMetrics:
        """Fold ``sample`` into the running state and return the new snapshot."""
        now = sample.timestamp_ms if sample.timestamp_ms is not None else self._clock()
        position = sample.position_px if math.isfinite(sample.position_px) else 0.0
        prev = self._metrics

        if self._last_position is None:
            speed = 0.0
            direction = "none"
            distance = 0.0
        else:
            delta = position - self._last_position
            if not math.isfinite(delta):
                delta = 0.0
            dt_s = (now - self._last_time) / 1000.0
            speed = abs(delta) / dt_s if dt_s > 0 else 0.0
            if not math.isfinite(speed):
                speed = 0.0
            direction = "down" if delta > 0 else "up" if delta < 0 else "none"
            distance = abs(delta)
            self._speeds.append(speed)

        container_index = self._container_index(sample, position, prev.container_index)
        total_containers = prev.total_containers
        height = sample.container_height or 0
        if height > 0 and sample.total_height and sample.total_height > 0:
            ratio = sample.total_height / height
            if math.isfinite(ratio):
                total_containers = math.ceil(ratio)
        total_distance = prev.total_distance + distance
        if not math.isfinite(total_distance):
            total_distance = prev.total_distance

        if self._container_entered is None or container_index != prev.container_index:
            self._container_entered = now

        self._metrics = ScrollMetrics(
            current_speed=speed,
            average_speed=self._average(),
            total_distance=total_distance,
            scroll_position=position,
            direction=direction,
            container_index=container_index,
            total_containers=total_containers,
            time_in_container_ms=self._elapsed(now),
        )
        self._last_position = position
        self._last_time = now
        logger.debug("scroll update: %s", self._metrics)
        return self._metrics

    def _average(self) -> float:
        # divide first so a window of huge speeds cannot overflow
        n = len(self._speeds)
        return sum(s / n for s in self._speeds) if n else 0.0

    def _elapsed(self, now: float) -> float:
        elapsed = now - self._container_entered
        return elapsed if math.isfinite(elapsed) and elapsed > 0 else 0.0

    @staticmethod
    def _container_index(sample: ScrollSample, position: float, previous: int) -> int:
        height = sample.container_height or 0
        if height > 0:
            ratio = position / height
            if math.isfinite(ratio):
                return max(0, math.floor(ratio))
            return previous
        if sample.container_index is not None:
            return sample.container_index
        return previous
