"""Client-side scroll tracking with a bounded push rate.

Mirrors what the feed page does on every scroll event: compute local
metrics, then post them to ``/api/scroll-metrics`` at most once every
``min_interval_ms``. The last sample of a burst is held back and sent by the
next ``observe`` that falls outside the interval, or by ``flush``.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import requests

from server.schemas import ScrollMetrics, ScrollSample
from server.scroll_metrics import ScrollAggregator

logger = logging.getLogger(__name__)


class HttpSender:
    """POST scroll payloads to a running server."""

    def __init__(self, base_url: str = "http://localhost:3001", timeout: float = 2.0, session=None) -> None:
        self.url = base_url.rstrip("/") + "/api/scroll-metrics"
        self.timeout = timeout
        self.session = session or requests.Session()

    def __call__(self, payload: dict) -> bool:
        try:
            resp = self.session.post(self.url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error("Error sending metrics to backend: %s", e)
            return False
        return True


class ScrollTracker:
    def __init__(
        self,
        send: Callable[[dict], object],
        *,
        min_interval_ms: float = 100,
        window: int = 10,
        container_height: float = 0,
        total_height: float = 0,
        clock: Callable[[], float] = lambda: time.time() * 1000.0,
    ) -> None:
        self.send = send
        self.min_interval_ms = min_interval_ms
        self.container_height = container_height
        self.total_height = total_height
        self.aggregator = ScrollAggregator(window=window)
        self._clock = clock
        self._last_push: Optional[float] = None
        self._held: Optional[dict] = None
        self.pushed = 0

    def payload(self, metrics: ScrollMetrics, timestamp_ms: float) -> dict:
        body = metrics.model_dump(by_alias=True)
        body.update(
            timestamp=timestamp_ms,
            videoHeight=self.container_height,
            totalHeight=self.total_height,
        )
        return body

    def observe(self, position_px: float, timestamp_ms: Optional[float] = None) -> ScrollMetrics:
        """Record one scroll event and push it if the interval allows."""
        now = self._clock() if timestamp_ms is None else timestamp_ms
        metrics = self.aggregator.update(
            ScrollSample(
                position_px=position_px,
                timestamp_ms=now,
                container_height=self.container_height or None,
                total_height=self.total_height or None,
            )
        )
        payload = self.payload(metrics, now)
        if self._last_push is None or now - self._last_push >= self.min_interval_ms:
            self._push(payload, now)
        else:
            self._held = payload
        return metrics

    def flush(self) -> bool:
        """Send the held sample, if any. Returns True when something was sent."""
        if self._held is None:
            return False
        self._push(self._held, self._held["timestamp"])
        return True

    def _push(self, payload: dict, now: float) -> None:
        self._held = None
        self._last_push = now
        self.pushed += 1
        self.send(payload)
