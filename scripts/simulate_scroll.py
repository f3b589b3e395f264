#!/usr/bin/env python
"""Replay a synthetic scroll session against a running server.

The trajectory flicks down through ``--containers`` videos, pausing on each
one, then scrolls back to the top. Events are generated at ``--rate`` Hz and
pushed through ``ScrollTracker`` exactly as the feed page would.
"""

from __future__ import annotations

import argparse
import time

from scroll_tracker import HttpSender, ScrollTracker


def trajectory(containers: int, height: float, rate: float, flick_s: float = 0.4, dwell_s: float = 1.0):
    """Yield ``(position_px, delay_s)`` pairs."""
    step = 1.0 / rate
    position = 0.0
    targets = [height * i for i in range(1, containers)] + [0.0]
    for target in targets:
        frames = max(1, int(flick_s * rate))
        start = position
        for i in range(1, frames + 1):
            position = start + (target - start) * i / frames
            yield position, step
        for _ in range(int(dwell_s * rate)):
            yield position, step


def main() -> None:
    parser = argparse.ArgumentParser(description="Simulate feed scrolling")
    parser.add_argument("--url", default="http://localhost:3001", help="Server base URL")
    parser.add_argument("--containers", type=int, default=5, help="Number of videos in the feed")
    parser.add_argument("--height", type=float, default=800.0, help="Height of one video in px")
    parser.add_argument("--rate", type=float, default=60.0, help="Scroll events per second")
    parser.add_argument("--push-interval", type=float, default=100.0, help="Minimum ms between POSTs")
    args = parser.parse_args()

    tracker = ScrollTracker(
        HttpSender(args.url),
        min_interval_ms=args.push_interval,
        container_height=args.height,
        total_height=args.height * args.containers,
    )
    for position, delay in trajectory(args.containers, args.height, args.rate):
        m = tracker.observe(position)
        print(
            f"pos={m.scroll_position:7.1f}px speed={m.current_speed:7.1f}px/s "
            f"avg={m.average_speed:7.1f}px/s dir={m.direction:<4} container={m.container_index}"
        )
        time.sleep(delay)
    tracker.flush()
    print(f"Pushed {tracker.pushed} updates")


if __name__ == "__main__":
    main()
