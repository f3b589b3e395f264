import os
import sys

import requests

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from scroll_tracker import HttpSender, ScrollTracker


def test_push_rate_is_bounded():
    sent = []
    tracker = ScrollTracker(sent.append, min_interval_ms=100)
    for i, t in enumerate(range(0, 250, 10)):
        tracker.observe(i * 10, t)
    assert [p["timestamp"] for p in sent] == [0, 100, 200]
    assert tracker.flush()
    assert sent[-1]["timestamp"] == 240
    assert sent[-1]["scrollPosition"] == 240
    assert not tracker.flush()


def test_payload_carries_local_metrics():
    sent = []
    tracker = ScrollTracker(sent.append, min_interval_ms=0, container_height=800, total_height=4000)
    tracker.observe(0, 0)
    m = tracker.observe(900, 1000)
    assert m.container_index == 1
    body = sent[-1]
    assert body["currentSpeed"] == 900.0
    assert body["direction"] == "down"
    assert body["videoHeight"] == 800
    assert body["totalContainers"] == 5


class _FailingSession:
    def post(self, *a, **k):
        raise requests.ConnectionError("refused")


def test_http_sender_logs_failures():
    sender = HttpSender("http://localhost:1", session=_FailingSession())
    assert sender({"scrollPosition": 1}) is False
