from __future__ import annotations

"""Counters and timers shared by all crawlers of a run."""

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator

# counter names
FIRES_ATTEMPTED = "fires.attempted"
FIRES_SUCCEEDED = "fires.succeeded"
FIRES_FAILED = "fires.failed"
STATES_DISCOVERED = "states.discovered"
EDGES_ADDED = "edges.added"
INVARIANTS_VIOLATED = "invariants.violated"
PLUGIN_ERRORS = "plugins.errors"
URL_LOAD_RETRIES = "browser.url_load_retries"

# timer names
FIRE_TIMER = "fire"
WAIT_TIMER = "wait"
EXTRACT_TIMER = "extract"


@dataclass
class TimerStats:
    count: int = 0
    total: float = 0.0
    max: float = 0.0

    @property
    def mean(self) -> float:
        return self.total / self.count if self.count else 0.0


class MetricRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {}
        self._timers: Dict[str, TimerStats] = {}

    def increment(self, name: str, amount: int = 1) -> int:
        with self._lock:
            value = self._counters.get(name, 0) + amount
            self._counters[name] = value
            return value

    def count(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def record(self, name: str, seconds: float) -> None:
        with self._lock:
            stats = self._timers.setdefault(name, TimerStats())
            stats.count += 1
            stats.total += seconds
            stats.max = max(stats.max, seconds)

    @contextmanager
    def time(self, name: str) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record(name, time.perf_counter() - start)

    def timer(self, name: str) -> TimerStats:
        with self._lock:
            stats = self._timers.get(name, TimerStats())
            return TimerStats(stats.count, stats.total, stats.max)

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "timers": {
                    name: {"count": s.count, "total": s.total, "max": s.max, "mean": s.mean}
                    for name, s in self._timers.items()
                },
            }
