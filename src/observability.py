"""Observability: fallback counters and collaborator call timers."""

import time
from contextlib import contextmanager
from typing import Any

import structlog

logger = structlog.get_logger().bind(source="observability")


class Metrics:
    """Dict-based counters and timers.

    Counters track how often each deterministic fallback fired
    (``fallback.reducer``, ``fallback.selector``...); timers track external
    collaborator latency (``llm.reduce_state``, ``catalog.search``...).
    """

    def __init__(self):
        self._counters: dict[str, int] = {}
        self._timers: dict[str, list[float]] = {}

    def counter(self, name: str, value: int = 1):
        self._counters[name] = self._counters.get(name, 0) + value

    def count(self, name: str) -> int:
        return self._counters.get(name, 0)

    @contextmanager
    def timer(self, name: str):
        """Time the enclosed block, recording the duration even when it raises."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self._timers.setdefault(name, []).append(time.perf_counter() - start)

    def summary(self) -> dict[str, Any]:
        timer_summary = {}
        for name, durations in self._timers.items():
            timer_summary[name] = {
                "count": len(durations),
                "avg": sum(durations) / len(durations),
                "max": max(durations),
            }
        return {"counters": dict(self._counters), "timers": timer_summary}

    def reset(self):
        self._counters.clear()
        self._timers.clear()


metrics = Metrics()


def record_fallback(component: str, **context):
    """Count a degraded collaborator call and log it with its context."""
    metrics.counter(f"fallback.{component}")
    logger.warning("collaborator.fallback", component=component, **context)


def log_run_summary():
    logger.info("run_summary", **metrics.summary())
