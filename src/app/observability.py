"""Минимальные метрики и трейсинг для чат-рантайма."""
from __future__ import annotations

from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass
from threading import Lock
from time import perf_counter
from typing import Iterator


@dataclass
class MetricSnapshot:
    values: dict[str, int]


class InMemoryMetrics:
    def __init__(self) -> None:
        self._counter: Counter[str] = Counter()
        self._lock = Lock()

    def inc(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counter[name] += value

    def get(self, name: str) -> int:
        with self._lock:
            return self._counter.get(name, 0)

    def snapshot(self) -> MetricSnapshot:
        with self._lock:
            return MetricSnapshot(values=dict(self._counter))

    def reset(self) -> None:
        with self._lock:
            self._counter.clear()


metrics = InMemoryMetrics()


@contextmanager
def traced_span(name: str) -> Iterator[None]:
    started = perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((perf_counter() - started) * 1000)
        metrics.inc(f"trace.{name}.count")
        metrics.inc(f"trace.{name}.elapsed_ms_total", elapsed_ms)
