"""Fixed-size metrics windows with flush on rollover."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from .counters import ShardedCounter
from .models import ProcessingMetrics

logger = logging.getLogger(__name__)

MetricsSink = Callable[[ProcessingMetrics], None]

WINDOW_FIELDS = ("total", "kept", "latency_ms")


def _ts(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


class WindowedMetricsRecorder:
    """Accumulates decisions into fixed windows.

    The first ``record`` after the current window has ended drains the window
    counters, hands a ``ProcessingMetrics`` row to the sink and opens a new
    window aligned to ``window_seconds``. Windows without events produce no
    row. Sink failures are logged and never reach the caller.
    """

    def __init__(
        self,
        window_seconds: float = 60.0,
        sink: Optional[MetricsSink] = None,
        clock: Callable[[], float] = time.time,
        shards: int = 16,
    ):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self._window = window_seconds
        self._sink = sink
        self._clock = clock
        self._counter = ShardedCounter(WINDOW_FIELDS, shards=shards)
        self._roll_lock = threading.Lock()
        self._window_start = self._align(clock())
        self._flushed = 0
        self._flush_errors = 0

    def _align(self, now: float) -> float:
        return now - (now % self._window)

    @property
    def window_start(self) -> datetime:
        return _ts(self._window_start)

    def record(self, kept: bool, latency_ms: float) -> None:
        self._maybe_roll(self._clock())
        self._counter.add(total=1, kept=1 if kept else 0, latency_ms=latency_ms)

    def current(self) -> dict:
        return self._counter.snapshot()

    def _maybe_roll(self, now: float) -> None:
        if now < self._window_start + self._window:
            return

        with self._roll_lock:
            start = self._window_start
            if now < start + self._window:
                return
            drained = self._counter.drain()
            self._window_start = self._align(now)

        self._emit(start, start + self._window, drained)

    def flush(self) -> Optional[ProcessingMetrics]:
        """Close the current window early (shutdown)."""
        with self._roll_lock:
            start = self._window_start
            now = self._clock()
            drained = self._counter.drain()
            self._window_start = now
        return self._emit(start, now, drained)

    def _emit(self, start: float, end: float, drained: dict) -> Optional[ProcessingMetrics]:
        total = int(drained["total"])
        if total == 0:
            return None

        row = ProcessingMetrics(
            window_start=_ts(start),
            window_end=_ts(end),
            total_events=total,
            kept_events=int(drained["kept"]),
            avg_latency_ms=drained["latency_ms"] / total,
        )

        if self._sink is None:
            return row

        try:
            self._sink(row)
            self._flushed += 1
            logger.debug(
                "[METRICS] Window flushed start=%s total=%d kept=%d avg_latency_ms=%.3f",
                row.window_start.isoformat(), row.total_events, row.kept_events, row.avg_latency_ms,
            )
        except Exception as e:
            self._flush_errors += 1
            logger.error(
                "[METRICS] Window flush failed start=%s total=%d err=%s",
                row.window_start.isoformat(), row.total_events, e,
            )
        return row

    @property
    def stats(self) -> dict:
        return {
            "window_seconds": self._window,
            "window_start": self.window_start.isoformat(),
            "flushed": self._flushed,
            "flush_errors": self._flush_errors,
        }
