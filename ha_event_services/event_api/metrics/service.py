"""Event processing metrics service.

Every filter decision is recorded twice: into cumulative sharded totals
(``get_processing_stats``) and into the current window, which is flushed as a
``ProcessingMetrics`` row on rollover.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from prometheus_client import Counter, Histogram

from ..domain.event import FilterDecision
from .counters import ShardedCounter
from .models import ProcessingStats
from .window import MetricsSink, WindowedMetricsRecorder

logger = logging.getLogger(__name__)

EVENTS_PROCESSED = Counter(
    "ha_events_processed_total",
    "Events evaluated by the filter engine",
    ["outcome"],  # kept, discarded
)
EVENTS_MALFORMED = Counter(
    "ha_events_malformed_total",
    "Payloads discarded before filtering",
)
EVENT_PROCESSING_LATENCY = Histogram(
    "ha_event_processing_seconds",
    "Filter evaluation latency",
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)

CUMULATIVE_FIELDS = ("total", "kept", "latency_ms", "malformed")


@dataclass
class MetricsConfig:
    window_seconds: float = 60.0
    shards: int = 16

    @classmethod
    def from_env(cls) -> "MetricsConfig":
        return cls(
            window_seconds=float(os.getenv("METRICS_WINDOW_SECONDS", "60")),
            shards=int(os.getenv("METRICS_SHARDS", "16")),
        )


class EventMetricsService:
    """Thread-safe singleton that records filter decisions.

    Usage:
        service = EventMetricsService.get_instance()
        service.record(decision, latency_ms=0.4)
        service.get_processing_stats().to_dict()
    """

    _instance: Optional["EventMetricsService"] = None
    _lock = threading.Lock()

    def __init__(
        self,
        config: Optional[MetricsConfig] = None,
        sink: Optional[MetricsSink] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._config = config or MetricsConfig()
        self._totals = ShardedCounter(CUMULATIVE_FIELDS, shards=self._config.shards)
        window_kwargs = {"clock": clock} if clock is not None else {}
        self._window = WindowedMetricsRecorder(
            window_seconds=self._config.window_seconds,
            sink=sink,
            shards=self._config.shards,
            **window_kwargs,
        )

    @classmethod
    def get_instance(cls) -> "EventMetricsService":
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls(config=MetricsConfig.from_env())
        return cls._instance

    @classmethod
    def configure(cls, sink: Optional[MetricsSink] = None) -> "EventMetricsService":
        """Replace the singleton with one flushing windows to ``sink``."""
        with cls._lock:
            cls._instance = cls(config=MetricsConfig.from_env(), sink=sink)
            return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton (for testing)."""
        with cls._lock:
            cls._instance = None

    @property
    def window(self) -> WindowedMetricsRecorder:
        return self._window

    def record(self, decision: FilterDecision, latency_ms: float) -> None:
        kept = 1 if decision.kept else 0
        self._totals.add(total=1, kept=kept, latency_ms=latency_ms)
        self._window.record(decision.kept, latency_ms)

        EVENTS_PROCESSED.labels(outcome="kept" if kept else "discarded").inc()
        EVENT_PROCESSING_LATENCY.observe(latency_ms / 1000.0)

    def record_malformed(self) -> None:
        self._totals.add(malformed=1)
        EVENTS_MALFORMED.inc()

    def get_processing_stats(self) -> ProcessingStats:
        snap = self._totals.snapshot()
        total = int(snap["total"])
        return ProcessingStats(
            total_events_processed=total,
            kept_events=int(snap["kept"]),
            malformed_events=int(snap["malformed"]),
            avg_processing_time_ms=(snap["latency_ms"] / total) if total else 0.0,
        )

    def flush(self) -> None:
        """Flush the open window (shutdown)."""
        self._window.flush()


def get_event_metrics() -> EventMetricsService:
    """Get the event metrics service singleton."""
    return EventMetricsService.get_instance()
