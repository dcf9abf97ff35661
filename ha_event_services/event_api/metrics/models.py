"""Data models for event processing metrics."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class ProcessingMetrics:
    """Aggregate of one closed metrics window."""

    window_start: datetime
    window_end: datetime
    total_events: int
    kept_events: int
    avg_latency_ms: float


@dataclass(frozen=True)
class ProcessingStats:
    """Cumulative processing statistics since start."""

    total_events_processed: int
    kept_events: int
    malformed_events: int
    avg_processing_time_ms: float

    @property
    def filter_rate(self) -> float:
        # Fraction discarded by the filter engine.
        if self.total_events_processed == 0:
            return 0.0
        return (self.total_events_processed - self.kept_events) / self.total_events_processed

    @property
    def keep_rate(self) -> float:
        if self.total_events_processed == 0:
            return 0.0
        return self.kept_events / self.total_events_processed

    def to_dict(self) -> dict:
        return {
            "totalEventsProcessed": self.total_events_processed,
            "filterRate": round(self.filter_rate, 4),
            "avgProcessingTime": round(self.avg_processing_time_ms, 3),
            "keptEvents": self.kept_events,
            "keepRate": round(self.keep_rate, 4),
            "malformedEvents": self.malformed_events,
        }
