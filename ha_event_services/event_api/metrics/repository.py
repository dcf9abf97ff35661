"""Persistence of closed metrics windows."""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.engine import Engine

from ...common.schema import as_datetime
from .models import ProcessingMetrics

logger = logging.getLogger(__name__)


class ProcessingMetricsRepository:
    """Appends rows to ``event_processing_metrics``. Usable as a window sink."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def __call__(self, metrics: ProcessingMetrics) -> None:
        self.insert(metrics)

    def insert(self, metrics: ProcessingMetrics) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                text("""
                    INSERT INTO event_processing_metrics
                        (window_start, window_end, total_events, kept_events, avg_latency_ms)
                    VALUES
                        (:window_start, :window_end, :total_events, :kept_events, :avg_latency_ms)
                """),
                {
                    "window_start": metrics.window_start,
                    "window_end": metrics.window_end,
                    "total_events": metrics.total_events,
                    "kept_events": metrics.kept_events,
                    "avg_latency_ms": metrics.avg_latency_ms,
                },
            )

    def recent(self, limit: int = 60) -> list[ProcessingMetrics]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                text("""
                    SELECT window_start, window_end, total_events, kept_events, avg_latency_ms
                    FROM event_processing_metrics
                    ORDER BY window_start DESC
                    LIMIT :limit
                """),
                {"limit": limit},
            ).mappings().all()

        return [
            ProcessingMetrics(
                window_start=as_datetime(r["window_start"]),
                window_end=as_datetime(r["window_end"]),
                total_events=int(r["total_events"]),
                kept_events=int(r["kept_events"]),
                avg_latency_ms=float(r["avg_latency_ms"]),
            )
            for r in rows
        ]
