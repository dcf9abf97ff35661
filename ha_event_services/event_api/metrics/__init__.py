"""Event processing metrics.

Provides:
- ShardedCounter: thread-sharded accumulation merged at read time
- WindowedMetricsRecorder: fixed windows flushed on rollover
- EventMetricsService: singleton fed by the ingestion pipeline
"""

from .counters import ShardedCounter
from .models import ProcessingMetrics, ProcessingStats
from .repository import ProcessingMetricsRepository
from .service import EventMetricsService, MetricsConfig, get_event_metrics
from .window import WindowedMetricsRecorder

__all__ = [
    "EventMetricsService",
    "MetricsConfig",
    "ProcessingMetrics",
    "ProcessingMetricsRepository",
    "ProcessingStats",
    "ShardedCounter",
    "WindowedMetricsRecorder",
    "get_event_metrics",
]
