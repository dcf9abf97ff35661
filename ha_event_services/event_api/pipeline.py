"""Ingestion pipeline: raw payload → filter → metrics / stream.

Runs synchronously on the ingestion thread. Publishing only enqueues, so the
broker never backpressures ingestion.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional, Union

from .domain.event import Event, FilterDecision
from .filtering.engine import EventFilterEngine
from .metrics.service import EventMetricsService
from .streaming.publisher import EventStreamPublisher
from .validation.payload_validator import parse_event_payload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestResult:
    """Outcome of one ``ingest`` call."""

    accepted: bool
    decision: Optional[FilterDecision] = None
    published: bool = False
    error: Optional[str] = None


class EventIngestionPipeline:
    """Glue between the hub stream and the filter, metrics and publisher."""

    def __init__(
        self,
        engine: EventFilterEngine,
        metrics: EventMetricsService,
        publisher: Optional[EventStreamPublisher] = None,
    ):
        self._engine = engine
        self._metrics = metrics
        self._publisher = publisher
        self._lock = threading.Lock()
        self._malformed_count = 0

    @property
    def publisher(self) -> Optional[EventStreamPublisher]:
        return self._publisher

    @property
    def malformed_count(self) -> int:
        with self._lock:
            return self._malformed_count

    def ingest(self, raw: Union[str, bytes], connection_id: str) -> IngestResult:
        """Process one raw payload. Never raises."""
        parsed = parse_event_payload(raw, connection_id)
        if not parsed.valid:
            with self._lock:
                self._malformed_count += 1
            self._metrics.record_malformed()
            logger.warning(
                "[INGEST] Malformed payload discarded connection_id=%s err=%s",
                connection_id, (parsed.error or "")[:300],
            )
            return IngestResult(accepted=False, error=parsed.error)

        return self.process(parsed.event)

    def process(self, event: Event) -> IngestResult:
        started = time.perf_counter()
        decision = self._engine.evaluate(event)
        latency_ms = (time.perf_counter() - started) * 1000.0

        try:
            self._metrics.record(decision, latency_ms)
        except Exception:
            logger.exception("[INGEST] Metrics record failed event_id=%s", event.id)

        published = False
        if decision.kept and self._publisher is not None:
            try:
                published = self._publisher.publish(event)
            except Exception:
                logger.exception("[INGEST] Publish failed event_id=%s", event.id)

        logger.debug(
            "[INGEST] event_id=%s entity_id=%s kept=%s rule=%s latency_ms=%.3f",
            event.id, event.entity_id, decision.kept, decision.rule_id, latency_ms,
        )
        return IngestResult(accepted=True, decision=decision, published=published)
