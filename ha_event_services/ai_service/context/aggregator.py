"""Automation context aggregation.

Turns raw behavioural patterns of one connection into a small set of
``AutomationContext`` objects. Patterns are grouped by (pattern type,
primary entity): repeated observations of the same routine become one
context carrying the summed occurrences and the best confidence.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ...common.schema import utc_now
from ..models import AutomationContext
from .pattern_source import PatternDataSource, PatternRecord

logger = logging.getLogger(__name__)


@dataclass
class AggregatorConfig:
    lookback_days: int = 7
    min_pattern_confidence: float = 0.5
    max_contexts_per_connection: int = 50

    @classmethod
    def from_env(cls) -> "AggregatorConfig":
        return cls(
            lookback_days=int(os.getenv("AI_CONTEXT_LOOKBACK_DAYS", "7")),
            min_pattern_confidence=float(os.getenv("AI_CONTEXT_MIN_CONFIDENCE", "0.5")),
            max_contexts_per_connection=int(os.getenv("AI_CONTEXT_MAX_PER_CONNECTION", "50")),
        )


class AutomationContextAggregator:
    def __init__(self, source: PatternDataSource, config: Optional[AggregatorConfig] = None):
        self._source = source
        self._config = config or AggregatorConfig()

    @property
    def data_source_name(self) -> str:
        return self._source.name

    def build_contexts(self, connection_id: str, now: Optional[datetime] = None) -> list[AutomationContext]:
        """Contexts for one connection, best confidence first.

        Returns an empty list when the connection has no pattern data.
        """
        window_end = now or utc_now()
        window_start = window_end - timedelta(days=self._config.lookback_days)

        patterns = self._source.fetch_patterns(connection_id, window_start)
        if not patterns:
            logger.debug("[CONTEXT] No pattern data connection_id=%s", connection_id)
            return []

        groups: dict[tuple[str, str], list[PatternRecord]] = {}
        dropped = 0
        for p in patterns:
            if p.confidence < self._config.min_pattern_confidence:
                dropped += 1
                continue
            groups.setdefault((p.pattern_type, p.entity_id), []).append(p)

        contexts = [
            self._to_context(connection_id, pattern_type, entity_id, records, window_start, window_end)
            for (pattern_type, entity_id), records in groups.items()
        ]
        contexts.sort(key=lambda c: (-c.confidence, c.context_id))
        contexts = contexts[: self._config.max_contexts_per_connection]

        logger.info(
            "[CONTEXT] Built contexts connection_id=%s patterns=%d dropped=%d contexts=%d",
            connection_id, len(patterns), dropped, len(contexts),
        )
        return contexts

    @staticmethod
    def _to_context(
        connection_id: str,
        pattern_type: str,
        entity_id: str,
        records: list[PatternRecord],
        window_start: datetime,
        window_end: datetime,
    ) -> AutomationContext:
        related: list[str] = []
        for r in records:
            for e in r.related_entities:
                if e != entity_id and e not in related:
                    related.append(e)

        latest = max(records, key=lambda r: r.observed_at)
        summary = {
            "pattern_type": pattern_type,
            "entity_id": entity_id,
            "occurrences": sum(r.occurrences for r in records),
            "observations": len(records),
            "last_observed": latest.observed_at.isoformat(),
            "details": latest.details,
        }

        return AutomationContext(
            context_id=f"{connection_id}:{pattern_type}:{entity_id}",
            connection_id=connection_id,
            pattern_type=pattern_type,
            entity_ids=(entity_id, *related),
            pattern_summary=summary,
            window_start=window_start,
            window_end=window_end,
            confidence=max(r.confidence for r in records),
        )
