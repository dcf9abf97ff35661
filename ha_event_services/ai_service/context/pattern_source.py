"""Behavioural pattern data read by the context aggregator."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import orjson
from sqlalchemy import text
from sqlalchemy.engine import Engine

from ...common.schema import as_datetime

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatternRecord:
    pattern_id: str
    connection_id: str
    pattern_type: str
    entity_id: str
    occurrences: int
    confidence: float
    observed_at: datetime
    related_entities: tuple[str, ...] = ()
    details: dict[str, Any] = field(default_factory=dict)


class PatternDataSource(ABC):
    """Read-only access to behavioural patterns of a connection."""

    name: str = "pattern-source"

    @abstractmethod
    def fetch_patterns(self, connection_id: str, since: datetime) -> list[PatternRecord]:
        ...


def _json_or_default(raw: Optional[str], default):
    if not raw:
        return default
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError:
        return default


class DbPatternDataSource(PatternDataSource):
    """Patterns stored in ``behavioral_patterns`` by the pattern analysis job."""

    name = "behavioral_patterns"

    def __init__(self, engine: Engine):
        self._engine = engine

    def fetch_patterns(self, connection_id: str, since: datetime) -> list[PatternRecord]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                text("""
                    SELECT pattern_id, connection_id, pattern_type, entity_id,
                           related_entities, occurrences, confidence, details, observed_at
                    FROM behavioral_patterns
                    WHERE connection_id = :connection_id
                      AND observed_at >= :since
                    ORDER BY observed_at DESC
                """),
                {"connection_id": connection_id, "since": since},
            ).mappings().all()

        records = []
        for r in rows:
            related = _json_or_default(r["related_entities"], [])
            details = _json_or_default(r["details"], {})
            records.append(
                PatternRecord(
                    pattern_id=r["pattern_id"],
                    connection_id=r["connection_id"],
                    pattern_type=r["pattern_type"],
                    entity_id=r["entity_id"],
                    occurrences=int(r["occurrences"] or 0),
                    confidence=float(r["confidence"] or 0.0),
                    observed_at=as_datetime(r["observed_at"]),
                    related_entities=tuple(related) if isinstance(related, list) else (),
                    details=details if isinstance(details, dict) else {},
                )
            )
        return records
