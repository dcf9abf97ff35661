"""Table definitions shared by the event pipeline and the suggestion batch.

Tables are declared with SQLAlchemy Core so the same schema can be created on
SQLite (local/dev/tests) and PostgreSQL. Queries live next to their
repositories and are written with ``sqlalchemy.text``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

metadata = MetaData()


hub_connections = Table(
    "hub_connections",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("owner_id", String(64), nullable=False),
    Column("name", String(200), nullable=False),
    Column("status", String(20), nullable=False, default="connected"),
    Column("created_at", DateTime(timezone=True)),
)

event_filter_rules = Table(
    "event_filter_rules",
    metadata,
    Column("rule_id", String(64), primary_key=True),
    Column("connection_id", String(64), nullable=True),
    Column("name", String(200), nullable=False),
    Column("action", String(10), nullable=False),
    Column("priority", Integer, nullable=False, default=100),
    Column("event_types", Text, nullable=True),
    Column("entity_pattern", String(500), nullable=True),
    Column("enabled", Boolean, nullable=False, default=True),
    Column("description", Text, nullable=True),
)

event_processing_metrics = Table(
    "event_processing_metrics",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("window_start", DateTime(timezone=True), nullable=False),
    Column("window_end", DateTime(timezone=True), nullable=False),
    Column("total_events", Integer, nullable=False),
    Column("kept_events", Integer, nullable=False),
    Column("avg_latency_ms", Float, nullable=False),
)

behavioral_patterns = Table(
    "behavioral_patterns",
    metadata,
    Column("pattern_id", String(64), primary_key=True),
    Column("connection_id", String(64), nullable=False, index=True),
    Column("pattern_type", String(50), nullable=False),
    Column("entity_id", String(255), nullable=False),
    Column("related_entities", Text, nullable=True),
    Column("occurrences", Integer, nullable=False, default=0),
    Column("confidence", Float, nullable=False, default=0.0),
    Column("details", Text, nullable=True),
    Column("observed_at", DateTime(timezone=True), nullable=False),
)

ai_batch_runs = Table(
    "ai_batch_runs",
    metadata,
    Column("batch_id", String(64), primary_key=True),
    Column("status", String(20), nullable=False),
    Column("trigger", String(20), nullable=False),
    Column("start_time", DateTime(timezone=True), nullable=False),
    Column("end_time", DateTime(timezone=True), nullable=True),
    Column("generated_count", Integer, nullable=False, default=0),
    Column("error_count", Integer, nullable=False, default=0),
    Column("skipped_count", Integer, nullable=False, default=0),
    Column("data_source", String(200), nullable=False),
    Column("error_message", Text, nullable=True),
)

ai_suggestions = Table(
    "ai_suggestions",
    metadata,
    Column("suggestion_id", String(64), primary_key=True),
    Column("batch_id", String(64), nullable=True, index=True),
    Column("connection_id", String(64), nullable=False, index=True),
    Column("context_id", String(128), nullable=False),
    Column("title", String(255), nullable=False),
    Column("description", Text, nullable=True),
    Column("suggestion_type", String(50), nullable=False),
    Column("change_type", String(20), nullable=False, default="create"),
    Column("source", String(100), nullable=False, default="cloud"),
    Column("config", Text, nullable=False),
    Column("confidence", Float, nullable=False, default=0.0),
    Column("is_valid", Boolean, nullable=False, default=False),
    Column("validation_issues", Text, nullable=True),
    Column("performance_impact", Float, nullable=False, default=0.0),
    Column("safety_critical", Boolean, nullable=False, default=False),
    Column("approval_required", Boolean, nullable=False, default=True),
    Column("approval_reason", Text, nullable=True),
    Column("status", String(20), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("decided_at", DateTime(timezone=True), nullable=True),
)

safety_limits = Table(
    "safety_limits",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("owner_id", String(64), nullable=False, index=True),
    Column("name", String(200), nullable=False),
    Column("limit_type", String(50), nullable=False),
    Column("max_value", Float, nullable=True),
    Column("approval_required", Boolean, nullable=False, default=True),
    Column("enabled", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True)),
)


def ensure_schema(engine: Engine) -> None:
    """Create missing tables. Safe to call multiple times."""
    logger.info("[DB] Ensuring schema exists")
    metadata.create_all(engine)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_datetime(value: Any) -> Optional[datetime]:
    """Normalize a datetime column read through ``text()``.

    SQLite hands back ISO strings, PostgreSQL real datetimes. Naive values are
    treated as UTC.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value
