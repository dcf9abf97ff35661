"""Process-wide ingestion pipeline built from environment configuration."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Optional

import redis
from sqlalchemy.engine import Engine

from ..common.config import env_bool, get_settings
from ..common.db import get_engine
from ..common.schema import ensure_schema
from .filtering import EventFilterEngine, FilterConfig, FilterRuleRepository
from .metrics import EventMetricsService, ProcessingMetricsRepository
from .pipeline import EventIngestionPipeline
from .streaming import DeadLetterQueue, EventStreamPublisher, RedisConnection, RetryConfig, StreamConfig

logger = logging.getLogger(__name__)

_pipeline: Optional[EventIngestionPipeline] = None
_publisher: Optional[EventStreamPublisher] = None
_pipeline_lock = threading.Lock()


def _build_publisher() -> Optional[EventStreamPublisher]:
    if not env_bool("STREAM_ENABLED", True):
        logger.info("[WIRING] Stream publishing disabled")
        return None

    connection = RedisConnection(url=get_settings().redis_url)
    if not connection.connect():
        logger.warning(
            "[WIRING] Redis unavailable at startup url=%s, publishing will reconnect on demand",
            connection.safe_url,
        )

    publisher = EventStreamPublisher(
        connection,
        config=StreamConfig.from_env(),
        dead_letter=DeadLetterQueue(connection),
        retry_config=replace(
            RetryConfig.from_env(),
            retryable_exceptions=(redis.RedisError, ConnectionError, TimeoutError),
        ),
    )
    publisher.start()
    return publisher


def build_pipeline(engine: Optional[Engine] = None, with_publisher: bool = True) -> EventIngestionPipeline:
    global _publisher
    engine = engine or get_engine()
    ensure_schema(engine)

    filter_engine = EventFilterEngine(FilterConfig.from_env())
    try:
        filter_engine.set_user_rules(FilterRuleRepository(engine).load_rules())
    except Exception as e:
        logger.error("[WIRING] Could not load user filter rules err=%s", e)

    metrics = EventMetricsService.configure(sink=ProcessingMetricsRepository(engine))
    _publisher = _build_publisher() if with_publisher else None
    return EventIngestionPipeline(filter_engine, metrics, _publisher)


def get_pipeline() -> EventIngestionPipeline:
    global _pipeline
    if _pipeline is not None:
        return _pipeline
    with _pipeline_lock:
        if _pipeline is None:
            _pipeline = build_pipeline()
        return _pipeline


def shutdown_pipeline() -> None:
    """Drain the publisher and flush the open metrics window."""
    global _pipeline, _publisher
    with _pipeline_lock:
        if _publisher is not None:
            _publisher.stop()
            _publisher = None
        if _pipeline is not None:
            EventMetricsService.get_instance().flush()
        _pipeline = None
