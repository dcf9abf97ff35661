"""Wiring of the production orchestrator from environment configuration."""

from __future__ import annotations

import logging
import os
import threading
from typing import Optional

from sqlalchemy.engine import Engine

from ...ai_service.context import AggregatorConfig, AutomationContextAggregator, DbPatternDataSource
from ...ai_service.generation import (
    CloudModelBackend,
    GeneratorConfig,
    LocalModelBackend,
    SuggestionCache,
    SuggestionGenerator,
)
from ...ai_service.safety import SafetyLimitEnforcer, SafetyLimitRepository
from ...ai_service.validation import SuggestionValidator, ValidatorConfig
from ...common.config import env_bool, get_settings
from ...common.db import get_engine
from ...common.schema import ensure_schema
from ...event_api.streaming import RedisConnection
from .config import BatchConfig
from .runner import BatchOrchestrator

logger = logging.getLogger(__name__)

_orchestrator: Optional[BatchOrchestrator] = None
_orchestrator_lock = threading.Lock()


def build_orchestrator(
    engine: Optional[Engine] = None,
    redis_client=None,
    config: Optional[BatchConfig] = None,
) -> BatchOrchestrator:
    engine = engine or get_engine()
    ensure_schema(engine)

    generator_config = GeneratorConfig.from_env()
    local = LocalModelBackend(timeout=generator_config.timeout_seconds) if env_bool("AI_LOCAL_ENABLED", True) else None
    cloud = CloudModelBackend(timeout=generator_config.timeout_seconds)
    cache = None
    if redis_client is not None:
        cache = SuggestionCache(
            redis_client, ttl_seconds=int(os.getenv("AI_SUGGESTION_CACHE_TTL_SECONDS", "3600"))
        )

    orchestrator = BatchOrchestrator(
        engine=engine,
        aggregator=AutomationContextAggregator(DbPatternDataSource(engine), AggregatorConfig.from_env()),
        generator=SuggestionGenerator(cloud=cloud, local=local, cache=cache, config=generator_config),
        validator=SuggestionValidator(ValidatorConfig.from_env()),
        enforcer=SafetyLimitEnforcer(SafetyLimitRepository(engine)),
        config=config or BatchConfig.from_env(),
    )
    logger.info(
        "[BATCH] Orchestrator ready local=%s cache=%s max_concurrent=%d",
        local is not None, cache is not None, orchestrator.config.max_concurrent,
    )
    return orchestrator


def connect_cache_client():
    if not env_bool("AI_SUGGESTION_CACHE_ENABLED", True):
        return None
    connection = RedisConnection(url=get_settings().redis_url)
    if not connection.connect():
        logger.warning("[BATCH] Redis unavailable, suggestion cache disabled")
        return None
    return connection.client


def get_orchestrator() -> BatchOrchestrator:
    """Process-wide orchestrator, built lazily."""
    global _orchestrator
    if _orchestrator is not None:
        return _orchestrator
    with _orchestrator_lock:
        if _orchestrator is None:
            _orchestrator = build_orchestrator(redis_client=connect_cache_client())
        return _orchestrator


def reset_orchestrator() -> None:
    global _orchestrator
    with _orchestrator_lock:
        _orchestrator = None
