"""Suggestion generator with a local-first, cloud-fallback strategy.

Order per context:

1. Redis cache (when configured)
2. local backend, used only if its self-reported confidence reaches
   ``local_confidence_threshold``
3. cloud backend (primary model, then fallback model)

The whole call is bounded by ``timeout_seconds``. A timeout or backend error
returns ``None`` so the batch keeps going with the other contexts.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
import uuid
from dataclasses import dataclass
from typing import Optional

from ...common.config import env_bool
from ..exceptions import AIBackendError
from ..models import AutomationContext, Suggestion, UserPreferences
from .backends import AIBackend, BackendResult
from .cache import SuggestionCache

logger = logging.getLogger(__name__)


@dataclass
class GeneratorConfig:
    timeout_seconds: float = 30.0
    local_first: bool = True
    local_confidence_threshold: float = 0.7

    @classmethod
    def from_env(cls) -> "GeneratorConfig":
        return cls(
            timeout_seconds=float(os.getenv("AI_GENERATION_TIMEOUT_SECONDS", "30")),
            local_first=env_bool("AI_LOCAL_FIRST", True),
            local_confidence_threshold=float(os.getenv("AI_LOCAL_CONFIDENCE_THRESHOLD", "0.7")),
        )


def build_suggestion(result: BackendResult, context: AutomationContext) -> Suggestion:
    payload = result.payload
    return Suggestion(
        suggestion_id=str(uuid.uuid4()),
        context_id=context.context_id,
        connection_id=context.connection_id,
        title=payload["title"],
        description=payload["description"],
        suggestion_type=payload["suggestion_type"],
        config=payload["config"],
        confidence=payload["confidence"],
        source=f"{result.backend}:{result.model}",
    )


class SuggestionGenerator:
    def __init__(
        self,
        cloud: Optional[AIBackend] = None,
        local: Optional[AIBackend] = None,
        cache: Optional[SuggestionCache] = None,
        config: Optional[GeneratorConfig] = None,
    ):
        if cloud is None and local is None:
            raise ValueError("at least one AI backend is required")
        self._cloud = cloud
        self._local = local
        self._cache = cache
        self._config = config or GeneratorConfig()

        self._lock = threading.Lock()
        self._stats = {"generated": 0, "cache_hits": 0, "local": 0, "cloud": 0, "timeouts": 0, "errors": 0}

    def _count(self, key: str) -> None:
        with self._lock:
            self._stats[key] += 1

    @property
    def stats(self) -> dict:
        with self._lock:
            return dict(self._stats)

    async def generate(
        self, context: AutomationContext, preferences: UserPreferences
    ) -> Optional[Suggestion]:
        """Generate one suggestion for ``context``. Never raises."""
        if preferences.excluded_entities and all(
            e in preferences.excluded_entities for e in context.entity_ids
        ):
            logger.debug("[AI] Context skipped, all entities excluded context_id=%s", context.context_id)
            return None

        try:
            result = await asyncio.wait_for(
                self._generate(context, preferences),
                timeout=self._config.timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._count("timeouts")
            logger.warning(
                "[AI] Generation timed out context_id=%s timeout_s=%.1f",
                context.context_id, self._config.timeout_seconds,
            )
            return None
        except AIBackendError as e:
            self._count("errors")
            logger.error("[AI] Generation failed context_id=%s err=%s", context.context_id, e)
            return None
        except Exception:
            self._count("errors")
            logger.exception("[AI] Unexpected generation error context_id=%s", context.context_id)
            return None

        self._count("generated")
        return build_suggestion(result, context)

    def generate_sync(
        self, context: AutomationContext, preferences: UserPreferences
    ) -> Optional[Suggestion]:
        """Run ``generate`` on a private event loop (worker threads)."""
        return asyncio.run(self.generate(context, preferences))

    async def _generate(self, context: AutomationContext, preferences: UserPreferences) -> BackendResult:
        if self._cache is not None:
            cached = self._cache.get(context, preferences)
            if cached is not None:
                self._count("cache_hits")
                return BackendResult(
                    payload=cached["payload"],
                    backend=cached.get("backend", "cache"),
                    model=cached.get("model", ""),
                )

        result: Optional[BackendResult] = None
        if self._local is not None and self._config.local_first and preferences.local_processing:
            result = await self._try_local(context, preferences)

        if result is None:
            if self._cloud is None:
                raise AIBackendError("local result unusable and no cloud backend configured")
            result = await self._cloud.generate(context, preferences)
            self._count("cloud")

        if self._cache is not None:
            self._cache.set(
                context,
                preferences,
                {"payload": result.payload, "backend": result.backend, "model": result.model},
            )
        return result

    async def _try_local(
        self, context: AutomationContext, preferences: UserPreferences
    ) -> Optional[BackendResult]:
        try:
            result = await self._local.generate(context, preferences)
        except AIBackendError as e:
            logger.warning("[AI] Local model failed, falling back to cloud context_id=%s err=%s", context.context_id, e)
            return None

        confidence = result.payload.get("confidence", 0.0)
        if confidence >= self._config.local_confidence_threshold:
            self._count("local")
            return result

        logger.debug(
            "[AI] Local result below threshold context_id=%s confidence=%.2f threshold=%.2f",
            context.context_id, confidence, self._config.local_confidence_threshold,
        )
        if self._cloud is None:
            return result
        return None
