"""Redis cache of generated suggestion payloads."""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Optional

import orjson
import redis

from ..models import AutomationContext, UserPreferences

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "ai:suggestion:"
DEFAULT_TTL_SECONDS = 3600


class SuggestionCache:
    """Caches backend payloads per (context, preferences).

    Cache problems are logged and treated as a miss.
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis],
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        prefix: str = DEFAULT_PREFIX,
    ):
        self._redis = redis_client
        self._ttl = ttl_seconds
        self._prefix = prefix
        self._hits = 0
        self._misses = 0

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    def key_for(self, context: AutomationContext, preferences: UserPreferences) -> str:
        raw = "|".join([
            context.context_id,
            context.pattern_type,
            ",".join(context.entity_ids),
            preferences.cache_fingerprint(),
        ])
        return self._prefix + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]

    def get(self, context: AutomationContext, preferences: UserPreferences) -> Optional[dict[str, Any]]:
        if self._redis is None:
            return None
        key = self.key_for(context, preferences)
        try:
            raw = self._redis.get(key)
        except redis.RedisError as e:
            logger.warning("[AI_CACHE] Read failed key=%s err=%s", key, e)
            return None

        if raw is None:
            self._misses += 1
            return None

        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError:
            logger.warning("[AI_CACHE] Dropping corrupt entry key=%s", key)
            return None
        self._hits += 1
        return data if isinstance(data, dict) else None

    def set(self, context: AutomationContext, preferences: UserPreferences, entry: dict[str, Any]) -> None:
        if self._redis is None:
            return
        key = self.key_for(context, preferences)
        try:
            self._redis.set(key, orjson.dumps(entry, default=str), ex=self._ttl)
        except redis.RedisError as e:
            logger.warning("[AI_CACHE] Write failed key=%s err=%s", key, e)

    @property
    def stats(self) -> dict:
        return {"enabled": self.enabled, "hits": self._hits, "misses": self._misses}
