"""Bounded per-entity recent-state cache."""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Optional

from .models import EntityState


class EntityStateCache:
    """LRU cache of the last kept state per entity.

    Only kept events update the cache, so suppressed duplicates never extend
    a cooldown. Eviction drops the least recently kept entity.
    """

    def __init__(self, max_entities: int = 10000):
        self._max = max_entities
        self._entries: OrderedDict[str, EntityState] = OrderedDict()
        self._lock = threading.Lock()
        self._evictions = 0

    def get(self, entity_id: str) -> Optional[EntityState]:
        with self._lock:
            return self._entries.get(entity_id)

    def record_kept(self, entity_id: str, state: Optional[str], at: float) -> None:
        with self._lock:
            entry = self._entries.get(entity_id)
            if entry is None:
                entry = EntityState(last_state=state, last_kept_at=at)
                self._entries[entity_id] = entry
            else:
                entry.last_state = state
                entry.last_kept_at = at
                self._entries.move_to_end(entity_id)

            cutoff = at - 60.0
            entry.kept_in_minute = [t for t in entry.kept_in_minute if t > cutoff]
            entry.kept_in_minute.append(at)

            while len(self._entries) > self._max:
                self._entries.popitem(last=False)
                self._evictions += 1

    def kept_in_last_minute(self, entity_id: str, now: float) -> int:
        with self._lock:
            entry = self._entries.get(entity_id)
            if entry is None:
                return 0
            cutoff = now - 60.0
            return sum(1 for t in entry.kept_in_minute if t > cutoff)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def stats(self) -> dict:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_size": self._max,
                "evictions": self._evictions,
            }
