"""Filter rules.

Each rule answers ``check(event, now) -> Optional[FilterDecision]``; ``None``
means the rule has no opinion and the next rule runs. The engine runs them in
a fixed order and the first decision wins.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Iterable, Optional

from ..domain.event import Event, FilterDecision
from .models import (
    NUMERIC_NOISE_THRESHOLDS,
    SAFETY_DEVICE_CLASSES,
    FilterConfig,
    FilterRule,
    RuleAction,
)
from .state_cache import EntityStateCache

logger = logging.getLogger(__name__)


def _to_float(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def is_safety_event(event: Event, safety_domains: Iterable[str]) -> bool:
    """True for entities whose state changes must always reach downstream."""
    if event.domain in safety_domains:
        return True
    if event.domain == "binary_sensor":
        return event.attributes.get("device_class") in SAFETY_DEVICE_CLASSES
    return False


class FrequencyRule:
    """Per-entity cooldown and per-minute cap."""

    rule_id = "frequency"

    def __init__(self, config: FilterConfig, cache: EntityStateCache):
        self._config = config
        self._cache = cache

    def check(self, event: Event, now: float) -> Optional[FilterDecision]:
        entry = self._cache.get(event.entity_id)
        if entry is None:
            return None

        if is_safety_event(event, self._config.safety_domains) and (
            event.new_state != entry.last_state
        ):
            return None

        elapsed = now - entry.last_kept_at
        if elapsed < self._config.cooldown_seconds:
            return FilterDecision(
                event_id=event.id,
                kept=False,
                rule_id=self.rule_id,
                reason=f"cooldown ({elapsed:.3f}s < {self._config.cooldown_seconds}s)",
            )

        kept = self._cache.kept_in_last_minute(event.entity_id, now)
        if kept >= self._config.max_events_per_minute:
            return FilterDecision(
                event_id=event.id,
                kept=False,
                rule_id=self.rule_id,
                reason=f"rate limit ({kept}/min)",
            )
        return None


class NoiseRule:
    """Ignored event types, noisy entities, attribute-only and jitter changes."""

    rule_id = "noise"

    def __init__(self, config: FilterConfig, cache: EntityStateCache):
        self._config = config
        self._cache = cache
        self._ignored = frozenset(config.ignored_event_types)
        self._noisy = [re.compile(p) for p in config.noisy_entity_patterns]

    def _drop(self, event: Event, reason: str) -> FilterDecision:
        return FilterDecision(event_id=event.id, kept=False, rule_id=self.rule_id, reason=reason)

    def check(self, event: Event, now: float) -> Optional[FilterDecision]:
        if event.type in self._ignored:
            return self._drop(event, f"ignored event type {event.type}")

        for pattern in self._noisy:
            if pattern.search(event.entity_id):
                return self._drop(event, f"noisy entity ({pattern.pattern})")

        if event.old_state is not None and not event.state_changed:
            return self._drop(event, "attribute-only change")

        if self._is_jitter(event):
            return self._drop(event, "numeric jitter")

        return None

    def _is_jitter(self, event: Event) -> bool:
        new_value = _to_float(event.new_state)
        if new_value is None:
            return False

        entry = self._cache.get(event.entity_id)
        reference = _to_float(entry.last_state) if entry is not None else None
        if reference is None:
            reference = _to_float(event.old_state)
        if reference is None:
            return False

        abs_delta, rel_delta = NUMERIC_NOISE_THRESHOLDS.get(
            event.domain, NUMERIC_NOISE_THRESHOLDS["default"]
        )
        delta = abs(new_value - reference)
        if delta == 0:
            return True
        if delta < abs_delta:
            return True
        if reference != 0 and (delta / abs(reference)) < rel_delta:
            return True
        return False


class UserRuleSet:
    """User-defined allow/deny rules, evaluated by ascending priority."""

    def __init__(self, rules: Optional[Iterable[FilterRule]] = None):
        self._lock = threading.Lock()
        self._rules: list[FilterRule] = []
        self.replace(rules or [])

    def replace(self, rules: Iterable[FilterRule]) -> None:
        ordered = sorted(rules, key=lambda r: (r.priority, r.rule_id))
        with self._lock:
            self._rules = ordered
        logger.info("[FILTER] User rules loaded count=%d", len(ordered))

    @property
    def rules(self) -> list[FilterRule]:
        with self._lock:
            return list(self._rules)

    def check(self, event: Event, now: float) -> Optional[FilterDecision]:
        for rule in self.rules:
            if rule.matches(event):
                return FilterDecision(
                    event_id=event.id,
                    kept=rule.action == RuleAction.ALLOW,
                    rule_id=rule.rule_id,
                    reason=f"user rule {rule.name} ({rule.action.value})",
                )
        return None
