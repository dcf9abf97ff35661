"""Event filter engine.

Evaluates every ingested event against a fixed rule chain:

1. frequency / cooldown per entity
2. noise suppression (event types, noisy entities, attribute-only, jitter)
3. user-defined allow/deny rules
4. default keep

The engine fails OPEN: if a rule raises, the event is kept. Approval of AI
suggestions fails closed, see ``ai_service.safety``.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from typing import Callable, Iterable, Optional

from prometheus_client import Counter

from ..domain.event import Event, FilterDecision
from .models import FilterConfig, FilterRule
from .rules import FrequencyRule, NoiseRule, UserRuleSet
from .state_cache import EntityStateCache

logger = logging.getLogger(__name__)

FILTER_DECISIONS = Counter(
    "ha_filter_decisions_total",
    "Filter decisions by outcome",
    ["outcome"],
)
FILTER_FAIL_OPEN = Counter(
    "ha_filter_fail_open_total",
    "Events kept because a filter rule raised",
)

DEFAULT_RULE_ID = "default"
FAIL_OPEN_RULE_ID = "fail_open"
LATENCY_SAMPLES = 2048


class EventFilterEngine:
    """Decides for each event whether it is kept or discarded."""

    def __init__(
        self,
        config: Optional[FilterConfig] = None,
        user_rules: Optional[Iterable[FilterRule]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config or FilterConfig()
        self._clock = clock
        self._cache = EntityStateCache(self._config.state_cache_size)
        self._user_rules = UserRuleSet(user_rules)
        self._chain = [
            FrequencyRule(self._config, self._cache),
            NoiseRule(self._config, self._cache),
            self._user_rules,
        ]

        self._lock = threading.Lock()
        self._latencies: deque[float] = deque(maxlen=LATENCY_SAMPLES)
        self._evaluated = 0
        self._kept = 0
        self._fail_open_count = 0
        self._over_budget = 0

    @property
    def config(self) -> FilterConfig:
        return self._config

    @property
    def state_cache(self) -> EntityStateCache:
        return self._cache

    def set_user_rules(self, rules: Iterable[FilterRule]) -> None:
        self._user_rules.replace(rules)

    def evaluate(self, event: Event) -> FilterDecision:
        """Return exactly one decision for ``event``. Never raises."""
        started = time.perf_counter()
        now = self._clock()

        try:
            decision = self._run_chain(event, now)
        except Exception as e:
            logger.exception(
                "[FILTER] Rule error, keeping event event_id=%s entity_id=%s err=%s",
                event.id, event.entity_id, e,
            )
            with self._lock:
                self._fail_open_count += 1
            FILTER_FAIL_OPEN.inc()
            decision = FilterDecision(
                event_id=event.id,
                kept=True,
                rule_id=FAIL_OPEN_RULE_ID,
                reason=f"rule error: {type(e).__name__}",
            )

        if decision.kept:
            try:
                self._cache.record_kept(event.entity_id, event.new_state, now)
            except Exception:
                logger.exception("[FILTER] State cache update failed entity_id=%s", event.entity_id)

        latency_ms = (time.perf_counter() - started) * 1000.0
        self._record(decision, latency_ms, event)
        return decision

    def _run_chain(self, event: Event, now: float) -> FilterDecision:
        for rule in self._chain:
            decision = rule.check(event, now)
            if decision is not None:
                return decision
        return FilterDecision(event_id=event.id, kept=True, rule_id=DEFAULT_RULE_ID, reason="no rule matched")

    def _record(self, decision: FilterDecision, latency_ms: float, event: Event) -> None:
        with self._lock:
            self._evaluated += 1
            if decision.kept:
                self._kept += 1
            self._latencies.append(latency_ms)
            if latency_ms > self._config.latency_budget_ms:
                self._over_budget += 1
        FILTER_DECISIONS.labels(outcome="kept" if decision.kept else "discarded").inc()

        if latency_ms > self._config.latency_budget_ms:
            logger.warning(
                "[FILTER] Evaluation over budget event_id=%s entity_id=%s latency_ms=%.2f budget_ms=%.0f",
                event.id, event.entity_id, latency_ms, self._config.latency_budget_ms,
            )

    @property
    def fail_open_count(self) -> int:
        with self._lock:
            return self._fail_open_count

    def latency_p99_ms(self) -> float:
        with self._lock:
            samples = sorted(self._latencies)
        if not samples:
            return 0.0
        index = max(0, math.ceil(0.99 * len(samples)) - 1)
        return samples[index]

    @property
    def stats(self) -> dict:
        with self._lock:
            evaluated = self._evaluated
            kept = self._kept
            fail_open = self._fail_open_count
            over_budget = self._over_budget
        return {
            "evaluated": evaluated,
            "kept": kept,
            "discarded": evaluated - kept,
            "fail_open_count": fail_open,
            "over_budget": over_budget,
            "latency_p99_ms": round(self.latency_p99_ms(), 3),
            "user_rules": len(self._user_rules.rules),
            "state_cache": self._cache.stats,
        }
