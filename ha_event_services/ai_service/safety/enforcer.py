"""Approval gate for validated suggestions.

Fails CLOSED: any error while evaluating limits means approval is required.
Event filtering fails open, see ``event_api.filtering.engine``.
"""

from __future__ import annotations

import logging
import os
from typing import Iterable, Optional

from prometheus_client import Counter

from ..models import (
    CHANGE_LIMIT_TYPES,
    ApprovalDecision,
    SafetyLimit,
    SafetyLimitType,
    Suggestion,
)
from ..validation import action_domains, iter_config_actions
from .repository import SafetyLimitRepository

logger = logging.getLogger(__name__)

SAFETY_FAIL_CLOSED = Counter(
    "ha_safety_fail_closed_total",
    "Approval forced because limit evaluation raised",
)

DEFAULT_PERFORMANCE_THRESHOLD = 0.7


class SafetyLimitEnforcer:
    def __init__(
        self,
        repository: Optional[SafetyLimitRepository] = None,
        default_performance_threshold: Optional[float] = None,
    ):
        self._repository = repository
        if default_performance_threshold is None:
            default_performance_threshold = float(
                os.getenv("AI_SAFETY_PERFORMANCE_THRESHOLD", str(DEFAULT_PERFORMANCE_THRESHOLD))
            )
        self._default_threshold = default_performance_threshold

    def evaluate(self, suggestion: Suggestion, limits: Iterable[SafetyLimit]) -> ApprovalDecision:
        """Decide whether ``suggestion`` needs human approval. Never raises."""
        try:
            return self._evaluate(suggestion, list(limits))
        except Exception as e:
            SAFETY_FAIL_CLOSED.inc()
            logger.error(
                "[SAFETY] Limit evaluation failed, approval required suggestion_id=%s err=%s",
                suggestion.suggestion_id, e,
            )
            return ApprovalDecision(True, (f"safety evaluation error: {type(e).__name__}",))

    def enforce(self, suggestion: Suggestion, owner_id: Optional[str] = None) -> ApprovalDecision:
        """Load the owner's limits, evaluate and apply the decision to ``suggestion``."""
        try:
            limits = self._load_limits(suggestion, owner_id)
            decision = self._evaluate(suggestion, limits)
        except Exception as e:
            SAFETY_FAIL_CLOSED.inc()
            logger.error(
                "[SAFETY] Limit evaluation failed, approval required suggestion_id=%s err=%s",
                suggestion.suggestion_id, e,
            )
            decision = ApprovalDecision(True, (f"safety evaluation error: {type(e).__name__}",))

        suggestion.approval_required = decision.approval_required
        suggestion.approval_reason = decision.reason_text
        return decision

    def _load_limits(self, suggestion: Suggestion, owner_id: Optional[str]) -> list[SafetyLimit]:
        if self._repository is None:
            return []
        if owner_id is None:
            owner_id = self._repository.get_owner_id(suggestion.connection_id)
        if owner_id is None:
            raise LookupError(f"no owner for connection {suggestion.connection_id}")
        return self._repository.load_enabled(owner_id)

    def _evaluate(self, suggestion: Suggestion, limits: list[SafetyLimit]) -> ApprovalDecision:
        reasons: list[str] = []

        if suggestion.validation is None:
            reasons.append("suggestion was not validated")
        elif not suggestion.validation.valid:
            reasons.append("suggestion failed validation")

        active = [l for l in limits if l.enabled]
        change_limit = CHANGE_LIMIT_TYPES[suggestion.change_type].value

        for limit in active:
            if limit.approval_required and limit.limit_type == change_limit:
                reasons.append(f"{suggestion.change_type.value} requires approval ({limit.name})")

        threshold = self._default_threshold
        perf_limits = [
            l.max_value for l in active
            if l.limit_type == SafetyLimitType.PERFORMANCE_IMPACT.value and l.max_value is not None
        ]
        if perf_limits:
            threshold = min(perf_limits)
        if suggestion.performance_impact > threshold:
            reasons.append(
                f"performance impact {suggestion.performance_impact:.2f} exceeds {threshold:.2f}"
            )

        if suggestion.safety_critical:
            reasons.append("safety-critical change")
        else:
            for limit in active:
                if limit.limit_type == SafetyLimitType.SAFETY_CRITICAL.value and limit.approval_required:
                    if self._touches_safety_scope(suggestion, limit):
                        reasons.append(f"safety-critical scope ({limit.name})")

        decision = ApprovalDecision(bool(reasons), tuple(reasons))
        logger.debug(
            "[SAFETY] suggestion_id=%s approval_required=%s reasons=%s",
            suggestion.suggestion_id, decision.approval_required, decision.reason_text,
        )
        return decision

    @staticmethod
    def _touches_safety_scope(suggestion: Suggestion, limit: SafetyLimit) -> bool:
        # A SAFETY_CRITICAL limit whose name is a domain (e.g. "cover") marks
        # actions calling or targeting that domain as safety-critical for this owner.
        domain = limit.name.strip().lower()
        return any(domain in action_domains(a) for a in iter_config_actions(suggestion.config))
