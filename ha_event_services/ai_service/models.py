"""Domain models of the AI suggestion batch."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..common.schema import utc_now


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not SuggestionStatus.PENDING


class BatchStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class BatchTrigger(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"


class ChangeType(str, Enum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


class SafetyLimitType(str, Enum):
    AUTOMATION_CREATION = "AUTOMATION_CREATION"
    AUTOMATION_MODIFICATION = "AUTOMATION_MODIFICATION"
    AUTOMATION_DELETION = "AUTOMATION_DELETION"
    PERFORMANCE_IMPACT = "PERFORMANCE_IMPACT"
    SAFETY_CRITICAL = "SAFETY_CRITICAL"


# Change type → limit type that may require approval for it.
CHANGE_LIMIT_TYPES = {
    ChangeType.CREATE: SafetyLimitType.AUTOMATION_CREATION,
    ChangeType.MODIFY: SafetyLimitType.AUTOMATION_MODIFICATION,
    ChangeType.DELETE: SafetyLimitType.AUTOMATION_DELETION,
}


@dataclass(frozen=True)
class AutomationContext:
    """Summary of recent behaviour of one connection, input to generation.

    Recomputed on every batch run and never persisted.
    """
    context_id: str
    connection_id: str
    pattern_type: str
    entity_ids: tuple[str, ...]
    pattern_summary: dict[str, Any]
    window_start: datetime
    window_end: datetime
    confidence: float = 0.0

    @property
    def primary_entity(self) -> str:
        return self.entity_ids[0] if self.entity_ids else ""


@dataclass(frozen=True)
class UserPreferences:
    safety_level: str = "balanced"  # conservative | balanced | aggressive
    preferred_model: Optional[str] = None
    confidence_threshold: float = 0.7
    excluded_entities: tuple[str, ...] = ()
    local_processing: bool = True

    def cache_fingerprint(self) -> str:
        return "|".join([
            self.safety_level,
            self.preferred_model or "",
            f"{self.confidence_threshold:.2f}",
            ",".join(sorted(self.excluded_entities)),
            "1" if self.local_processing else "0",
        ])


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    confidence_score: float
    issues: tuple[str, ...]
    syntax_score: float
    logic_score: float
    security_score: float
    performance_score: float
    performance_impact: float
    safety_critical: bool

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "confidence_score": self.confidence_score,
            "issues": list(self.issues),
            "syntax_score": self.syntax_score,
            "logic_score": self.logic_score,
            "security_score": self.security_score,
            "performance_score": self.performance_score,
            "performance_impact": self.performance_impact,
            "safety_critical": self.safety_critical,
        }


@dataclass
class Suggestion:
    """Candidate automation produced by the generator.

    ``confidence`` starts as the model's self-reported value and is replaced
    by the validator score. ``status`` only changes through the repository.
    """
    suggestion_id: str
    context_id: str
    connection_id: str
    title: str
    description: str
    suggestion_type: str
    config: dict[str, Any]
    confidence: float = 0.0
    batch_id: Optional[str] = None
    change_type: ChangeType = ChangeType.CREATE
    source: str = "cloud"
    validation: Optional[ValidationResult] = None
    approval_required: bool = True
    approval_reason: Optional[str] = None
    status: SuggestionStatus = SuggestionStatus.PENDING
    created_at: datetime = field(default_factory=utc_now)
    decided_at: Optional[datetime] = None

    @property
    def is_valid(self) -> bool:
        return self.validation is not None and self.validation.valid

    @property
    def performance_impact(self) -> float:
        return self.validation.performance_impact if self.validation else 0.0

    @property
    def safety_critical(self) -> bool:
        return self.validation.safety_critical if self.validation else False

    def apply_validation(self, result: ValidationResult) -> None:
        self.validation = result
        self.confidence = result.confidence_score


@dataclass
class BatchRecord:
    """Audit row of one batch run."""
    batch_id: str
    status: BatchStatus
    trigger: BatchTrigger
    start_time: datetime
    data_source: str
    end_time: Optional[datetime] = None
    generated_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    error_message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "batchId": self.batch_id,
            "status": self.status.value,
            "trigger": self.trigger.value,
            "startTime": self.start_time.isoformat() if self.start_time else None,
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "generatedCount": self.generated_count,
            "errorCount": self.error_count,
            "skippedCount": self.skipped_count,
            "dataSource": self.data_source,
            "errorMessage": self.error_message,
        }


@dataclass(frozen=True)
class SafetyLimit:
    """Owner-configured limit, read-only here."""
    id: str
    owner_id: str
    name: str
    limit_type: str
    max_value: Optional[float] = None
    approval_required: bool = True
    enabled: bool = True


@dataclass(frozen=True)
class ApprovalDecision:
    approval_required: bool
    reasons: tuple[str, ...] = ()

    @property
    def reason_text(self) -> Optional[str]:
        return "; ".join(self.reasons) if self.reasons else None
