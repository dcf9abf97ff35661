"""Persistence of suggestions and the approval state machine.

PENDING is the only non-terminal status. Every transition is a conditional
``UPDATE ... WHERE status = 'pending'`` so two concurrent decisions cannot
both win and a terminal row is never rewritten.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Optional, Union

import orjson
from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from ...common.schema import as_datetime, utc_now
from ..exceptions import InvalidSuggestionTransition, SuggestionNotApprovable
from ..models import ChangeType, Suggestion, SuggestionStatus, ValidationResult

logger = logging.getLogger(__name__)

_COLUMNS = (
    "suggestion_id, batch_id, connection_id, context_id, title, description, "
    "suggestion_type, change_type, source, config, confidence, is_valid, validation_issues, "
    "performance_impact, safety_critical, approval_required, approval_reason, "
    "status, created_at, decided_at"
)


def suggestion_to_row(suggestion: Suggestion) -> dict[str, Any]:
    validation = suggestion.validation
    return {
        "suggestion_id": suggestion.suggestion_id,
        "batch_id": suggestion.batch_id,
        "connection_id": suggestion.connection_id,
        "context_id": suggestion.context_id,
        "title": suggestion.title[:255],
        "description": suggestion.description,
        "suggestion_type": suggestion.suggestion_type,
        "change_type": suggestion.change_type.value,
        "source": suggestion.source,
        "config": orjson.dumps(suggestion.config, default=str).decode(),
        "confidence": float(suggestion.confidence),
        "is_valid": suggestion.is_valid,
        "validation_issues": orjson.dumps(validation.to_dict()).decode() if validation else None,
        "performance_impact": float(suggestion.performance_impact),
        "safety_critical": suggestion.safety_critical,
        "approval_required": suggestion.approval_required,
        "approval_reason": suggestion.approval_reason,
        "status": suggestion.status.value,
        "created_at": suggestion.created_at,
        "decided_at": suggestion.decided_at,
    }


def suggestion_from_row(row: Any) -> Suggestion:
    validation = None
    if row["validation_issues"]:
        data = orjson.loads(row["validation_issues"])
        validation = ValidationResult(
            valid=bool(data["valid"]),
            confidence_score=float(data["confidence_score"]),
            issues=tuple(data.get("issues", [])),
            syntax_score=float(data.get("syntax_score", 0.0)),
            logic_score=float(data.get("logic_score", 0.0)),
            security_score=float(data.get("security_score", 0.0)),
            performance_score=float(data.get("performance_score", 0.0)),
            performance_impact=float(data.get("performance_impact", 0.0)),
            safety_critical=bool(data.get("safety_critical", False)),
        )

    return Suggestion(
        suggestion_id=row["suggestion_id"],
        context_id=row["context_id"],
        connection_id=row["connection_id"],
        title=row["title"],
        description=row["description"] or "",
        suggestion_type=row["suggestion_type"],
        change_type=ChangeType(row["change_type"]),
        source=row["source"],
        config=orjson.loads(row["config"]),
        confidence=float(row["confidence"]),
        batch_id=row["batch_id"],
        validation=validation,
        approval_required=bool(row["approval_required"]),
        approval_reason=row["approval_reason"],
        status=SuggestionStatus(row["status"]),
        created_at=as_datetime(row["created_at"]),
        decided_at=as_datetime(row["decided_at"]),
    )


class SuggestionRepository:
    def __init__(self, engine: Engine):
        self._engine = engine

    def insert(self, suggestion: Suggestion, conn: Optional[Connection] = None) -> None:
        sql = text(f"""
            INSERT INTO ai_suggestions ({_COLUMNS})
            VALUES (
                :suggestion_id, :batch_id, :connection_id, :context_id, :title, :description,
                :suggestion_type, :change_type, :source, :config, :confidence, :is_valid, :validation_issues,
                :performance_impact, :safety_critical, :approval_required, :approval_reason,
                :status, :created_at, :decided_at
            )
        """)
        row = suggestion_to_row(suggestion)
        if conn is not None:
            conn.execute(sql, row)
            return
        with self._engine.begin() as c:
            c.execute(sql, row)

    def update_approval(self, suggestion_id: str, approval_required: bool, reason: Optional[str]) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                text("""
                    UPDATE ai_suggestions
                    SET approval_required = :approval_required, approval_reason = :reason
                    WHERE suggestion_id = :suggestion_id
                """),
                {"suggestion_id": suggestion_id, "approval_required": approval_required, "reason": reason},
            )

    def get(self, suggestion_id: str) -> Optional[Suggestion]:
        with self._engine.connect() as conn:
            row = conn.execute(
                text(f"SELECT {_COLUMNS} FROM ai_suggestions WHERE suggestion_id = :id"),
                {"id": suggestion_id},
            ).mappings().fetchone()
        return suggestion_from_row(row) if row else None

    def list_by_batch(self, batch_id: str) -> list[Suggestion]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                text(f"SELECT {_COLUMNS} FROM ai_suggestions WHERE batch_id = :batch_id ORDER BY created_at"),
                {"batch_id": batch_id},
            ).mappings().all()
        return [suggestion_from_row(r) for r in rows]

    def list_by_connection(
        self, connection_id: str, status: Optional[SuggestionStatus] = None
    ) -> list[Suggestion]:
        sql = f"SELECT {_COLUMNS} FROM ai_suggestions WHERE connection_id = :connection_id"
        params: dict = {"connection_id": connection_id}
        if status is not None:
            sql += " AND status = :status"
            params["status"] = status.value
        sql += " ORDER BY created_at DESC"
        with self._engine.connect() as conn:
            rows = conn.execute(text(sql), params).mappings().all()
        return [suggestion_from_row(r) for r in rows]

    def transition(
        self,
        suggestion_id: str,
        new_status: Union[SuggestionStatus, str],
        now: Optional[datetime] = None,
    ) -> Suggestion:
        """Move a PENDING suggestion to a terminal status.

        Raises:
            InvalidSuggestionTransition: target is PENDING, or the row is
                missing or already terminal
            SuggestionNotApprovable: approving a suggestion that failed validation
        """
        new_status = SuggestionStatus(new_status)
        if not new_status.is_terminal:
            raise InvalidSuggestionTransition(suggestion_id, None, new_status.value)

        decided_at = now or utc_now()
        with self._engine.begin() as conn:
            if new_status is SuggestionStatus.APPROVED:
                is_valid = conn.execute(
                    text("SELECT is_valid FROM ai_suggestions WHERE suggestion_id = :id"),
                    {"id": suggestion_id},
                ).scalar()
                if is_valid is not None and not bool(is_valid):
                    raise SuggestionNotApprovable(f"suggestion {suggestion_id} failed validation")

            result = conn.execute(
                text("""
                    UPDATE ai_suggestions
                    SET status = :new_status, decided_at = :decided_at
                    WHERE suggestion_id = :id AND status = :pending
                """),
                {
                    "id": suggestion_id,
                    "new_status": new_status.value,
                    "decided_at": decided_at,
                    "pending": SuggestionStatus.PENDING.value,
                },
            )
            if result.rowcount != 1:
                current = conn.execute(
                    text("SELECT status FROM ai_suggestions WHERE suggestion_id = :id"),
                    {"id": suggestion_id},
                ).scalar()
                raise InvalidSuggestionTransition(suggestion_id, current, new_status.value)

        logger.info("[SUGGESTION] Transition suggestion_id=%s status=%s", suggestion_id, new_status.value)
        return self.get(suggestion_id)

    def approve(self, suggestion_id: str) -> Suggestion:
        return self.transition(suggestion_id, SuggestionStatus.APPROVED)

    def reject(self, suggestion_id: str) -> Suggestion:
        return self.transition(suggestion_id, SuggestionStatus.REJECTED)

    def expire_pending(self, older_than: timedelta, now: Optional[datetime] = None) -> int:
        """Expire PENDING suggestions created before ``now - older_than``."""
        now = now or utc_now()
        with self._engine.begin() as conn:
            result = conn.execute(
                text("""
                    UPDATE ai_suggestions
                    SET status = :expired, decided_at = :now
                    WHERE status = :pending AND created_at < :cutoff
                """),
                {
                    "expired": SuggestionStatus.EXPIRED.value,
                    "pending": SuggestionStatus.PENDING.value,
                    "now": now,
                    "cutoff": now - older_than,
                },
            )
        expired = result.rowcount or 0
        if expired:
            logger.info("[SUGGESTION] Expired pending suggestions count=%d", expired)
        return expired
