"""Read access to owner safety limits."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine

from ..models import SafetyLimit

logger = logging.getLogger(__name__)


class SafetyLimitRepository:
    def __init__(self, engine: Engine):
        self._engine = engine

    def get_owner_id(self, connection_id: str) -> Optional[str]:
        with self._engine.connect() as conn:
            row = conn.execute(
                text("SELECT owner_id FROM hub_connections WHERE id = :id"),
                {"id": connection_id},
            ).fetchone()
        return row[0] if row else None

    def load_enabled(self, owner_id: str) -> list[SafetyLimit]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                text("""
                    SELECT id, owner_id, name, limit_type, max_value, approval_required, enabled
                    FROM safety_limits
                    WHERE owner_id = :owner_id AND enabled = :enabled
                    ORDER BY id
                """),
                {"owner_id": owner_id, "enabled": True},
            ).mappings().all()

        return [
            SafetyLimit(
                id=r["id"],
                owner_id=r["owner_id"],
                name=r["name"],
                limit_type=str(r["limit_type"]).upper(),
                max_value=float(r["max_value"]) if r["max_value"] is not None else None,
                approval_required=bool(r["approval_required"]),
                enabled=bool(r["enabled"]),
            )
            for r in rows
        ]
