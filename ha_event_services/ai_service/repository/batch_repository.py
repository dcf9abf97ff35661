"""Persistence of batch run records (audit trail)."""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine

from ...common.schema import as_datetime, utc_now
from ..models import BatchRecord, BatchStatus, BatchTrigger

logger = logging.getLogger(__name__)

_COLUMNS = (
    "batch_id, status, trigger, start_time, end_time, generated_count, "
    "error_count, skipped_count, data_source, error_message"
)


def batch_from_row(row: Any) -> BatchRecord:
    return BatchRecord(
        batch_id=row["batch_id"],
        status=BatchStatus(row["status"]),
        trigger=BatchTrigger(row["trigger"]),
        start_time=as_datetime(row["start_time"]),
        end_time=as_datetime(row["end_time"]),
        generated_count=int(row["generated_count"] or 0),
        error_count=int(row["error_count"] or 0),
        skipped_count=int(row["skipped_count"] or 0),
        data_source=row["data_source"],
        error_message=row["error_message"],
    )


class BatchRepository:
    def __init__(self, engine: Engine):
        self._engine = engine

    def create(self, record: BatchRecord) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                text(f"""
                    INSERT INTO ai_batch_runs ({_COLUMNS})
                    VALUES (:batch_id, :status, :trigger, :start_time, :end_time, :generated_count,
                            :error_count, :skipped_count, :data_source, :error_message)
                """),
                {
                    "batch_id": record.batch_id,
                    "status": record.status.value,
                    "trigger": record.trigger.value,
                    "start_time": record.start_time,
                    "end_time": record.end_time,
                    "generated_count": record.generated_count,
                    "error_count": record.error_count,
                    "skipped_count": record.skipped_count,
                    "data_source": record.data_source,
                    "error_message": record.error_message,
                },
            )

    def finalize(self, record: BatchRecord) -> None:
        """Persist the terminal transition of a RUNNING record."""
        if record.end_time is None:
            record.end_time = utc_now()
        with self._engine.begin() as conn:
            conn.execute(
                text("""
                    UPDATE ai_batch_runs
                    SET status = :status, end_time = :end_time,
                        generated_count = :generated_count, error_count = :error_count,
                        skipped_count = :skipped_count, error_message = :error_message
                    WHERE batch_id = :batch_id AND status = :running
                """),
                {
                    "batch_id": record.batch_id,
                    "status": record.status.value,
                    "end_time": record.end_time,
                    "generated_count": record.generated_count,
                    "error_count": record.error_count,
                    "skipped_count": record.skipped_count,
                    "error_message": record.error_message,
                    "running": BatchStatus.RUNNING.value,
                },
            )

    def get(self, batch_id: str) -> Optional[BatchRecord]:
        with self._engine.connect() as conn:
            row = conn.execute(
                text(f"SELECT {_COLUMNS} FROM ai_batch_runs WHERE batch_id = :batch_id"),
                {"batch_id": batch_id},
            ).mappings().fetchone()
        return batch_from_row(row) if row else None

    def recent(self, limit: int = 10) -> list[BatchRecord]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                text(f"SELECT {_COLUMNS} FROM ai_batch_runs ORDER BY start_time DESC LIMIT :limit"),
                {"limit": limit},
            ).mappings().all()
        return [batch_from_row(r) for r in rows]

    def count(self, status: Optional[BatchStatus] = None) -> int:
        sql = "SELECT COUNT(*) FROM ai_batch_runs"
        params: dict = {}
        if status is not None:
            sql += " WHERE status = :status"
            params["status"] = status.value
        with self._engine.connect() as conn:
            return int(conn.execute(text(sql), params).scalar() or 0)
