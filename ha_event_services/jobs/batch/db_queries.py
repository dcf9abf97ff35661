"""Database queries used by the batch orchestrator."""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.engine import Connection

ACTIVE_CONNECTION_STATUS = "connected"


def list_active_connections(conn: Connection) -> list[dict]:
    """Connected hubs as ``{"id", "owner_id"}`` dicts, stable order."""
    rows = conn.execute(
        text("""
            SELECT id, owner_id
            FROM hub_connections
            WHERE status = :status
            ORDER BY id
        """),
        {"status": ACTIVE_CONNECTION_STATUS},
    ).mappings().all()
    return [{"id": str(r["id"]), "owner_id": r["owner_id"]} for r in rows]
