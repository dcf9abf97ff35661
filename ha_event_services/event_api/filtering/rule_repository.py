"""Loads user-defined filter rules from the database."""

from __future__ import annotations

import logging
import re
from typing import Optional

import orjson
from sqlalchemy import text
from sqlalchemy.engine import Engine

from .models import FilterRule, RuleAction

logger = logging.getLogger(__name__)


def _parse_event_types(raw: Optional[str]) -> tuple[str, ...]:
    """Event types are stored as a JSON array; a comma list is accepted too."""
    if not raw:
        return ()
    raw = raw.strip()
    if raw.startswith("["):
        return tuple(str(t) for t in orjson.loads(raw))
    return tuple(t.strip() for t in raw.split(",") if t.strip())


class FilterRuleRepository:
    """Reads ``event_filter_rules``.

    Rows that cannot be turned into a rule (unknown action, bad regex) are
    skipped with a warning so one broken rule does not disable the others.
    """

    def __init__(self, engine: Engine):
        self._engine = engine

    def load_rules(self, connection_id: Optional[str] = None) -> list[FilterRule]:
        sql = """
            SELECT rule_id, connection_id, name, action, priority,
                   event_types, entity_pattern, enabled
            FROM event_filter_rules
            WHERE enabled = :enabled
        """
        params: dict = {"enabled": True}
        if connection_id is not None:
            sql += " AND (connection_id IS NULL OR connection_id = :connection_id)"
            params["connection_id"] = connection_id
        sql += " ORDER BY priority ASC, rule_id ASC"

        with self._engine.connect() as conn:
            rows = conn.execute(text(sql), params).mappings().all()

        rules: list[FilterRule] = []
        for row in rows:
            try:
                rules.append(
                    FilterRule(
                        rule_id=row["rule_id"],
                        name=row["name"],
                        action=RuleAction(str(row["action"]).lower()),
                        priority=int(row["priority"]),
                        event_types=_parse_event_types(row["event_types"]),
                        entity_pattern=row["entity_pattern"],
                        connection_id=row["connection_id"],
                        enabled=bool(row["enabled"]),
                    )
                )
            except (ValueError, re.error, orjson.JSONDecodeError) as e:
                logger.warning("[FILTER] Skipping invalid rule rule_id=%s err=%s", row["rule_id"], e)

        logger.info("[FILTER] Rules loaded count=%d connection_id=%s", len(rules), connection_id)
        return rules

    def save_rule(self, rule: FilterRule, description: Optional[str] = None) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                text("""
                    INSERT INTO event_filter_rules
                        (rule_id, connection_id, name, action, priority,
                         event_types, entity_pattern, enabled, description)
                    VALUES
                        (:rule_id, :connection_id, :name, :action, :priority,
                         :event_types, :entity_pattern, :enabled, :description)
                """),
                {
                    "rule_id": rule.rule_id,
                    "connection_id": rule.connection_id,
                    "name": rule.name,
                    "action": rule.action.value,
                    "priority": rule.priority,
                    "event_types": orjson.dumps(list(rule.event_types)).decode(),
                    "entity_pattern": rule.entity_pattern,
                    "enabled": rule.enabled,
                    "description": description,
                },
            )
