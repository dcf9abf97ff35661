"""Domain model for hub state-change events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import orjson


@dataclass(frozen=True)
class Event:
    """State-change event received from a connected hub.

    Canonical contract flowing through the ingestion path:
    hub stream → payload validation → filter → metrics / stream publisher
    """
    id: str
    connection_id: str
    timestamp: datetime
    type: str
    entity_id: str
    old_state: Optional[str] = None
    new_state: Optional[str] = None
    attributes: dict[str, Any] = field(default_factory=dict)
    context_id: Optional[str] = None

    @property
    def domain(self) -> str:
        """Entity domain, e.g. ``light`` for ``light.kitchen``."""
        return self.entity_id.split(".", 1)[0] if "." in self.entity_id else self.entity_id

    @property
    def state_changed(self) -> bool:
        return self.old_state != self.new_state

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "connectionId": self.connection_id,
            "timestamp": self.timestamp.isoformat(),
            "type": self.type,
            "entityId": self.entity_id,
            "oldState": self.old_state,
            "newState": self.new_state,
            "attributes": self.attributes,
            "contextId": self.context_id,
        }

    def serialize(self) -> bytes:
        """Serialized event body for the broker."""
        return orjson.dumps(self.to_dict(), default=str)


@dataclass(frozen=True)
class FilterDecision:
    """Outcome of filtering one event. Exactly one per event."""
    event_id: str
    kept: bool
    rule_id: str
    reason: str
