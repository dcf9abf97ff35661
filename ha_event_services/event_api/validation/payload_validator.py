"""Validation of raw hub event payloads.

Transforms the JSON text received from the hub stream into the internal
``Event``. Two shapes are accepted:

Hub websocket envelope::

    {
        "event_type": "state_changed",
        "time_fired": "2026-01-31T08:00:00.123456+00:00",
        "data": {
            "entity_id": "light.kitchen",
            "old_state": {"state": "off", "attributes": {...}},
            "new_state": {"state": "on", "attributes": {...}}
        },
        "context": {"id": "01HQ..."}
    }

The envelope carries no event id of its own. The hub context id is shared by
every event one automation run or service call fires, so it is kept as
``context_id`` and the event gets a fresh uuid. Events that are not about one
entity (``time_changed``, ``call_service``, ...) get the pseudo-entity
``event.<event_type>`` so they still reach the filter.

Flat form::

    {"id": "...", "connectionId": "...", "timestamp": "...", "type": "state_changed",
     "entityId": "light.kitchen", "oldState": "off", "newState": "on", "attributes": {},
     "contextId": "..."}

Malformed payloads never raise: the caller gets ``valid=False`` and an error.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Union

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..domain.event import Event

logger = logging.getLogger(__name__)

MAX_PAYLOAD_BYTES = 256 * 1024

STATE_CHANGED = "state_changed"
PSEUDO_ENTITY_DOMAIN = "event"


class HubEventPayload(BaseModel):
    """Validation schema for a flat hub event."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    connection_id: Optional[str] = Field(default=None, alias="connectionId")
    timestamp: Optional[datetime] = None
    type: str = Field(..., min_length=1, max_length=100)
    entity_id: str = Field(..., alias="entityId", min_length=3, max_length=255)
    old_state: Optional[str] = Field(default=None, alias="oldState")
    new_state: Optional[str] = Field(default=None, alias="newState")
    attributes: dict[str, Any] = Field(default_factory=dict)
    context_id: Optional[str] = Field(default=None, alias="contextId")

    @field_validator("entity_id")
    @classmethod
    def validate_entity_id(cls, v: str) -> str:
        v = v.strip().lower()
        if "." not in v or v.startswith(".") or v.endswith("."):
            raise ValueError(f"entityId must look like <domain>.<object_id>, got: {v}")
        return v

    @field_validator("old_state", "new_state", mode="before")
    @classmethod
    def coerce_state(cls, v: Any) -> Optional[str]:
        # Hub state objects carry the state under "state".
        if isinstance(v, dict):
            v = v.get("state")
        if v is None:
            return None
        return str(v)

    @field_validator("timestamp")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def to_event(self, connection_id: str) -> Event:
        return Event(
            id=self.id or str(uuid.uuid4()),
            connection_id=self.connection_id or connection_id,
            timestamp=self.timestamp or datetime.now(timezone.utc),
            type=self.type,
            entity_id=self.entity_id,
            old_state=self.old_state,
            new_state=self.new_state,
            attributes=dict(self.attributes),
            context_id=self.context_id,
        )


@dataclass
class PayloadParseResult:
    """Result of parsing one raw payload."""

    valid: bool
    event: Optional[Event] = None
    error: Optional[str] = None


def normalize_envelope(data: dict[str, Any]) -> dict[str, Any]:
    """Flatten a hub websocket envelope into the flat form."""
    if "event_type" not in data:
        return data

    event_type = data.get("event_type")
    body = data.get("data")
    if not isinstance(body, dict):
        body = {}
    new_state = body.get("new_state") or {}
    old_state = body.get("old_state") or {}
    context = data.get("context")
    context_id = context.get("id") if isinstance(context, dict) else None

    attributes = {}
    if isinstance(new_state, dict):
        attributes = new_state.get("attributes") or {}

    entity_id = body.get("entity_id")
    if entity_id is None and isinstance(event_type, str) and event_type and event_type != STATE_CHANGED:
        entity_id = f"{PSEUDO_ENTITY_DOMAIN}.{event_type}"

    return {
        "id": None,
        "connectionId": data.get("connectionId"),
        "timestamp": data.get("time_fired"),
        "type": event_type,
        "entityId": entity_id,
        "oldState": old_state or None,
        "newState": new_state or None,
        "attributes": attributes,
        "contextId": str(context_id) if context_id is not None else None,
    }


def parse_event_payload(
    raw: Union[str, bytes],
    connection_id: str,
) -> PayloadParseResult:
    """Parse and validate a raw JSON payload.

    Args:
        raw: JSON text as received from the hub stream
        connection_id: Connection the payload arrived on

    Returns:
        PayloadParseResult with the event or the error
    """
    if raw is not None and not isinstance(raw, (str, bytes, bytearray)):
        return PayloadParseResult(valid=False, error=f"unsupported payload type {type(raw).__name__}")

    if raw is None or len(raw) == 0:
        return PayloadParseResult(valid=False, error="empty payload")

    if len(raw) > MAX_PAYLOAD_BYTES:
        return PayloadParseResult(valid=False, error=f"payload too large ({len(raw)} bytes)")

    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        return PayloadParseResult(valid=False, error=f"invalid JSON: {e}")

    if not isinstance(data, dict):
        return PayloadParseResult(
            valid=False,
            error=f"payload must be a JSON object, got {type(data).__name__}",
        )

    try:
        payload = HubEventPayload.model_validate(normalize_envelope(data))
    except ValidationError as e:
        return PayloadParseResult(valid=False, error=str(e))

    return PayloadParseResult(valid=True, event=payload.to_event(connection_id))
