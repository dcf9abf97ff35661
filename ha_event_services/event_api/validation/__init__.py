"""Validation layer - raw payload parsing."""

from .payload_validator import HubEventPayload, PayloadParseResult, parse_event_payload

__all__ = ["HubEventPayload", "PayloadParseResult", "parse_event_payload"]
