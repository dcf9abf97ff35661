"""Exceptions of the AI suggestion service."""

from __future__ import annotations


class AIBackendError(Exception):
    """An AI backend failed or returned an unusable response."""


class InvalidSuggestionTransition(Exception):
    """The suggestion is not PENDING (terminal states are final) or does not exist."""

    def __init__(self, suggestion_id: str, current: str | None, requested: str):
        self.suggestion_id = suggestion_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"cannot move suggestion {suggestion_id} from {current} to {requested}"
        )


class SuggestionNotApprovable(Exception):
    """Invalid suggestions can be rejected or expired, never approved."""
