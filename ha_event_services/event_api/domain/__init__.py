"""Domain layer - event models."""

from .event import Event, FilterDecision

__all__ = ["Event", "FilterDecision"]
