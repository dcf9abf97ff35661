"""Configuration and models for the event filter engine."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Pattern

from ...common.config import env_list
from ..domain.event import Event


DEFAULT_IGNORED_EVENT_TYPES = (
    "time_changed",
    "system_log_event",
    "recorder_5min_statistics_generated",
    "recorder_hourly_statistics_generated",
    "component_loaded",
)

DEFAULT_NOISY_ENTITY_PATTERNS = (
    r"^sun\.sun$",
    r"^sensor\..*_(rssi|linkquality|signal_strength|uptime|last_seen)$",
    r"^sensor\.date(_time)?.*$",
    r"^sensor\.time(_utc)?$",
)

# Domains whose state changes must never be swallowed by the cooldown.
DEFAULT_SAFETY_DOMAINS = ("lock", "alarm_control_panel", "siren")
SAFETY_DEVICE_CLASSES = ("smoke", "gas", "carbon_monoxide", "moisture", "safety", "tamper")

# Numeric jitter per domain: (absolute, relative).
NUMERIC_NOISE_THRESHOLDS = {
    "sensor": (0.1, 0.01),
    "number": (0.1, 0.01),
    "input_number": (0.0, 0.0),
    "default": (0.05, 0.005),
}


class RuleAction(str, Enum):
    """Action of a user-defined filter rule."""
    ALLOW = "allow"
    BLOCK = "block"


@dataclass
class FilterConfig:
    """Filter engine configuration."""
    cooldown_seconds: float = 1.0
    max_events_per_minute: int = 30
    state_cache_size: int = 10000
    latency_budget_ms: float = 100.0
    ignored_event_types: tuple[str, ...] = DEFAULT_IGNORED_EVENT_TYPES
    noisy_entity_patterns: tuple[str, ...] = DEFAULT_NOISY_ENTITY_PATTERNS
    safety_domains: tuple[str, ...] = DEFAULT_SAFETY_DOMAINS

    @classmethod
    def from_env(cls) -> "FilterConfig":
        return cls(
            cooldown_seconds=float(os.getenv("FILTER_COOLDOWN_SECONDS", "1.0")),
            max_events_per_minute=int(os.getenv("FILTER_MAX_EVENTS_PER_MINUTE", "30")),
            state_cache_size=int(os.getenv("FILTER_STATE_CACHE_SIZE", "10000")),
            latency_budget_ms=float(os.getenv("FILTER_LATENCY_BUDGET_MS", "100")),
            ignored_event_types=tuple(
                env_list("FILTER_IGNORED_EVENT_TYPES", ",".join(DEFAULT_IGNORED_EVENT_TYPES))
            ),
            noisy_entity_patterns=tuple(
                env_list("FILTER_NOISY_ENTITY_PATTERNS", ",".join(DEFAULT_NOISY_ENTITY_PATTERNS))
            ),
            safety_domains=tuple(
                env_list("FILTER_SAFETY_DOMAINS", ",".join(DEFAULT_SAFETY_DOMAINS))
            ),
        )


@dataclass
class FilterRule:
    """User-defined allow/deny rule.

    A rule matches when every configured criterion matches; an empty
    criterion matches everything. Lower ``priority`` runs first.
    """
    rule_id: str
    name: str
    action: RuleAction
    priority: int = 100
    event_types: tuple[str, ...] = ()
    entity_pattern: Optional[str] = None
    connection_id: Optional[str] = None
    enabled: bool = True
    _compiled: Optional[Pattern[str]] = field(default=None, init=False, repr=False)

    def __post_init__(self):
        if self.entity_pattern:
            self._compiled = re.compile(self.entity_pattern)

    def matches(self, event: Event) -> bool:
        if not self.enabled:
            return False
        if self.connection_id and self.connection_id != event.connection_id:
            return False
        if self.event_types and event.type not in self.event_types:
            return False
        if self._compiled is not None and not self._compiled.search(event.entity_id):
            return False
        return True


@dataclass
class EntityState:
    """Last kept state of an entity plus its recent keep timestamps."""
    last_state: Optional[str]
    last_kept_at: float
    kept_in_minute: list[float] = field(default_factory=list)
