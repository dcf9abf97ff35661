"""Event filter engine."""

from .engine import EventFilterEngine
from .models import FilterConfig, FilterRule, RuleAction
from .rule_repository import FilterRuleRepository

__all__ = [
    "EventFilterEngine",
    "FilterConfig",
    "FilterRule",
    "FilterRuleRepository",
    "RuleAction",
]
