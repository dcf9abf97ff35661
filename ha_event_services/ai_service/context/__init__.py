from .aggregator import AggregatorConfig, AutomationContextAggregator
from .pattern_source import DbPatternDataSource, PatternDataSource, PatternRecord

__all__ = [
    "AggregatorConfig",
    "AutomationContextAggregator",
    "DbPatternDataSource",
    "PatternDataSource",
    "PatternRecord",
]
