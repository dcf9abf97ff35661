from .enforcer import SafetyLimitEnforcer
from .repository import SafetyLimitRepository

__all__ = ["SafetyLimitEnforcer", "SafetyLimitRepository"]
