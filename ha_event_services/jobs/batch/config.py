"""Batch orchestrator configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass

from ...common.config import env_bool, load_env


@dataclass(frozen=True)
class BatchConfig:
    """Scheduling and fan-out limits of the suggestion batch."""
    enabled: bool = True
    interval_hours: float = 6.0
    batch_size: int = 100
    max_concurrent: int = 3
    workers: int = 4
    # Pending suggestions older than this are expired at the end of a run; 0 disables.
    pending_ttl_hours: float = 72.0

    @property
    def interval_seconds(self) -> float:
        return self.interval_hours * 3600.0

    @classmethod
    def from_env(cls) -> "BatchConfig":
        load_env()
        return cls(
            enabled=env_bool("AI_BATCH_ENABLED", True),
            interval_hours=float(os.getenv("AI_BATCH_INTERVAL_HOURS", "6")),
            batch_size=max(1, int(os.getenv("AI_BATCH_SIZE", "100"))),
            max_concurrent=max(1, int(os.getenv("AI_BATCH_MAX_CONCURRENT", "3"))),
            workers=max(1, int(os.getenv("AI_BATCH_WORKERS", "4"))),
            pending_ttl_hours=float(os.getenv("AI_SUGGESTION_PENDING_TTL_HOURS", "72")),
        )
