"""AI suggestion batch.

Modules:
- config: BatchConfig (env driven)
- db_queries: active hub connections
- leases: in-process per-connection leases
- runner: BatchOrchestrator (permits, sub-batches, worker pool)
- scheduler: fixed-interval trigger thread
- factory: production wiring
- cli: command line entry point
"""

from .config import BatchConfig
from .leases import ConnectionLeaseRegistry
from .runner import BatchCapacityExceeded, BatchOrchestrator, TriggerResult
from .scheduler import BatchScheduler

__all__ = [
    "BatchCapacityExceeded",
    "BatchConfig",
    "BatchOrchestrator",
    "BatchScheduler",
    "ConnectionLeaseRegistry",
    "TriggerResult",
]
