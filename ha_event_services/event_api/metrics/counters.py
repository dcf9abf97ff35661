"""Thread-sharded counters.

Ingestion threads increment the shard picked by their thread id, so writers
on different threads rarely contend on the same lock. Reads merge all shards.
"""

from __future__ import annotations

import threading
from typing import Dict, Iterable


class _Shard:
    __slots__ = ("lock", "values")

    def __init__(self, fields: Iterable[str]):
        self.lock = threading.Lock()
        self.values: Dict[str, float] = {f: 0 for f in fields}


class ShardedCounter:
    """Set of named counters accumulated in per-thread shards.

    Usage:
        counter = ShardedCounter(("total", "kept"))
        counter.add(total=1, kept=1)
        counter.snapshot()   # {"total": 1, "kept": 1}
        counter.drain()      # returns and resets atomically
    """

    def __init__(self, fields: Iterable[str], shards: int = 16):
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self._fields = tuple(fields)
        self._shards = [_Shard(self._fields) for _ in range(shards)]

    @property
    def fields(self) -> tuple[str, ...]:
        return self._fields

    def _shard(self) -> _Shard:
        return self._shards[threading.get_ident() % len(self._shards)]

    def add(self, **deltas: float) -> None:
        shard = self._shard()
        with shard.lock:
            for name, delta in deltas.items():
                shard.values[name] += delta

    def snapshot(self) -> Dict[str, float]:
        totals = {f: 0 for f in self._fields}
        for shard in self._shards:
            with shard.lock:
                for name, value in shard.values.items():
                    totals[name] += value
        return totals

    def drain(self) -> Dict[str, float]:
        """Return the merged totals and reset every shard.

        All shard locks are held together so no increment lands between the
        read and the reset.
        """
        for shard in self._shards:
            shard.lock.acquire()
        try:
            totals = {f: 0 for f in self._fields}
            for shard in self._shards:
                for name, value in shard.values.items():
                    totals[name] += value
                    shard.values[name] = 0
            return totals
        finally:
            for shard in reversed(self._shards):
                shard.lock.release()
