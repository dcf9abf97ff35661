"""In-process per-connection leases.

Two batch runs in the same process never process the same connection at the
same time. There is no cross-process coordination.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class ConnectionLeaseRegistry:
    def __init__(self):
        self._lock = threading.Lock()
        self._holders: dict[str, str] = {}

    def acquire(self, connection_id: str, batch_id: str) -> bool:
        with self._lock:
            holder = self._holders.get(connection_id)
            if holder is not None and holder != batch_id:
                return False
            self._holders[connection_id] = batch_id
            return True

    def release(self, connection_id: str, batch_id: str) -> None:
        with self._lock:
            if self._holders.get(connection_id) == batch_id:
                del self._holders[connection_id]
            else:
                logger.warning(
                    "[LEASE] Release by non-holder connection_id=%s batch_id=%s",
                    connection_id, batch_id,
                )

    def holder(self, connection_id: str) -> Optional[str]:
        with self._lock:
            return self._holders.get(connection_id)

    def active(self) -> dict[str, str]:
        with self._lock:
            return dict(self._holders)
