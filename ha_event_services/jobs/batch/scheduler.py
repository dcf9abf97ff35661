"""Fixed-interval trigger for the batch orchestrator."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from .runner import BatchOrchestrator

logger = logging.getLogger(__name__)


class BatchScheduler:
    """Timer thread calling ``run_scheduled`` every ``interval_seconds``.

    Disabling only prevents new runs; runs already in progress finish.
    """

    def __init__(self, orchestrator: BatchOrchestrator, interval_seconds: float, enabled: bool = True):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._orchestrator = orchestrator
        self._interval = interval_seconds
        self._enabled = threading.Event()
        if enabled:
            self._enabled.set()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._ticks = 0

    @property
    def is_enabled(self) -> bool:
        return self._enabled.is_set()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def ticks(self) -> int:
        return self._ticks

    def enable(self) -> None:
        self._enabled.set()
        logger.info("[SCHEDULER] Enabled interval_s=%.0f", self._interval)

    def disable(self) -> None:
        self._enabled.clear()
        logger.info("[SCHEDULER] Disabled, running batches are not cancelled")

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="ai-batch-scheduler", daemon=True)
        self._thread.start()
        logger.info("[SCHEDULER] Started interval_s=%.0f enabled=%s", self._interval, self.is_enabled)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("[SCHEDULER] Stopped")

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            self._ticks += 1
            if not self._enabled.is_set():
                logger.debug("[SCHEDULER] Tick skipped, scheduler disabled")
                continue
            try:
                self._orchestrator.run_scheduled()
            except Exception:
                logger.exception("[SCHEDULER] Scheduled trigger failed")
