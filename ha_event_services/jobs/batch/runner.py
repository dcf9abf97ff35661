"""Batch orchestrator: AI suggestion generation over all connected hubs.

A run is IDLE -> RUNNING -> {COMPLETED, FAILED}. At most ``max_concurrent``
runs are RUNNING in the process; a permit is taken non-blockingly before the
BatchRecord exists, so a rejected trigger leaves no audit row. Inside a run
each connection is processed under a lease, its contexts split into
sub-batches, and each sub-batch fanned out over a thread pool and fully
awaited before the next one starts.

Per context the outcome is one of generated / error / skipped (generator
returned nothing, e.g. timeout). A failing connection counts as one error.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.engine import Engine

from ...ai_service.context import AutomationContextAggregator
from ...ai_service.generation import SuggestionGenerator
from ...ai_service.models import (
    AutomationContext,
    BatchRecord,
    BatchStatus,
    BatchTrigger,
    UserPreferences,
)
from ...ai_service.repository import BatchRepository, SuggestionRepository
from ...ai_service.safety import SafetyLimitEnforcer
from ...ai_service.validation import SuggestionValidator
from ...common.schema import utc_now
from .config import BatchConfig
from .db_queries import list_active_connections
from .leases import ConnectionLeaseRegistry

logger = logging.getLogger(__name__)

GENERATED = "generated"
SKIPPED = "skipped"


class BatchCapacityExceeded(Exception):
    """All batch permits are taken."""


@dataclass(frozen=True)
class TriggerResult:
    accepted: bool
    batch_id: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {"accepted": self.accepted, "batchId": self.batch_id, "reason": self.reason}


class BatchOrchestrator:
    def __init__(
        self,
        engine: Engine,
        aggregator: AutomationContextAggregator,
        generator: SuggestionGenerator,
        validator: SuggestionValidator,
        enforcer: SafetyLimitEnforcer,
        config: Optional[BatchConfig] = None,
        suggestions: Optional[SuggestionRepository] = None,
        batches: Optional[BatchRepository] = None,
        leases: Optional[ConnectionLeaseRegistry] = None,
        preferences: Optional[UserPreferences] = None,
    ):
        self._engine = engine
        self._aggregator = aggregator
        self._generator = generator
        self._validator = validator
        self._enforcer = enforcer
        self._config = config or BatchConfig()
        self._suggestions = suggestions or SuggestionRepository(engine)
        self._batches = batches or BatchRepository(engine)
        self._leases = leases or ConnectionLeaseRegistry()
        self._preferences = preferences or UserPreferences()

        self._permits = threading.BoundedSemaphore(self._config.max_concurrent)
        self._lock = threading.Lock()
        self._running: dict[str, BatchRecord] = {}
        self._workers: dict[str, threading.Thread] = {}

    @property
    def config(self) -> BatchConfig:
        return self._config

    @property
    def leases(self) -> ConnectionLeaseRegistry:
        return self._leases

    # --------------------------------------------------
    # Triggers
    # --------------------------------------------------

    def trigger_manual(self, wait: bool = False) -> TriggerResult:
        """Start a run on a background thread, or reject at capacity."""
        return self._dispatch(BatchTrigger.MANUAL, wait)

    def run_scheduled(self, wait: bool = False) -> TriggerResult:
        result = self._dispatch(BatchTrigger.SCHEDULED, wait)
        if not result.accepted:
            logger.warning(
                "[BATCH] Scheduled run skipped, capacity exhausted max_concurrent=%d",
                self._config.max_concurrent,
            )
        return result

    def run_once(self, trigger: BatchTrigger = BatchTrigger.SCHEDULED) -> Optional[BatchRecord]:
        """Run synchronously on the calling thread. None when at capacity."""
        try:
            record = self._begin(trigger)
        except BatchCapacityExceeded:
            logger.warning("[BATCH] Run skipped, capacity exhausted trigger=%s", trigger.value)
            return None
        try:
            return self._run(record)
        finally:
            self._permits.release()

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for background runs started by this orchestrator."""
        with self._lock:
            workers = list(self._workers.values())
        for worker in workers:
            worker.join(timeout)

    def _dispatch(self, trigger: BatchTrigger, wait: bool) -> TriggerResult:
        try:
            record = self._begin(trigger)
        except BatchCapacityExceeded as e:
            logger.warning("[BATCH] Trigger rejected trigger=%s reason=%s", trigger.value, e)
            return TriggerResult(accepted=False, reason=str(e))

        worker = threading.Thread(
            target=self._run_and_release,
            args=(record,),
            name=f"ai-batch-{record.batch_id[:8]}",
            daemon=True,
        )
        with self._lock:
            self._workers[record.batch_id] = worker
        worker.start()
        if wait:
            worker.join()
        return TriggerResult(accepted=True, batch_id=record.batch_id)

    def _begin(self, trigger: BatchTrigger) -> BatchRecord:
        if not self._permits.acquire(blocking=False):
            raise BatchCapacityExceeded(
                f"{self._config.max_concurrent} batches already running"
            )
        try:
            record = BatchRecord(
                batch_id=str(uuid.uuid4()),
                status=BatchStatus.RUNNING,
                trigger=trigger,
                start_time=utc_now(),
                data_source=self._aggregator.data_source_name,
            )
            self._batches.create(record)
        except Exception:
            self._permits.release()
            raise

        with self._lock:
            self._running[record.batch_id] = record
        logger.info("[BATCH] Started batch_id=%s trigger=%s", record.batch_id, trigger.value)
        return record

    def _run_and_release(self, record: BatchRecord) -> None:
        try:
            self._run(record)
        finally:
            self._permits.release()
            with self._lock:
                self._workers.pop(record.batch_id, None)

    # --------------------------------------------------
    # Run
    # --------------------------------------------------

    def _run(self, record: BatchRecord) -> BatchRecord:
        t0 = time.monotonic()
        connections: list[dict] = []
        try:
            with self._engine.begin() as conn:
                connections = list_active_connections(conn)

            for connection in connections:
                self._process_connection(record, connection)

            self._expire_stale_suggestions()
            record.status = BatchStatus.COMPLETED
        except Exception as e:
            record.status = BatchStatus.FAILED
            record.error_message = f"{type(e).__name__}: {e}"[:2000]
            logger.exception("[BATCH] Run failed batch_id=%s", record.batch_id)
        finally:
            record.end_time = utc_now()
            try:
                self._batches.finalize(record)
            except Exception:
                logger.exception("[BATCH] Could not persist final state batch_id=%s", record.batch_id)
            with self._lock:
                self._running.pop(record.batch_id, None)

        logger.info(
            "batch_cycle batch_id=%s status=%s ms=%.1f connections=%d generated=%d errors=%d skipped=%d",
            record.batch_id, record.status.value, (time.monotonic() - t0) * 1000,
            len(connections), record.generated_count, record.error_count, record.skipped_count,
        )
        return record

    def _process_connection(self, record: BatchRecord, connection: dict) -> None:
        connection_id = connection["id"]
        if not self._leases.acquire(connection_id, record.batch_id):
            logger.info(
                "[BATCH] Connection busy, skipped connection_id=%s held_by=%s batch_id=%s",
                connection_id, self._leases.holder(connection_id), record.batch_id,
            )
            return

        try:
            contexts = self._aggregator.build_contexts(connection_id)
            size = self._config.batch_size
            for start in range(0, len(contexts), size):
                self._process_sub_batch(record, connection, contexts[start:start + size])
        except Exception as e:
            record.error_count += 1
            logger.error(
                "[BATCH] Connection failed connection_id=%s batch_id=%s err=%s",
                connection_id, record.batch_id, e,
            )
        finally:
            self._leases.release(connection_id, record.batch_id)

    def _process_sub_batch(
        self, record: BatchRecord, connection: dict, contexts: list[AutomationContext]
    ) -> None:
        workers = min(self._config.workers, max(1, len(contexts)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ai-ctx") as pool:
            futures = {
                pool.submit(self._process_context, record.batch_id, connection.get("owner_id"), ctx): ctx
                for ctx in contexts
            }
            for fut in as_completed(futures):
                ctx = futures[fut]
                try:
                    outcome = fut.result()
                except Exception as exc:
                    record.error_count += 1
                    logger.error(
                        "[BATCH] Context failed context_id=%s batch_id=%s err=%s",
                        ctx.context_id, record.batch_id, exc,
                    )
                    continue
                if outcome == GENERATED:
                    record.generated_count += 1
                else:
                    record.skipped_count += 1

    def _process_context(
        self, batch_id: str, owner_id: Optional[str], context: AutomationContext
    ) -> str:
        suggestion = self._generator.generate_sync(context, self._preferences)
        if suggestion is None:
            return SKIPPED

        suggestion.batch_id = batch_id
        suggestion.apply_validation(self._validator.validate(suggestion, context))
        # Persisted with approval required until the gate decides otherwise.
        suggestion.approval_required = True
        self._suggestions.insert(suggestion)

        decision = self._enforcer.enforce(suggestion, owner_id=owner_id)
        self._suggestions.update_approval(
            suggestion.suggestion_id, decision.approval_required, decision.reason_text
        )
        return GENERATED

    def _expire_stale_suggestions(self) -> None:
        ttl = self._config.pending_ttl_hours
        if ttl <= 0:
            return
        try:
            self._suggestions.expire_pending(timedelta(hours=ttl))
        except Exception as e:
            logger.error("[BATCH] Expiring pending suggestions failed err=%s", e)

    # --------------------------------------------------
    # Status
    # --------------------------------------------------

    def running(self) -> list[BatchRecord]:
        with self._lock:
            return list(self._running.values())

    def status(self, recent: int = 10) -> dict:
        return {
            "maxConcurrent": self._config.max_concurrent,
            "running": [r.to_dict() for r in self.running()],
            "recent": [r.to_dict() for r in self._batches.recent(recent)],
            "leases": self._leases.active(),
        }
