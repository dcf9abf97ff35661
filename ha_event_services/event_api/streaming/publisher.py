"""Partitioned event stream publisher on Redis Streams.

Kept events are routed to ``<topic>:p<n>`` with ``n = crc32(entity_id) %
partitions``. Each partition has its own bounded queue and worker thread, so
events of one entity are written in order while ingestion never waits on the
broker. Delivery is at-least-once: a failed write is retried with backoff and
then dead-lettered.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
import zlib
from dataclasses import dataclass
from typing import Callable, Optional

import redis
from prometheus_client import Counter

from ..domain.event import Event
from .connection import RedisConnection
from .dead_letter import DeadLetterQueue
from .retry import RetryConfig, RetryExecutor

logger = logging.getLogger(__name__)

STREAM_PUBLISHED = Counter(
    "ha_stream_published_total",
    "Kept events written to the event stream",
)
STREAM_PUBLISH_ERRORS = Counter(
    "ha_stream_publish_errors_total",
    "Failed stream writes (before retry)",
)

_STOP = object()


class BrokerUnavailable(ConnectionError):
    """Raised when no Redis client is connected."""


@dataclass
class StreamConfig:
    topic: str = "ha:events"
    partitions: int = 8
    queue_size: int = 10000
    max_len: int = 100000

    @classmethod
    def from_env(cls) -> "StreamConfig":
        return cls(
            topic=os.getenv("STREAM_TOPIC", "ha:events"),
            partitions=int(os.getenv("STREAM_PARTITIONS", "8")),
            queue_size=int(os.getenv("STREAM_QUEUE_SIZE", "10000")),
            max_len=int(os.getenv("STREAM_MAX_LEN", "100000")),
        )


def partition_for(entity_id: str, partitions: int) -> int:
    """Stable partition of an entity (same entity, same partition)."""
    return zlib.crc32(entity_id.encode("utf-8")) % partitions


class EventStreamPublisher:
    """Publishes kept events asynchronously.

    Usage:
        publisher = EventStreamPublisher(connection, StreamConfig.from_env(), dlq)
        publisher.start()
        publisher.publish(event)   # never blocks
        publisher.stop()
    """

    def __init__(
        self,
        connection: RedisConnection,
        config: Optional[StreamConfig] = None,
        dead_letter: Optional[DeadLetterQueue] = None,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._conn = connection
        self._config = config or StreamConfig()
        if self._config.partitions < 1:
            raise ValueError("partitions must be >= 1")
        self._dlq = dead_letter or DeadLetterQueue(connection)
        self._retry_config = retry_config or RetryConfig(
            retryable_exceptions=(redis.RedisError, ConnectionError, TimeoutError),
        )
        self._sleep = sleep

        self._queues: list[queue.Queue] = [
            queue.Queue(maxsize=self._config.queue_size) for _ in range(self._config.partitions)
        ]
        self._workers: list[threading.Thread] = []
        self._running = False

        self._stats_lock = threading.Lock()
        self._enqueued = 0
        self._published = 0
        self._dead_lettered = 0
        self._queue_full = 0

    @property
    def config(self) -> StreamConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._running

    def stream_for(self, entity_id: str) -> str:
        return f"{self._config.topic}:p{partition_for(entity_id, self._config.partitions)}"

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        for n, q in enumerate(self._queues):
            retry = RetryExecutor(self._retry_config, sleep=self._sleep)
            worker = threading.Thread(
                target=self._worker_loop,
                args=(n, q, retry),
                name=f"stream-publisher-p{n}",
                daemon=True,
            )
            worker.start()
            self._workers.append(worker)
        logger.info(
            "[STREAM] Publisher started topic=%s partitions=%d",
            self._config.topic, self._config.partitions,
        )

    def stop(self, timeout: float = 10.0) -> None:
        """Drain the queues and stop the workers."""
        if not self._running:
            return
        for q in self._queues:
            q.put(_STOP)
        for worker in self._workers:
            worker.join(timeout=timeout)
        self._workers.clear()
        self._running = False
        logger.info("[STREAM] Publisher stopped stats=%s", self.stats)

    def flush(self) -> None:
        """Block until every queued event was written or dead-lettered."""
        for q in self._queues:
            q.join()

    def publish(self, event: Event) -> bool:
        """Queue a kept event. Returns False if it was dead-lettered instead."""
        try:
            value = event.serialize()
        except (TypeError, ValueError) as e:
            logger.error("[STREAM] Serialize failed event_id=%s err=%s", event.id, e)
            self._dead_letter(event.entity_id, repr(event).encode(), str(e), "serialize_error", None)
            return False

        n = partition_for(event.entity_id, self._config.partitions)
        try:
            self._queues[n].put_nowait((event.entity_id, value))
        except queue.Full:
            with self._stats_lock:
                self._queue_full += 1
            logger.warning(
                "[STREAM] Partition queue full, dead-lettering event_id=%s partition=%d",
                event.id, n,
            )
            self._dead_letter(
                event.entity_id, value, "partition queue full", "queue_full", self.stream_for(event.entity_id)
            )
            return False

        with self._stats_lock:
            self._enqueued += 1
        return True

    def _worker_loop(self, partition: int, q: queue.Queue, retry: RetryExecutor) -> None:
        stream = f"{self._config.topic}:p{partition}"
        while True:
            item = q.get()
            try:
                if item is _STOP:
                    return
                key, value = item
                self._deliver(stream, key, value, retry)
            finally:
                q.task_done()

    def _deliver(self, stream: str, key: str, value: bytes, retry: RetryExecutor) -> None:
        try:
            retry.execute(self._xadd, stream, key, value)
        except Exception as e:
            self._dead_letter(key, value, str(e), "retries_exhausted", stream)
            return

        STREAM_PUBLISHED.inc()
        with self._stats_lock:
            self._published += 1

    def _xadd(self, stream: str, key: str, value: bytes) -> None:
        client = self._conn.ensure_connected()
        if client is None:
            STREAM_PUBLISH_ERRORS.inc()
            raise BrokerUnavailable("redis not connected")
        try:
            client.xadd(
                stream,
                {"key": key, "value": value},
                maxlen=self._config.max_len,
                approximate=True,
            )
        except redis.ConnectionError as e:
            STREAM_PUBLISH_ERRORS.inc()
            self._conn.mark_broken(e)
            raise
        except Exception:
            STREAM_PUBLISH_ERRORS.inc()
            raise

    def _dead_letter(self, key: str, value: bytes, error: str, reason: str, stream: Optional[str]) -> None:
        with self._stats_lock:
            self._dead_lettered += 1
        try:
            self._dlq.send(key=key, value=value, error=error, reason=reason, source_stream=stream)
        except Exception:
            logger.exception("[STREAM] Dead-letter write failed key=%s", key)

    @property
    def stats(self) -> dict:
        with self._stats_lock:
            return {
                "topic": self._config.topic,
                "partitions": self._config.partitions,
                "running": self._running,
                "broker_connected": self._conn.is_connected,
                "broker_connect_failures": self._conn.connect_failures,
                "enqueued": self._enqueued,
                "published": self._published,
                "dead_lettered": self._dead_lettered,
                "queue_full": self._queue_full,
                "queue_depth": sum(q.qsize() for q in self._queues),
                "dead_letter": self._dlq.stats,
            }
