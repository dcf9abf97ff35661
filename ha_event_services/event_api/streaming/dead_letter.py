"""Dead-letter stream for events that could not be published."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Optional

import redis
from prometheus_client import Counter

from .connection import RedisConnection

logger = logging.getLogger(__name__)

DEAD_LETTERED = Counter(
    "ha_stream_dead_lettered_total",
    "Kept events routed to the dead-letter stream",
    ["reason"],  # retries_exhausted, queue_full, serialize_error
)


class DeadLetterQueue:
    """Dead-letter stream on Redis Streams.

    Entries keep the original key and serialized value plus the error so they
    can be replayed. The client is taken from the shared connection at send
    time, so a Redis that comes back after startup is picked up. While Redis
    itself is down the entry is logged.
    """

    STREAM_NAME = "dlq:ha_events"
    DEFAULT_MAX_LEN = 10000

    def __init__(
        self,
        connection: Optional[RedisConnection] = None,
        stream_name: str = STREAM_NAME,
        max_len: int = DEFAULT_MAX_LEN,
    ):
        self._conn = connection
        self._stream = stream_name
        self._max_len = max_len

        self._total_sent = 0
        self._send_errors = 0

    @property
    def enabled(self) -> bool:
        return self._conn is not None

    @property
    def stream_name(self) -> str:
        return self._stream

    @property
    def stats(self) -> dict:
        return {
            "enabled": self.enabled,
            "stream_name": self._stream,
            "total_sent": self._total_sent,
            "send_errors": self._send_errors,
        }

    def send(
        self,
        key: str,
        value: bytes,
        error: str,
        reason: str,
        source_stream: Optional[str] = None,
    ) -> bool:
        """Write one failed event. Returns True when it reached the stream."""
        DEAD_LETTERED.labels(reason=reason).inc()

        if self._conn is None:
            logger.warning(
                "DLQ_DISABLED key=%s reason=%s error=%s value=%s",
                key, reason, error, value[:200],
            )
            return False

        client = self._conn.ensure_connected()
        if client is None:
            self._send_errors += 1
            logger.error(
                "DLQ_UNAVAILABLE key=%s reason=%s error=%s value=%s",
                key, reason, error, value[:200],
            )
            return False

        entry = {
            "key": key,
            "value": value[:65536],
            "error": str(error)[:1000],
            "reason": reason,
            "source_stream": source_stream or "",
            "timestamp": str(time.time()),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }

        try:
            client.xadd(self._stream, entry, maxlen=self._max_len, approximate=True)
        except redis.RedisError as e:
            if isinstance(e, redis.ConnectionError):
                self._conn.mark_broken(e)
            self._send_errors += 1
            logger.error("DLQ_SEND_ERROR key=%s reason=%s err=%s", key, reason, e)
            return False

        self._total_sent += 1
        logger.info("DLQ_SENT key=%s reason=%s source_stream=%s", key, reason, source_stream)
        return True

    def get_recent(self, count: int = 10) -> list[dict]:
        """Most recent entries first."""
        client = self._conn.ensure_connected() if self._conn is not None else None
        if client is None:
            return []

        try:
            entries = client.xrevrange(self._stream, count=count)
        except redis.RedisError as e:
            logger.error("DLQ_READ_ERROR err=%s", e)
            return []

        def _s(v):
            return v.decode() if isinstance(v, bytes) else v

        return [
            {"id": _s(entry_id), **{_s(k): _s(v) for k, v in data.items()}}
            for entry_id, data in entries
        ]
