"""Redis connection with lazy, throttled reconnect.

The ingestion API must keep accepting events while Redis is down, so the
connection is allowed to start disconnected. Callers ask for a client with
``ensure_connected()`` on every use; a broken or missing connection is
re-established at most once per ``reconnect_interval`` seconds and ``None``
is returned in between, which the publisher turns into a retryable error.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from typing import Callable, Optional

import redis

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_INTERVAL = 1.0


class RedisConnection:
    """Shared Redis client for the stream publisher and the dead-letter stream."""

    def __init__(
        self,
        url: Optional[str] = None,
        client: Optional[redis.Redis] = None,
        reconnect_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._url = url or os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self._client: Optional[redis.Redis] = client
        self._connected = client is not None
        if reconnect_interval is None:
            reconnect_interval = float(os.getenv("REDIS_RECONNECT_INTERVAL", str(DEFAULT_RECONNECT_INTERVAL)))
        self._reconnect_interval = max(0.0, reconnect_interval)
        self._clock = clock
        self._last_attempt: Optional[float] = None
        self._lock = threading.Lock()

        self.connect_attempts = 0
        self.connect_failures = 0

    @property
    def client(self) -> Optional[redis.Redis]:
        return self._client if self._connected else None

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def safe_url(self) -> str:
        return self._url.split("@")[-1]

    def connect(self) -> bool:
        """Open a new client and ping it. Always attempts, no throttling."""
        with self._lock:
            return self._connect_locked()

    def ensure_connected(self) -> Optional[redis.Redis]:
        """Connected client, reconnecting when the throttle allows; else None."""
        if self._connected:
            return self._client
        with self._lock:
            if self._connected:
                return self._client
            now = self._clock()
            if self._last_attempt is not None and now - self._last_attempt < self._reconnect_interval:
                return None
            if not self._connect_locked():
                return None
            return self._client

    def mark_broken(self, error: Optional[BaseException] = None) -> None:
        """Flag the client as unusable so the next call reconnects."""
        if self._connected:
            logger.warning("[REDIS] Connection lost url=%s err=%s", self.safe_url, error)
        self._connected = False

    def _connect_locked(self) -> bool:
        self._last_attempt = self._clock()
        self.connect_attempts += 1
        previous = self._client
        try:
            client = redis.Redis.from_url(
                self._url,
                decode_responses=False,
                socket_timeout=5.0,
                socket_connect_timeout=5.0,
            )
            client.ping()
        except redis.RedisError as e:
            self._connected = False
            self.connect_failures += 1
            logger.warning(
                "[REDIS] Connection failed url=%s attempt=%d err=%s",
                self.safe_url, self.connect_attempts, e,
            )
            return False

        self._client = client
        self._connected = True
        if previous is not None and previous is not client:
            _close_quietly(previous)
        logger.info("[REDIS] Connected url=%s attempt=%d", self.safe_url, self.connect_attempts)
        return True

    def disconnect(self) -> None:
        with self._lock:
            if self._client is not None:
                _close_quietly(self._client)
            self._connected = False


def _close_quietly(client: redis.Redis) -> None:
    try:
        client.close()
    except redis.RedisError as e:
        logger.debug("[REDIS] Close failed: %s", e)
