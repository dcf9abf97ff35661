"""Event stream publishing on Redis Streams."""

from .connection import RedisConnection
from .dead_letter import DeadLetterQueue
from .publisher import EventStreamPublisher, StreamConfig, partition_for
from .retry import RetryConfig, RetryExecutor

__all__ = [
    "DeadLetterQueue",
    "EventStreamPublisher",
    "RedisConnection",
    "RetryConfig",
    "RetryExecutor",
    "StreamConfig",
    "partition_for",
]
