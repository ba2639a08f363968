"""
Factory for creating event channel instances.
"""

from enum import Enum
from typing import Optional

from linkflow.config import settings
from linkflow.connection import RedisConnection
from .strategies import EventChannelStrategy, RedisStreamChannel, InMemoryChannel


class EventChannelBackend(Enum):
    """Available event channel backends"""
    REDIS_STREAMS = "redis_streams"
    MEMORY = "memory"


class EventChannelFactory:
    """
    Simple factory for creating event channel instances.

    Consumer group settings come from settings; the connection is owned
    by the caller and passed in.
    """

    @staticmethod
    def create(
        backend: EventChannelBackend,
        connection: Optional[RedisConnection] = None
    ) -> EventChannelStrategy:
        """
        Create an event channel.

        Args:
            backend: Type of queue backend (from enum)
            connection: Redis connection, required for redis_streams

        Returns:
            EventChannelStrategy instance
        """
        if backend == EventChannelBackend.REDIS_STREAMS:
            if connection is None:
                raise ValueError("Redis Streams channel needs a RedisConnection")
            return RedisStreamChannel(
                connection,
                consumer_group=settings.queue_consumer_group,
                consumer_name=settings.consumer_name,
                claim_idle_ms=settings.claim_idle_ms,
            )

        elif backend == EventChannelBackend.MEMORY:
            return InMemoryChannel()

        raise ValueError(f"Unknown queue backend: {backend}")
