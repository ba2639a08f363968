"""
Message queue module: click events between resolver and ingestor.
Implements Strategy Pattern for flexible queue backends.
"""

from .strategies import EventChannelStrategy, RedisStreamChannel, InMemoryChannel
from .factory import EventChannelFactory, EventChannelBackend
from .models import ClickEvent, Delivery
from .publisher import ClickEventPublisher, OverflowPolicy

__all__ = [
    "EventChannelStrategy",
    "RedisStreamChannel",
    "InMemoryChannel",
    "EventChannelFactory",
    "EventChannelBackend",
    "ClickEvent",
    "Delivery",
    "ClickEventPublisher",
    "OverflowPolicy",
]
