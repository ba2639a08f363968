"""
Resolver-side click event publisher.

The redirect path must never wait on the broker, so events are handed to
a bounded in-process buffer and published by one background task.

Overflow policy when the buffer is full:
- drop_new: the incoming event is dropped
- drop_oldest: the oldest buffered event is dropped to make room

Publish failures are logged and the event is dropped (fire-and-forget).
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

from .models import ClickEvent
from .strategies import EventChannelStrategy

logger = logging.getLogger(__name__)


class OverflowPolicy(Enum):
    DROP_NEW = "drop_new"
    DROP_OLDEST = "drop_oldest"


class ClickEventPublisher:
    """Bounded, non-blocking publisher of click events"""

    def __init__(
        self,
        channel: EventChannelStrategy,
        queue_name: str,
        max_pending: int = 1000,
        overflow_policy: OverflowPolicy = OverflowPolicy.DROP_NEW,
    ):
        self.channel = channel
        self.queue_name = queue_name
        self.overflow_policy = overflow_policy
        self._buffer: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._task: Optional[asyncio.Task] = None
        self.published_count = 0
        self.dropped_count = 0
        self.failed_count = 0

    @property
    def pending(self) -> int:
        return self._buffer.qsize()

    def submit(self, event: ClickEvent) -> bool:
        """
        Queue an event for publishing without blocking.

        Returns:
            True if the event was buffered, False if it was dropped
        """
        try:
            self._buffer.put_nowait(event)
            return True
        except asyncio.QueueFull:
            pass

        if self.overflow_policy == OverflowPolicy.DROP_OLDEST:
            dropped = self._buffer.get_nowait()
            self._buffer.task_done()
            self._buffer.put_nowait(event)
            self.dropped_count += 1
            logger.warning(
                "⚠️  Publish buffer full, dropped oldest click event for %s", dropped.short_code
            )
            return True

        self.dropped_count += 1
        logger.warning("⚠️  Publish buffer full, dropped click event for %s", event.short_code)
        return False

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._drain(), name="click-event-publisher")
        return self._task

    async def _drain(self):
        while True:
            event = await self._buffer.get()
            try:
                await self.channel.publish(self.queue_name, event.to_message(), persistent=True)
                self.published_count += 1
            except Exception as e:
                # Analytics loss is accepted, the redirect already happened
                self.failed_count += 1
                logger.error("❌ Failed to publish click event for %s: %s", event.short_code, e)
            finally:
                self._buffer.task_done()

    async def flush(self):
        """Wait until every buffered event has been published or dropped"""
        await self._buffer.join()

    async def stop(self, timeout: float = 5.0):
        """Drain what is buffered (bounded by timeout), then stop the task"""
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self.flush(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("⚠️  %d click events not published before shutdown", self.pending)

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
