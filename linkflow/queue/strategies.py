"""
Event channel strategies using Strategy Pattern.
Allows switching between different queue backends (Redis Streams, In-Memory).

Contract shared by all backends:
- durable, named queue
- at-least-once delivery with explicit per-message ack / reject
- reject(requeue=True) makes the message deliverable again,
  reject(requeue=False) drops it for good
"""

from abc import ABC, abstractmethod
from collections import deque
from typing import Deque, Dict, List, Optional, Set, Tuple
import asyncio
import itertools
import logging

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from linkflow.connection import RedisConnection
from linkflow.exceptions import TransientInfra
from .models import Delivery

logger = logging.getLogger(__name__)

_UNREACHABLE = (RedisConnectionError, RedisTimeoutError, OSError)


class EventChannelStrategy(ABC):
    """
    Abstract base class for event channel strategies.

    This is the Strategy Pattern interface - the publisher and the ingestor
    work against it without knowing which broker sits underneath.

    Broker outages surface as TransientInfra.
    """

    @abstractmethod
    async def declare_durable_queue(self, queue_name: str) -> None:
        """Create the queue if it does not exist (idempotent)"""
        pass

    @abstractmethod
    async def publish(self, queue_name: str, body: bytes, persistent: bool = True) -> str:
        """
        Publish a message to the queue.

        Args:
            queue_name: Name of the queue
            body: Serialized message
            persistent: Ask the broker to persist the message

        Returns:
            Broker message ID (acknowledgement of enqueue)
        """
        pass

    @abstractmethod
    async def consume(
        self,
        queue_name: str,
        count: int = 1,
        block_ms: int = 1000
    ) -> List[Delivery]:
        """
        Receive messages. Each one stays unacknowledged until ack/reject.

        Args:
            queue_name: Name of the queue
            count: Maximum number of messages to retrieve
            block_ms: Time to wait for messages (milliseconds)
        """
        pass

    @abstractmethod
    async def ack(self, delivery: Delivery) -> None:
        """Mark the message as processed and remove it from the queue"""
        pass

    @abstractmethod
    async def reject(self, delivery: Delivery, requeue: bool) -> None:
        """Reject the message, either requeueing it or discarding it"""
        pass

    @abstractmethod
    async def get_queue_length(self, queue_name: str) -> int:
        """
        Queue depth: messages waiting plus messages delivered but not yet
        acknowledged.
        """
        pass


class RedisStreamChannel(EventChannelStrategy):
    """
    Redis Streams implementation of the event channel.

    How it works:
    1. Producer appends messages with XADD
    2. Consumers read through a consumer group with XREADGROUP, so each
       entry is delivered to one consumer at a time
    3. Unacknowledged entries stay in the group's pending list and are
       redelivered:
       - to the same consumer name after a restart (read from id 0)
       - to any consumer once idle longer than claim_idle_ms (XAUTOCLAIM)
    4. ack / discard = XACK + XDEL, requeue = XADD copy + XACK + XDEL,
       each in one MULTI/EXEC transaction

    Durability of the stream across restarts comes from Redis persistence
    (AOF/RDB).
    """

    DATA_FIELD = b"data"

    def __init__(
        self,
        connection: RedisConnection,
        consumer_group: str = "click_ingestors",
        consumer_name: str = "ingestor",
        claim_idle_ms: int = 60000,
    ):
        """
        Initialize Redis Streams channel.

        Args:
            connection: Owned Redis connection
            consumer_group: Name of consumer group shared by ingestors
            consumer_name: Stable name of this consumer instance
            claim_idle_ms: Idle time after which other consumers' entries are reclaimed
        """
        self.connection = connection
        self.consumer_group = consumer_group
        self.consumer_name = consumer_name
        self.claim_idle_ms = claim_idle_ms
        self._declared: Set[str] = set()
        self._recovered: Set[str] = set()
        self._claim_cursor: Dict[str, str] = {}

    async def declare_durable_queue(self, queue_name: str) -> None:
        try:
            await self.connection.client.xgroup_create(
                name=queue_name,
                groupname=self.consumer_group,
                id="0",
                mkstream=True
            )
            logger.info("✅ Created Redis stream: %s", queue_name)
        except ResponseError as e:
            # Group already exists
            if "BUSYGROUP" not in str(e):
                raise
        except _UNREACHABLE as e:
            raise TransientInfra(f"Redis declare error: {e}") from e

        self._declared.add(queue_name)

    async def _ensure_declared(self, queue_name: str) -> None:
        if queue_name not in self._declared:
            await self.declare_durable_queue(queue_name)

    async def publish(self, queue_name: str, body: bytes, persistent: bool = True) -> str:
        try:
            message_id = await self.connection.client.xadd(
                queue_name, {self.DATA_FIELD: body}
            )
        except _UNREACHABLE as e:
            raise TransientInfra(f"Redis publish error: {e}") from e
        return message_id.decode("utf-8")

    async def consume(
        self,
        queue_name: str,
        count: int = 1,
        block_ms: int = 1000
    ) -> List[Delivery]:
        try:
            await self._ensure_declared(queue_name)
            return await self._consume(queue_name, count, block_ms)
        except ResponseError as e:
            if "NOGROUP" not in str(e):
                raise
            # Stream or group lost (e.g. Redis restarted without persistence)
            logger.warning("⚠️  Consumer group missing on %s, redeclaring", queue_name)
            self._declared.discard(queue_name)
            return []
        except TransientInfra:
            self._recovered.discard(queue_name)
            raise
        except _UNREACHABLE as e:
            # Re-read our own pending entries after reconnecting
            self._recovered.discard(queue_name)
            raise TransientInfra(f"Redis consume error: {e}") from e

    async def _consume(self, queue_name: str, count: int, block_ms: int) -> List[Delivery]:
        client = self.connection.client

        # 1. Entries delivered to this consumer name but never acknowledged
        if queue_name not in self._recovered:
            while True:
                response = await client.xreadgroup(
                    groupname=self.consumer_group,
                    consumername=self.consumer_name,
                    streams={queue_name: "0"},
                    count=count,
                )
                if not any(entries for _stream, entries in response or []):
                    break
                # Deleted entries are acked and skipped, so keep reading until
                # a live one turns up or the pending list is empty
                deliveries = await self._to_deliveries(queue_name, response, redelivered=True)
                if deliveries:
                    return deliveries
            self._recovered.add(queue_name)

        # 2. Entries abandoned by consumers that went away
        claimed = await self._claim_idle(queue_name, count)
        if claimed:
            return claimed

        # 3. New entries ('>' means never delivered to any consumer)
        response = await client.xreadgroup(
            groupname=self.consumer_group,
            consumername=self.consumer_name,
            streams={queue_name: ">"},
            count=count,
            block=block_ms,
        )
        return await self._to_deliveries(queue_name, response)

    async def _claim_idle(self, queue_name: str, count: int) -> List[Delivery]:
        start = self._claim_cursor.get(queue_name, "0-0")
        result = await self.connection.client.xautoclaim(
            name=queue_name,
            groupname=self.consumer_group,
            consumername=self.consumer_name,
            min_idle_time=self.claim_idle_ms,
            start_id=start,
            count=count,
        )
        next_start, entries = result[0], result[1]
        if isinstance(next_start, bytes):
            next_start = next_start.decode("utf-8")
        self._claim_cursor[queue_name] = next_start

        deliveries = []
        for message_id, fields in entries:
            if message_id is None:
                continue
            deliveries.append(self._make_delivery(queue_name, message_id, fields, True))
        return deliveries

    async def _to_deliveries(self, queue_name: str, response, redelivered: bool = False) -> List[Delivery]:
        deliveries = []
        for _stream, entries in response or []:
            for message_id, fields in entries:
                if fields is None:
                    # Entry deleted while still pending, nothing left to deliver
                    await self.connection.client.xack(queue_name, self.consumer_group, message_id)
                    continue
                deliveries.append(self._make_delivery(queue_name, message_id, fields, redelivered))
        return deliveries

    def _make_delivery(self, queue_name: str, message_id, fields, redelivered: bool) -> Delivery:
        if isinstance(message_id, bytes):
            message_id = message_id.decode("utf-8")
        # A missing data field yields an empty body, which the consumer rejects
        body = (fields or {}).get(self.DATA_FIELD, b"")
        return Delivery(
            queue_name=queue_name,
            message_id=message_id,
            body=body,
            redelivered=redelivered,
        )

    async def ack(self, delivery: Delivery) -> None:
        try:
            async with self.connection.client.pipeline(transaction=True) as pipe:
                pipe.xack(delivery.queue_name, self.consumer_group, delivery.message_id)
                pipe.xdel(delivery.queue_name, delivery.message_id)
                await pipe.execute()
        except _UNREACHABLE as e:
            raise TransientInfra(f"Redis ack error: {e}") from e

    async def reject(self, delivery: Delivery, requeue: bool) -> None:
        if not requeue:
            await self.ack(delivery)
            return

        try:
            async with self.connection.client.pipeline(transaction=True) as pipe:
                pipe.xadd(delivery.queue_name, {self.DATA_FIELD: delivery.body})
                pipe.xack(delivery.queue_name, self.consumer_group, delivery.message_id)
                pipe.xdel(delivery.queue_name, delivery.message_id)
                await pipe.execute()
        except _UNREACHABLE as e:
            raise TransientInfra(f"Redis requeue error: {e}") from e

    async def get_queue_length(self, queue_name: str) -> int:
        try:
            return int(await self.connection.client.xlen(queue_name))
        except _UNREACHABLE as e:
            raise TransientInfra(f"Redis xlen error: {e}") from e


class InMemoryChannel(EventChannelStrategy):
    """
    In-memory event channel using Python deques.

    Tracks unacknowledged deliveries like a real broker, so redelivery
    after a consumer crash can be simulated with recover().

    Not persistent and not shared between processes.
    Used in development/testing environments.
    """

    def __init__(self):
        """Initialize in-memory queues"""
        self._ready: Dict[str, Deque[Tuple[str, bytes, bool]]] = {}
        self._unacked: Dict[str, Dict[str, Delivery]] = {}
        self._ids = itertools.count(1)

    async def declare_durable_queue(self, queue_name: str) -> None:
        self._ready.setdefault(queue_name, deque())
        self._unacked.setdefault(queue_name, {})

    async def publish(self, queue_name: str, body: bytes, persistent: bool = True) -> str:
        await self.declare_durable_queue(queue_name)
        message_id = f"{next(self._ids)}-0"
        self._ready[queue_name].append((message_id, body, False))
        return message_id

    async def consume(
        self,
        queue_name: str,
        count: int = 1,
        block_ms: int = 1000
    ) -> List[Delivery]:
        await self.declare_durable_queue(queue_name)
        ready = self._ready[queue_name]

        if not ready and block_ms:
            await asyncio.sleep(block_ms / 1000)

        deliveries = []
        while ready and len(deliveries) < count:
            message_id, body, redelivered = ready.popleft()
            delivery = Delivery(queue_name, message_id, body, redelivered)
            self._unacked[queue_name][message_id] = delivery
            deliveries.append(delivery)
        return deliveries

    def _settle(self, delivery: Delivery) -> Optional[Delivery]:
        return self._unacked.get(delivery.queue_name, {}).pop(delivery.message_id, None)

    async def ack(self, delivery: Delivery) -> None:
        self._settle(delivery)

    async def reject(self, delivery: Delivery, requeue: bool) -> None:
        if self._settle(delivery) is not None and requeue:
            self._ready[delivery.queue_name].append(
                (delivery.message_id, delivery.body, True)
            )

    def recover(self, queue_name: Optional[str] = None) -> int:
        """
        Return every unacknowledged delivery to the head of its queue,
        as a broker does when a consumer connection dies.

        Returns:
            Number of messages made deliverable again
        """
        names = [queue_name] if queue_name else list(self._unacked)
        recovered = 0
        for name in names:
            pending = self._unacked.get(name, {})
            for delivery in reversed(list(pending.values())):
                self._ready[name].appendleft((delivery.message_id, delivery.body, True))
            recovered += len(pending)
            pending.clear()
        return recovered

    async def get_queue_length(self, queue_name: str) -> int:
        await self.declare_durable_queue(queue_name)
        return len(self._ready[queue_name]) + len(self._unacked[queue_name])
