"""
Click Ingestor

Consumes click events from the event channel and stores them in the
analytics database, one message at a time.

Per-message state machine:

    IDLE -> RECEIVING -> VALIDATING -> PERSISTING -> ACKED
                             |              |
                             |              +--> REJECTED_REQUEUE (transient store failure)
                             |              +--> REJECTED_DISCARD (permanent store failure)
                             +--> REJECTED_DISCARD (malformed or invalid payload)

Rules:
- a message is acknowledged only after the insert succeeded
- permanent failures are discarded so one poison message never blocks the queue
- transient failures are requeued, followed by a fixed back-off
"""

import asyncio
import json
import logging
import signal
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import ValidationError

from linkflow.config import settings
from linkflow.exceptions import PermanentData, TransientInfra
from linkflow.queue.models import ClickEvent, Delivery
from linkflow.queue.strategies import EventChannelStrategy
from linkflow.storage.strategies import ClickStoreStrategy

logger = logging.getLogger(__name__)


class IngestState(Enum):
    IDLE = "idle"
    RECEIVING = "receiving"
    VALIDATING = "validating"
    PERSISTING = "persisting"
    ACKED = "acked"
    REJECTED_DISCARD = "rejected_discard"
    REJECTED_REQUEUE = "rejected_requeue"


@dataclass
class IngestOutcome:
    """Terminal state reached for one delivery"""
    state: IngestState
    message_id: str
    record_id: Optional[int] = None
    reason: Optional[str] = None


class ClickIngestor:
    """
    Click event consumer.

    Several ingestors may run against the same durable queue; the broker
    hands each message to one of them at a time.
    """

    def __init__(
        self,
        channel: EventChannelStrategy,
        store: ClickStoreStrategy,
        queue_name: str = None,
        block_ms: int = None,
        retry_delay: float = None,
    ):
        """
        Initialize ingestor with dependencies.

        Args:
            channel: Event channel to consume from
            store: Durable click storage
            queue_name: Queue to consume (default from settings)
            block_ms: How long one consume call waits for messages
            retry_delay: Back-off after broker or store outages, in seconds
        """
        self.channel = channel
        self.store = store
        self.queue_name = queue_name or settings.queue_name
        self.block_ms = settings.consume_block_ms if block_ms is None else block_ms
        self.retry_delay = settings.retry_delay_seconds if retry_delay is None else retry_delay
        self.state = IngestState.IDLE
        self.running = False

        self.acked_count = 0
        self.discarded_count = 0
        self.requeued_count = 0

    async def handle(self, delivery: Delivery) -> IngestOutcome:
        """
        Drive one delivery through the state machine and settle it on the
        channel (ack, discard or requeue).

        Broker failures while settling propagate as TransientInfra; the
        message then stays unacknowledged and is redelivered later.
        """
        self.state = IngestState.RECEIVING
        try:
            outcome = await self._process(delivery)
            await self._settle(delivery, outcome)
            return outcome
        finally:
            self.state = IngestState.IDLE

    async def _process(self, delivery: Delivery) -> IngestOutcome:
        try:
            payload = json.loads(delivery.body)
        except (ValueError, TypeError) as e:
            return self._discard(delivery, f"malformed payload: {e}")

        self.state = IngestState.VALIDATING
        if not isinstance(payload, dict):
            return self._discard(delivery, "malformed payload: expected a JSON object")
        try:
            event = ClickEvent.model_validate(payload)
        except ValidationError as e:
            first = e.errors()[0]
            return self._discard(
                delivery, f"invalid click event ({e.error_count()} errors): {first['msg']}"
            )
        except Exception as e:
            # Retrying cannot change the payload, so this is permanent too
            logger.exception("❌ Unexpected error validating message %s", delivery.message_id)
            return self._discard(delivery, f"invalid click event: {type(e).__name__}: {e}")

        self.state = IngestState.PERSISTING
        try:
            record_id = await self.store.insert(event)
        except TransientInfra as e:
            return IngestOutcome(IngestState.REJECTED_REQUEUE, delivery.message_id, reason=str(e))
        except PermanentData as e:
            return self._discard(delivery, str(e))

        return IngestOutcome(IngestState.ACKED, delivery.message_id, record_id=record_id)

    def _discard(self, delivery: Delivery, reason: str) -> IngestOutcome:
        return IngestOutcome(IngestState.REJECTED_DISCARD, delivery.message_id, reason=reason)

    async def _settle(self, delivery: Delivery, outcome: IngestOutcome):
        if outcome.state == IngestState.ACKED:
            await self.channel.ack(delivery)
            self.acked_count += 1
            logger.debug("✅ Stored click %s as record %s", delivery.message_id, outcome.record_id)

        elif outcome.state == IngestState.REJECTED_REQUEUE:
            await self.channel.reject(delivery, requeue=True)
            self.requeued_count += 1
            logger.warning("🔁 Requeued message %s: %s", delivery.message_id, outcome.reason)

        else:
            await self.channel.reject(delivery, requeue=False)
            self.discarded_count += 1
            logger.warning("🗑️  Discarded message %s: %s", delivery.message_id, outcome.reason)

        self.state = outcome.state

    async def process_available(self, max_messages: int = None) -> int:
        """
        Consume and handle messages until the queue yields nothing.

        Returns:
            Number of deliveries handled
        """
        handled = 0
        while max_messages is None or handled < max_messages:
            deliveries = await self.channel.consume(self.queue_name, count=1, block_ms=0)
            if not deliveries:
                break
            for delivery in deliveries:
                await self.handle(delivery)
                handled += 1
        return handled

    async def start(self):
        """Run the consume loop until stop() is called"""
        self.running = True
        logger.info("🚀 Click ingestor started on queue %s", self.queue_name)

        while self.running:
            try:
                deliveries = await self.channel.consume(
                    self.queue_name, count=1, block_ms=self.block_ms
                )
                for delivery in deliveries:
                    outcome = await self.handle(delivery)
                    if outcome.state == IngestState.REJECTED_REQUEUE:
                        # Give the store time to recover before the message comes back
                        await asyncio.sleep(self.retry_delay)

            except asyncio.CancelledError:
                logger.info("Ingestor task cancelled.")
                break
            except TransientInfra as e:
                logger.warning(
                    "⚠️  Event channel unavailable (%s). Retrying in %ss", e, self.retry_delay
                )
                await asyncio.sleep(self.retry_delay)
            except Exception:
                logger.exception("❌ Ingestor loop error. Retrying in %ss", self.retry_delay)
                await asyncio.sleep(self.retry_delay)

        logger.info(
            "🛑 Click ingestor stopped (acked=%d, discarded=%d, requeued=%d)",
            self.acked_count, self.discarded_count, self.requeued_count,
        )

    def stop(self):
        """Stop the ingestor after the current message"""
        self.running = False


async def main():
    """
    Main entry point for the click ingestor.

    Usage:
        python -m linkflow.click_processor.ingestor
    """
    from linkflow.connection import RedisConnection, connect_with_retry
    from linkflow.database.connection import Base, engine
    from linkflow.queue.factory import EventChannelBackend, EventChannelFactory
    from linkflow.storage.strategies import SQLAlchemyClickStore

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("🔧 linkflow click ingestor (%s)", settings.environment)
    logger.info("Queue backend: %s, queue: %s", settings.event_channel_backend, settings.queue_name)

    backend = EventChannelBackend(settings.event_channel_backend)
    connection = None
    if backend == EventChannelBackend.REDIS_STREAMS:
        # The read blocks server-side, the socket must outlive it
        connection = RedisConnection(
            settings.redis_url,
            name="event channel",
            connect_attempts=settings.connect_attempts,
            retry_delay=settings.retry_delay_seconds,
            health_check_interval=settings.health_check_interval,
            socket_timeout=settings.consume_block_ms / 1000 + 5,
        )

    store = SQLAlchemyClickStore(deduplicate=settings.ingest_deduplicate)

    try:
        if connection is not None:
            await connection.connect()
        await connect_with_retry(
            store.ping, "analytics database", settings.connect_attempts, settings.retry_delay_seconds
        )
        Base.metadata.create_all(bind=engine)

        channel = EventChannelFactory.create(backend, connection)
        await channel.declare_durable_queue(settings.queue_name)
        if connection is not None:
            connection.start_supervisor()

        ingestor = ClickIngestor(channel=channel, store=store)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, ingestor.stop)

        await ingestor.start()
    except TransientInfra as e:
        logger.error("❌ Fatal error: %s", e)
        sys.exit(1)
    finally:
        if connection is not None:
            await connection.close()


if __name__ == "__main__":
    asyncio.run(main())
