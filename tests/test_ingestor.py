"""
Tests for the click ingestor state machine.

The in-memory channel tracks unacknowledged deliveries like a broker, so
consumer crashes are simulated by consuming without settling and then
calling recover().
"""
import asyncio
import json

from linkflow.exceptions import PermanentData, TransientInfra
from linkflow.click_processor.ingestor import ClickIngestor, IngestState
from linkflow.models.click import ClickRecord
from linkflow.queue.models import ClickEvent
from linkflow.queue.strategies import InMemoryChannel

QUEUE = "q.test-click-events"


def make_event(**overrides) -> bytes:
    payload = {
        "shortCode": "abc1234",
        "timestamp": "2025-10-29T10:30:00Z",
        "ipAddress": "192.168.1.1",
        "userAgent": "Mozilla/5.0",
        "referer": "https://twitter.com",
        "destinationUrl": "https://example.org/a",
    }
    payload.update(overrides)
    return json.dumps(payload).encode("utf-8")


def stored_records(session_factory):
    with session_factory() as db:
        return db.query(ClickRecord).order_by(ClickRecord.id).all()


class FlakyStore:
    """Fails with the given error a number of times, then delegates"""

    def __init__(self, inner, error, failures=1):
        self.inner = inner
        self.error = error
        self.failures = failures
        self.calls = 0

    async def insert(self, event):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return await self.inner.insert(event)


class TestIngestorStateMachine:

    def test_valid_event_is_persisted_and_acked(self, click_store, db_session_factory):
        async def scenario():
            channel = InMemoryChannel()
            await channel.publish(QUEUE, make_event())
            ingestor = ClickIngestor(channel, click_store, queue_name=QUEUE, retry_delay=0)
            (delivery,) = await channel.consume(QUEUE, count=1, block_ms=0)
            outcome = await ingestor.handle(delivery)
            return outcome, await channel.get_queue_length(QUEUE), ingestor.state

        outcome, depth, state = asyncio.run(scenario())

        assert outcome.state == IngestState.ACKED
        assert outcome.record_id is not None
        assert depth == 0
        assert state == IngestState.IDLE

        (record,) = stored_records(db_session_factory)
        assert record.id == outcome.record_id
        assert record.short_code == "abc1234"
        assert record.ip_address == "192.168.1.1"
        assert record.destination_url == "https://example.org/a"
        assert record.inserted_at is not None

    def test_invalid_json_is_discarded(self, click_store, db_session_factory):
        async def scenario():
            channel = InMemoryChannel()
            await channel.publish(QUEUE, b"{not json")
            before = await channel.get_queue_length(QUEUE)
            ingestor = ClickIngestor(channel, click_store, queue_name=QUEUE, retry_delay=0)
            (delivery,) = await channel.consume(QUEUE, count=1, block_ms=0)
            outcome = await ingestor.handle(delivery)
            after = await channel.get_queue_length(QUEUE)
            return outcome, before, after, channel.recover(QUEUE)

        outcome, before, after, recovered = asyncio.run(scenario())

        assert outcome.state == IngestState.REJECTED_DISCARD
        assert "malformed" in outcome.reason
        assert after == before - 1
        assert recovered == 0  # not requeued
        assert stored_records(db_session_factory) == []

    def test_poison_message_does_not_block_queue(self, click_store, db_session_factory):
        async def scenario():
            channel = InMemoryChannel()
            await channel.publish(QUEUE, b"\xff\xfe garbage")
            await channel.publish(QUEUE, make_event(shortCode="first01"))
            await channel.publish(QUEUE, b"[1, 2, 3]")
            await channel.publish(QUEUE, make_event(shortCode="second2"))
            ingestor = ClickIngestor(channel, click_store, queue_name=QUEUE, retry_delay=0)
            handled = await ingestor.process_available()
            return handled, ingestor, await channel.get_queue_length(QUEUE)

        handled, ingestor, depth = asyncio.run(scenario())

        assert handled == 4
        assert ingestor.acked_count == 2
        assert ingestor.discarded_count == 2
        assert depth == 0
        assert [r.short_code for r in stored_records(db_session_factory)] == ["first01", "second2"]

    def test_validation_failures_are_discarded(self, click_store, db_session_factory):
        bad_payloads = [
            make_event(ipAddress="999.1.1.1"),
            make_event(destinationUrl="javascript:alert(1)"),
            make_event(shortCode="no"),
            make_event(timestamp="yesterday"),
            make_event(userAgent="x" * 600),
            make_event(timestamp="0001-01-01T00:00:00+05:00"),
            json.dumps({"timestamp": "2025-10-29T10:30:00Z"}).encode(),
        ]

        async def scenario():
            channel = InMemoryChannel()
            for body in bad_payloads:
                await channel.publish(QUEUE, body)
            ingestor = ClickIngestor(channel, click_store, queue_name=QUEUE, retry_delay=0)
            await ingestor.process_available()
            return ingestor

        ingestor = asyncio.run(scenario())

        assert ingestor.discarded_count == len(bad_payloads)
        assert ingestor.acked_count == 0
        assert stored_records(db_session_factory) == []

    def test_unknown_sentinels_normalize_to_null(self, click_store, db_session_factory):
        body = json.dumps({
            "shortCode": "abc1234",
            "timestamp": "2025-10-29T10:30:00Z",
            "ipAddress": "unknown",
            "userAgent": "unknown",
            "longUrl": "https://example.org/legacy",
        }).encode()

        async def scenario():
            channel = InMemoryChannel()
            await channel.publish(QUEUE, body)
            ingestor = ClickIngestor(channel, click_store, queue_name=QUEUE, retry_delay=0)
            await ingestor.process_available()

        asyncio.run(scenario())

        (record,) = stored_records(db_session_factory)
        assert record.ip_address is None
        assert record.user_agent is None
        assert record.referer is None
        assert record.destination_url == "https://example.org/legacy"

    def test_transient_store_failure_requeues(self, click_store, db_session_factory):
        store = FlakyStore(click_store, TransientInfra("database is locked"))

        async def scenario():
            channel = InMemoryChannel()
            await channel.publish(QUEUE, make_event())
            ingestor = ClickIngestor(channel, store, queue_name=QUEUE, retry_delay=0)

            (delivery,) = await channel.consume(QUEUE, count=1, block_ms=0)
            first = await ingestor.handle(delivery)
            depth_after_requeue = await channel.get_queue_length(QUEUE)

            (redelivery,) = await channel.consume(QUEUE, count=1, block_ms=0)
            second = await ingestor.handle(redelivery)
            return first, depth_after_requeue, redelivery, second

        first, depth_after_requeue, redelivery, second = asyncio.run(scenario())

        assert first.state == IngestState.REJECTED_REQUEUE
        assert depth_after_requeue == 1
        assert redelivery.redelivered is True
        assert second.state == IngestState.ACKED
        assert len(stored_records(db_session_factory)) == 1

    def test_permanent_store_failure_discards(self, click_store, db_session_factory):
        store = FlakyStore(click_store, PermanentData("check constraint failed"), failures=99)

        async def scenario():
            channel = InMemoryChannel()
            await channel.publish(QUEUE, make_event())
            ingestor = ClickIngestor(channel, store, queue_name=QUEUE, retry_delay=0)
            await ingestor.process_available()
            return ingestor, await channel.get_queue_length(QUEUE)

        ingestor, depth = asyncio.run(scenario())

        assert ingestor.discarded_count == 1
        assert store.calls == 1
        assert depth == 0


class TestAtLeastOnceDelivery:

    def test_crash_before_processing_redelivers(self, click_store, db_session_factory):
        async def scenario():
            channel = InMemoryChannel()
            await channel.publish(QUEUE, make_event())

            # Ingestor receives the message and dies before settling it
            await channel.consume(QUEUE, count=1, block_ms=0)
            recovered = channel.recover(QUEUE)

            restarted = ClickIngestor(channel, click_store, queue_name=QUEUE, retry_delay=0)
            await restarted.process_available()
            return recovered, restarted

        recovered, restarted = asyncio.run(scenario())

        assert recovered == 1
        assert restarted.acked_count == 1
        assert len(stored_records(db_session_factory)) == 1

    def test_crash_after_persist_before_ack_is_deduplicated(self, click_store, db_session_factory):
        async def scenario():
            channel = InMemoryChannel()
            await channel.publish(QUEUE, make_event())

            # Persisted, then killed before the ack reached the broker
            (delivery,) = await channel.consume(QUEUE, count=1, block_ms=0)
            first_id = await click_store.insert(ClickEvent.from_message(delivery.body))
            channel.recover(QUEUE)

            restarted = ClickIngestor(channel, click_store, queue_name=QUEUE, retry_delay=0)
            (redelivery,) = await channel.consume(QUEUE, count=1, block_ms=0)
            outcome = await restarted.handle(redelivery)
            return first_id, outcome, await channel.get_queue_length(QUEUE)

        first_id, outcome, depth = asyncio.run(scenario())

        assert outcome.state == IngestState.ACKED
        assert outcome.record_id == first_id
        assert depth == 0
        assert len(stored_records(db_session_factory)) == 1

    def test_duplicates_kept_when_deduplication_disabled(self, click_store, db_session_factory):
        click_store.deduplicate = False

        async def scenario():
            channel = InMemoryChannel()
            await channel.publish(QUEUE, make_event())
            await channel.publish(QUEUE, make_event())
            ingestor = ClickIngestor(channel, click_store, queue_name=QUEUE, retry_delay=0)
            await ingestor.process_available()

        asyncio.run(scenario())

        assert len(stored_records(db_session_factory)) == 2

    def test_run_loop_stops_on_request(self, click_store, db_session_factory):
        async def scenario():
            channel = InMemoryChannel()
            for code in ["aaa1111", "bbb2222", "ccc3333"]:
                await channel.publish(QUEUE, make_event(shortCode=code))
            ingestor = ClickIngestor(channel, click_store, queue_name=QUEUE, block_ms=10, retry_delay=0)

            task = asyncio.create_task(ingestor.start())
            while ingestor.acked_count < 3:
                await asyncio.sleep(0.01)
            ingestor.stop()
            await asyncio.wait_for(task, timeout=5)
            return ingestor

        ingestor = asyncio.run(scenario())

        assert ingestor.acked_count == 3
        assert ingestor.running is False
        assert len(stored_records(db_session_factory)) == 3


    def test_run_loop_survives_out_of_range_timestamp(self, click_store, db_session_factory):
        async def scenario():
            channel = InMemoryChannel()
            await channel.publish(QUEUE, json.dumps({
                "shortCode": "abc1234", "timestamp": "0001-01-01T00:00:00+05:00",
            }).encode())
            await channel.publish(QUEUE, make_event(shortCode="good123"))
            ingestor = ClickIngestor(channel, click_store, queue_name=QUEUE, block_ms=10, retry_delay=0)

            task = asyncio.create_task(ingestor.start())
            for _ in range(500):
                if ingestor.acked_count:
                    break
                await asyncio.sleep(0.01)
            ingestor.stop()
            await asyncio.wait_for(task, timeout=5)
            return ingestor, await channel.get_queue_length(QUEUE)

        ingestor, depth = asyncio.run(scenario())

        assert ingestor.discarded_count == 1
        assert ingestor.acked_count == 1
        assert depth == 0
        assert [r.short_code for r in stored_records(db_session_factory)] == ["good123"]

    def test_run_loop_survives_unexpected_error(self, click_store, db_session_factory):
        store = FlakyStore(click_store, RuntimeError("driver bug"))

        async def scenario():
            channel = InMemoryChannel()
            await channel.publish(QUEUE, make_event(shortCode="first01"))
            await channel.publish(QUEUE, make_event(shortCode="second2"))
            ingestor = ClickIngestor(channel, store, queue_name=QUEUE, block_ms=10, retry_delay=0)

            task = asyncio.create_task(ingestor.start())
            for _ in range(500):
                if ingestor.acked_count:
                    break
                await asyncio.sleep(0.01)
            ingestor.stop()
            await asyncio.wait_for(task, timeout=5)
            return ingestor, channel.recover(QUEUE)

        ingestor, unsettled = asyncio.run(scenario())

        assert ingestor.acked_count == 1
        # The failed message was never settled, the broker still holds it
        assert unsettled == 1
        assert [r.short_code for r in stored_records(db_session_factory)] == ["second2"]


class TestClickStore:

    def test_count_clicks(self, click_store):
        async def scenario():
            for minute in range(3):
                await click_store.insert(ClickEvent(
                    short_code="abc1234", timestamp=f"2025-10-29T10:3{minute}:00Z"
                ))
            await click_store.insert(ClickEvent(short_code="other00", timestamp="2025-10-29T10:30:00Z"))
            return await click_store.count_clicks("abc1234"), await click_store.count_clicks("missing")

        assert asyncio.run(scenario()) == (3, 0)

    def test_ping(self, click_store):
        asyncio.run(click_store.ping())
