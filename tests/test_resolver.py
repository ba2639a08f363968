"""
Tests for resolution and click event publishing.
"""
import asyncio
import json

import pytest

from linkflow.exceptions import InvalidFormat, NotFound, TransientInfra
from linkflow.queue.models import ClickEvent
from linkflow.queue.publisher import ClickEventPublisher, OverflowPolicy
from linkflow.queue.strategies import InMemoryChannel
from linkflow.services.allocator import Allocator
from linkflow.services.resolver import Resolver
from linkflow.services.url_service import URLService
from linkflow.store.strategies import InMemoryCodeStore

QUEUE = "q.test-click-events"


class UnreachableChannel(InMemoryChannel):
    """Channel whose broker is down"""

    async def publish(self, queue_name, body, persistent=True):
        raise TransientInfra("broker unreachable")


class TestResolver:

    def test_never_allocated_code_is_not_found(self):
        resolver = Resolver(InMemoryCodeStore())

        with pytest.raises(NotFound):
            asyncio.run(resolver.resolve("neverSeen"))

    def test_invalid_format_is_distinct_from_not_found(self):
        resolver = Resolver(InMemoryCodeStore())

        for code in ["ab", "x" * 21, "bad code", "semi;colon"]:
            with pytest.raises(InvalidFormat):
                asyncio.run(resolver.resolve(code))

    def test_delete_then_resolve_is_not_found(self):
        store = InMemoryCodeStore()
        allocator = Allocator(store)
        resolver = Resolver(store)
        service = URLService(store)

        mapping = asyncio.run(allocator.allocate("https://example.org/a"))
        assert asyncio.run(service.delete_url(mapping.code)) == 1

        with pytest.raises(NotFound):
            asyncio.run(resolver.resolve(mapping.code))

        # Deleting again reports the miss, resolution still misses
        with pytest.raises(NotFound):
            asyncio.run(service.delete_url(mapping.code))
        with pytest.raises(NotFound):
            asyncio.run(resolver.resolve(mapping.code))

    def test_resolve_publishes_click_event(self):
        async def scenario():
            store = InMemoryCodeStore()
            channel = InMemoryChannel()
            publisher = ClickEventPublisher(channel, QUEUE)
            publisher.start()

            mapping = await Allocator(store).allocate("https://example.org/a")
            resolver = Resolver(store, publisher)
            destination = await resolver.resolve(
                mapping.code,
                client_ip="203.0.113.7",
                user_agent="Mozilla/5.0",
                referer=None,
            )
            await publisher.flush()
            await publisher.stop()

            deliveries = await channel.consume(QUEUE, count=10, block_ms=0)
            return mapping, destination, deliveries

        mapping, destination, deliveries = asyncio.run(scenario())

        assert destination == "https://example.org/a"
        assert len(deliveries) == 1

        payload = json.loads(deliveries[0].body)
        assert payload["shortCode"] == mapping.code
        assert payload["ipAddress"] == "203.0.113.7"
        assert payload["userAgent"] == "Mozilla/5.0"
        assert payload["referer"] is None
        assert payload["destinationUrl"] == "https://example.org/a"
        assert "timestamp" in payload

    def test_unreachable_channel_does_not_block_redirect(self):
        async def scenario():
            store = InMemoryCodeStore()
            publisher = ClickEventPublisher(UnreachableChannel(), QUEUE)
            publisher.start()

            await store.set_with_expiry("abc123", "https://example.org/", None)
            destination = await Resolver(store, publisher).resolve("abc123")
            await publisher.flush()
            await publisher.stop()
            return destination, publisher

        destination, publisher = asyncio.run(scenario())

        assert destination == "https://example.org/"
        assert publisher.failed_count == 1
        assert publisher.published_count == 0

    def test_non_ip_client_host_is_dropped(self):
        async def scenario():
            store = InMemoryCodeStore()
            channel = InMemoryChannel()
            publisher = ClickEventPublisher(channel, QUEUE)
            publisher.start()

            await store.set_with_expiry("abc123", "https://example.org/", None)
            await Resolver(store, publisher).resolve("abc123", client_ip="testclient")
            await publisher.stop()
            return await channel.consume(QUEUE, count=1, block_ms=0)

        deliveries = asyncio.run(scenario())

        assert ClickEvent.from_message(deliveries[0].body).ip_address is None


class TestPublisherOverflow:

    def _event(self, code: str) -> ClickEvent:
        return ClickEvent(short_code=code, timestamp="2025-10-29T10:30:00Z")

    def test_drop_new_keeps_buffered_events(self):
        async def scenario():
            publisher = ClickEventPublisher(InMemoryChannel(), QUEUE, max_pending=2)
            results = [publisher.submit(self._event(code)) for code in ["aaa", "bbb", "ccc"]]
            codes = []
            while publisher.pending:
                codes.append(publisher._buffer.get_nowait().short_code)
            return results, codes, publisher.dropped_count

        results, codes, dropped = asyncio.run(scenario())

        assert results == [True, True, False]
        assert codes == ["aaa", "bbb"]
        assert dropped == 1

    def test_drop_oldest_keeps_newest_events(self):
        async def scenario():
            publisher = ClickEventPublisher(
                InMemoryChannel(), QUEUE, max_pending=2,
                overflow_policy=OverflowPolicy.DROP_OLDEST,
            )
            for code in ["aaa", "bbb", "ccc"]:
                publisher.submit(self._event(code))
            codes = []
            while publisher.pending:
                codes.append(publisher._buffer.get_nowait().short_code)
            return codes, publisher.dropped_count

        codes, dropped = asyncio.run(scenario())

        assert codes == ["bbb", "ccc"]
        assert dropped == 1

    def test_stop_drains_buffer(self):
        async def scenario():
            channel = InMemoryChannel()
            publisher = ClickEventPublisher(channel, QUEUE)
            publisher.start()
            for code in ["aaa", "bbb", "ccc"]:
                publisher.submit(self._event(code))
            await publisher.stop()
            return await channel.get_queue_length(QUEUE), publisher.published_count

        length, published = asyncio.run(scenario())

        assert length == 3
        assert published == 3
