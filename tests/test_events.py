"""Tests for events.py"""

from unittest.mock import AsyncMock

import pytest

from memai.core.events import (
    BookmarkCreatedEvent,
    Channel,
    ContentExtractedEvent,
    EventBus,
    non_critical,
)
from memai.providers.content_types import BookmarkSource


def _created(bookmark_id=1):
    return BookmarkCreatedEvent(bookmark_id=bookmark_id, url="https://example.com", source=BookmarkSource.WEB)


class TestEventBus:
    @pytest.mark.asyncio
    async def test_every_subscriber_receives_event(self, bus):
        seen = []

        async def a(event):
            seen.append(("a", event.bookmark_id))

        async def b(event):
            seen.append(("b", event.bookmark_id))

        bus.subscribe(Channel.BOOKMARK_CREATED, "a", a)
        bus.subscribe(Channel.BOOKMARK_CREATED, "b", b)
        message_id = await bus.publish(Channel.BOOKMARK_CREATED, _created(7))
        await bus.drain()

        assert message_id
        assert sorted(seen) == [("a", 7), ("b", 7)]
        assert bus.subscribers(Channel.BOOKMARK_CREATED) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_failing_subscriber_is_redelivered(self, bus):
        attempts = []

        async def flaky(event):
            attempts.append(event.bookmark_id)
            if len(attempts) == 1:
                raise RuntimeError("transient")

        bus.subscribe(Channel.BOOKMARK_CREATED, "flaky", flaky)
        await bus.publish(Channel.BOOKMARK_CREATED, _created())
        await bus.drain()

        assert attempts == [1, 1]
        assert bus.dead_letters == []

    @pytest.mark.asyncio
    async def test_exhausted_delivery_lands_in_dead_letters(self, bus):
        async def broken(event):
            raise RuntimeError("always")

        bus.subscribe(Channel.BOOKMARK_CREATED, "broken", broken)
        message_id = await bus.publish(Channel.BOOKMARK_CREATED, _created())
        await bus.drain()

        assert len(bus.dead_letters) == 1
        letter = bus.dead_letters[0]
        assert letter.message_id == message_id
        assert letter.subscriber == "broken"
        assert letter.error == "always"

    @pytest.mark.asyncio
    async def test_one_failing_subscriber_does_not_block_others(self, bus):
        ok = []

        async def broken(event):
            raise RuntimeError("nope")

        async def fine(event):
            ok.append(event.bookmark_id)

        bus.subscribe(Channel.BOOKMARK_CREATED, "broken", broken)
        bus.subscribe(Channel.BOOKMARK_CREATED, "fine", fine)
        await bus.publish(Channel.BOOKMARK_CREATED, _created(3))
        await bus.drain()

        assert ok == [3]

    @pytest.mark.asyncio
    async def test_wrong_event_type_rejected(self, bus):
        event = ContentExtractedEvent(bookmark_id=1, content="x", word_count=1, source=BookmarkSource.BLOG)
        with pytest.raises(TypeError):
            await bus.publish(Channel.BOOKMARK_CREATED, event)

    @pytest.mark.asyncio
    async def test_drain_waits_for_cascades(self, bus):
        final = []

        async def first(event):
            await bus.publish(
                Channel.CONTENT_EXTRACTED,
                ContentExtractedEvent(
                    bookmark_id=event.bookmark_id, content="text", word_count=1, source=BookmarkSource.BLOG
                ),
            )

        async def second(event):
            final.append(event.bookmark_id)

        bus.subscribe(Channel.BOOKMARK_CREATED, "first", first)
        bus.subscribe(Channel.CONTENT_EXTRACTED, "second", second)
        await bus.publish(Channel.BOOKMARK_CREATED, _created(9))
        await bus.drain()

        assert final == [9]


class TestNonCritical:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def ok():
            return "id-1"

        assert await non_critical(ok(), "publish") == "id-1"

    @pytest.mark.asyncio
    async def test_swallows_failure(self):
        async def boom():
            raise RuntimeError("bus down")

        assert await non_critical(boom(), "publish") is None


class TestSubscriptionHandlers:
    @pytest.mark.asyncio
    async def test_handler_awaited_with_event(self, bus):
        handler = AsyncMock()
        bus.subscribe(Channel.BOOKMARK_CREATED, "mock", handler)
        event = _created(4)
        await bus.publish(Channel.BOOKMARK_CREATED, event)
        await bus.drain()

        handler.assert_awaited_once_with(event)

    @pytest.mark.asyncio
    async def test_channel_without_subscribers(self, bus):
        assert await bus.publish(Channel.BOOKMARK_CREATED, _created())
        await bus.drain()
        assert bus.dead_letters == []
