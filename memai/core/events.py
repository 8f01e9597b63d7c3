"""In-process event bus connecting the enrichment stages.

One channel per stage transition. Delivery is at-least-once: a subscriber
that raises is redelivered the same event (up to a bounded number of
attempts), so every handler must be safe to run twice.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from memai.providers.content_types import BookmarkSource

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Channel(str, Enum):
    BOOKMARK_CREATED = "bookmark-created"
    BOOKMARK_SOURCE_CLASSIFIED = "bookmark-source-classified"
    AUDIO_DOWNLOADED = "audio-downloaded"
    AUDIO_TRANSCRIBED = "audio-transcribed"
    CONTENT_EXTRACTED = "content-extracted"


@dataclass(frozen=True)
class BookmarkCreatedEvent:
    bookmark_id: int
    url: str
    source: BookmarkSource
    title: str | None = None


@dataclass(frozen=True)
class BookmarkSourceClassifiedEvent:
    bookmark_id: int
    source: BookmarkSource
    url: str
    title: str | None = None


@dataclass(frozen=True)
class AudioDownloadedEvent:
    bookmark_id: int
    audio_key: str
    source: BookmarkSource
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AudioTranscribedEvent:
    bookmark_id: int
    transcript: str
    source: BookmarkSource


@dataclass(frozen=True)
class ContentExtractedEvent:
    bookmark_id: int
    content: str
    word_count: int
    source: BookmarkSource


CHANNEL_EVENTS: dict[Channel, type] = {
    Channel.BOOKMARK_CREATED: BookmarkCreatedEvent,
    Channel.BOOKMARK_SOURCE_CLASSIFIED: BookmarkSourceClassifiedEvent,
    Channel.AUDIO_DOWNLOADED: AudioDownloadedEvent,
    Channel.AUDIO_TRANSCRIBED: AudioTranscribedEvent,
    Channel.CONTENT_EXTRACTED: ContentExtractedEvent,
}

Handler = Callable[[Any], Awaitable[None]]


@dataclass
class Subscription:
    channel: Channel
    name: str
    handler: Handler


@dataclass
class DeadLetter:
    """An event a subscriber never handled successfully."""

    message_id: str
    channel: Channel
    subscriber: str
    event: Any
    error: str


class EventBus:
    """Asyncio event bus with per-subscriber redelivery.

    Each published event is delivered to every subscriber of its channel in
    its own task. There is no ordering guarantee between events.
    """

    def __init__(self, max_delivery_attempts: int = 3, redelivery_delay: float = 5.0):
        self.max_delivery_attempts = max(1, max_delivery_attempts)
        self.redelivery_delay = redelivery_delay
        self._subscriptions: dict[Channel, list[Subscription]] = {}
        self._tasks: set[asyncio.Task] = set()
        self.dead_letters: list[DeadLetter] = []

    def subscribe(self, channel: Channel, name: str, handler: Handler) -> None:
        self._subscriptions.setdefault(channel, []).append(
            Subscription(channel=channel, name=name, handler=handler)
        )
        logger.debug(f"Subscribed {name} to {channel.value}")

    def subscribers(self, channel: Channel) -> list[str]:
        return [s.name for s in self._subscriptions.get(channel, [])]

    async def publish(self, channel: Channel, event: Any) -> str:
        """Schedule delivery of `event` to all subscribers. Returns the message id."""
        expected = CHANNEL_EVENTS[channel]
        if not isinstance(event, expected):
            raise TypeError(
                f"Channel {channel.value} expects {expected.__name__}, got {type(event).__name__}"
            )

        message_id = uuid.uuid4().hex
        for sub in self._subscriptions.get(channel, []):
            task = asyncio.create_task(self._deliver(sub, event, message_id))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return message_id

    async def _deliver(self, sub: Subscription, event: Any, message_id: str) -> None:
        for attempt in range(1, self.max_delivery_attempts + 1):
            try:
                await sub.handler(event)
                return
            except Exception as e:
                logger.exception(
                    f"Subscriber {sub.name} failed on {sub.channel.value} message {message_id} "
                    f"(attempt {attempt}/{self.max_delivery_attempts})"
                )
                if attempt == self.max_delivery_attempts:
                    self.dead_letters.append(
                        DeadLetter(
                            message_id=message_id,
                            channel=sub.channel,
                            subscriber=sub.name,
                            event=event,
                            error=str(e),
                        )
                    )
                    return
                await asyncio.sleep(self.redelivery_delay)

    async def drain(self) -> None:
        """Wait until every scheduled delivery (including cascades) has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


async def non_critical(awaitable: Awaitable[T], description: str) -> T | None:
    """Run a fire-and-forget side effect. Failures are logged and never propagate."""
    try:
        return await awaitable
    except Exception as e:
        logger.warning(f"Non-critical {description} failed: {e}")
        return None
