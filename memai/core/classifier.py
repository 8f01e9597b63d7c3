"""URL classification for newly created bookmarks."""

from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from enum import Enum

from memai.core.events import (
    BookmarkCreatedEvent,
    BookmarkSourceClassifiedEvent,
    Channel,
    EventBus,
)
from memai.core.storage import DB
from memai.providers.content_types import BookmarkSource

logger = logging.getLogger(__name__)

YOUTUBE_URL_PATTERNS = [
    re.compile(r"(?:youtube\.com/watch\?v=|youtu\.be/)([^&\s?]+)"),
    re.compile(r"youtube\.com/embed/([^&\s?]+)"),
    re.compile(r"youtube\.com/v/([^&\s?]+)"),
]

APPLE_PODCAST_PATTERN = re.compile(r"podcasts\.apple\.com.*/id(\d+)")
GOOGLE_PODCAST_PATTERN = re.compile(r"podcasts\.google\.com/feed/([^/?]+)")
SPOTIFY_EPISODE_PATTERN = re.compile(r"open\.spotify\.com/episode/([A-Za-z0-9]+)")

REDDIT_MARKERS = ("reddit.com/r/", "redd.it/")
TWITTER_MARKERS = ("twitter.com/", "x.com/")
LINKEDIN_MARKERS = ("linkedin.com/",)
BLOG_MARKERS = (
    "medium.com",
    "substack.com",
    "wordpress.com",
    "blogspot.com",
    "ghost.io",
    "/blog/",
    "/article/",
)


class PodcastPlatform(str, Enum):
    RSS = "rss"
    APPLE = "apple"
    GOOGLE = "google"
    SPOTIFY = "spotify"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class PodcastUrlInfo:
    platform: PodcastPlatform
    show_id: str | None = None
    feed_url: str | None = None
    episode_id: str | None = None


def extract_youtube_video_id(url: str) -> str | None:
    for pattern in YOUTUBE_URL_PATTERNS:
        match = pattern.search(url)
        if match and match.group(1):
            return match.group(1)
    return None


def build_youtube_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


def _decode_google_feed(encoded: str) -> str | None:
    padded = encoded + "=" * (-len(encoded) % 4)
    try:
        decoded = base64.urlsafe_b64decode(padded).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    return decoded if decoded.startswith(("http://", "https://")) else None


def parse_podcast_url(url: str) -> PodcastUrlInfo:
    """Detect the podcast platform and pull out the show id or feed URL."""
    match = APPLE_PODCAST_PATTERN.search(url)
    if match:
        return PodcastUrlInfo(platform=PodcastPlatform.APPLE, show_id=match.group(1))

    match = GOOGLE_PODCAST_PATTERN.search(url)
    if match:
        feed_url = _decode_google_feed(match.group(1))
        if feed_url:
            return PodcastUrlInfo(platform=PodcastPlatform.GOOGLE, feed_url=feed_url)

    match = SPOTIFY_EPISODE_PATTERN.search(url)
    if match:
        return PodcastUrlInfo(platform=PodcastPlatform.SPOTIFY, episode_id=match.group(1))

    if ".xml" in url or "/feed" in url or "/rss" in url:
        return PodcastUrlInfo(platform=PodcastPlatform.RSS, feed_url=url)

    return PodcastUrlInfo(platform=PodcastPlatform.UNKNOWN)


def is_podcast_url(url: str) -> bool:
    return parse_podcast_url(url).platform != PodcastPlatform.UNKNOWN


def classify_bookmark_url(url: str) -> BookmarkSource:
    """Map a URL to a source. Falls back to WEB."""
    lowered = url.lower()

    if extract_youtube_video_id(url):
        return BookmarkSource.YOUTUBE
    if is_podcast_url(url):
        return BookmarkSource.PODCAST
    if any(m in lowered for m in REDDIT_MARKERS):
        return BookmarkSource.REDDIT
    if any(m in lowered for m in TWITTER_MARKERS):
        return BookmarkSource.TWITTER
    if any(m in lowered for m in LINKEDIN_MARKERS):
        return BookmarkSource.LINKEDIN
    if any(m in lowered for m in BLOG_MARKERS):
        return BookmarkSource.BLOG
    return BookmarkSource.WEB


class ClassificationProcessor:
    """Resolves the source of bookmarks created with an unknown (web) source."""

    name = "bookmark-classification-processor"

    def __init__(self, db: DB, bus: EventBus):
        self.db = db
        self.bus = bus

    async def handle(self, event: BookmarkCreatedEvent) -> None:
        try:
            await self._process(event)
        except Exception:
            # Not redelivered: a bookmark that fails here is never enriched
            logger.exception(f"Classification failed for bookmark {event.bookmark_id}, event dropped")

    async def _process(self, event: BookmarkCreatedEvent) -> None:
        source = event.source

        if source == BookmarkSource.WEB:
            detected = classify_bookmark_url(event.url)
            logger.info(f"Bookmark {event.bookmark_id} classified as {detected.value}")
            if detected != source:
                self.db.update_bookmark_source(event.bookmark_id, detected)
                source = detected
        else:
            logger.debug(f"Bookmark {event.bookmark_id} already has source {source.value}")

        message_id = await self.bus.publish(
            Channel.BOOKMARK_SOURCE_CLASSIFIED,
            BookmarkSourceClassifiedEvent(
                bookmark_id=event.bookmark_id,
                source=source,
                url=event.url,
                title=event.title,
            ),
        )
        logger.info(
            f"Published {Channel.BOOKMARK_SOURCE_CLASSIFIED.value} for bookmark "
            f"{event.bookmark_id} ({source.value}, message {message_id})"
        )
