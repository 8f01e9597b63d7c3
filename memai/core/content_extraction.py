"""Web content extraction stage (bookmark-source-classified -> content-extracted)."""

from __future__ import annotations

import logging
import math
from typing import Protocol

from memai.core.content_fetcher import ExtractedContent
from memai.core.errors import describe_error
from memai.core.events import (
    BookmarkSourceClassifiedEvent,
    Channel,
    ContentExtractedEvent,
    EventBus,
)
from memai.core.lifecycle import should_process
from memai.core.storage import DB
from memai.providers.content_types import TEXTUAL_SOURCES

logger = logging.getLogger(__name__)

READING_SPEED_WPM = 200


class ArticleExtractor(Protocol):
    async def extract(self, url: str) -> ExtractedContent: ...


def calculate_reading_minutes(word_count: int) -> int:
    return math.ceil(word_count / READING_SPEED_WPM)


class ContentExtractionProcessor:
    name = "content-extraction-processor"

    def __init__(self, db: DB, bus: EventBus, extractor: ArticleExtractor):
        self.db = db
        self.bus = bus
        self.extractor = extractor

    async def handle(self, event: BookmarkSourceClassifiedEvent) -> None:
        bookmark_id = event.bookmark_id

        if event.source not in TEXTUAL_SOURCES:
            logger.debug(f"Skipping extraction for bookmark {bookmark_id}: source {event.source.value}")
            return

        existing = self.db.get_web_content(bookmark_id)
        if not should_process(existing.status if existing else None):
            logger.warning(
                f"Web content for bookmark {bookmark_id} already {existing.status.value}, skipping"
            )
            return

        if existing is None:
            self.db.create_pending_web_content(bookmark_id)
        self.db.mark_web_content_processing(bookmark_id)

        try:
            extracted = await self.extractor.extract(event.url)

            markdown = extracted.markdown
            word_count = extracted.word_count
            metadata = dict(extracted.metadata)

            self.db.save_web_content(
                bookmark_id,
                raw_markdown=markdown,
                raw_html=extracted.html or "",
                page_title=extracted.title or event.title or "Untitled",
                page_description=extracted.description or "",
                language=extracted.language or "en",
                word_count=word_count,
                char_count=len(markdown),
                estimated_reading_minutes=calculate_reading_minutes(word_count),
                metadata=metadata,
            )
            logger.info(f"Extracted {word_count} words for bookmark {bookmark_id}")

            message_id = await self.bus.publish(
                Channel.CONTENT_EXTRACTED,
                ContentExtractedEvent(
                    bookmark_id=bookmark_id,
                    content=markdown,
                    word_count=word_count,
                    source=event.source,
                ),
            )
            logger.info(f"Published {Channel.CONTENT_EXTRACTED.value} for bookmark {bookmark_id} ({message_id})")

        except Exception as e:
            logger.exception(f"Content extraction failed for bookmark {bookmark_id} ({event.url})")
            self.db.mark_web_content_failed(bookmark_id, f"Extraction failed: {describe_error(e)}")
