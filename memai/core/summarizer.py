"""Summarization stages for extracted web content and transcripts.

Both stages make a single attempt per event. A failure is persisted on the
row; there is no internal retry.
"""

from __future__ import annotations

import logging
from enum import Enum

from memai.core.errors import describe_error, with_timeout
from memai.core.events import AudioTranscribedEvent, ContentExtractedEvent
from memai.core.lifecycle import ProcessingStatus
from memai.core.llm_providers import LLMProvider
from memai.core.prompts import get_summary_prompt
from memai.core.storage import DB

logger = logging.getLogger(__name__)

SUMMARY_TIMEOUT = 120.0


class ContentType(str, Enum):
    SHORT_POST = "short_post"
    ARTICLE = "article"
    LONG_FORM = "long_form"


# Strict less-than: a count equal to a threshold belongs to the next tier up
SHORT_POST_MAX_WORDS = 500
ARTICLE_MAX_WORDS = 2000

SUMMARY_TOKEN_BUDGETS: dict[ContentType, int] = {
    ContentType.SHORT_POST: 150,
    ContentType.ARTICLE: 300,
    ContentType.LONG_FORM: 500,
}

TRANSCRIPT_SUMMARY_MAX_TOKENS = 500


def get_content_type(word_count: int) -> ContentType:
    if word_count < SHORT_POST_MAX_WORDS:
        return ContentType.SHORT_POST
    if word_count < ARTICLE_MAX_WORDS:
        return ContentType.ARTICLE
    return ContentType.LONG_FORM


def summary_budget(word_count: int) -> int:
    """Max output tokens for a summary of a text with `word_count` words."""
    return SUMMARY_TOKEN_BUDGETS[get_content_type(word_count)]


class ContentSummaryProcessor:
    """content-extracted -> WebContent.summary, row completed."""

    name = "content-summary-processor"

    def __init__(self, db: DB, llm: LLMProvider, timeout: float = SUMMARY_TIMEOUT):
        self.db = db
        self.llm = llm
        self.timeout = timeout

    async def handle(self, event: ContentExtractedEvent) -> None:
        bookmark_id = event.bookmark_id
        row = self.db.get_web_content(bookmark_id)
        if row is None or row.status != ProcessingStatus.PROCESSING:
            status = row.status.value if row else "missing"
            logger.info(f"Skipping summary for bookmark {bookmark_id}: web content is {status}")
            return

        content_type = get_content_type(event.word_count)
        max_tokens = SUMMARY_TOKEN_BUDGETS[content_type]
        logger.info(
            f"Summarizing bookmark {bookmark_id}: {event.word_count} words, "
            f"{content_type.value}, budget {max_tokens} tokens"
        )

        try:
            summary = await with_timeout(
                self.llm.summarize(
                    event.content,
                    max_tokens=max_tokens,
                    system_prompt=get_summary_prompt(event.source),
                ),
                self.timeout,
                "Summarization",
            )
            self.db.complete_web_content(bookmark_id, summary)
        except Exception as e:
            logger.exception(f"Summarization failed for bookmark {bookmark_id}")
            self.db.mark_web_content_failed(bookmark_id, f"Summarization failed: {describe_error(e)}")
            return

        logger.info(f"Bookmark {bookmark_id} web content completed ({len(summary)} chars)")


class TranscriptSummaryProcessor:
    """audio-transcribed -> Transcription.summary, row completed."""

    name = "summary-generation-processor"

    def __init__(self, db: DB, llm: LLMProvider, timeout: float = SUMMARY_TIMEOUT):
        self.db = db
        self.llm = llm
        self.timeout = timeout

    async def handle(self, event: AudioTranscribedEvent) -> None:
        bookmark_id = event.bookmark_id
        row = self.db.get_transcription(bookmark_id)
        if row is None or row.status != ProcessingStatus.PROCESSING:
            status = row.status.value if row else "missing"
            logger.info(f"Skipping summary for bookmark {bookmark_id}: transcription is {status}")
            return

        try:
            summary = await with_timeout(
                self.llm.summarize(
                    event.transcript,
                    max_tokens=TRANSCRIPT_SUMMARY_MAX_TOKENS,
                    system_prompt=get_summary_prompt(event.source),
                ),
                self.timeout,
                "Summary generation",
            )
            self.db.complete_transcription(bookmark_id, summary)
        except Exception as e:
            logger.exception(f"Summary generation failed for bookmark {bookmark_id}")
            self.db.mark_transcription_failed(
                bookmark_id, f"Summary generation failed: {describe_error(e)}"
            )
            return

        logger.info(f"Bookmark {bookmark_id} transcription completed ({len(summary)} chars)")
