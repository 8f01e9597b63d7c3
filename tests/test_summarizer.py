"""Tests for summarizer.py"""

import pytest
from conftest import FakeLLM

from memai.core.events import AudioTranscribedEvent, ContentExtractedEvent
from memai.core.lifecycle import ProcessingStatus
from memai.core.llm_providers import LLMError
from memai.core.summarizer import (
    ContentSummaryProcessor,
    ContentType,
    TranscriptSummaryProcessor,
    get_content_type,
    summary_budget,
)
from memai.providers.content_types import BookmarkSource


class TestContentType:
    @pytest.mark.parametrize(
        "words,expected",
        [
            (0, ContentType.SHORT_POST),
            (499, ContentType.SHORT_POST),
            (500, ContentType.ARTICLE),
            (1999, ContentType.ARTICLE),
            (2000, ContentType.LONG_FORM),
            (10000, ContentType.LONG_FORM),
        ],
    )
    def test_thresholds(self, words, expected):
        assert get_content_type(words) == expected

    def test_budgets(self):
        assert summary_budget(100) == 150
        assert summary_budget(1000) == 300
        assert summary_budget(5000) == 500


def _processing_web_content(db, bookmark):
    db.create_pending_web_content(bookmark.id)
    db.mark_web_content_processing(bookmark.id)


def _extracted(bookmark, words=600):
    return ContentExtractedEvent(
        bookmark_id=bookmark.id, content="text " * words, word_count=words, source=BookmarkSource.BLOG
    )


@pytest.mark.asyncio
class TestContentSummaryProcessor:
    async def test_completes_row_with_budgeted_summary(self, db, bookmark):
        _processing_web_content(db, bookmark)
        llm = FakeLLM("Queues decouple things.")
        await ContentSummaryProcessor(db, llm).handle(_extracted(bookmark, words=600))

        row = db.get_web_content(bookmark.id)
        assert row.status == ProcessingStatus.COMPLETED
        assert row.summary == "Queues decouple things."
        assert llm.calls[0]["max_tokens"] == 300
        assert llm.calls[0]["temperature"] == 0.3

    async def test_failure_is_persisted_not_raised(self, db, bookmark):
        _processing_web_content(db, bookmark)
        llm = FakeLLM(error=LLMError("rate limited", provider="OpenAI", retriable=True))
        await ContentSummaryProcessor(db, llm).handle(_extracted(bookmark))

        row = db.get_web_content(bookmark.id)
        assert row.status == ProcessingStatus.FAILED
        assert row.error_message.startswith("Summarization failed: ")
        assert "rate limited" in row.error_message

    async def test_skips_row_not_processing(self, db, bookmark):
        db.create_pending_web_content(bookmark.id)
        llm = FakeLLM()
        await ContentSummaryProcessor(db, llm).handle(_extracted(bookmark))
        assert llm.calls == []
        assert db.get_web_content(bookmark.id).status == ProcessingStatus.PENDING

    async def test_replay_after_completion_is_noop(self, db, bookmark):
        _processing_web_content(db, bookmark)
        llm = FakeLLM()
        processor = ContentSummaryProcessor(db, llm)
        await processor.handle(_extracted(bookmark))
        await processor.handle(_extracted(bookmark))
        assert len(llm.calls) == 1


@pytest.mark.asyncio
class TestTranscriptSummaryProcessor:
    def _event(self, bookmark):
        return AudioTranscribedEvent(
            bookmark_id=bookmark.id, transcript="spoken words", source=BookmarkSource.YOUTUBE
        )

    async def test_completes_transcription(self, db, bookmark):
        db.create_pending_transcription(bookmark.id)
        db.mark_transcription_processing(bookmark.id)
        llm = FakeLLM("Video summary.")
        await TranscriptSummaryProcessor(db, llm).handle(self._event(bookmark))

        row = db.get_transcription(bookmark.id)
        assert row.status == ProcessingStatus.COMPLETED
        assert row.summary == "Video summary."
        assert llm.calls[0]["max_tokens"] == 500

    async def test_failure_message(self, db, bookmark):
        db.create_pending_transcription(bookmark.id)
        db.mark_transcription_processing(bookmark.id)
        await TranscriptSummaryProcessor(db, FakeLLM(error=RuntimeError("boom"))).handle(self._event(bookmark))

        row = db.get_transcription(bookmark.id)
        assert row.status == ProcessingStatus.FAILED
        assert row.error_message.startswith("Summary generation failed: ")

    async def test_missing_row_is_skipped(self, db, bookmark):
        llm = FakeLLM()
        await TranscriptSummaryProcessor(db, llm).handle(self._event(bookmark))
        assert llm.calls == []
