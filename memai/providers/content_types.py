"""Domain types for bookmarks and their enrichments."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from memai.core.lifecycle import ProcessingStatus


class BookmarkSource(str, Enum):
    """Where a bookmark points to."""

    YOUTUBE = "youtube"
    PODCAST = "podcast"
    REDDIT = "reddit"
    TWITTER = "twitter"
    LINKEDIN = "linkedin"
    BLOG = "blog"
    WEB = "web"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str | None) -> BookmarkSource:
        """Lenient conversion; unknown values map to OTHER."""
        try:
            return cls(value) if value else cls.WEB
        except ValueError:
            return cls.OTHER


# Sources that go through audio acquisition + transcription
AUDIO_SOURCES = frozenset({BookmarkSource.YOUTUBE, BookmarkSource.PODCAST})

# Sources that go through web content extraction
TEXTUAL_SOURCES = frozenset({
    BookmarkSource.BLOG,
    BookmarkSource.WEB,
    BookmarkSource.REDDIT,
    BookmarkSource.TWITTER,
    BookmarkSource.LINKEDIN,
})

SOURCE_DISPLAY_NAMES: dict[BookmarkSource, str] = {
    BookmarkSource.YOUTUBE: "YouTube Video",
    BookmarkSource.PODCAST: "Podcast Episode",
    BookmarkSource.REDDIT: "Reddit Post",
    BookmarkSource.TWITTER: "Twitter Thread",
    BookmarkSource.LINKEDIN: "LinkedIn Article",
    BookmarkSource.BLOG: "Blog Post",
    BookmarkSource.WEB: "Web Article",
    BookmarkSource.OTHER: "Other Content",
}


class TranscriptionMethod(str, Enum):
    """Which tier produced a transcript."""

    DIRECT_MODEL = "direct-model"
    DOWNLOAD_PLUS_ASR = "download-plus-asr"


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value else None


def _json(value: str | None) -> Any:
    return json.loads(value) if value else None


@dataclass
class Bookmark:
    """A saved URL. Created by the ingestion API."""

    id: int
    url: str
    owner_id: str | None = None
    title: str | None = None
    source: BookmarkSource = BookmarkSource.WEB
    client_time: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Bookmark:
        return cls(
            id=row["id"],
            url=row["url"],
            owner_id=row["owner_id"],
            title=row["title"],
            source=BookmarkSource.parse(row["source"]),
            client_time=_dt(row["client_time"]),
            metadata=_json(row["metadata_json"]) or {},
            created_at=_dt(row["created_at"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "owner_id": self.owner_id,
            "title": self.title,
            "source": self.source.value,
            "client_time": _iso(self.client_time),
            "metadata": self.metadata,
            "created_at": _iso(self.created_at),
        }


@dataclass
class Transcription:
    """Transcript and summary for an audio-bearing bookmark."""

    id: int
    bookmark_id: int
    status: ProcessingStatus
    transcript: str | None = None
    asr_summary: str | None = None
    sentiment: str | None = None
    sentiment_score: float | None = None
    duration: float | None = None
    confidence: float | None = None
    summary: str | None = None
    method: TranscriptionMethod | None = None
    error_message: str | None = None
    processing_started_at: datetime | None = None
    processing_completed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Transcription:
        return cls(
            id=row["id"],
            bookmark_id=row["bookmark_id"],
            status=ProcessingStatus(row["status"]),
            transcript=row["transcript"],
            asr_summary=row["asr_summary"],
            sentiment=row["sentiment"],
            sentiment_score=row["sentiment_score"],
            duration=row["duration"],
            confidence=row["confidence"],
            summary=row["summary"],
            method=TranscriptionMethod(row["method"]) if row["method"] else None,
            error_message=row["error_message"],
            processing_started_at=_dt(row["processing_started_at"]),
            processing_completed_at=_dt(row["processing_completed_at"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "bookmark_id": self.bookmark_id,
            "status": self.status.value,
            "transcript": self.transcript,
            "asr_summary": self.asr_summary,
            "sentiment": self.sentiment,
            "sentiment_score": self.sentiment_score,
            "duration": self.duration,
            "confidence": self.confidence,
            "summary": self.summary,
            "method": self.method.value if self.method else None,
            "error_message": self.error_message,
            "processing_started_at": _iso(self.processing_started_at),
            "processing_completed_at": _iso(self.processing_completed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class WebContent:
    """Extracted article text and summary for a web bookmark."""

    id: int
    bookmark_id: int
    status: ProcessingStatus
    raw_markdown: str | None = None
    raw_html: str | None = None
    page_title: str | None = None
    page_description: str | None = None
    language: str | None = None
    word_count: int | None = None
    char_count: int | None = None
    estimated_reading_minutes: int | None = None
    summary: str | None = None
    metadata: dict[str, Any] | None = None
    error_message: str | None = None
    processing_started_at: datetime | None = None
    processing_completed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> WebContent:
        return cls(
            id=row["id"],
            bookmark_id=row["bookmark_id"],
            status=ProcessingStatus(row["status"]),
            raw_markdown=row["raw_markdown"],
            raw_html=row["raw_html"],
            page_title=row["page_title"],
            page_description=row["page_description"],
            language=row["language"],
            word_count=row["word_count"],
            char_count=row["char_count"],
            estimated_reading_minutes=row["estimated_reading_minutes"],
            summary=row["summary"],
            metadata=_json(row["metadata_json"]),
            error_message=row["error_message"],
            processing_started_at=_dt(row["processing_started_at"]),
            processing_completed_at=_dt(row["processing_completed_at"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    def to_dict(self, include_raw: bool = False) -> dict[str, Any]:
        d = {
            "id": self.id,
            "bookmark_id": self.bookmark_id,
            "status": self.status.value,
            "page_title": self.page_title,
            "page_description": self.page_description,
            "language": self.language,
            "word_count": self.word_count,
            "char_count": self.char_count,
            "estimated_reading_minutes": self.estimated_reading_minutes,
            "summary": self.summary,
            "metadata": self.metadata,
            "error_message": self.error_message,
            "processing_started_at": _iso(self.processing_started_at),
            "processing_completed_at": _iso(self.processing_completed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_raw:
            d["raw_markdown"] = self.raw_markdown
            d["raw_html"] = self.raw_html
        return d


@dataclass
class DailyDigest:
    """Consolidated summary of one owner's enriched bookmarks for one day."""

    id: int
    digest_date: date
    owner_id: str | None
    status: ProcessingStatus
    bookmark_count: int = 0
    sources_breakdown: dict[str, int] = field(default_factory=dict)
    date_range_start: datetime | None = None
    date_range_end: datetime | None = None
    digest_content: str | None = None
    total_duration: float | None = None
    processing_metadata: dict[str, Any] | None = None
    error_message: str | None = None
    processing_started_at: datetime | None = None
    processing_completed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> DailyDigest:
        return cls(
            id=row["id"],
            digest_date=date.fromisoformat(row["digest_date"]),
            owner_id=row["owner_id"],
            status=ProcessingStatus(row["status"]),
            bookmark_count=row["bookmark_count"],
            sources_breakdown=_json(row["sources_breakdown_json"]) or {},
            date_range_start=_dt(row["date_range_start"]),
            date_range_end=_dt(row["date_range_end"]),
            digest_content=row["digest_content"],
            total_duration=row["total_duration"],
            processing_metadata=_json(row["processing_metadata_json"]),
            error_message=row["error_message"],
            processing_started_at=_dt(row["processing_started_at"]),
            processing_completed_at=_dt(row["processing_completed_at"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "digest_date": self.digest_date.isoformat(),
            "owner_id": self.owner_id,
            "status": self.status.value,
            "bookmark_count": self.bookmark_count,
            "sources_breakdown": self.sources_breakdown,
            "date_range_start": _iso(self.date_range_start),
            "date_range_end": _iso(self.date_range_end),
            "digest_content": self.digest_content,
            "total_duration": self.total_duration,
            "processing_metadata": self.processing_metadata,
            "error_message": self.error_message,
            "processing_started_at": _iso(self.processing_started_at),
            "processing_completed_at": _iso(self.processing_completed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class DigestContentItem:
    """One completed enrichment feeding a daily digest."""

    bookmark_id: int
    content_type: str  # 'audio' or 'article'
    summary: str
    source: BookmarkSource
    created_at: datetime
    title: str | None = None
    duration: float | None = None
    word_count: int | None = None
    reading_minutes: int | None = None
    sentiment: str | None = None
