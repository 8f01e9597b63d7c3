from __future__ import annotations

import json
import logging
import os
import sqlite3
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from memai.core.lifecycle import (
    InvalidTransitionError,
    ProcessingStatus,
    validate_transition,
)
from memai.core.settings import Settings
from memai.providers.content_types import (
    Bookmark,
    BookmarkSource,
    DailyDigest,
    DigestContentItem,
    Transcription,
    TranscriptionMethod,
    WebContent,
)

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ts(value: datetime | None = None) -> str:
    """Fixed-width UTC timestamp so string comparison matches time order."""
    value = value or utc_now()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


SCHEMA_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS bookmarks (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  owner_id TEXT,
  url TEXT NOT NULL,
  title TEXT,
  source TEXT NOT NULL DEFAULT 'web',
  client_time TEXT,
  metadata_json TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_bookmarks_owner_id ON bookmarks(owner_id);

CREATE TABLE IF NOT EXISTS transcriptions (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  bookmark_id INTEGER NOT NULL UNIQUE REFERENCES bookmarks(id) ON DELETE CASCADE,
  transcript TEXT,
  asr_summary TEXT,
  sentiment TEXT,
  sentiment_score REAL,
  duration REAL,
  confidence REAL,
  summary TEXT,
  method TEXT,
  status TEXT NOT NULL DEFAULT 'pending',
  error_message TEXT,
  processing_started_at TEXT,
  processing_completed_at TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_transcriptions_status_created ON transcriptions(status, created_at);

CREATE TABLE IF NOT EXISTS web_contents (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  bookmark_id INTEGER NOT NULL UNIQUE REFERENCES bookmarks(id) ON DELETE CASCADE,
  raw_markdown TEXT,
  raw_html TEXT,
  page_title TEXT,
  page_description TEXT,
  language TEXT,
  word_count INTEGER,
  char_count INTEGER,
  estimated_reading_minutes INTEGER,
  summary TEXT,
  metadata_json TEXT,
  status TEXT NOT NULL DEFAULT 'pending',
  error_message TEXT,
  processing_started_at TEXT,
  processing_completed_at TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_web_contents_status_created ON web_contents(status, created_at);

-- owner_key is '' for the global digest so the uniqueness constraint holds
CREATE TABLE IF NOT EXISTS daily_digests (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  digest_date TEXT NOT NULL,
  owner_id TEXT,
  owner_key TEXT NOT NULL DEFAULT '',
  status TEXT NOT NULL DEFAULT 'pending',
  error_message TEXT,
  bookmark_count INTEGER NOT NULL DEFAULT 0,
  sources_breakdown_json TEXT,
  date_range_start TEXT,
  date_range_end TEXT,
  digest_content TEXT,
  total_duration REAL,
  processing_metadata_json TEXT,
  processing_started_at TEXT,
  processing_completed_at TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  UNIQUE(owner_key, digest_date)
);
"""


@dataclass
class DB:
    conn: sqlite3.Connection

    def init(self) -> None:
        self.conn.row_factory = sqlite3.Row
        self.conn.executescript(SCHEMA_SQL)
        self.conn.commit()

    # ==================== Bookmark Methods ====================

    def create_bookmark(
        self,
        *,
        url: str,
        owner_id: str | None = None,
        title: str | None = None,
        source: BookmarkSource = BookmarkSource.WEB,
        client_time: datetime | None = None,
        metadata: dict[str, Any] | None = None,
        created_at: datetime | None = None,
    ) -> Bookmark:
        """Insert a bookmark (ingestion side). Returns the stored bookmark."""
        now = ts(created_at)
        cur = self.conn.execute(
            """
            INSERT INTO bookmarks (owner_id, url, title, source, client_time, metadata_json,
                                   created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                owner_id,
                url,
                title,
                source.value,
                ts(client_time) if client_time else None,
                json.dumps(metadata or {}, ensure_ascii=False),
                now,
                now,
            ),
        )
        bookmark_id = cur.fetchone()[0]
        self.conn.commit()
        bookmark = self.get_bookmark(bookmark_id)
        assert bookmark is not None
        return bookmark

    def get_bookmark(self, bookmark_id: int) -> Bookmark | None:
        cur = self.conn.execute("SELECT * FROM bookmarks WHERE id = ?", (bookmark_id,))
        row = cur.fetchone()
        return Bookmark.from_row(row) if row else None

    def update_bookmark_source(self, bookmark_id: int, source: BookmarkSource) -> None:
        """Set the classified source. Setting the same value twice is harmless."""
        self.conn.execute(
            "UPDATE bookmarks SET source = ?, updated_at = ? WHERE id = ?",
            (source.value, ts(), bookmark_id),
        )
        self.conn.commit()

    def list_owner_ids(self) -> list[str]:
        """All owners that have at least one bookmark."""
        cur = self.conn.execute(
            "SELECT DISTINCT owner_id FROM bookmarks WHERE owner_id IS NOT NULL ORDER BY owner_id"
        )
        return [r[0] for r in cur.fetchall()]

    # ==================== Lifecycle helpers ====================

    def _current_status(self, table: str, where: str, key: Any) -> ProcessingStatus | None:
        cur = self.conn.execute(f"SELECT status FROM {table} WHERE {where} = ?", (key,))
        row = cur.fetchone()
        return ProcessingStatus(row[0]) if row else None

    def _transition(
        self,
        table: str,
        where: str,
        key: Any,
        target: ProcessingStatus,
        *,
        force: bool = False,
        fields: dict[str, Any] | None = None,
    ) -> None:
        """Move a row to `target`, validating the lifecycle.

        The UPDATE is conditioned on the status that was validated, so a
        concurrent writer that moved the row first makes this call fail
        instead of silently overwriting it.
        """
        current = self._current_status(table, where, key)
        if current is None:
            raise LookupError(f"No {table} row for {where}={key}")
        validate_transition(current, target, force=force)

        now = ts()
        sets: dict[str, Any] = dict(fields or {})
        sets["status"] = target.value
        sets["updated_at"] = now
        if target == ProcessingStatus.PROCESSING:
            sets["processing_started_at"] = now
            sets["processing_completed_at"] = None
            sets.setdefault("error_message", None)
        elif target.is_terminal:
            sets["processing_completed_at"] = now

        assignments = ", ".join(f"{col} = ?" for col in sets)
        cur = self.conn.execute(
            f"UPDATE {table} SET {assignments} WHERE {where} = ? AND status = ?",
            (*sets.values(), key, current.value),
        )
        self.conn.commit()
        if cur.rowcount == 0:
            raise InvalidTransitionError(current, target)

    def _fail(self, table: str, where: str, key: Any, error_message: str) -> bool:
        """Mark a row failed. Returns False when the row is already terminal."""
        current = self._current_status(table, where, key)
        if current is None:
            logger.warning(f"Cannot mark missing {table} row {where}={key} as failed")
            return False
        if current.is_terminal:
            logger.warning(
                f"{table} row {where}={key} already {current.value}, "
                f"not recording failure: {error_message}"
            )
            return False
        self._transition(
            table, where, key, ProcessingStatus.FAILED, fields={"error_message": error_message}
        )
        return True

    def _update_fields(self, table: str, where: str, key: Any, fields: dict[str, Any]) -> None:
        fields = {**fields, "updated_at": ts()}
        assignments = ", ".join(f"{col} = ?" for col in fields)
        self.conn.execute(
            f"UPDATE {table} SET {assignments} WHERE {where} = ?",
            (*fields.values(), key),
        )
        self.conn.commit()

    # ==================== Transcription Methods ====================

    def get_transcription(self, bookmark_id: int) -> Transcription | None:
        cur = self.conn.execute(
            "SELECT * FROM transcriptions WHERE bookmark_id = ?", (bookmark_id,)
        )
        row = cur.fetchone()
        return Transcription.from_row(row) if row else None

    def create_pending_transcription(self, bookmark_id: int) -> Transcription:
        """Create the pending row if absent. Returns the (possibly existing) row."""
        now = ts()
        self.conn.execute(
            """
            INSERT INTO transcriptions (bookmark_id, status, created_at, updated_at)
            VALUES (?, 'pending', ?, ?)
            ON CONFLICT(bookmark_id) DO NOTHING
            """,
            (bookmark_id, now, now),
        )
        self.conn.commit()
        row = self.get_transcription(bookmark_id)
        assert row is not None
        return row

    def mark_transcription_processing(self, bookmark_id: int) -> None:
        self._transition("transcriptions", "bookmark_id", bookmark_id, ProcessingStatus.PROCESSING)

    def mark_transcription_failed(self, bookmark_id: int, error_message: str) -> bool:
        return self._fail("transcriptions", "bookmark_id", bookmark_id, error_message)

    def save_direct_transcript(self, bookmark_id: int, *, transcript: str, confidence: float) -> None:
        """Store a transcript produced by the direct-model tier."""
        self._update_fields(
            "transcriptions",
            "bookmark_id",
            bookmark_id,
            {
                "transcript": transcript,
                "confidence": confidence,
                "method": TranscriptionMethod.DIRECT_MODEL.value,
            },
        )

    def save_asr_transcript(
        self,
        bookmark_id: int,
        *,
        transcript: str,
        confidence: float,
        duration: float | None,
        sentiment: str | None,
        sentiment_score: float | None,
        asr_summary: str | None,
    ) -> None:
        """Store a transcript produced by download + speech-to-text."""
        self._update_fields(
            "transcriptions",
            "bookmark_id",
            bookmark_id,
            {
                "transcript": transcript,
                "confidence": confidence,
                "duration": duration,
                "sentiment": sentiment,
                "sentiment_score": sentiment_score,
                "asr_summary": asr_summary,
                "method": TranscriptionMethod.DOWNLOAD_PLUS_ASR.value,
            },
        )

    def complete_transcription(self, bookmark_id: int, summary: str) -> None:
        self._transition(
            "transcriptions",
            "bookmark_id",
            bookmark_id,
            ProcessingStatus.COMPLETED,
            fields={"summary": summary},
        )

    # ==================== Web Content Methods ====================

    def get_web_content(self, bookmark_id: int) -> WebContent | None:
        cur = self.conn.execute(
            "SELECT * FROM web_contents WHERE bookmark_id = ?", (bookmark_id,)
        )
        row = cur.fetchone()
        return WebContent.from_row(row) if row else None

    def create_pending_web_content(self, bookmark_id: int) -> WebContent:
        now = ts()
        self.conn.execute(
            """
            INSERT INTO web_contents (bookmark_id, status, created_at, updated_at)
            VALUES (?, 'pending', ?, ?)
            ON CONFLICT(bookmark_id) DO NOTHING
            """,
            (bookmark_id, now, now),
        )
        self.conn.commit()
        row = self.get_web_content(bookmark_id)
        assert row is not None
        return row

    def mark_web_content_processing(self, bookmark_id: int) -> None:
        self._transition("web_contents", "bookmark_id", bookmark_id, ProcessingStatus.PROCESSING)

    def mark_web_content_failed(self, bookmark_id: int, error_message: str) -> bool:
        return self._fail("web_contents", "bookmark_id", bookmark_id, error_message)

    def save_web_content(
        self,
        bookmark_id: int,
        *,
        raw_markdown: str,
        raw_html: str,
        page_title: str,
        page_description: str,
        language: str,
        word_count: int,
        char_count: int,
        estimated_reading_minutes: int,
        metadata: dict[str, Any],
    ) -> None:
        self._update_fields(
            "web_contents",
            "bookmark_id",
            bookmark_id,
            {
                "raw_markdown": raw_markdown,
                "raw_html": raw_html,
                "page_title": page_title,
                "page_description": page_description,
                "language": language,
                "word_count": word_count,
                "char_count": char_count,
                "estimated_reading_minutes": estimated_reading_minutes,
                "metadata_json": json.dumps(metadata, ensure_ascii=False, default=str),
            },
        )

    def complete_web_content(self, bookmark_id: int, summary: str) -> None:
        self._transition(
            "web_contents",
            "bookmark_id",
            bookmark_id,
            ProcessingStatus.COMPLETED,
            fields={"summary": summary},
        )

    # ==================== Daily Digest Methods ====================

    def get_digest(self, digest_date: date, owner_id: str | None = None) -> DailyDigest | None:
        cur = self.conn.execute(
            "SELECT * FROM daily_digests WHERE digest_date = ? AND owner_key = ?",
            (digest_date.isoformat(), owner_id or ""),
        )
        row = cur.fetchone()
        return DailyDigest.from_row(row) if row else None

    def get_digest_by_id(self, digest_id: int) -> DailyDigest | None:
        cur = self.conn.execute("SELECT * FROM daily_digests WHERE id = ?", (digest_id,))
        row = cur.fetchone()
        return DailyDigest.from_row(row) if row else None

    def create_digest(
        self,
        *,
        digest_date: date,
        owner_id: str | None,
        bookmark_count: int,
        sources_breakdown: dict[str, int],
        date_range_start: datetime,
        date_range_end: datetime,
    ) -> DailyDigest:
        """Create a pending digest row. Fails on a duplicate (owner, date)."""
        now = ts()
        cur = self.conn.execute(
            """
            INSERT INTO daily_digests (
                digest_date, owner_id, owner_key, status, bookmark_count,
                sources_breakdown_json, date_range_start, date_range_end,
                created_at, updated_at
            ) VALUES (?, ?, ?, 'pending', ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                digest_date.isoformat(),
                owner_id,
                owner_id or "",
                bookmark_count,
                json.dumps(sources_breakdown),
                ts(date_range_start),
                ts(date_range_end),
                now,
                now,
            ),
        )
        digest_id = cur.fetchone()[0]
        self.conn.commit()
        digest = self.get_digest_by_id(digest_id)
        assert digest is not None
        return digest

    def reset_digest_metadata(
        self,
        digest_id: int,
        *,
        bookmark_count: int,
        sources_breakdown: dict[str, int],
        date_range_start: datetime,
        date_range_end: datetime,
    ) -> None:
        """Refresh counts on an existing digest before regenerating it."""
        self._update_fields(
            "daily_digests",
            "id",
            digest_id,
            {
                "bookmark_count": bookmark_count,
                "sources_breakdown_json": json.dumps(sources_breakdown),
                "date_range_start": ts(date_range_start),
                "date_range_end": ts(date_range_end),
            },
        )

    def mark_digest_processing(self, digest_id: int, *, force: bool = False) -> None:
        self._transition("daily_digests", "id", digest_id, ProcessingStatus.PROCESSING, force=force)

    def mark_digest_completed(
        self,
        digest_id: int,
        *,
        digest_content: str | None,
        total_duration: float,
        processing_metadata: dict[str, Any],
    ) -> None:
        self._transition(
            "daily_digests",
            "id",
            digest_id,
            ProcessingStatus.COMPLETED,
            fields={
                "digest_content": digest_content,
                "total_duration": total_duration,
                "processing_metadata_json": json.dumps(processing_metadata),
                "error_message": None,
            },
        )

    def mark_digest_failed(self, digest_id: int, error_message: str) -> bool:
        return self._fail("daily_digests", "id", digest_id, error_message)

    def list_digests(
        self, owner_id: str | None = None, limit: int = 20, offset: int = 0
    ) -> tuple[list[DailyDigest], int]:
        """Digests for one owner (or the global digest), newest first."""
        owner_key = owner_id or ""
        cur = self.conn.execute(
            """
            SELECT * FROM daily_digests WHERE owner_key = ?
            ORDER BY digest_date DESC LIMIT ? OFFSET ?
            """,
            (owner_key, limit, offset),
        )
        digests = [DailyDigest.from_row(r) for r in cur.fetchall()]
        cur = self.conn.execute(
            "SELECT COUNT(*) FROM daily_digests WHERE owner_key = ?", (owner_key,)
        )
        return digests, cur.fetchone()[0]

    def get_completed_items_in_range(
        self,
        start: datetime,
        end: datetime,
        owner_id: str | None = None,
    ) -> list[DigestContentItem]:
        """Completed transcriptions and web contents created within [start, end].

        With no owner every bookmark is included (global digest).
        """
        owner_clause = "AND b.owner_id = ?" if owner_id else ""
        params: tuple[Any, ...] = (ts(start), ts(end)) + ((owner_id,) if owner_id else ())

        items: list[DigestContentItem] = []

        cur = self.conn.execute(
            f"""
            SELECT t.bookmark_id, t.summary, t.asr_summary, t.duration, t.sentiment,
                   t.created_at, b.source, b.title
            FROM transcriptions t
            INNER JOIN bookmarks b ON t.bookmark_id = b.id
            WHERE t.status = 'completed'
              AND t.created_at >= ? AND t.created_at <= ?
              {owner_clause}
            ORDER BY t.created_at
            """,
            params,
        )
        for r in cur.fetchall():
            items.append(
                DigestContentItem(
                    bookmark_id=r["bookmark_id"],
                    content_type="audio",
                    summary=r["summary"] or r["asr_summary"] or "No summary available",
                    source=BookmarkSource.parse(r["source"]),
                    created_at=datetime.fromisoformat(r["created_at"]),
                    title=r["title"],
                    duration=r["duration"],
                    sentiment=r["sentiment"],
                )
            )

        cur = self.conn.execute(
            f"""
            SELECT w.bookmark_id, w.summary, w.word_count, w.estimated_reading_minutes,
                   w.page_title, w.created_at, b.source, b.title
            FROM web_contents w
            INNER JOIN bookmarks b ON w.bookmark_id = b.id
            WHERE w.status = 'completed'
              AND w.created_at >= ? AND w.created_at <= ?
              {owner_clause}
            ORDER BY w.created_at
            """,
            params,
        )
        for r in cur.fetchall():
            items.append(
                DigestContentItem(
                    bookmark_id=r["bookmark_id"],
                    content_type="article",
                    summary=r["summary"] or "No summary available",
                    source=BookmarkSource.parse(r["source"]),
                    created_at=datetime.fromisoformat(r["created_at"]),
                    title=r["page_title"] or r["title"],
                    word_count=r["word_count"],
                    reading_minutes=r["estimated_reading_minutes"],
                )
            )

        items.sort(key=lambda i: i.created_at)
        return items


_db: DB | None = None


def connect(db_path: str) -> DB:
    """Open a connection and ensure the schema exists."""
    if db_path != ":memory:":
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    db = DB(conn=conn)
    db.init()
    return db


def init_db() -> None:
    global _db
    s = Settings.from_env()
    _db = connect(s.db_path)


def get_db() -> DB:
    assert _db is not None, "DB not initialized"
    return _db
