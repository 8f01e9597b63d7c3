"""Daily Digest - one consolidated narrative per owner and calendar day.

Flow:
1. Compute the day's boundaries in the reference timezone (default: yesterday).
2. Return an existing digest unless regeneration is forced.
3. Collect completed transcriptions and web contents created that day.
4. Create (or restart) the digest row, then map-reduce the item summaries.
   Zero items still yields a completed digest with no content.

Usage:
    aggregator = DigestAggregator(db, get_chat_provider(model="gpt-4.1"))
    digest = await aggregator.generate(date(2025, 1, 14), owner_id="user-1")
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from datetime import date, datetime, time as dtime, timedelta, timezone
from typing import Any, Callable
from zoneinfo import ZoneInfo

from memai.core.errors import describe_error, with_timeout
from memai.core.lifecycle import ProcessingStatus
from memai.core.llm_providers import LLMError, LLMProvider
from memai.core.prompts import PromptTemplate, get_prompt
from memai.core.storage import DB
from memai.providers.content_types import SOURCE_DISPLAY_NAMES, DailyDigest, DigestContentItem

logger = logging.getLogger(__name__)

MAP_BATCH_TOKEN_LIMIT = 30000
MAX_MAP_LEVELS = 3
CHARS_PER_TOKEN = 4
DIGEST_CALL_TIMEOUT = 180.0
SUMMARIZATION_STRATEGY = "map-reduce"


class DigestGenerationError(Exception):
    """A single digest could not be generated. The row is marked failed."""


class DigestBatchError(Exception):
    """Every owner in a batch run failed."""

    def __init__(self, message: str, report: dict[str, Any]):
        super().__init__(message)
        self.report = report


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def digest_date_range(digest_date: date, tz: ZoneInfo | timezone) -> tuple[datetime, datetime]:
    """First and last instant of `digest_date` in `tz`, as UTC datetimes."""
    start = datetime.combine(digest_date, dtime.min, tzinfo=tz)
    end = datetime.combine(digest_date, dtime.max, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def yesterday(now: datetime, tz: ZoneInfo | timezone) -> date:
    return (now.astimezone(tz) - timedelta(days=1)).date()


def sources_breakdown(items: list[DigestContentItem]) -> dict[str, int]:
    breakdown: dict[str, int] = {}
    for item in items:
        breakdown[item.source.value] = breakdown.get(item.source.value, 0) + 1
    return breakdown


def total_duration(items: list[DigestContentItem]) -> float:
    return float(sum(item.duration or 0 for item in items if item.content_type == "audio"))


def format_item_note(number: int, item: DigestContentItem) -> str:
    """One item's note for the LLM: header line plus its summary."""
    parts = [f"[{number}] {SOURCE_DISPLAY_NAMES.get(item.source, item.source.value)}"]
    if item.title:
        parts.append(item.title)
    if item.content_type == "audio" and item.duration:
        parts.append(f"{round(item.duration / 60)} min listen")
    elif item.reading_minutes:
        parts.append(f"{item.reading_minutes} min read")
    if item.sentiment:
        parts.append(f"sentiment: {item.sentiment}")
    return " | ".join(parts) + "\n" + item.summary.strip()


def batch_notes(notes: list[str], token_limit: int = MAP_BATCH_TOKEN_LIMIT) -> list[list[str]]:
    """Group notes in order so each batch stays within `token_limit` estimated tokens.

    A note larger than the limit forms a batch of its own.
    """
    batches: list[list[str]] = []
    current: list[str] = []
    current_tokens = 0
    for note in notes:
        tokens = estimate_tokens(note)
        if current and current_tokens + tokens > token_limit:
            batches.append(current)
            current, current_tokens = [], 0
        current.append(note)
        current_tokens += tokens
    if current:
        batches.append(current)
    return batches


class DigestAggregator:
    def __init__(
        self,
        db: DB,
        llm: LLMProvider,
        tz_name: str = "UTC",
        batch_token_limit: int = MAP_BATCH_TOKEN_LIMIT,
        call_timeout: float = DIGEST_CALL_TIMEOUT,
        clock: Callable[[], datetime] | None = None,
    ):
        self.db = db
        self.llm = llm
        self.tz = ZoneInfo(tz_name)
        self.batch_token_limit = batch_token_limit
        self.call_timeout = call_timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def default_date(self) -> date:
        return yesterday(self._clock(), self.tz)

    # ==================== Single digest ====================

    async def generate(
        self,
        digest_date: date | None = None,
        owner_id: str | None = None,
        force: bool = False,
    ) -> DailyDigest:
        """Generate (or return) the digest for (owner, date).

        Raises:
            DigestGenerationError: generation failed; the row is marked failed.
        """
        digest_date = digest_date or self.default_date()
        owner_label = owner_id or "global"

        existing = self.db.get_digest(digest_date, owner_id)
        if existing and not force:
            logger.info(
                f"Digest {existing.id} for {owner_label} on {digest_date} exists "
                f"({existing.status.value}), returning it"
            )
            return existing
        if existing and existing.status == ProcessingStatus.PROCESSING:
            logger.warning(f"Digest {existing.id} is being generated, not restarting it")
            return existing

        start, end = digest_date_range(digest_date, self.tz)
        items = self.db.get_completed_items_in_range(start, end, owner_id)
        breakdown = sources_breakdown(items)
        duration = total_duration(items)
        logger.info(
            f"Digest for {owner_label} on {digest_date}: {len(items)} items, sources {breakdown}"
        )

        if existing:
            self.db.reset_digest_metadata(
                existing.id,
                bookmark_count=len(items),
                sources_breakdown=breakdown,
                date_range_start=start,
                date_range_end=end,
            )
            self.db.mark_digest_processing(existing.id, force=True)
            digest_id = existing.id
        else:
            digest = self.db.create_digest(
                digest_date=digest_date,
                owner_id=owner_id,
                bookmark_count=len(items),
                sources_breakdown=breakdown,
                date_range_start=start,
                date_range_end=end,
            )
            self.db.mark_digest_processing(digest.id)
            digest_id = digest.id

        started = time.monotonic()
        try:
            content, batch_count = await self._map_reduce(items, digest_date)
            self.db.mark_digest_completed(
                digest_id,
                digest_content=content,
                total_duration=duration,
                processing_metadata={
                    "model_used": self.llm.model_id,
                    "summarization_strategy": SUMMARIZATION_STRATEGY,
                    "processing_duration_ms": int((time.monotonic() - started) * 1000),
                    "item_count": len(items),
                    "batch_count": batch_count,
                },
            )
        except Exception as e:
            message = describe_error(e)
            logger.exception(f"Digest {digest_id} for {owner_label} on {digest_date} failed")
            self.db.mark_digest_failed(digest_id, message)
            raise DigestGenerationError(f"Failed to generate daily digest: {message}") from e

        result = self.db.get_digest_by_id(digest_id)
        assert result is not None
        logger.info(f"Digest {digest_id} completed ({len(items)} items)")
        return result

    # ==================== Map-reduce ====================

    async def _complete(self, prompt: PromptTemplate, operation: str, **values: Any) -> str:
        response = await with_timeout(
            self.llm.chat(
                messages=[{"role": "user", "content": prompt.render(**values)}],
                temperature=prompt.temperature,
                max_tokens=prompt.max_tokens,
            ),
            self.call_timeout,
            operation,
        )
        content = (response.content or "").strip()
        if not content:
            raise LLMError(f"{operation} returned no content", provider=self.llm.name)
        return content

    async def _map_reduce(
        self, items: list[DigestContentItem], digest_date: date
    ) -> tuple[str | None, int]:
        """Returns (narrative, number of map batches). No items -> (None, 0)."""
        if not items:
            return None, 0

        map_prompt = get_prompt("digest_map")
        reduce_prompt = get_prompt("digest_reduce")
        assert map_prompt is not None and reduce_prompt is not None

        notes = [format_item_note(i, item) for i, item in enumerate(items, start=1)]
        batches = batch_notes(notes, self.batch_token_limit)
        batch_count = len(batches)

        level = 0
        while len(batches) > 1 and level < MAX_MAP_LEVELS:
            level += 1
            logger.info(f"Condensing {len(notes)} notes in {len(batches)} batches (level {level})")
            notes = list(
                await asyncio.gather(
                    *(
                        self._complete(map_prompt, "Digest map", batch_notes="\n\n".join(batch))
                        for batch in batches
                    )
                )
            )
            batches = batch_notes(notes, self.batch_token_limit)

        audio_count = sum(1 for i in items if i.content_type == "audio")
        content = await self._complete(
            reduce_prompt,
            "Digest reduce",
            digest_date=digest_date.isoformat(),
            total_items=len(items),
            audio_count=audio_count,
            article_count=len(items) - audio_count,
            notes="\n\n".join(notes),
        )
        return content, batch_count

    # ==================== Batch over owners ====================

    async def generate_for_all_owners(
        self, digest_date: date | None = None, force: bool = False
    ) -> dict[str, Any]:
        """One digest per known owner. A failing owner does not stop the others.

        Raises:
            DigestBatchError: only if every owner failed.
        """
        digest_date = digest_date or self.default_date()
        owners = self.db.list_owner_ids()
        results: list[dict[str, Any]] = []

        for owner_id in owners:
            try:
                digest = await self.generate(digest_date, owner_id, force=force)
                results.append(
                    {
                        "owner_id": owner_id,
                        "success": True,
                        "digest_id": digest.id,
                        "status": digest.status.value,
                        "bookmark_count": digest.bookmark_count,
                    }
                )
            except Exception as e:
                logger.error(f"Digest for owner {owner_id} on {digest_date} failed: {e}")
                results.append({"owner_id": owner_id, "success": False, "error": describe_error(e)})

        succeeded = sum(1 for r in results if r["success"])
        report = {
            "digest_date": digest_date.isoformat(),
            "total": len(owners),
            "succeeded": succeeded,
            "failed": len(owners) - succeeded,
            "results": results,
        }
        logger.info(
            f"Digest batch for {digest_date}: {succeeded}/{len(owners)} succeeded"
        )

        if owners and succeeded == 0:
            raise DigestBatchError(
                f"All {len(owners)} digests failed for {digest_date}", report=report
            )
        return report

    async def trigger(
        self,
        digest_date: date | None = None,
        owner_id: str | None = None,
        force_regenerate: bool = False,
    ) -> dict[str, Any]:
        """Manual entry point: one owner when given, otherwise every owner."""
        if owner_id:
            digest = await self.generate(digest_date, owner_id, force=force_regenerate)
            return {"digest": digest.to_dict()}
        return await self.generate_for_all_owners(digest_date, force=force_regenerate)


async def generate_yesterdays_digests(aggregator: DigestAggregator) -> dict[str, Any]:
    """Daily cron target."""
    return await aggregator.generate_for_all_owners(aggregator.default_date())
