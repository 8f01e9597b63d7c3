"""Wires the enrichment stages onto one event bus.

Stages receive their capabilities explicitly; `build_pipeline` picks the
production implementations unless fakes are passed in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from memai.core.audio_acquisition import AudioAcquisitionProcessor, DirectTranscriber
from memai.core.audio_download import AudioDownloader
from memai.core.audio_transcription import AudioTranscriptionProcessor, SpeechToText
from memai.core.classifier import ClassificationProcessor
from memai.core.content_extraction import ArticleExtractor, ContentExtractionProcessor
from memai.core.content_fetcher import ContentFetcher
from memai.core.digest_pipeline import DigestAggregator
from memai.core.events import BookmarkCreatedEvent, Channel, EventBus, non_critical
from memai.core.llm_providers import LLMProvider, get_chat_provider
from memai.core.object_store import ObjectStore, get_object_store
from memai.core.podcast_resolver import PodcastResolver
from memai.core.settings import Settings
from memai.core.storage import DB
from memai.core.summarizer import ContentSummaryProcessor, TranscriptSummaryProcessor
from memai.core.transcription_providers import DeepgramTranscriber, GeminiDirectTranscriber
from memai.providers.content_types import Bookmark, BookmarkSource

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    db: DB
    bus: EventBus
    digests: DigestAggregator
    extractor: ArticleExtractor

    async def close(self) -> None:
        """Let in-flight deliveries finish, then release the extractor's HTTP client."""
        await self.bus.drain()
        close = getattr(self.extractor, "close", None)
        if close is not None:
            await close()

    async def submit_bookmark(
        self,
        url: str,
        owner_id: str | None = None,
        title: str | None = None,
        source: BookmarkSource = BookmarkSource.WEB,
        client_time: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Bookmark:
        """Store a bookmark and start enrichment.

        Publishing is a non-critical side effect: the bookmark is saved even
        when the event cannot be published.
        """
        bookmark = self.db.create_bookmark(
            url=url,
            owner_id=owner_id,
            title=title,
            source=source,
            client_time=client_time,
            metadata=metadata,
        )
        message_id = await non_critical(
            self.bus.publish(
                Channel.BOOKMARK_CREATED,
                BookmarkCreatedEvent(
                    bookmark_id=bookmark.id, url=bookmark.url, source=bookmark.source, title=title
                ),
            ),
            f"publish of {Channel.BOOKMARK_CREATED.value} for bookmark {bookmark.id}",
        )
        if message_id:
            logger.info(f"Bookmark {bookmark.id} submitted (message {message_id})")
        return bookmark


def build_pipeline(
    db: DB,
    settings: Settings | None = None,
    *,
    bus: EventBus | None = None,
    summary_llm: LLMProvider | None = None,
    digest_llm: LLMProvider | None = None,
    store: ObjectStore | None = None,
    extractor: ArticleExtractor | None = None,
    downloader: AudioDownloader | None = None,
    resolver: PodcastResolver | None = None,
    direct_transcriber: DirectTranscriber | None = None,
    asr: SpeechToText | None = None,
) -> Pipeline:
    s = settings or Settings.from_env()
    bus = bus or EventBus(
        max_delivery_attempts=s.bus_max_delivery_attempts,
        redelivery_delay=s.bus_redelivery_delay,
    )
    # Stages make a single attempt per event; the bus owns redelivery
    summary_llm = summary_llm or get_chat_provider(s.llm_provider, s.summary_model, max_retries=1)
    digest_llm = digest_llm or get_chat_provider(s.llm_provider, s.digest_model, max_retries=1)
    store = store or get_object_store(s)

    classifier = ClassificationProcessor(db, bus)
    acquisition = AudioAcquisitionProcessor(
        db,
        bus,
        store,
        downloader=downloader or AudioDownloader(),
        resolver=resolver or PodcastResolver(),
        direct_transcriber=direct_transcriber or GeminiDirectTranscriber(),
    )
    transcription = AudioTranscriptionProcessor(db, bus, store, asr=asr or DeepgramTranscriber())
    extractor = extractor or ContentFetcher()
    extraction = ContentExtractionProcessor(db, bus, extractor=extractor)
    content_summary = ContentSummaryProcessor(db, summary_llm)
    transcript_summary = TranscriptSummaryProcessor(db, summary_llm)

    bus.subscribe(Channel.BOOKMARK_CREATED, classifier.name, classifier.handle)
    bus.subscribe(Channel.BOOKMARK_SOURCE_CLASSIFIED, acquisition.name, acquisition.handle)
    bus.subscribe(Channel.BOOKMARK_SOURCE_CLASSIFIED, extraction.name, extraction.handle)
    bus.subscribe(Channel.AUDIO_DOWNLOADED, transcription.name, transcription.handle)
    bus.subscribe(Channel.AUDIO_TRANSCRIBED, transcript_summary.name, transcript_summary.handle)
    bus.subscribe(Channel.CONTENT_EXTRACTED, content_summary.name, content_summary.handle)

    digests = DigestAggregator(db, digest_llm, tz_name=s.digest_timezone)
    return Pipeline(db=db, bus=bus, digests=digests, extractor=extractor)
