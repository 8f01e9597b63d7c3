"""Audio acquisition stage (bookmark-source-classified -> audio-transcribed | audio-downloaded).

Per source a strategy entry says how to identify the media, whether a
direct-model transcription tier exists, and how to download the audio for
the fallback tier. Videos try the direct model first and fall back to
download + speech-to-text within the same delivery. Podcasts always
download.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

from memai.core.audio_download import AudioDownloader, DownloadedAudio
from memai.core.classifier import (
    PodcastPlatform,
    build_youtube_url,
    extract_youtube_video_id,
    parse_podcast_url,
)
from memai.core.errors import describe_error, with_timeout
from memai.core.events import (
    AudioDownloadedEvent,
    AudioTranscribedEvent,
    BookmarkSourceClassifiedEvent,
    Channel,
    EventBus,
)
from memai.core.lifecycle import should_process
from memai.core.object_store import ObjectStore, audio_object_key
from memai.core.podcast_resolver import SPOTIFY_UNSUPPORTED_MESSAGE, PodcastResolver
from memai.core.storage import DB
from memai.core.transcription_providers import DirectTranscript
from memai.providers.content_types import AUDIO_SOURCES, BookmarkSource, TranscriptionMethod

logger = logging.getLogger(__name__)

DIRECT_TRANSCRIPTION_TIMEOUT = 120.0
UPLOAD_TIMEOUT = 300.0


class DirectTranscriber(Protocol):
    async def transcribe(self, media_url: str) -> DirectTranscript: ...


class AcquisitionInputError(Exception):
    """The bookmark URL cannot be acquired. Raised before any network call."""


@dataclass(frozen=True)
class AcquisitionTarget:
    identifier: str  # object key suffix: video id, or "podcast"
    media_url: str


def identify_youtube(url: str) -> AcquisitionTarget:
    video_id = extract_youtube_video_id(url)
    if not video_id:
        raise AcquisitionInputError("Invalid YouTube URL: could not extract video ID")
    return AcquisitionTarget(identifier=video_id, media_url=build_youtube_url(video_id))


def identify_podcast(url: str) -> AcquisitionTarget:
    platform = parse_podcast_url(url).platform
    if platform == PodcastPlatform.SPOTIFY:
        raise AcquisitionInputError(SPOTIFY_UNSUPPORTED_MESSAGE)
    if platform == PodcastPlatform.UNKNOWN:
        raise AcquisitionInputError(f"Unsupported podcast URL format: {url}")
    return AcquisitionTarget(identifier="podcast", media_url=url)


async def download_youtube(
    stage: AudioAcquisitionProcessor, target: AcquisitionTarget, bookmark_id: int
) -> DownloadedAudio:
    return await stage.downloader.download_video(target.media_url, target.identifier)


async def download_podcast(
    stage: AudioAcquisitionProcessor, target: AcquisitionTarget, bookmark_id: int
) -> DownloadedAudio:
    episode = await stage.resolver.resolve(target.media_url)
    logger.info(
        f"Bookmark {bookmark_id}: episode '{episode.matched_title}' -> {episode.audio_url}"
    )
    return await stage.downloader.download_podcast(episode.audio_url, bookmark_id)


@dataclass(frozen=True)
class AcquisitionStrategy:
    identify: Callable[[str], AcquisitionTarget]
    has_direct_tier: bool
    download: Callable[
        [AudioAcquisitionProcessor, AcquisitionTarget, int], Awaitable[DownloadedAudio]
    ]


STRATEGIES: dict[BookmarkSource, AcquisitionStrategy] = {
    BookmarkSource.YOUTUBE: AcquisitionStrategy(
        identify=identify_youtube, has_direct_tier=True, download=download_youtube
    ),
    BookmarkSource.PODCAST: AcquisitionStrategy(
        identify=identify_podcast, has_direct_tier=False, download=download_podcast
    ),
}


class AudioAcquisitionProcessor:
    name = "audio-acquisition-processor"

    def __init__(
        self,
        db: DB,
        bus: EventBus,
        store: ObjectStore,
        downloader: AudioDownloader,
        resolver: PodcastResolver,
        direct_transcriber: DirectTranscriber | None = None,
        direct_timeout: float = DIRECT_TRANSCRIPTION_TIMEOUT,
        strategies: dict[BookmarkSource, AcquisitionStrategy] | None = None,
    ):
        self.db = db
        self.bus = bus
        self.store = store
        self.downloader = downloader
        self.resolver = resolver
        self.direct_transcriber = direct_transcriber
        self.direct_timeout = direct_timeout
        self.strategies = strategies if strategies is not None else STRATEGIES

    async def handle(self, event: BookmarkSourceClassifiedEvent) -> None:
        bookmark_id = event.bookmark_id

        if event.source not in AUDIO_SOURCES:
            logger.debug(f"Skipping audio acquisition for bookmark {bookmark_id}: {event.source.value}")
            return

        existing = self.db.get_transcription(bookmark_id)
        if not should_process(existing.status if existing else None):
            logger.warning(
                f"Transcription for bookmark {bookmark_id} already {existing.status.value}, skipping"
            )
            return
        if existing is None:
            self.db.create_pending_transcription(bookmark_id)

        strategy = self.strategies.get(event.source)
        if strategy is None:
            self.db.mark_transcription_failed(
                bookmark_id, f"Unsupported source for audio acquisition: {event.source.value}"
            )
            return

        try:
            target = strategy.identify(event.url)
        except AcquisitionInputError as e:
            logger.error(f"Bookmark {bookmark_id}: {e}")
            self.db.mark_transcription_failed(bookmark_id, str(e))
            return

        self.db.mark_transcription_processing(bookmark_id)

        direct_error: str | None = None
        if strategy.has_direct_tier and self.direct_transcriber is not None:
            try:
                result = await with_timeout(
                    self.direct_transcriber.transcribe(target.media_url),
                    self.direct_timeout,
                    "Direct transcription",
                )
            except Exception as e:
                direct_error = describe_error(e)
                logger.warning(
                    f"Direct transcription failed for bookmark {bookmark_id} ({direct_error}), "
                    "falling back to download"
                )
            else:
                await self._hand_off_transcript(event, result)
                return

        await self._download_and_hand_off(event, strategy, target, direct_error)

    async def _hand_off_transcript(
        self, event: BookmarkSourceClassifiedEvent, result: DirectTranscript
    ) -> None:
        bookmark_id = event.bookmark_id
        try:
            self.db.save_direct_transcript(
                bookmark_id, transcript=result.transcript, confidence=result.confidence
            )
            message_id = await self.bus.publish(
                Channel.AUDIO_TRANSCRIBED,
                AudioTranscribedEvent(
                    bookmark_id=bookmark_id, transcript=result.transcript, source=event.source
                ),
            )
        except Exception as e:
            logger.exception(f"Direct transcript hand-off failed for bookmark {bookmark_id}")
            self.db.mark_transcription_failed(bookmark_id, f"Transcription failed: {describe_error(e)}")
            return
        logger.info(
            f"Bookmark {bookmark_id} transcribed directly ({len(result.transcript)} chars, "
            f"message {message_id})"
        )

    async def _download_and_hand_off(
        self,
        event: BookmarkSourceClassifiedEvent,
        strategy: AcquisitionStrategy,
        target: AcquisitionTarget,
        direct_error: str | None,
    ) -> None:
        bookmark_id = event.bookmark_id
        key = audio_object_key(bookmark_id, target.identifier)
        audio: DownloadedAudio | None = None
        uploaded = False

        try:
            audio = await strategy.download(self, target, bookmark_id)
            data = await asyncio.to_thread(audio.read_bytes)
            await with_timeout(
                self.store.put(key, data, audio.content_type), UPLOAD_TIMEOUT, "Audio upload"
            )
            uploaded = True

            metadata: dict[str, Any] = {
                "method": TranscriptionMethod.DOWNLOAD_PLUS_ASR.value,
                "identifier": target.identifier,
                "content_type": audio.content_type,
                "size": audio.size,
            }
            if direct_error:
                metadata["direct_error"] = direct_error

            message_id = await self.bus.publish(
                Channel.AUDIO_DOWNLOADED,
                AudioDownloadedEvent(
                    bookmark_id=bookmark_id, audio_key=key, source=event.source, metadata=metadata
                ),
            )
            logger.info(f"Bookmark {bookmark_id} audio stored as {key} (message {message_id})")

        except Exception as e:
            logger.exception(f"Audio acquisition failed for bookmark {bookmark_id}")
            self.db.mark_transcription_failed(bookmark_id, f"Audio download failed: {describe_error(e)}")
            if uploaded:
                await self._remove_object(key)

        finally:
            if audio is not None:
                audio.cleanup()

    async def _remove_object(self, key: str) -> None:
        """Best-effort delete; a failure here must not hide the original error."""
        try:
            await self.store.remove(key)
            logger.info(f"Removed orphaned object {key}")
        except Exception as e:
            logger.warning(f"Failed to remove orphaned object {key}: {e}")
