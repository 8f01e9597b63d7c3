"""Speech-to-text stage for downloaded audio (audio-downloaded -> audio-transcribed)."""

from __future__ import annotations

import logging
from typing import Protocol

from memai.core.errors import describe_error, with_timeout
from memai.core.events import AudioDownloadedEvent, AudioTranscribedEvent, Channel, EventBus
from memai.core.lifecycle import ProcessingStatus
from memai.core.object_store import ObjectStore
from memai.core.storage import DB
from memai.core.transcription_providers import AsrTranscript

logger = logging.getLogger(__name__)

ASR_TIMEOUT = 900.0
OBJECT_READ_TIMEOUT = 300.0


class SpeechToText(Protocol):
    async def transcribe(self, audio: bytes, content_type: str = "audio/mpeg") -> AsrTranscript: ...


class AudioTranscriptionProcessor:
    name = "audio-transcription-processor"

    def __init__(
        self,
        db: DB,
        bus: EventBus,
        store: ObjectStore,
        asr: SpeechToText,
        timeout: float = ASR_TIMEOUT,
    ):
        self.db = db
        self.bus = bus
        self.store = store
        self.asr = asr
        self.timeout = timeout

    async def handle(self, event: AudioDownloadedEvent) -> None:
        bookmark_id = event.bookmark_id
        key = event.audio_key

        row = self.db.get_transcription(bookmark_id)
        if row is None or row.status != ProcessingStatus.PROCESSING or row.transcript:
            status = row.status.value if row else "missing"
            logger.info(f"Skipping transcription for bookmark {bookmark_id} ({status}), already handled")
            return

        try:
            audio = await with_timeout(self.store.get(key), OBJECT_READ_TIMEOUT, "Audio read")
            content_type = event.metadata.get("content_type", "audio/mpeg")
            result = await with_timeout(
                self.asr.transcribe(audio, content_type), self.timeout, "Speech-to-text"
            )
            if not result.transcript.strip():
                raise ValueError("Speech-to-text returned an empty transcript")

            self.db.save_asr_transcript(
                bookmark_id,
                transcript=result.transcript,
                confidence=result.confidence,
                duration=result.duration,
                sentiment=result.sentiment,
                sentiment_score=result.sentiment_score,
                asr_summary=result.summary,
            )
            await self._remove_object(key)

            message_id = await self.bus.publish(
                Channel.AUDIO_TRANSCRIBED,
                AudioTranscribedEvent(
                    bookmark_id=bookmark_id, transcript=result.transcript, source=event.source
                ),
            )
            logger.info(
                f"Bookmark {bookmark_id} transcribed ({len(result.transcript)} chars, "
                f"duration {result.duration}s, message {message_id})"
            )

        except Exception as e:
            logger.exception(f"Transcription failed for bookmark {bookmark_id}")
            self.db.mark_transcription_failed(bookmark_id, f"Transcription failed: {describe_error(e)}")
            await self._remove_object(key)

    async def _remove_object(self, key: str) -> None:
        try:
            await self.store.remove(key)
        except Exception as e:
            logger.warning(f"Failed to remove audio object {key}: {e}")
