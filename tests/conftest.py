"""Shared fixtures and in-memory fakes for the pipeline capabilities."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from memai.core.audio_download import DownloadedAudio
from memai.core.events import EventBus
from memai.core.llm_providers import ChatResponse, LLMProvider
from memai.core.object_store import ObjectStore, ObjectStoreError
from memai.core.podcast_resolver import ResolvedEpisode
from memai.core.storage import DB, connect
from memai.core.transcription_providers import AsrTranscript, DirectTranscript


class FakeLLM(LLMProvider):
    def __init__(self, reply: str = "A short summary.", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.calls: list[dict] = []

    @property
    def name(self) -> str:
        return "Fake"

    @property
    def model_id(self) -> str:
        return "gpt-4.1"

    async def chat(self, messages, temperature=0.7, max_tokens=None):
        self.calls.append({"messages": messages, "temperature": temperature, "max_tokens": max_tokens})
        if self.error:
            raise self.error
        return ChatResponse(
            content=self.reply,
            model=self.model_id,
            tokens_input=10,
            tokens_output=5,
            finish_reason="stop",
            latency_ms=1,
        )


class FakeStore(ObjectStore):
    def __init__(self, fail_put: bool = False, fail_remove: bool = False):
        self.objects: dict[str, bytes] = {}
        self.put_calls: list[str] = []
        self.removed: list[str] = []
        self.fail_put = fail_put
        self.fail_remove = fail_remove

    async def put(self, key, data, content_type):
        self.put_calls.append(key)
        if self.fail_put:
            raise ObjectStoreError("bucket unavailable")
        self.objects[key] = data

    async def get(self, key):
        if key not in self.objects:
            raise ObjectStoreError(f"Object not found: {key}")
        return self.objects[key]

    async def remove(self, key):
        self.removed.append(key)
        if self.fail_remove:
            raise ObjectStoreError("delete refused")
        self.objects.pop(key, None)

    async def exists(self, key):
        return key in self.objects


class FakeDownloader:
    def __init__(self, tmp_path: Path, error: Exception | None = None):
        self.tmp_path = tmp_path
        self.error = error
        self.video_calls: list[tuple[str, str]] = []
        self.podcast_calls: list[tuple[str, int]] = []

    def _audio(self, name: str) -> DownloadedAudio:
        folder = self.tmp_path / name
        folder.mkdir(parents=True, exist_ok=True)
        path = folder / "audio.m4a"
        path.write_bytes(b"fake-audio-bytes")
        return DownloadedAudio(path=path, content_type="audio/mp4", size=16)

    async def download_video(self, video_url, video_id):
        self.video_calls.append((video_url, video_id))
        if self.error:
            raise self.error
        return self._audio(video_id)

    async def download_podcast(self, audio_url, bookmark_id):
        self.podcast_calls.append((audio_url, bookmark_id))
        if self.error:
            raise self.error
        return self._audio(f"podcast-{bookmark_id}")


class FakeResolver:
    def __init__(self, audio_url: str = "https://cdn.example.com/ep1.mp3", error: Exception | None = None):
        self.audio_url = audio_url
        self.error = error
        self.calls: list[str] = []

    async def resolve(self, url):
        self.calls.append(url)
        if self.error:
            raise self.error
        return ResolvedEpisode(
            feed_url="https://example.com/feed.xml",
            audio_url=self.audio_url,
            searched_title="",
            matched_title="Episode 1",
        )


class FakeDirectTranscriber:
    def __init__(
        self,
        transcript: str = "Direct transcript of the video.",
        error: Exception | None = None,
        delay: float = 0.0,
    ):
        self.transcript = transcript
        self.error = error
        self.delay = delay
        self.calls: list[str] = []

    async def transcribe(self, media_url):
        self.calls.append(media_url)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return DirectTranscript(transcript=self.transcript, confidence=0.95)


class FakeAsr:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[bytes] = []

    async def transcribe(self, audio, content_type="audio/mpeg"):
        self.calls.append(audio)
        if self.error:
            raise self.error
        return AsrTranscript(
            transcript="Speech to text transcript.",
            confidence=0.91,
            duration=1800.0,
            sentiment="positive",
            sentiment_score=0.4,
            summary="Short ASR summary.",
        )


@pytest.fixture
def db() -> DB:
    return connect(":memory:")


@pytest.fixture
def bus() -> EventBus:
    return EventBus(max_delivery_attempts=2, redelivery_delay=0)


@pytest.fixture
def bookmark(db):
    return db.create_bookmark(url="https://example.com/post", owner_id="user-1", title="A post")
