"""Tests for object_store.py, audio_download.py and transcription_providers.py"""

import httpx
import pytest

from memai.core.audio_download import AudioDownloadError, AudioDownloader
from memai.core.object_store import LocalObjectStore, ObjectStoreError, audio_object_key
from memai.core.transcription_providers import TranscriptionError, extract_deepgram_result


class TestObjectKey:
    def test_key_format(self):
        assert audio_object_key(12, "dQw4w9WgXcQ") == "audio-12-dQw4w9WgXcQ"
        assert audio_object_key(12, "podcast") == "audio-12-podcast"


@pytest.mark.asyncio
class TestLocalObjectStore:
    async def test_put_get_remove(self, tmp_path):
        store = LocalObjectStore(str(tmp_path / "objects"))
        await store.put("audio-1-x", b"data", "audio/mpeg")

        assert await store.exists("audio-1-x")
        assert await store.get("audio-1-x") == b"data"

        await store.remove("audio-1-x")
        assert not await store.exists("audio-1-x")

    async def test_remove_missing_is_noop(self, tmp_path):
        await LocalObjectStore(str(tmp_path)).remove("audio-9-none")

    async def test_get_missing(self, tmp_path):
        with pytest.raises(ObjectStoreError):
            await LocalObjectStore(str(tmp_path)).get("audio-9-none")

    async def test_rejects_path_keys(self, tmp_path):
        with pytest.raises(ObjectStoreError):
            await LocalObjectStore(str(tmp_path)).put("../escape", b"x", "audio/mpeg")


class TestDeepgramResult:
    def test_extracts_fields(self):
        data = {
            "metadata": {"duration": 321.5},
            "results": {
                "channels": [{"alternatives": [{"transcript": "hello there", "confidence": 0.93}]}],
                "sentiments": {"average": {"sentiment": "positive", "sentiment_score": 0.42}},
                "summary": {"short": "A greeting."},
            },
        }
        result = extract_deepgram_result(data)
        assert result.transcript == "hello there"
        assert result.confidence == 0.93
        assert result.duration == 321.5
        assert result.sentiment == "positive"
        assert result.sentiment_score == 0.42
        assert result.summary == "A greeting."

    def test_optional_intelligence_missing(self):
        data = {"results": {"channels": [{"alternatives": [{"transcript": "hi", "confidence": 0.5}]}]}}
        result = extract_deepgram_result(data)
        assert result.sentiment is None
        assert result.summary is None
        assert result.duration is None

    def test_no_alternatives(self):
        with pytest.raises(TranscriptionError):
            extract_deepgram_result({"results": {"channels": []}})


@pytest.mark.asyncio
class TestPodcastDownload:
    def _downloader(self, tmp_path, handler, max_size=1024):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return AudioDownloader(temp_root=str(tmp_path), max_size=max_size, client=client)

    async def test_streams_to_temp_file(self, tmp_path):
        downloader = self._downloader(tmp_path, lambda r: httpx.Response(200, content=b"a" * 100))
        audio = await downloader.download_podcast("https://cdn.example.com/ep.mp3", 5)

        assert audio.size == 100
        assert audio.read_bytes() == b"a" * 100
        audio.cleanup()
        assert not audio.path.parent.exists()

    async def test_rejects_non_http_scheme(self, tmp_path):
        downloader = self._downloader(tmp_path, lambda r: httpx.Response(200))
        with pytest.raises(AudioDownloadError, match="Only HTTP"):
            await downloader.download_podcast("file:///etc/passwd", 5)

    async def test_enforces_size_limit(self, tmp_path):
        downloader = self._downloader(tmp_path, lambda r: httpx.Response(200, content=b"a" * 2048))
        with pytest.raises(AudioDownloadError, match="too large"):
            await downloader.download_podcast("https://cdn.example.com/ep.mp3", 5)
        assert list(tmp_path.iterdir()) == []

    async def test_http_error_status(self, tmp_path):
        downloader = self._downloader(tmp_path, lambda r: httpx.Response(404))
        with pytest.raises(AudioDownloadError, match="HTTP 404"):
            await downloader.download_podcast("https://cdn.example.com/ep.mp3", 5)
