"""Tests for audio_acquisition.py and audio_transcription.py"""

import pytest
from conftest import FakeAsr, FakeDirectTranscriber, FakeDownloader, FakeResolver, FakeStore

from memai.core.audio_acquisition import (
    AcquisitionInputError,
    AudioAcquisitionProcessor,
    identify_podcast,
    identify_youtube,
)
from memai.core.audio_transcription import AudioTranscriptionProcessor
from memai.core.events import AudioDownloadedEvent, BookmarkSourceClassifiedEvent, Channel
from memai.core.lifecycle import ProcessingStatus
from memai.core.podcast_resolver import SPOTIFY_UNSUPPORTED_MESSAGE, PodcastResolutionError
from memai.providers.content_types import BookmarkSource, TranscriptionMethod

VIDEO_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
PODCAST_URL = "https://podcasts.apple.com/us/podcast/some-show/id1234567890"


class TestIdentify:
    def test_youtube(self):
        target = identify_youtube("https://youtu.be/dQw4w9WgXcQ")
        assert target.identifier == "dQw4w9WgXcQ"
        assert target.media_url == VIDEO_URL

    def test_youtube_invalid(self):
        with pytest.raises(AcquisitionInputError, match="could not extract video ID"):
            identify_youtube("https://www.youtube.com/channel/xyz")

    def test_podcast_spotify_rejected(self):
        with pytest.raises(AcquisitionInputError) as exc:
            identify_podcast("https://open.spotify.com/episode/abc123")
        assert str(exc.value) == SPOTIFY_UNSUPPORTED_MESSAGE

    def test_podcast_unknown_rejected(self):
        with pytest.raises(AcquisitionInputError, match="Unsupported podcast URL format"):
            identify_podcast("https://example.com/episode")

    def test_podcast_identifier(self):
        assert identify_podcast(PODCAST_URL).identifier == "podcast"


class Harness:
    """Acquisition + transcription stages wired on one bus with recording fakes."""

    def __init__(
        self, db, bus, tmp_path, *, direct=None, downloader=None, store=None, asr=None, resolver=None, **options
    ):
        self.db = db
        self.bus = bus
        self.store = store or FakeStore()
        self.downloader = downloader or FakeDownloader(tmp_path)
        self.resolver = resolver or FakeResolver()
        self.direct = direct or FakeDirectTranscriber()
        self.asr = asr or FakeAsr()
        self.transcribed = []
        self.downloaded = []

        self.acquisition = AudioAcquisitionProcessor(
            db,
            bus,
            self.store,
            downloader=self.downloader,
            resolver=self.resolver,
            direct_transcriber=self.direct,
            **options,
        )
        self.transcription = AudioTranscriptionProcessor(db, bus, self.store, asr=self.asr)

        async def on_downloaded(event):
            self.downloaded.append(event)
            await self.transcription.handle(event)

        async def on_transcribed(event):
            self.transcribed.append(event)

        bus.subscribe(Channel.AUDIO_DOWNLOADED, "transcription", on_downloaded)
        bus.subscribe(Channel.AUDIO_TRANSCRIBED, "capture", on_transcribed)

    async def run(self, bookmark, source):
        await self.acquisition.handle(
            BookmarkSourceClassifiedEvent(bookmark_id=bookmark.id, source=source, url=bookmark.url)
        )
        await self.bus.drain()


@pytest.fixture
def video(db):
    return db.create_bookmark(url=VIDEO_URL, owner_id="u1", source=BookmarkSource.YOUTUBE)


@pytest.fixture
def podcast(db):
    return db.create_bookmark(url=PODCAST_URL, owner_id="u1", source=BookmarkSource.PODCAST)


@pytest.mark.asyncio
class TestVideoAcquisition:
    async def test_direct_tier_success_skips_download(self, db, bus, tmp_path, video):
        h = Harness(db, bus, tmp_path)
        await h.run(video, BookmarkSource.YOUTUBE)

        row = db.get_transcription(video.id)
        assert row.status == ProcessingStatus.PROCESSING
        assert row.method == TranscriptionMethod.DIRECT_MODEL
        assert row.transcript == "Direct transcript of the video."
        assert h.direct.calls == [VIDEO_URL]
        assert h.downloader.video_calls == []
        assert h.store.put_calls == []
        assert len(h.transcribed) == 1

    async def test_direct_failure_falls_back_to_download_and_asr(self, db, bus, tmp_path, video):
        h = Harness(db, bus, tmp_path, direct=FakeDirectTranscriber(error=RuntimeError("model refused")))
        await h.run(video, BookmarkSource.YOUTUBE)

        key = f"audio-{video.id}-dQw4w9WgXcQ"
        assert h.store.put_calls == [key]
        assert h.downloaded[0].audio_key == key
        assert h.downloaded[0].metadata["direct_error"] == "model refused"
        assert h.downloaded[0].metadata["method"] == "download-plus-asr"

        row = db.get_transcription(video.id)
        assert row.method == TranscriptionMethod.DOWNLOAD_PLUS_ASR
        assert row.transcript == "Speech to text transcript."
        assert row.duration == 1800.0
        assert key in h.store.removed
        assert key not in h.store.objects
        assert len(h.transcribed) == 1

    async def test_direct_timeout_falls_back_once_in_same_delivery(self, db, bus, tmp_path, video):
        h = Harness(db, bus, tmp_path, direct=FakeDirectTranscriber(delay=5.0), direct_timeout=0.05)
        await h.run(video, BookmarkSource.YOUTUBE)

        key = f"audio-{video.id}-dQw4w9WgXcQ"
        assert h.direct.calls == [VIDEO_URL]
        assert h.downloader.video_calls == [(VIDEO_URL, "dQw4w9WgXcQ")]
        assert h.store.put_calls == [key]
        assert h.downloaded[0].metadata["method"] == "download-plus-asr"
        assert h.downloaded[0].metadata["direct_error"]
        assert db.get_transcription(video.id).method == TranscriptionMethod.DOWNLOAD_PLUS_ASR
        assert bus.dead_letters == []

    async def test_invalid_url_fails_before_any_call(self, db, bus, tmp_path):
        b = db.create_bookmark(url="https://www.youtube.com/channel/xyz", owner_id="u1")
        h = Harness(db, bus, tmp_path)
        await h.run(b, BookmarkSource.YOUTUBE)

        row = db.get_transcription(b.id)
        assert row.status == ProcessingStatus.FAILED
        assert row.error_message == "Invalid YouTube URL: could not extract video ID"
        assert h.direct.calls == []
        assert h.downloader.video_calls == []

    async def test_download_failure_marks_failed(self, db, bus, tmp_path, video):
        h = Harness(
            db,
            bus,
            tmp_path,
            direct=FakeDirectTranscriber(error=RuntimeError("nope")),
            downloader=FakeDownloader(tmp_path, error=RuntimeError("video unavailable")),
        )
        await h.run(video, BookmarkSource.YOUTUBE)

        row = db.get_transcription(video.id)
        assert row.status == ProcessingStatus.FAILED
        assert row.error_message == "Audio download failed: video unavailable"
        assert h.store.put_calls == []

    async def test_publish_failure_after_upload_removes_object(self, db, bus, tmp_path, video, monkeypatch):
        h = Harness(db, bus, tmp_path, direct=FakeDirectTranscriber(error=RuntimeError("nope")))

        async def broken_publish(channel, event):
            raise RuntimeError("bus unavailable")

        monkeypatch.setattr(bus, "publish", broken_publish)
        await h.acquisition.handle(
            BookmarkSourceClassifiedEvent(bookmark_id=video.id, source=BookmarkSource.YOUTUBE, url=video.url)
        )

        key = f"audio-{video.id}-dQw4w9WgXcQ"
        assert h.store.removed == [key]
        assert h.store.objects == {}
        assert db.get_transcription(video.id).error_message == "Audio download failed: bus unavailable"

    async def test_cleanup_failure_does_not_mask_original_error(self, db, bus, tmp_path, video, monkeypatch):
        store = FakeStore(fail_remove=True)
        h = Harness(db, bus, tmp_path, store=store, direct=FakeDirectTranscriber(error=RuntimeError("nope")))

        async def broken_publish(channel, event):
            raise RuntimeError("bus unavailable")

        monkeypatch.setattr(bus, "publish", broken_publish)
        await h.acquisition.handle(
            BookmarkSourceClassifiedEvent(bookmark_id=video.id, source=BookmarkSource.YOUTUBE, url=video.url)
        )

        row = db.get_transcription(video.id)
        assert row.status == ProcessingStatus.FAILED
        assert row.error_message == "Audio download failed: bus unavailable"

    async def test_temp_files_are_cleaned_up(self, db, bus, tmp_path, video):
        h = Harness(db, bus, tmp_path, direct=FakeDirectTranscriber(error=RuntimeError("nope")))
        await h.run(video, BookmarkSource.YOUTUBE)
        assert not (tmp_path / "dQw4w9WgXcQ").exists()

    async def test_replay_is_idempotent(self, db, bus, tmp_path, video):
        h = Harness(db, bus, tmp_path)
        await h.run(video, BookmarkSource.YOUTUBE)
        await h.run(video, BookmarkSource.YOUTUBE)

        assert len(h.direct.calls) == 1
        assert len(h.transcribed) == 1
        count = db.conn.execute("SELECT COUNT(*) FROM transcriptions").fetchone()[0]
        assert count == 1

    async def test_textual_source_is_ignored(self, db, bus, tmp_path, bookmark):
        h = Harness(db, bus, tmp_path)
        await h.run(bookmark, BookmarkSource.BLOG)
        assert db.get_transcription(bookmark.id) is None


@pytest.mark.asyncio
class TestPodcastAcquisition:
    async def test_podcast_always_downloads(self, db, bus, tmp_path, podcast):
        h = Harness(db, bus, tmp_path)
        await h.run(podcast, BookmarkSource.PODCAST)

        assert h.direct.calls == []
        assert h.resolver.calls == [PODCAST_URL]
        assert h.downloader.podcast_calls == [("https://cdn.example.com/ep1.mp3", podcast.id)]
        assert h.store.put_calls == [f"audio-{podcast.id}-podcast"]
        assert db.get_transcription(podcast.id).method == TranscriptionMethod.DOWNLOAD_PLUS_ASR
        assert len(h.transcribed) == 1

    async def test_resolution_failure_is_recorded(self, db, bus, tmp_path, podcast):
        resolver = FakeResolver(error=PodcastResolutionError("No episodes found in RSS feed"))
        h = Harness(db, bus, tmp_path, resolver=resolver)
        await h.run(podcast, BookmarkSource.PODCAST)

        row = db.get_transcription(podcast.id)
        assert row.status == ProcessingStatus.FAILED
        assert row.error_message == "Audio download failed: No episodes found in RSS feed"

    async def test_spotify_fails_fast(self, db, bus, tmp_path):
        b = db.create_bookmark(url="https://open.spotify.com/episode/abc123", owner_id="u1")
        h = Harness(db, bus, tmp_path)
        await h.run(b, BookmarkSource.PODCAST)

        assert db.get_transcription(b.id).error_message == SPOTIFY_UNSUPPORTED_MESSAGE
        assert h.resolver.calls == []


@pytest.mark.asyncio
class TestAudioTranscriptionProcessor:
    async def _downloaded(self, db, video, store):
        db.create_pending_transcription(video.id)
        db.mark_transcription_processing(video.id)
        key = f"audio-{video.id}-dQw4w9WgXcQ"
        await store.put(key, b"bytes", "audio/mp4")
        return AudioDownloadedEvent(
            bookmark_id=video.id,
            audio_key=key,
            source=BookmarkSource.YOUTUBE,
            metadata={"content_type": "audio/mp4"},
        )

    async def test_asr_failure_marks_failed_and_removes_object(self, db, bus, video):
        store = FakeStore()
        event = await self._downloaded(db, video, store)
        await AudioTranscriptionProcessor(db, bus, store, asr=FakeAsr(error=RuntimeError("asr down"))).handle(event)

        row = db.get_transcription(video.id)
        assert row.status == ProcessingStatus.FAILED
        assert row.error_message == "Transcription failed: asr down"
        assert store.objects == {}

    async def test_replay_after_transcript_is_skipped(self, db, bus, video):
        store = FakeStore()
        event = await self._downloaded(db, video, store)
        asr = FakeAsr()
        processor = AudioTranscriptionProcessor(db, bus, store, asr=asr)
        await processor.handle(event)
        await processor.handle(event)
        await bus.drain()

        assert len(asr.calls) == 1
