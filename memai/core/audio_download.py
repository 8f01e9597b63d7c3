"""Audio downloads: yt-dlp for videos, streamed HTTP for podcast enclosures.

Every download lands in its own temporary directory, which the caller
removes with `DownloadedAudio.cleanup()` whatever the outcome.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx
import yt_dlp

from memai.core.errors import with_timeout

logger = logging.getLogger(__name__)

MAX_AUDIO_SIZE = 500 * 1024 * 1024  # 500MB
PODCAST_DOWNLOAD_TIMEOUT = 120.0
VIDEO_DOWNLOAD_TIMEOUT = 600.0

AUDIO_CONTENT_TYPES = {
    ".m4a": "audio/mp4",
    ".mp4": "audio/mp4",
    ".mp3": "audio/mpeg",
    ".webm": "audio/webm",
    ".opus": "audio/ogg",
    ".ogg": "audio/ogg",
    ".wav": "audio/wav",
}


class AudioDownloadError(Exception):
    def __init__(self, message: str, retriable: bool = False):
        super().__init__(message)
        self.retriable = retriable


@dataclass
class DownloadedAudio:
    path: Path
    content_type: str
    size: int
    title: str | None = None
    duration: float | None = None

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()

    def cleanup(self) -> None:
        shutil.rmtree(self.path.parent, ignore_errors=True)


def _check_size(size: int, max_size: int) -> None:
    if size == 0:
        raise AudioDownloadError("Downloaded audio file is empty")
    if size > max_size:
        raise AudioDownloadError(
            f"Audio file too large: {size / 1024 / 1024:.1f}MB (max {max_size / 1024 / 1024:.0f}MB)"
        )


class AudioDownloader:
    def __init__(
        self,
        temp_root: str | None = None,
        max_size: int = MAX_AUDIO_SIZE,
        video_timeout: float = VIDEO_DOWNLOAD_TIMEOUT,
        podcast_timeout: float = PODCAST_DOWNLOAD_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.temp_root = temp_root
        self.max_size = max_size
        self.video_timeout = video_timeout
        self.podcast_timeout = podcast_timeout
        self._client = client

    def _temp_dir(self, prefix: str) -> Path:
        return Path(tempfile.mkdtemp(prefix=prefix, dir=self.temp_root))

    # ==================== Video (yt-dlp) ====================

    def _download_with_ytdlp(self, url: str, ydl_opts: dict[str, Any]) -> dict[str, Any]:
        """Blocking; run in executor."""
        try:
            with yt_dlp.YoutubeDL(ydl_opts) as ydl:
                return ydl.extract_info(url, download=True) or {}
        except yt_dlp.utils.DownloadError as e:
            raise AudioDownloadError(f"yt-dlp failed: {e}") from e

    async def download_video(self, video_url: str, video_id: str) -> DownloadedAudio:
        """Download the best audio stream of a video."""
        temp_dir = self._temp_dir(f"{video_id}-")
        ydl_opts = {
            "format": "bestaudio[ext=m4a]/bestaudio/best",
            "outtmpl": str(temp_dir / f"{video_id}.%(ext)s"),
            "noplaylist": True,
            "quiet": True,
            "no_warnings": True,
            "max_filesize": self.max_size,
        }

        try:
            loop = asyncio.get_running_loop()
            info = await with_timeout(
                loop.run_in_executor(None, self._download_with_ytdlp, video_url, ydl_opts),
                self.video_timeout,
                "Video audio download",
            )

            files = [p for p in temp_dir.iterdir() if p.is_file() and not p.name.endswith(".part")]
            if not files:
                raise AudioDownloadError(f"Download produced no audio file for {video_id}")
            path = files[0]
            size = path.stat().st_size
            _check_size(size, self.max_size)
        except Exception:
            shutil.rmtree(temp_dir, ignore_errors=True)
            raise

        logger.info(f"Downloaded audio for {video_id}: {size / 1024 / 1024:.1f}MB")
        return DownloadedAudio(
            path=path,
            content_type=AUDIO_CONTENT_TYPES.get(path.suffix.lower(), "audio/mpeg"),
            size=size,
            title=info.get("title"),
            duration=info.get("duration"),
        )

    # ==================== Podcast (HTTP) ====================

    async def _stream_to_file(self, client: httpx.AsyncClient, audio_url: str, path: Path) -> int:
        size = 0
        async with client.stream("GET", audio_url, follow_redirects=True) as response:
            if response.status_code >= 400:
                raise AudioDownloadError(
                    f"Audio download failed: HTTP {response.status_code}",
                    retriable=response.status_code >= 500 or response.status_code == 429,
                )
            declared = response.headers.get("content-length")
            if declared and int(declared) > self.max_size:
                _check_size(int(declared), self.max_size)

            with path.open("wb") as fh:
                async for chunk in response.aiter_bytes():
                    size += len(chunk)
                    if size > self.max_size:
                        _check_size(size, self.max_size)
                    fh.write(chunk)
        return size

    async def download_podcast(self, audio_url: str, bookmark_id: int) -> DownloadedAudio:
        parsed = urlparse(audio_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise AudioDownloadError(
                f"Unsupported audio URL: {audio_url}. Only HTTP(S) allowed."
            )

        temp_dir = self._temp_dir(f"podcast-{bookmark_id}-")
        path = temp_dir / "episode.mp3"

        try:
            if self._client is not None:
                download = self._stream_to_file(self._client, audio_url, path)
                size = await with_timeout(download, self.podcast_timeout, "Podcast audio download")
            else:
                async with httpx.AsyncClient(timeout=self.podcast_timeout) as client:
                    size = await with_timeout(
                        self._stream_to_file(client, audio_url, path),
                        self.podcast_timeout,
                        "Podcast audio download",
                    )
            _check_size(size, self.max_size)
        except httpx.HTTPError as e:
            shutil.rmtree(temp_dir, ignore_errors=True)
            raise AudioDownloadError(f"Audio download failed: {e}", retriable=True) from e
        except Exception:
            shutil.rmtree(temp_dir, ignore_errors=True)
            raise

        logger.info(f"Downloaded podcast audio for bookmark {bookmark_id}: {size / 1024 / 1024:.1f}MB")
        return DownloadedAudio(path=path, content_type="audio/mpeg", size=size)
