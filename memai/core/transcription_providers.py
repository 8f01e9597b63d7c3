"""Speech-to-text providers.

- GeminiDirectTranscriber: the model reads the media URL itself (no download).
- DeepgramTranscriber: transcribes stored audio bytes, with sentiment and a
  short summary from Deepgram's audio intelligence features.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"
GEMINI_TIMEOUT = 120.0
GEMINI_CONFIDENCE = 0.95
MIN_TRANSCRIPT_LENGTH = 10

DEEPGRAM_URL = "https://api.deepgram.com/v1/listen"
DEEPGRAM_TIMEOUT = 600.0
DEEPGRAM_PARAMS = {
    "model": "nova-3",
    "smart_format": "true",
    "punctuate": "true",
    "paragraphs": "true",
    "diarize": "true",
    "sentiment": "true",
    "summarize": "v2",
    "language": "en",
}

DIRECT_TRANSCRIPT_PROMPT = """Please provide a complete, accurate transcript of this video.

Requirements:
1. Include ALL spoken words verbatim
2. Use proper punctuation and paragraph breaks
3. Do NOT include timestamps or speaker labels
4. Do NOT add commentary or analysis

Return ONLY the transcript, nothing else."""


class TranscriptionError(Exception):
    """Error during a transcription API call."""

    def __init__(self, message: str, provider: str, retriable: bool = False):
        super().__init__(message)
        self.provider = provider
        self.retriable = retriable


@dataclass
class DirectTranscript:
    transcript: str
    confidence: float
    processing_ms: int = 0


@dataclass
class AsrTranscript:
    transcript: str
    confidence: float
    duration: float | None = None
    sentiment: str | None = None
    sentiment_score: float | None = None
    summary: str | None = None


def extract_deepgram_result(data: dict[str, Any]) -> AsrTranscript:
    """Pull transcript, confidence, duration, sentiment and summary from a response."""
    results = data.get("results") or {}
    channels = results.get("channels") or []
    alternatives = channels[0].get("alternatives") if channels else None
    if not alternatives:
        raise TranscriptionError("No transcript in Deepgram response", provider="Deepgram")

    best = alternatives[0]
    average = (results.get("sentiments") or {}).get("average") or {}
    summary = results.get("summary") or {}

    return AsrTranscript(
        transcript=best.get("transcript", ""),
        confidence=float(best.get("confidence", 0.0)),
        duration=(data.get("metadata") or {}).get("duration"),
        sentiment=average.get("sentiment"),
        sentiment_score=average.get("sentiment_score"),
        summary=summary.get("short"),
    )


def _status_error(provider: str, e: httpx.HTTPStatusError) -> TranscriptionError:
    status = e.response.status_code
    return TranscriptionError(
        f"{provider} API error: {status} - {e.response.text[:300]}",
        provider=provider,
        retriable=status == 429 or status >= 500,
    )


class GeminiDirectTranscriber:
    """Direct-model tier. Fails closed for private, ineligible or oversized media."""

    name = "Gemini"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float = GEMINI_TIMEOUT,
    ):
        self._api_key = api_key or os.getenv("GEMINI_API_KEY", "").strip()
        self._model = model or os.getenv("GEMINI_MODEL", DEFAULT_GEMINI_MODEL).strip()
        self.timeout = timeout

    async def transcribe(self, media_url: str) -> DirectTranscript:
        if not self._api_key:
            raise TranscriptionError("GEMINI_API_KEY is not set", provider=self.name)

        start = time.monotonic()
        body = {
            "contents": [
                {
                    "parts": [
                        {"text": DIRECT_TRANSCRIPT_PROMPT},
                        {"file_data": {"file_uri": media_url}},
                    ]
                }
            ]
        }
        url = f"https://generativelanguage.googleapis.com/v1beta/models/{self._model}:generateContent"

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, params={"key": self._api_key}, json=body)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            raise TranscriptionError(
                f"Gemini timed out after {self.timeout:g}s", provider=self.name, retriable=True
            ) from e
        except httpx.HTTPStatusError as e:
            raise _status_error(self.name, e) from e
        except httpx.HTTPError as e:
            raise TranscriptionError(
                f"Gemini connection error: {e}", provider=self.name, retriable=True
            ) from e

        candidates = data.get("candidates") or []
        parts = (candidates[0].get("content") or {}).get("parts", []) if candidates else []
        transcript = "".join(p.get("text", "") for p in parts).strip()

        if len(transcript) < MIN_TRANSCRIPT_LENGTH:
            raise TranscriptionError("Empty or invalid transcript received", provider=self.name)

        processing_ms = int((time.monotonic() - start) * 1000)
        logger.info(f"Gemini transcript: {len(transcript)} chars in {processing_ms}ms")
        return DirectTranscript(
            transcript=transcript, confidence=GEMINI_CONFIDENCE, processing_ms=processing_ms
        )


class DeepgramTranscriber:
    name = "Deepgram"

    def __init__(self, api_key: str | None = None, timeout: float = DEEPGRAM_TIMEOUT):
        self._api_key = api_key or os.getenv("DEEPGRAM_API_KEY", "").strip()
        self.timeout = timeout

    async def transcribe(self, audio: bytes, content_type: str = "audio/mpeg") -> AsrTranscript:
        if not self._api_key:
            raise TranscriptionError("DEEPGRAM_API_KEY is not set", provider=self.name)

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    DEEPGRAM_URL,
                    params=DEEPGRAM_PARAMS,
                    headers={
                        "Authorization": f"Token {self._api_key}",
                        "Content-Type": content_type,
                    },
                    content=audio,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            raise TranscriptionError(
                f"Deepgram timed out after {self.timeout:g}s", provider=self.name, retriable=True
            ) from e
        except httpx.HTTPStatusError as e:
            raise _status_error(self.name, e) from e
        except httpx.HTTPError as e:
            raise TranscriptionError(
                f"Deepgram connection error: {e}", provider=self.name, retriable=True
            ) from e

        result = extract_deepgram_result(data)
        logger.info(
            f"Deepgram transcript: {len(result.transcript)} chars, duration {result.duration}s"
        )
        return result
