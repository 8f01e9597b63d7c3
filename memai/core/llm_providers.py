"""Chat model providers used for summaries and digests (OpenAI GPT-4.1 family)."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

# Rate-limit retries. Pipeline stages pass max_retries=1 (one attempt per event).
MAX_RETRIES = 5
INITIAL_DELAY = 2.0  # seconds
MAX_DELAY = 60.0  # seconds

CHAT_TIMEOUT = 120.0

OPENAI_CHAT_MODELS = frozenset({"gpt-4.1-nano", "gpt-4.1-mini", "gpt-4.1", "gpt-4o-mini"})

DEFAULT_SUMMARY_MODEL = "gpt-4.1-mini"


@dataclass
class ChatResponse:
    """Response from a chat completion."""

    content: str
    model: str
    tokens_input: int
    tokens_output: int
    finish_reason: str
    latency_ms: int


class LLMError(Exception):
    """Error during LLM API call."""

    def __init__(self, message: str, provider: str, retriable: bool = False):
        super().__init__(message)
        self.provider = provider
        self.retriable = retriable


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def model_id(self) -> str:
        ...

    @abstractmethod
    async def chat(
        self,
        messages: list[dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> ChatResponse:
        """Send a chat completion request.

        Args:
            messages: List of message dicts with 'role' and 'content' keys.
            temperature: Sampling temperature (0-2).
            max_tokens: Max tokens to generate (None = model default).

        Raises:
            LLMError: If the API call fails.
        """
        ...

    async def summarize(
        self,
        text: str,
        max_tokens: int,
        system_prompt: str,
        temperature: float = 0.3,
    ) -> str:
        """Summarize `text` within an output budget of `max_tokens`."""
        response = await self.chat(
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": text},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        content = (response.content or "").strip()
        if not content:
            raise LLMError("Empty completion returned", provider=self.name, retriable=True)
        return content


class OpenAIChatProvider(LLMProvider):
    """OpenAI Chat/Completion provider using the REST API."""

    def __init__(
        self,
        model: str = DEFAULT_SUMMARY_MODEL,
        api_key: str | None = None,
        max_retries: int = MAX_RETRIES,
    ):
        """Initialize OpenAI provider.

        Args:
            model: Model ID (gpt-4.1, gpt-4.1-mini, gpt-4.1-nano, gpt-4o-mini).
            api_key: Optional API key. Falls back to OPENAI_API_KEY env var.
            max_retries: Attempts on rate limits (1 = single attempt).
        """
        if model not in OPENAI_CHAT_MODELS:
            raise ValueError(
                f"Unknown OpenAI model: {model}. Available: {sorted(OPENAI_CHAT_MODELS)}"
            )

        self._model = model
        self._api_key = api_key or os.getenv("OPENAI_API_KEY", "").strip()
        self._max_retries = max(1, max_retries)

    @property
    def name(self) -> str:
        return "OpenAI"

    @property
    def model_id(self) -> str:
        return self._model

    async def chat(
        self,
        messages: list[dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> ChatResponse:
        if not self._api_key:
            raise LLMError("OPENAI_API_KEY is not set", provider=self.name, retriable=False)

        async with httpx.AsyncClient(timeout=CHAT_TIMEOUT) as client:
            delay = INITIAL_DELAY
            last_error: Exception | None = None

            for attempt in range(self._max_retries):
                start_time = time.monotonic()
                try:
                    request_body: dict[str, Any] = {
                        "model": self._model,
                        "messages": messages,
                        "temperature": temperature,
                    }
                    if max_tokens:
                        request_body["max_tokens"] = max_tokens

                    response = await client.post(
                        "https://api.openai.com/v1/chat/completions",
                        headers={
                            "Authorization": f"Bearer {self._api_key}",
                            "Content-Type": "application/json",
                        },
                        json=request_body,
                    )
                    response.raise_for_status()
                    data = response.json()

                    latency_ms = int((time.monotonic() - start_time) * 1000)
                    choice = data["choices"][0]
                    usage = data.get("usage") or {}

                    return ChatResponse(
                        content=choice["message"]["content"] or "",
                        model=data.get("model", self._model),
                        tokens_input=usage.get("prompt_tokens", 0),
                        tokens_output=usage.get("completion_tokens", 0),
                        finish_reason=choice.get("finish_reason", ""),
                        latency_ms=latency_ms,
                    )

                except httpx.TimeoutException as e:
                    raise LLMError(
                        f"OpenAI request timed out after {CHAT_TIMEOUT:g}s",
                        provider=self.name,
                        retriable=True,
                    ) from e

                except httpx.HTTPStatusError as e:
                    last_error = e
                    status = e.response.status_code
                    if status == 429:
                        if "quota" in e.response.text.lower():
                            raise LLMError(
                                "OpenAI quota exhausted",
                                provider=self.name,
                                retriable=False,
                            ) from e
                        if attempt + 1 >= self._max_retries:
                            break
                        logger.warning(
                            f"Rate limit hit, attempt {attempt + 1}/{self._max_retries}. "
                            f"Waiting {delay:.1f}s..."
                        )
                        await asyncio.sleep(delay)
                        delay = min(delay * 2, MAX_DELAY)

                    elif status == 401:
                        raise LLMError(
                            "OpenAI API key rejected", provider=self.name, retriable=False
                        ) from e

                    elif status == 404:
                        raise LLMError(
                            f"Model '{self._model}' is not available",
                            provider=self.name,
                            retriable=False,
                        ) from e

                    else:
                        raise LLMError(
                            f"OpenAI API error: {status} - {e.response.text}",
                            provider=self.name,
                            retriable=status >= 500,
                        ) from e

                except httpx.HTTPError as e:
                    raise LLMError(
                        f"OpenAI connection error: {e}", provider=self.name, retriable=True
                    ) from e

            raise LLMError(
                f"Rate limit not cleared after {self._max_retries} attempt(s)",
                provider=self.name,
                retriable=True,
            ) from last_error


def get_chat_provider(
    provider_name: str = "openai",
    model: str | None = None,
    max_retries: int = MAX_RETRIES,
) -> LLMProvider:
    """Factory function to get an LLM provider.

    Raises:
        ValueError: If provider or model is unknown.
    """
    provider_name = provider_name.lower()

    if provider_name == "openai":
        return OpenAIChatProvider(model=model or DEFAULT_SUMMARY_MODEL, max_retries=max_retries)

    raise ValueError(f"Unknown provider: {provider_name}. Available: openai")
