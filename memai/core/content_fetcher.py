"""Content fetcher for extracting article text from URLs.

Uses trafilatura for content extraction and BeautifulSoup for the page
metadata trafilatura does not cover. Transient failures are retried with
exponential backoff plus jitter.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

import httpx
import trafilatura
from bs4 import BeautifulSoup
from trafilatura.settings import use_config

from memai.core.errors import OperationTimeoutError, with_timeout

logger = logging.getLogger(__name__)


class FetchErrorType(str, Enum):
    """Classification of fetch errors for retry strategy."""

    TIMEOUT = "timeout"  # Retriable
    RATE_LIMITED = "rate_limited"  # Retriable (429)
    HTTP_4XX = "http_4xx"  # Not retriable (404, 403, etc.)
    HTTP_5XX = "http_5xx"  # Retriable (server error)
    CONNECTION_ERROR = "connection_error"  # Retriable
    NO_CONTENT = "no_content"  # Not retriable
    EXTRACTION_FAILED = "extraction_failed"  # Not retriable


RETRIABLE_ERRORS = {
    FetchErrorType.TIMEOUT,
    FetchErrorType.RATE_LIMITED,
    FetchErrorType.HTTP_5XX,
    FetchErrorType.CONNECTION_ERROR,
}

# Maximum content size to fetch (10MB)
MAX_CONTENT_SIZE = 10 * 1024 * 1024

USER_AGENT = "Mozilla/5.0 (compatible; Memai/1.0)"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 10.0  # seconds
    jitter_ratio: float = 0.25
    attempt_timeout: float = 30.0  # seconds


DEFAULT_RETRY_POLICY = RetryPolicy()


def base_backoff_delay(attempt: int, policy: RetryPolicy = DEFAULT_RETRY_POLICY) -> float:
    """Delay after failed `attempt` (1-based), before jitter."""
    return min(policy.max_delay, policy.base_delay * 2 ** (attempt - 1))


def compute_backoff_delay(
    attempt: int,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    rand: Callable[[], float] = random.random,
) -> float:
    """Capped exponential delay plus 0-25% jitter of the capped value."""
    delay = base_backoff_delay(attempt, policy)
    return delay + rand() * policy.jitter_ratio * delay


@dataclass
class ExtractedContent:
    """Cleaned page content and metadata."""

    url: str
    markdown: str
    html: str
    title: str | None = None
    description: str | None = None
    language: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def word_count(self) -> int:
        return len(self.markdown.split())


@dataclass
class FetchResult:
    """Result of a single fetch attempt."""

    success: bool
    content: ExtractedContent | None = None
    error_type: FetchErrorType | None = None
    error_message: str | None = None
    http_status: int | None = None

    @property
    def retriable(self) -> bool:
        """Whether this error can be retried."""
        return self.error_type in RETRIABLE_ERRORS if self.error_type else False


class ExtractionError(Exception):
    """Content could not be extracted from a URL."""

    def __init__(
        self,
        message: str,
        error_type: FetchErrorType | None = None,
        attempts: int = 1,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.attempts = attempts

    @property
    def retriable(self) -> bool:
        return self.error_type in RETRIABLE_ERRORS if self.error_type else False


def _page_metadata(html: str) -> dict[str, Any]:
    """Title, description, language and misc metadata of an HTML page."""
    meta: dict[str, Any] = {}

    doc = trafilatura.extract_metadata(html)
    if doc is not None:
        for key in ("title", "author", "description", "sitename", "date", "hostname", "url"):
            value = getattr(doc, key, None)
            if value:
                meta[key] = value

    soup = BeautifulSoup(html, "lxml")

    if "title" not in meta:
        og_title = soup.find("meta", property="og:title")
        if og_title and og_title.get("content"):
            meta["title"] = og_title["content"].strip()
        elif soup.title and soup.title.string:
            meta["title"] = soup.title.string.strip()

    if "description" not in meta:
        desc = soup.find("meta", attrs={"name": "description"}) or soup.find(
            "meta", property="og:description"
        )
        if desc and desc.get("content"):
            meta["description"] = desc["content"].strip()

    if soup.html and soup.html.get("lang"):
        meta["language"] = soup.html["lang"].split("-")[0].lower()

    return meta


def _status_failure(response: httpx.Response) -> FetchResult | None:
    """Failed result for an error status or an oversized declared body."""
    status = response.status_code

    if status == 429:
        return FetchResult(
            success=False,
            error_type=FetchErrorType.RATE_LIMITED,
            error_message="Rate limited: 429",
            http_status=429,
        )

    if status >= 500:
        return FetchResult(
            success=False,
            error_type=FetchErrorType.HTTP_5XX,
            error_message=f"Server error: {status}",
            http_status=status,
        )

    if status >= 400:
        return FetchResult(
            success=False,
            error_type=FetchErrorType.HTTP_4XX,
            error_message=f"Client error: {status}",
            http_status=status,
        )

    content_length = response.headers.get("content-length")
    if content_length and int(content_length) > MAX_CONTENT_SIZE:
        return FetchResult(
            success=False,
            error_type=FetchErrorType.EXTRACTION_FAILED,
            error_message=f"Content too large: {content_length} bytes",
            http_status=status,
        )

    return None


class ContentFetcher:
    """Extracts article content from URLs with bounded retry."""

    def __init__(
        self,
        policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.policy = policy
        self._sleep = sleep

        # Extraction runs in an executor thread; trafilatura's signal-based
        # timeout only works on the main thread.
        self._config = use_config()
        self._config.set("DEFAULT", "EXTRACTION_TIMEOUT", "0")

        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.policy.attempt_timeout),
                follow_redirects=True,
                headers={
                    "User-Agent": USER_AGENT,
                    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                    "Accept-Language": "en-US,en;q=0.9",
                },
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _fetch_and_extract(self, url: str) -> FetchResult:
        client = await self._get_client()
        async with client.stream("GET", url) as response:
            failure = _status_failure(response)
            if failure is not None:
                return failure

            body = bytearray()
            async for chunk in response.aiter_bytes():
                body.extend(chunk)
                if len(body) > MAX_CONTENT_SIZE:
                    return FetchResult(
                        success=False,
                        error_type=FetchErrorType.EXTRACTION_FAILED,
                        error_message=f"Content too large: over {MAX_CONTENT_SIZE} bytes",
                        http_status=response.status_code,
                    )
            html = bytes(body).decode(response.encoding or "utf-8", errors="replace")

        return await self._extract(url, html, response.status_code)

    async def _extract(self, url: str, html: str, http_status: int) -> FetchResult:
        # trafilatura is CPU-bound
        loop = asyncio.get_running_loop()
        markdown = await loop.run_in_executor(
            None,
            lambda: trafilatura.extract(
                html,
                config=self._config,
                output_format="markdown",
                include_comments=False,
                include_tables=True,
                favor_recall=True,
            ),
        )

        if not markdown:
            return FetchResult(
                success=False,
                error_type=FetchErrorType.NO_CONTENT,
                error_message="No content could be extracted",
                http_status=http_status,
            )

        meta = await loop.run_in_executor(None, _page_metadata, html)

        return FetchResult(
            success=True,
            content=ExtractedContent(
                url=url,
                markdown=markdown,
                html=html,
                title=meta.get("title"),
                description=meta.get("description"),
                language=meta.get("language"),
                metadata=meta,
            ),
            http_status=http_status,
        )

    async def fetch(self, url: str) -> FetchResult:
        """One attempt, bounded by the per-attempt timeout. Never raises."""
        try:
            return await with_timeout(
                self._fetch_and_extract(url), self.policy.attempt_timeout, f"Fetching {url}"
            )

        except (OperationTimeoutError, httpx.TimeoutException) as e:
            return FetchResult(
                success=False,
                error_type=FetchErrorType.TIMEOUT,
                error_message=str(e) or f"Request timed out after {self.policy.attempt_timeout:g}s",
            )

        except httpx.TransportError as e:
            return FetchResult(
                success=False,
                error_type=FetchErrorType.CONNECTION_ERROR,
                error_message=f"Connection error: {e}",
            )

        except Exception as e:
            logger.exception(f"Unexpected error fetching {url}")
            return FetchResult(
                success=False,
                error_type=FetchErrorType.EXTRACTION_FAILED,
                error_message=f"Unexpected error: {type(e).__name__}: {e}",
            )

    async def extract(self, url: str) -> ExtractedContent:
        """Fetch with retry. Raises ExtractionError carrying the last attempt's error."""
        result = FetchResult(success=False)
        attempt = 0

        for attempt in range(1, self.policy.max_attempts + 1):
            result = await self.fetch(url)
            if result.success and result.content is not None:
                if attempt > 1:
                    logger.info(f"Extracted {url} on attempt {attempt}")
                return result.content

            if not result.retriable or attempt == self.policy.max_attempts:
                break

            delay = compute_backoff_delay(attempt, self.policy)
            logger.warning(
                f"Extraction attempt {attempt}/{self.policy.max_attempts} for {url} failed "
                f"({result.error_message}), retrying in {delay:.2f}s"
            )
            await self._sleep(delay)

        raise ExtractionError(
            result.error_message or "Extraction failed",
            error_type=result.error_type,
            attempts=attempt,
        )
