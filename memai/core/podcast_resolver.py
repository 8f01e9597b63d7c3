"""Resolve a podcast episode or show URL to a direct audio file URL.

Feed discovery depends on the URL shape (direct RSS, Apple show id, Google
base64 feed). The episode title is scraped from the page's OpenGraph tags
and fuzzy-matched against the feed entries; without a title the most
recent entry is used.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Any

import feedparser
import httpx
from bs4 import BeautifulSoup

from memai.core.classifier import PodcastPlatform, parse_podcast_url
from memai.core.errors import OperationTimeoutError, with_timeout

logger = logging.getLogger(__name__)

ITUNES_LOOKUP_URL = "https://itunes.apple.com/lookup"

FEED_FETCH_TIMEOUT = 30.0
TITLE_SCRAPE_TIMEOUT = 10.0

# SequenceMatcher / token-overlap score in [0, 1]
MIN_MATCH_SCORE = 0.75

# Ignored when counting shared words between titles
STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "do", "for", "from",
        "how", "in", "is", "it", "of", "on", "or", "the", "to", "what", "why",
        "with", "you", "your",
    }
)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

SPOTIFY_UNSUPPORTED_MESSAGE = (
    "Spotify podcasts are not supported - Spotify does not provide direct audio access via their API"
)

_TITLE_SUFFIX = re.compile(r"\s*[-–|]\s*[^-–|]+\s*(podcast|show)\s*$", re.IGNORECASE)
_WORD = re.compile(r"\w+")


class PodcastResolutionError(Exception):
    """The episode could not be resolved to an audio URL."""

    def __init__(self, message: str, retriable: bool = False):
        super().__init__(message)
        self.retriable = retriable


@dataclass(frozen=True)
class FeedEpisode:
    title: str
    audio_url: str | None
    published: str | None = None


@dataclass(frozen=True)
class ResolvedEpisode:
    feed_url: str
    audio_url: str
    searched_title: str
    matched_title: str
    score: float | None = None


def clean_episode_title(title: str) -> str:
    """Drop a trailing "- Some Show Podcast" / "| The ... Show" suffix."""
    return _TITLE_SUFFIX.sub("", title).strip()


def _normalize(text: str) -> str:
    return " ".join(_WORD.findall(text.lower()))


def title_match_score(query: str, candidate: str) -> float:
    """Similarity of two titles in [0, 1].

    The better of the character-level ratio and the share of the query's
    content words found in the candidate, so a short scraped title still
    matches a feed title carrying an episode number prefix. Stopwords are
    not counted as shared words.
    """
    q, c = _normalize(query), _normalize(candidate)
    if not q or not c:
        return 0.0
    ratio = SequenceMatcher(None, q, c).ratio()
    q_words = [w for w in q.split() if w not in STOPWORDS]
    if not q_words:
        return ratio
    c_words = set(c.split())
    overlap = sum(1 for w in q_words if w in c_words) / len(q_words)
    return max(ratio, overlap)


def _entry_audio_url(entry: Any) -> str | None:
    enclosures = entry.get("enclosures") or []
    for enc in enclosures:
        if str(enc.get("type", "")).startswith("audio/"):
            return enc.get("href") or enc.get("url")
    if enclosures:
        return enclosures[0].get("href") or enclosures[0].get("url")
    for link in entry.get("links") or []:
        if link.get("rel") == "enclosure" or str(link.get("type", "")).startswith("audio/"):
            return link.get("href")
    return None


def parse_feed(content: bytes | str) -> list[FeedEpisode]:
    """Episodes of a feed in document order (most recent first for podcasts)."""
    parsed = feedparser.parse(content)
    if parsed.bozo and not parsed.entries:
        raise PodcastResolutionError(f"Failed to parse RSS feed: {parsed.get('bozo_exception')}")

    return [
        FeedEpisode(
            title=entry.get("title", ""),
            audio_url=_entry_audio_url(entry),
            published=entry.get("published"),
        )
        for entry in parsed.entries
    ]


def select_episode(episodes: list[FeedEpisode], episode_title: str) -> tuple[FeedEpisode, float | None]:
    """Pick the best-matching episode, or the first one when no title is known."""
    if not episodes:
        raise PodcastResolutionError("No episodes found in RSS feed")

    # A title of only punctuation or emoji carries nothing to match on
    if not _normalize(episode_title):
        latest = episodes[0]
        if not latest.audio_url:
            raise PodcastResolutionError("Latest episode has no audio URL")
        return latest, None

    scored = sorted(
        ((title_match_score(episode_title, ep.title), i) for i, ep in enumerate(episodes)),
        key=lambda pair: (-pair[0], pair[1]),
    )
    best_score, best_index = scored[0]
    if best_score < MIN_MATCH_SCORE:
        logger.warning(
            f"No episode matching '{episode_title}' (best score {best_score:.2f}); "
            f"first titles: {[ep.title for ep in episodes[:5]]}"
        )
        raise PodcastResolutionError(
            f'Episode "{episode_title}" not found in RSS feed (no close matches)'
        )

    matched = episodes[best_index]
    if not matched.audio_url:
        raise PodcastResolutionError("Matched episode has no audio URL")

    logger.info(f"Matched '{episode_title}' to '{matched.title}' (score {best_score:.2f})")
    return matched, best_score


class PodcastResolver:
    """Stateless helper; the HTTP client is optional and injectable."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        feed_timeout: float = FEED_FETCH_TIMEOUT,
        scrape_timeout: float = TITLE_SCRAPE_TIMEOUT,
    ):
        self._client = client
        self.feed_timeout = feed_timeout
        self.scrape_timeout = scrape_timeout

    async def _get(self, url: str, timeout: float, **kwargs: Any) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url, timeout=timeout, follow_redirects=True, **kwargs)
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            return await client.get(url, **kwargs)

    async def lookup_apple_feed(self, show_id: str) -> str:
        """Apple show id -> RSS feed URL via the iTunes lookup API."""
        try:
            response = await with_timeout(
                self._get(
                    ITUNES_LOOKUP_URL,
                    self.feed_timeout,
                    params={"id": show_id, "entity": "podcast"},
                ),
                self.feed_timeout,
                "iTunes lookup",
            )
            response.raise_for_status()
            results = response.json().get("results") or []
        except (httpx.HTTPError, ValueError) as e:
            raise PodcastResolutionError(f"iTunes lookup failed: {e}", retriable=True) from e

        feed_url = results[0].get("feedUrl") if results else None
        if not feed_url:
            raise PodcastResolutionError("RSS feed not found for this Apple Podcast")
        return feed_url

    async def resolve_feed_url(self, url: str) -> str:
        info = parse_podcast_url(url)

        if info.platform in (PodcastPlatform.RSS, PodcastPlatform.GOOGLE) and info.feed_url:
            return info.feed_url
        if info.platform == PodcastPlatform.APPLE and info.show_id:
            return await self.lookup_apple_feed(info.show_id)
        if info.platform == PodcastPlatform.SPOTIFY:
            raise PodcastResolutionError(SPOTIFY_UNSUPPORTED_MESSAGE)
        raise PodcastResolutionError(f"Unsupported podcast URL format: {url}")

    async def scrape_episode_title(self, url: str) -> str:
        """OpenGraph title of the episode page, or '' when it cannot be scraped."""
        if parse_podcast_url(url).platform == PodcastPlatform.RSS:
            return ""

        try:
            response = await with_timeout(
                self._get(url, self.scrape_timeout, headers={"User-Agent": BROWSER_USER_AGENT}),
                self.scrape_timeout,
                "Episode page scrape",
            )
            response.raise_for_status()
            soup = BeautifulSoup(response.text, "lxml")
            tag = soup.find("meta", property="og:title") or soup.find(
                "meta", attrs={"name": "twitter:title"}
            )
            title = tag.get("content", "").strip() if tag else ""
            if not title:
                raise ValueError("No title found in OpenGraph metadata")
        except Exception as e:
            # Many platforms block scraping; the feed's latest episode is used instead
            logger.warning(f"Could not extract episode title from {url}: {e}")
            return ""

        title = clean_episode_title(title)
        if not _normalize(title):
            logger.warning(f"Episode title '{title}' from {url} has no words to match on")
            return ""
        return title

    async def fetch_feed(self, feed_url: str) -> list[FeedEpisode]:
        try:
            response = await with_timeout(
                self._get(feed_url, self.feed_timeout), self.feed_timeout, "RSS feed fetch"
            )
        except OperationTimeoutError:
            raise
        except httpx.HTTPError as e:
            raise PodcastResolutionError(f"Failed to fetch RSS feed: {e}", retriable=True) from e

        if response.status_code >= 400:
            raise PodcastResolutionError(
                f"Failed to fetch RSS feed: {response.status_code} {response.reason_phrase}",
                retriable=response.status_code >= 500 or response.status_code == 429,
            )
        return parse_feed(response.content)

    async def resolve(self, url: str) -> ResolvedEpisode:
        """Episode/show URL -> direct audio URL."""
        feed_url = await self.resolve_feed_url(url)
        logger.info(f"Resolved feed {feed_url} for {url}")

        episode_title = await self.scrape_episode_title(url)
        episodes = await self.fetch_feed(feed_url)
        episode, score = select_episode(episodes, episode_title)

        return ResolvedEpisode(
            feed_url=feed_url,
            audio_url=episode.audio_url or "",
            searched_title=episode_title,
            matched_title=episode.title,
            score=score,
        )
