"""Prompt Registry for LLM calls.

Central management of the prompt templates used by the summarizers and the
daily digest.
"""
from __future__ import annotations

from dataclasses import dataclass

from memai.providers.content_types import BookmarkSource


@dataclass(frozen=True)
class PromptTemplate:
    """A prompt template with metadata."""

    key: str
    template: str
    variables: list[str]
    temperature: float
    max_tokens: int

    def render(self, **values: object) -> str:
        missing = [name for name in self.variables if name not in values]
        if missing:
            raise ValueError(f"Prompt '{self.key}' is missing variables: {missing}")
        return self.template.format(**values)


SUMMARY_PROMPTS: dict[BookmarkSource, str] = {
    BookmarkSource.YOUTUBE: """You are a helpful assistant that creates concise, informative summaries of YouTube video transcripts.
Focus on:
- Main topics and key points discussed
- Important takeaways and conclusions
- Any actionable insights or recommendations
Keep the summary clear and well-structured.""",
    BookmarkSource.PODCAST: """You are a helpful assistant that creates concise, informative summaries of podcast episode transcripts.
Focus on:
- Main discussion topics and themes
- Key arguments or insights from the hosts or guests
- Important quotes or memorable moments
Keep the summary engaging and well-structured.""",
    BookmarkSource.REDDIT: """You are a helpful assistant that summarizes Reddit discussions.
Focus on:
- Main post content and context
- Top-voted comments and perspectives
- Overall community sentiment
Keep the summary balanced and informative.""",
    BookmarkSource.TWITTER: """You are a helpful assistant that summarizes Twitter threads.
Focus on:
- Main argument or narrative of the thread
- Key points made by the author
- Overall message and takeaways
Keep the summary concise and to-the-point.""",
    BookmarkSource.LINKEDIN: """You are a helpful assistant that summarizes LinkedIn posts and articles.
Focus on:
- Professional insights and perspectives
- Important data or examples shared
- Actionable takeaways for professionals
Keep the summary professional and value-focused.""",
    BookmarkSource.BLOG: """You are a helpful assistant that summarizes blog posts and articles.
Focus on:
- Main argument or thesis
- Key supporting points and evidence
- Conclusions and takeaways
Keep the summary clear and comprehensive.""",
    BookmarkSource.WEB: """You are a helpful assistant that creates concise, informative summaries of web content.
Focus on:
- Main topic and purpose
- Key information and insights
- Overall value and takeaways
Keep the summary clear and well-structured.""",
}

DEFAULT_SUMMARY_PROMPT = """You are a helpful assistant that creates concise, informative summaries.
Focus on the main points, key insights, and important takeaways.
Keep the summary clear and well-structured."""


DEFAULT_PROMPTS: dict[str, dict] = {
    "digest_map": {
        "template": """You are the editorial analyst for "Memai Daily Briefing".
Condense the item notes below into a compact list of beats. Keep every item,
merge related items under one beat, and keep concrete facts and numbers.

Item notes:
{batch_notes}

Return plain text, one beat per line, each starting with the item numbers it covers.""",
        "variables": ["batch_notes"],
        "temperature": 0.3,
        "max_tokens": 1500,
    },
    "digest_reduce": {
        "template": """You are the host of "Memai Daily Briefing".
Date: {digest_date}. Total items: {total_items} (Audio: {audio_count}, Articles: {article_count}).

Notes on everything the listener saved that day:
{notes}

Write a single consolidated narrative as flowing prose in 3-5 paragraphs.
Open with the strongest theme, connect related items, mention the kind of
source only where it adds colour, and close with a forward-looking takeaway.
Do not use headings, bullets or numbered lists.""",
        "variables": ["digest_date", "total_items", "audio_count", "article_count", "notes"],
        "temperature": 0.7,
        "max_tokens": 4000,
    },
}


def get_summary_prompt(source: BookmarkSource | str | None) -> str:
    """System prompt for summarizing content from `source`."""
    parsed = source if isinstance(source, BookmarkSource) else BookmarkSource.parse(source)
    return SUMMARY_PROMPTS.get(parsed, DEFAULT_SUMMARY_PROMPT)


def get_prompt(key: str) -> PromptTemplate | None:
    """Get a prompt template by key.

    Returns:
        PromptTemplate or None if key doesn't exist
    """
    default = DEFAULT_PROMPTS.get(key)
    if not default:
        return None
    return PromptTemplate(key=key, **default)
