"""Service layer entry points for the news writer."""

from __future__ import annotations

from .agents import AgentManager  # noqa: F401
from .fetcher import ContentFetcher, ContentHandler, HTMLHandler, PDFHandler, YouTubeHandler  # noqa: F401
from .processor import ArticleProcessor, load_article_items  # noqa: F401
from .youtube import RateLimiter, TranscriptClient  # noqa: F401

__all__ = [
    "AgentManager",
    "ArticleProcessor",
    "ContentFetcher",
    "ContentHandler",
    "HTMLHandler",
    "PDFHandler",
    "RateLimiter",
    "TranscriptClient",
    "YouTubeHandler",
    "load_article_items",
]
