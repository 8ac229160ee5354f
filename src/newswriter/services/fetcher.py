"""Content retrieval: dispatch a URL to the first handler that accepts it."""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Callable, List, Optional, Sequence
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup
from markdownify import markdownify

from newswriter.config import Settings, YouTubeConfig
from newswriter.errors import ConfigurationError, FetchError, HTTPStatusError, NoHandlerError
from newswriter.models import ContentResult
from newswriter.services.youtube import RateLimiter, TranscriptClient, is_video_url

__all__ = [
    "ContentFetcher",
    "ContentHandler",
    "HTMLHandler",
    "PDFHandler",
    "YouTubeHandler",
    "clean_text",
    "html_to_markdown",
]

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; NewsWriter/1.0)",
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "application/pdf;q=0.8,*/*;q=0.7"
    ),
    "Accept-Language": "en-US,en;q=0.9",
}

REQUEST_TIMEOUT = 30.0
PDF_CHUNK_SIZE = 64 * 1024

Uploader = Callable[[Path], str]


class ContentHandler:
    """A step in the fetcher's handler chain.

    Handlers with ``needs_response`` set to ``False`` are consulted without the
    page being downloaded; the fetcher issues its single GET lazily, the first
    time a handler that inspects the response is reached.
    """

    needs_response = True

    def can_handle(self, url: str, response: Optional[requests.Response]) -> bool:
        raise NotImplementedError

    def handle(self, url: str, response: Optional[requests.Response]) -> ContentResult:
        raise NotImplementedError


class YouTubeHandler(ContentHandler):
    """Turn YouTube links into transcript text via the transcript API."""

    needs_response = False

    def __init__(
        self,
        config: YouTubeConfig,
        *,
        rate_limiter: RateLimiter | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.config = config
        self.rate_limiter = rate_limiter or RateLimiter(config.min_interval)
        self._session = session
        self._client: Optional[TranscriptClient] = None

    def can_handle(self, url: str, response: Optional[requests.Response]) -> bool:
        return is_video_url(url)

    @property
    def client(self) -> TranscriptClient:
        if self._client is None:
            self._client = TranscriptClient.from_config(
                self.config, session=self._session, rate_limiter=self.rate_limiter
            )
        return self._client

    def handle(self, url: str, response: Optional[requests.Response]) -> ContentResult:
        if not self.config.is_configured:
            raise ConfigurationError(
                "YouTube API configuration missing: set YOUTUBE_TRANSCRIPT_API_KEY and "
                "YOUTUBE_TRANSCRIPT_API_URL"
            )
        return ContentResult(text=self.client.get_transcript(url))


class PDFHandler(ContentHandler):
    """Download PDFs to a temporary file and upload them to the LLM provider."""

    def __init__(self, uploader: Uploader, chunk_size: int = PDF_CHUNK_SIZE) -> None:
        self._uploader = uploader
        self.chunk_size = chunk_size

    def can_handle(self, url: str, response: Optional[requests.Response]) -> bool:
        if urlparse(url).path.lower().endswith(".pdf"):
            return True
        if response is None:
            return False
        return "application/pdf" in response.headers.get("Content-Type", "").lower()

    def handle(self, url: str, response: Optional[requests.Response]) -> ContentResult:
        if response is None:
            raise FetchError(f"no response to download PDF from for {url}")

        fd, tmp_name = tempfile.mkstemp(prefix="pdf-", suffix=".pdf")
        path = Path(tmp_name)
        try:
            try:
                with os.fdopen(fd, "wb") as file:
                    for chunk in response.iter_content(chunk_size=self.chunk_size):
                        if chunk:
                            file.write(chunk)
            except (requests.RequestException, OSError) as exc:
                raise FetchError(f"downloading PDF content from {url}: {exc}") from exc

            logger.debug("Downloaded %s (%d bytes)", url, path.stat().st_size)
            file_id = self._uploader(path)
        finally:
            path.unlink(missing_ok=True)

        logger.info("Uploaded PDF %s as %s", url, file_id)
        return ContentResult(file_id=file_id)


class HTMLHandler(ContentHandler):
    """Fallback handler converting any response body from HTML to markdown."""

    def can_handle(self, url: str, response: Optional[requests.Response]) -> bool:
        return True

    def handle(self, url: str, response: Optional[requests.Response]) -> ContentResult:
        if response is None:
            raise FetchError(f"no response to read HTML from for {url}")

        try:
            html = response.text
        except requests.RequestException as exc:
            raise FetchError(f"reading response body from {url}: {exc}") from exc

        text = clean_text(html_to_markdown(html))
        if not text:
            raise FetchError(f"no readable content found at {url}")
        return ContentResult(text=text)


def html_to_markdown(html: str) -> str:
    """Strip non-content elements and convert the main document to markdown."""

    soup = BeautifulSoup(html, "lxml")
    for tag in soup(["script", "style", "noscript", "template", "svg", "iframe"]):
        tag.decompose()

    # Teaser cards are often <article> too; the story is the one with the most text.
    articles = soup.find_all("article")
    if articles:
        main = max(articles, key=lambda tag: len(tag.get_text(strip=True)))
    else:
        main = soup.body or soup
    return markdownify(str(main), heading_style="ATX", bullets="-")


def clean_text(text: str) -> str:
    """Normalise whitespace and drop runs of blank lines."""

    text = re.sub(r"\r\n|\r", "\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    lines = [line.strip() for line in text.split("\n")]
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


class ContentFetcher:
    """Evaluate content handlers in registration order for each URL.

    ``rate_limiter`` is the transcript API limiter shared with the handlers
    built by :meth:`from_settings`; the fetcher itself never waits on it.
    Handlers added later can reuse it through this attribute.
    """

    def __init__(
        self,
        handlers: Sequence[ContentHandler] | None = None,
        *,
        session: requests.Session | None = None,
        timeout: float = REQUEST_TIMEOUT,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self.handlers: List[ContentHandler] = list(handlers or [])
        self.timeout = timeout
        self.rate_limiter = rate_limiter
        self._session = session or requests.Session()
        self._session.headers.update(DEFAULT_HEADERS)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        uploader: Uploader,
        *,
        session: requests.Session | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> "ContentFetcher":
        """Build a fetcher with the YouTube, PDF and HTML handlers, in that order."""

        rate_limiter = rate_limiter or RateLimiter(settings.youtube.min_interval)
        handlers: List[ContentHandler] = [
            YouTubeHandler(settings.youtube, rate_limiter=rate_limiter),
            PDFHandler(uploader),
            HTMLHandler(),
        ]
        return cls(
            handlers,
            session=session,
            timeout=settings.request_timeout,
            rate_limiter=rate_limiter,
        )

    def add_handler(self, handler: ContentHandler) -> None:
        """Append ``handler`` to the end of the chain."""

        self.handlers.append(handler)

    def fetch_content(self, url: str) -> ContentResult:
        """Return the content behind ``url`` from the first matching handler."""

        response: Optional[requests.Response] = None
        try:
            for handler in self.handlers:
                if handler.needs_response and response is None:
                    response = self._get(url)
                if handler.can_handle(url, response):
                    logger.debug("Fetching %s with %s", url, type(handler).__name__)
                    return handler.handle(url, response)
            raise NoHandlerError(url)
        finally:
            if response is not None:
                response.close()

    def _get(self, url: str) -> requests.Response:
        try:
            response = self._session.get(url, timeout=self.timeout, stream=True)
        except requests.RequestException as exc:
            raise FetchError(f"fetching {url}: {exc}") from exc

        if response.status_code != 200:
            response.close()
            raise HTTPStatusError(response.status_code, url)
        return response
