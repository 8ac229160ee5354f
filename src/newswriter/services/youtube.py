"""YouTube transcript retrieval through an external transcript API."""

from __future__ import annotations

import logging
import random
import re
import threading
import time
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import parse_qs, urlparse

import requests

from newswriter.config import YouTubeConfig
from newswriter.errors import FetchError, HTTPStatusError, InvalidVideoURLError, RetriesExhaustedError

__all__ = [
    "RateLimiter",
    "TranscriptClient",
    "extract_video_id",
    "is_video_url",
]

logger = logging.getLogger(__name__)

SHORT_HOSTS = {"youtu.be", "www.youtu.be"}
PATH_PREFIXES = {"shorts", "embed", "live", "v"}

# Throttling and any server error get another attempt; everything else fails on the first response.
TOO_MANY_REQUESTS = 429

# The transcript service relays upstream throttling in its error body.
_RATE_LIMIT_BODY_RE = re.compile(r"too many 429 error responses|\b429\b", re.IGNORECASE)
_VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def _is_youtube_host(host: str) -> bool:
    return host == "youtube.com" or host.endswith(".youtube.com")


def is_video_url(url: str) -> bool:
    """Return ``True`` when ``url`` looks like a YouTube video link."""

    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    if host in SHORT_HOSTS:
        return bool(parsed.path.strip("/"))
    if not _is_youtube_host(host):
        return False
    if parsed.path == "/watch":
        return True
    first = parsed.path.strip("/").split("/", 1)[0]
    return first in PATH_PREFIXES


def extract_video_id(url: str) -> str:
    """Return the video identifier embedded in a YouTube URL."""

    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()

    candidate = ""
    if host in SHORT_HOSTS:
        candidate = parsed.path.strip("/").split("/", 1)[0]
    elif _is_youtube_host(host):
        if parsed.path == "/watch":
            candidate = parse_qs(parsed.query).get("v", [""])[0]
        else:
            parts = parsed.path.strip("/").split("/")
            if len(parts) >= 2 and parts[0] in PATH_PREFIXES:
                candidate = parts[1]
    else:
        raise InvalidVideoURLError(f"not a YouTube URL: {url}")

    if not candidate or not _VIDEO_ID_RE.match(candidate):
        raise InvalidVideoURLError(f"no video ID found in URL: {url}")
    return candidate


class RateLimiter:
    """Serialise calls so that consecutive calls are ``min_interval`` seconds apart.

    One instance may be shared by several fetchers; the timestamp of the last
    call is guarded by a lock.
    """

    def __init__(
        self,
        min_interval: float = 2.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_call: Optional[float] = None

    def wait(self) -> float:
        """Block until the next call is allowed and return the time slept."""

        with self._lock:
            now = self._clock()
            delay = 0.0
            if self._last_call is not None:
                delay = self.min_interval - (now - self._last_call)
            if delay > 0:
                logger.debug("Rate limiting transcript API call for %.2fs", delay)
                self._sleep(delay)
                now = self._clock()
            self._last_call = now
            return max(delay, 0.0)


class TranscriptClient:
    """Fetch transcripts with a local cache, rate limiting and retries."""

    def __init__(
        self,
        api_key: str,
        api_url: str,
        *,
        session: requests.Session | None = None,
        cache_dir: Path | str = Path(".cache") / "youtube",
        retries: int = 5,
        timeout: float = 30.0,
        rate_limiter: RateLimiter | None = None,
        sleep: Callable[[float], None] = time.sleep,
        backoff_base: float = 1.0,
    ) -> None:
        self.api_key = api_key
        self.api_url = api_url
        self.cache_dir = Path(cache_dir)
        self.retries = max(1, retries)
        self.timeout = timeout
        self.rate_limiter = rate_limiter or RateLimiter()
        self.backoff_base = backoff_base
        self._session = session or requests.Session()
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: YouTubeConfig,
        *,
        session: requests.Session | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> "TranscriptClient":
        return cls(
            config.transcript_api_key,
            config.transcript_api_url,
            session=session,
            cache_dir=config.cache_dir,
            retries=config.retries,
            timeout=config.timeout,
            rate_limiter=rate_limiter or RateLimiter(config.min_interval),
        )

    def cache_path(self, video_id: str) -> Path:
        return self.cache_dir / video_id

    def get_transcript(self, video_url: str) -> str:
        """Return the transcript for ``video_url``, serving it from cache when possible."""

        video_id = extract_video_id(video_url)

        path = self.cache_path(video_id)
        if path.is_file():
            logger.debug("Transcript cache hit for %s", video_id)
            return path.read_text(encoding="utf-8")

        transcript = self.fetch_with_retries(video_id)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(transcript, encoding="utf-8")
        except OSError as exc:
            logger.warning("Failed to cache transcript for %s at %s: %s", video_id, path, exc)

        return transcript

    def backoff_delay(self, attempt: int) -> float:
        """Exponential backoff with up to 50% jitter for the given zero-based attempt."""

        base = self.backoff_base * (2**attempt)
        return base + base * random.uniform(0.0, 0.5)

    @staticmethod
    def is_retryable(error: HTTPStatusError) -> bool:
        if error.status_code == TOO_MANY_REQUESTS or 500 <= error.status_code < 600:
            return True
        return bool(_RATE_LIMIT_BODY_RE.search(error.body or ""))

    def fetch_with_retries(self, video_id: str) -> str:
        """Call the transcript API, retrying throttled and transient failures."""

        last_error: Optional[HTTPStatusError] = None
        for attempt in range(self.retries):
            try:
                return self.fetch(video_id)
            except HTTPStatusError as exc:
                if not self.is_retryable(exc):
                    raise
                last_error = exc

            if attempt < self.retries - 1:
                delay = self.backoff_delay(attempt)
                logger.info(
                    "Transcript API returned %d for %s, retrying in %.1fs (attempt %d/%d)",
                    last_error.status_code,
                    video_id,
                    delay,
                    attempt + 1,
                    self.retries,
                )
                self._sleep(delay)

        raise RetriesExhaustedError(self.retries, last_error)  # type: ignore[arg-type]

    def fetch(self, video_id: str) -> str:
        """Issue a single transcript API request."""

        self.rate_limiter.wait()

        video_url = f"https://www.youtube.com/watch?v={video_id}"
        params = {"url": video_url, "api_key": self.api_key, "text": "true"}
        try:
            response = self._session.get(self.api_url, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise FetchError(f"transcript request failed for {video_url}: {exc}") from exc

        logger.debug("YouTube transcript API response: status=%d", response.status_code)

        if response.status_code != 200:
            raise HTTPStatusError(response.status_code, video_url, body=response.text)

        body = response.text
        logger.debug("YouTube transcript API body (first 100 chars): %r", body[:100])
        if not body.strip():
            raise FetchError(f"empty transcript returned for {video_url}")
        return body
