"""Exception types raised by the news writer pipeline."""

from __future__ import annotations

__all__ = [
    "ConfigurationError",
    "FetchError",
    "GenerationError",
    "HTTPStatusError",
    "InvalidVideoURLError",
    "NewsWriterError",
    "NoHandlerError",
    "RetriesExhaustedError",
    "SchemaValidationError",
    "TemplateError",
]


class NewsWriterError(Exception):
    """Base class for all errors raised by :mod:`newswriter`."""


class ConfigurationError(NewsWriterError, ValueError):
    """Required configuration is missing or cannot be loaded."""


class TemplateError(ConfigurationError):
    """A prompt or article template lacks a required placeholder."""


class FetchError(NewsWriterError):
    """Source content could not be retrieved."""


class HTTPStatusError(FetchError):
    """A remote endpoint answered with a non-success status code."""

    def __init__(self, status_code: int, url: str, body: str = "") -> None:
        self.status_code = status_code
        self.url = url
        self.body = body
        super().__init__(f"HTTP {status_code} for {url}")


class InvalidVideoURLError(FetchError):
    """The URL is not a recognised video URL or has no video identifier."""


class NoHandlerError(FetchError):
    """No registered content handler accepted the URL."""

    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__(f"no handler found for {url}")


class RetriesExhaustedError(FetchError):
    """A retried call kept failing until the retry ceiling was reached."""

    def __init__(self, attempts: int, last_error: Exception) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"exceeded max retries after {attempts} attempts: {last_error}")


class SchemaValidationError(NewsWriterError, ValueError):
    """The planner response is not valid JSON or misses required fields."""


class GenerationError(NewsWriterError):
    """The language model call failed or returned no content."""
