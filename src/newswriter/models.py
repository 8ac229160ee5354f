"""Domain models used across the application."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = [
    "Article",
    "ArticleItem",
    "ContentResult",
    "InvalidItem",
    "Plan",
    "ProcessingResult",
    "ProcessingStatus",
    "RunSummary",
    "Target",
    "source_domain",
]

MAX_DECK_LENGTH = 150


def source_domain(url: str) -> str:
    """Return the host of ``url`` without a leading ``www.``."""

    host = urlparse(url).netloc
    if host.startswith("www."):
        host = host[4:]
    return host or url


class ArticleItem(BaseModel):
    """A single source URL to turn into an article."""

    model_config = ConfigDict(frozen=True)

    url: str
    id: Optional[int] = None
    discussion_url: Optional[str] = None

    @field_validator("url")
    @classmethod
    def _check_scheme(cls, value: str) -> str:
        value = value.strip()
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(f"URL must start with http:// or https://: {value!r}")
        return value


@dataclass(slots=True)
class InvalidItem:
    """An input list entry that could not be turned into an :class:`ArticleItem`."""

    label: str
    raw: str
    message: str

    @property
    def url(self) -> str:
        return self.raw


@dataclass(slots=True)
class ContentResult:
    """Fetched source content: inline text or a reference to an uploaded file."""

    text: str = ""
    file_id: str = ""

    @property
    def has_file(self) -> bool:
        return bool(self.file_id)


class Target(BaseModel):
    """Length, tone and audience the writer should aim for."""

    word_count: int
    tone: str
    audience: Optional[str] = None


class Plan(BaseModel):
    """Structured planner output that governs the writer stage."""

    title: str
    deck: str
    key_points: List[str] = Field(default_factory=list)
    structure: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    target: Target

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be empty")
        return value

    @field_validator("deck")
    @classmethod
    def _limit_deck(cls, value: str) -> str:
        value = value.strip()
        if len(value) <= MAX_DECK_LENGTH:
            return value
        return value[: MAX_DECK_LENGTH - 1].rstrip() + "…"


class Article(BaseModel):
    """Representation of a finished article ready to be written to disk."""

    title: str
    source_url: str
    source_domain: str
    content: str
    created_at: datetime
    deck: str = ""
    categories: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    author: str = ""
    author_title: str = ""
    planner_model: str = ""
    writer_model: str = ""
    draft: bool = True


class ProcessingStatus(str, enum.Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(slots=True)
class ProcessingResult:
    """Outcome of processing one input URL."""

    url: str
    status: ProcessingStatus
    filename: Optional[Path] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status is ProcessingStatus.ERROR


@dataclass(slots=True)
class RunSummary:
    """Counts of per-URL outcomes for a batch run."""

    successful: int = 0
    skipped: int = 0
    failed: int = 0

    @classmethod
    def from_results(cls, results: List[ProcessingResult]) -> "RunSummary":
        summary = cls()
        for result in results:
            if result.status is ProcessingStatus.SUCCESS:
                summary.successful += 1
            elif result.status is ProcessingStatus.SKIPPED:
                summary.skipped += 1
            else:
                summary.failed += 1
        return summary
