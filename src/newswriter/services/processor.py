"""Batch driver turning a list of source URLs into saved articles."""

from __future__ import annotations

import csv
import io
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, List, Union

import requests
import yaml
from pydantic import ValidationError
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from newswriter.articlestore import find_existing, save_article
from newswriter.config import Config
from newswriter.errors import ConfigurationError
from newswriter.models import (
    Article,
    ArticleItem,
    InvalidItem,
    Plan,
    ProcessingResult,
    ProcessingStatus,
    RunSummary,
    source_domain,
)
from newswriter.services.agents import AgentManager
from newswriter.services.fetcher import ContentFetcher

__all__ = [
    "ArticleProcessor",
    "load_article_items",
    "parse_csv_items",
    "parse_yaml_items",
]

logger = logging.getLogger(__name__)

LIST_REQUEST_TIMEOUT = 30.0

_list_retry = Retry(
    total=3,
    connect=3,
    read=3,
    backoff_factor=1,
    status_forcelist=[429, 500, 502, 503, 504],
    allowed_methods={"GET"},
)

_list_session = requests.Session()
_list_session.mount("https://", HTTPAdapter(max_retries=_list_retry))
_list_session.mount("http://", HTTPAdapter(max_retries=_list_retry))

ListEntry = Union[ArticleItem, InvalidItem]


def _make_item(entry: Any, label: str) -> ListEntry:
    """Validate one list entry; invalid entries are kept so the batch can report them."""

    if isinstance(entry, str):
        entry = {"url": entry}
    if not isinstance(entry, dict):
        return InvalidItem(label, str(entry), "expected a mapping with a url")

    data = dict(entry)
    if "url" not in data and "source_url" in data:
        data["url"] = data.pop("source_url")

    try:
        return ArticleItem.model_validate(data)
    except ValidationError as exc:
        message = "; ".join(error["msg"] for error in exc.errors())
        return InvalidItem(label, str(data.get("url", "")), message)


def parse_csv_items(text: str) -> List[ListEntry]:
    """Parse URLs from the first CSV column, skipping an optional ``url`` header."""

    rows = list(csv.reader(io.StringIO(text)))
    if not rows:
        raise ConfigurationError("CSV file is empty")

    start = 1 if rows[0] and rows[0][0].strip().lower() == "url" else 0

    items: List[ListEntry] = []
    for index, row in enumerate(rows[start:], start=start + 1):
        if not row or not row[0].strip():
            continue
        items.append(_make_item({"url": row[0].strip()}, f"on row {index}"))
    return items


def parse_yaml_items(text: str, source: Path | str = "<string>") -> List[ListEntry]:
    """Parse the ``items`` list of a YAML article list."""

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in article list: {source}") from exc

    if data is None:
        return []
    entries = data.get("items") if isinstance(data, dict) else data
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise ConfigurationError(f"Article list must contain an 'items' list: {source}")

    return [_make_item(entry, f"#{index}") for index, entry in enumerate(entries, start=1)]


def load_article_items(
    source: str,
    *,
    session: requests.Session | None = None,
    timeout: float = LIST_REQUEST_TIMEOUT,
) -> List[ListEntry]:
    """Load article items from a YAML/CSV file or a remote CSV URL."""

    if source.startswith(("http://", "https://")):
        response = (session or _list_session).get(source, timeout=timeout)
        response.raise_for_status()
        return parse_csv_items(response.text)

    path = Path(source)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise FileNotFoundError(f"Article list not found: {path}") from exc

    if path.suffix.lower() == ".csv":
        return parse_csv_items(text)
    return parse_yaml_items(text, path)


def _local_now() -> datetime:
    return datetime.now().astimezone()


class ArticleProcessor:
    """Process article items one by one: fetch, plan, write and save."""

    def __init__(
        self,
        config: Config,
        agents: AgentManager,
        fetcher: ContentFetcher,
        *,
        overwrite: bool = False,
        clock: Callable[[], datetime] = _local_now,
    ) -> None:
        config.validate()
        self.config = config
        self.agents = agents
        self.fetcher = fetcher
        self.overwrite = overwrite
        self._clock = clock

    @property
    def output_root(self) -> Path:
        return self.config.settings.output_directory

    def process_articles(self, source: str) -> List[ProcessingResult]:
        """Process every item listed in ``source`` and return their outcomes."""

        items = load_article_items(source, timeout=self.config.settings.request_timeout)
        logger.info("Processing %d articles from %s", len(items), source)

        results: List[ProcessingResult] = []
        for item in items:
            if isinstance(item, InvalidItem):
                result = ProcessingResult(
                    url=item.raw,
                    status=ProcessingStatus.ERROR,
                    error=f"invalid entry {item.label}: {item.message}",
                )
            else:
                result = self.process_item(item)
            results.append(result)

            if result.status is ProcessingStatus.SUCCESS:
                logger.info("✓ Generated: %s", result.filename)
            elif result.failed:
                logger.error("✗ Failed %s: %s", result.url, result.error)

        summary = self.summarize(results)
        logger.info(
            "Processing complete: %d successful, %d skipped, %d failed",
            summary.successful,
            summary.skipped,
            summary.failed,
        )
        return results

    @staticmethod
    def summarize(results: List[ProcessingResult]) -> RunSummary:
        return RunSummary.from_results(results)

    def process_item(self, item: ArticleItem) -> ProcessingResult:
        """Generate the article for ``item`` unless one already exists."""

        existing = find_existing(item.url, self.output_root)
        if existing is not None and not self.overwrite:
            logger.info("Skipping %s: article exists at %s", item.url, existing)
            return ProcessingResult(url=item.url, status=ProcessingStatus.SKIPPED, filename=existing)

        stage = "fetching source"
        try:
            content = self.fetcher.fetch_content(item.url)
            stage = "generating plan"
            plan = self.agents.plan(item.url, content)
            stage = "generating article"
            body = self.agents.write(content, plan)
            stage = "saving article"
            article = self.build_article(item.url, plan, body)
            path = save_article(article, self.config.template, self.output_root)
        except Exception as exc:  # noqa: BLE001 - one bad URL must not stop the batch
            return ProcessingResult(
                url=item.url,
                status=ProcessingStatus.ERROR,
                error=f"{stage}: {exc}",
            )

        if existing is not None and existing != path:
            try:
                existing.unlink()
            except OSError as exc:
                logger.warning("Could not remove previous article %s: %s", existing, exc)
            else:
                logger.info("Replaced previous article %s", existing)

        return ProcessingResult(url=item.url, status=ProcessingStatus.SUCCESS, filename=path)

    def build_article(self, url: str, plan: Plan, body: str) -> Article:
        """Combine the plan, generated body and static attribution into an article."""

        settings = self.config.settings
        planner_model, writer_model = self.agents.model_info()
        return Article(
            title=plan.title,
            source_url=url,
            source_domain=source_domain(url),
            content=body,
            created_at=self._clock(),
            deck=plan.deck,
            categories=list(plan.categories),
            tags=list(plan.tags),
            author=settings.author.name,
            author_title=settings.author.title,
            planner_model=planner_model,
            writer_model=writer_model,
            draft=settings.draft,
        )
