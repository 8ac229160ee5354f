"""Filesystem layout, rendering and lookup for generated articles.

Articles live under ``<output_root>/<YYYY>/<MM>/<slug>-<hash>.md`` where
``hash`` is :func:`url_hash` of the exact source URL.  The hash suffix is the
article's identity: :func:`find_existing` and :func:`article_path` both derive
it from the URL with the same function, so an article saved for a URL is always
found again for that URL regardless of its title.
"""

from __future__ import annotations

import hashlib
import json
import os
import re
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional, Union

from newswriter.errors import TemplateError
from newswriter.models import Article

#: Default directory that receives generated articles.
DEFAULT_OUTPUT_ROOT = Path("articles")

#: Number of hex characters kept from the URL digest.
HASH_LENGTH = 8

#: Maximum length of the title part of a filename.
MAX_SLUG_LENGTH = 50

HASH_SUFFIX_RE = re.compile(r"-([0-9a-f]{%d})\.md$" % HASH_LENGTH)
SOURCE_URL_RE = re.compile(r'^source_url:\s*"((?:[^"\\]|\\.)*)"\s*$', re.MULTILINE)

_SLUGIFY_RE = re.compile(r"[^a-z0-9]+")
_PLACEHOLDER_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")

_Pathish = Union[str, Path]


def resolve_output_root(output_root: _Pathish | None = None) -> Path:
    """Return a :class:`Path` pointing at the article output directory.

    When ``None`` is provided, :data:`DEFAULT_OUTPUT_ROOT` is returned.  The
    path is not created on disk.
    """

    if output_root is None:
        return DEFAULT_OUTPUT_ROOT
    if isinstance(output_root, Path):
        return output_root
    return Path(output_root)


def url_hash(url: str) -> str:
    """Return the first :data:`HASH_LENGTH` hex characters of the URL's SHA-256."""

    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def slugify(text: str, max_length: int = MAX_SLUG_LENGTH) -> str:
    """Generate a lowercase, hyphen separated slug of at most ``max_length`` characters."""

    slug = _SLUGIFY_RE.sub("-", text.lower()).strip("-")
    slug = slug[:max_length].rstrip("-")
    return slug or "article"


def article_path(article: Article, output_root: _Pathish | None = None) -> Path:
    """Return the path an article is saved to, partitioned by year and month."""

    root = resolve_output_root(output_root)
    created = article.created_at
    filename = f"{slugify(article.title)}-{url_hash(article.source_url)}.md"
    return root / created.strftime("%Y") / created.strftime("%m") / filename


def find_existing(url: str, output_root: _Pathish | None = None) -> Optional[Path]:
    """Return the first saved article for ``url`` or ``None`` when there is none."""

    root = resolve_output_root(output_root)
    if not root.is_dir():
        return None

    matches = sorted(root.glob(f"**/*-{url_hash(url)}.md"))
    return matches[0] if matches else None


def extract_hash(filename: str) -> Optional[str]:
    """Return the hash suffix of an article filename, if it has one."""

    match = HASH_SUFFIX_RE.search(filename)
    return match.group(1) if match else None


def extract_source_url(text: str) -> Optional[str]:
    """Return the ``source_url`` value from rendered frontmatter."""

    match = SOURCE_URL_RE.search(text)
    if not match:
        return None
    try:
        return json.loads(f'"{match.group(1)}"')
    except json.JSONDecodeError:
        return match.group(1)


def yaml_string(value: str) -> str:
    """Quote a string as a YAML double-quoted scalar."""

    return json.dumps(value, ensure_ascii=False)


def yaml_list(values: list[str]) -> str:
    """Render a list of strings as a YAML flow sequence of quoted scalars."""

    return "[" + ", ".join(yaml_string(value) for value in values) + "]"


def yaml_timestamp(value: datetime) -> str:
    """Render a timestamp as ISO-8601 with an explicit UTC offset."""

    if value.tzinfo is None:
        value = value.astimezone()
    return value.isoformat(timespec="seconds")


_FIELD_RENDERERS: Dict[str, Callable[[Article], str]] = {
    "title": lambda article: yaml_string(article.title),
    "date": lambda article: yaml_timestamp(article.created_at),
    "draft": lambda article: "true" if article.draft else "false",
    "categories": lambda article: yaml_list(article.categories),
    "tags": lambda article: yaml_list(article.tags),
    "author": lambda article: yaml_string(article.author),
    "author_title": lambda article: yaml_string(article.author_title),
    "deck": lambda article: yaml_string(article.deck),
    "source_url": lambda article: yaml_string(article.source_url),
    "source_domain": lambda article: yaml_string(article.source_domain),
    "planner_model": lambda article: yaml_string(article.planner_model),
    "writer_model": lambda article: yaml_string(article.writer_model),
    "content": lambda article: article.content.strip(),
}


def render_article(article: Article, template: str) -> str:
    """Fill ``template`` with the article fields, escaping each by its type."""

    def replace(match: re.Match[str]) -> str:
        name = match.group(1)
        renderer = _FIELD_RENDERERS.get(name)
        if renderer is None:
            raise TemplateError(f"Unknown placeholder in article template: {match.group(0)}")
        return renderer(article)

    rendered = _PLACEHOLDER_RE.sub(replace, template)
    return rendered if rendered.endswith("\n") else rendered + "\n"


def save_article(article: Article, template: str, output_root: _Pathish | None = None) -> Path:
    """Render ``article`` and write it atomically, returning the file path.

    The content is written to a hidden temporary file in the destination
    directory and moved into place, so a crash never leaves a truncated file
    under a name :func:`find_existing` would match.
    """

    path = article_path(article, output_root)
    rendered = render_article(article, template)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as file:
            file.write(rendered)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    return path


__all__ = [
    "DEFAULT_OUTPUT_ROOT",
    "HASH_LENGTH",
    "MAX_SLUG_LENGTH",
    "article_path",
    "extract_hash",
    "extract_source_url",
    "find_existing",
    "render_article",
    "resolve_output_root",
    "save_article",
    "slugify",
    "url_hash",
]
