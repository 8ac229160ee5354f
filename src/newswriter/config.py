"""Settings models and the layered prompt/template resolver."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from newswriter.errors import ConfigurationError, TemplateError

__all__ = [
    "ARTICLES_FILENAME",
    "CONFIG_DIR",
    "Config",
    "ConfigOverrides",
    "DEFAULTS_DIR",
    "Settings",
    "YouTubeConfig",
    "init_config_dir",
]

logger = logging.getLogger(__name__)

DEFAULTS_DIR = Path(__file__).resolve().parent / "defaults"
CONFIG_DIR = Path(".news-writer")

ARTICLES_FILENAME = "news-articles.yaml"
SETTINGS_FILENAME = "settings.yaml"
PLANNER_SYSTEM_PROMPT = "planner-system-prompt.md"
PLANNER_USER_PROMPT = "planner-user-prompt.md"
PLANNER_SCHEMA = "planner-output-schema.json"
WRITER_SYSTEM_PROMPT = "writer-system-prompt.md"
WRITER_USER_PROMPT = "writer-user-prompt.md"
ARTICLE_TEMPLATE = "news-article-template.md"

DEFAULT_FILES = (
    SETTINGS_FILENAME,
    PLANNER_SYSTEM_PROMPT,
    PLANNER_USER_PROMPT,
    PLANNER_SCHEMA,
    WRITER_SYSTEM_PROMPT,
    WRITER_USER_PROMPT,
    ARTICLE_TEMPLATE,
)

CATEGORIES_PLACEHOLDER = "{{categories}}"
SOURCE_CONTENT_PLACEHOLDER = "{{source_content}}"
PLAN_PLACEHOLDER = "{{plan}}"
CONTENT_PLACEHOLDER = "{{content}}"

MIN_CONTENT_MAX_TOKENS = 2000


class PlannerConfig(BaseModel):
    """Model settings for the planning stage."""

    model: str = "gpt-4o-mini"
    max_tokens: int = Field(default=1000, gt=0)
    content_max_tokens: int = Field(
        default=MIN_CONTENT_MAX_TOKENS,
        description="Approximate token budget for source text sent to the planner",
    )

    @field_validator("content_max_tokens")
    @classmethod
    def _enforce_minimum(cls, value: int) -> int:
        if value < MIN_CONTENT_MAX_TOKENS:
            logger.warning(
                "planner.content_max_tokens is %d, defaulting to %d (minimum)",
                value,
                MIN_CONTENT_MAX_TOKENS,
            )
            return MIN_CONTENT_MAX_TOKENS
        return value


class WriterConfig(BaseModel):
    """Model settings for the writing stage."""

    model: str = "gpt-4o"
    max_tokens: int = Field(default=6000, gt=0)
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)


class AgentsConfig(BaseModel):
    planner: PlannerConfig = Field(default_factory=PlannerConfig)
    writer: WriterConfig = Field(default_factory=WriterConfig)


class AuthorConfig(BaseModel):
    """Static attribution written into every article."""

    name: str = "Signal Editorial Team"
    title: str = "AI-generated content, human-reviewed"


class YouTubeConfig(BaseModel):
    """Credentials and resilience settings for the transcript API."""

    transcript_api_key: str = ""
    transcript_api_url: str = ""
    retries: int = Field(default=5, ge=1, le=20)
    min_interval: float = Field(default=2.0, ge=0.0, description="Seconds between API calls")
    timeout: float = Field(default=30.0, gt=0.0)
    cache_dir: Path = Path(".cache") / "youtube"

    @property
    def is_configured(self) -> bool:
        return bool(self.transcript_api_key and self.transcript_api_url)

    def with_environment(self, environ: Mapping[str, str] | None = None) -> "YouTubeConfig":
        """Return a copy whose empty credentials are filled from the environment."""

        environ = os.environ if environ is None else environ
        updates = {}
        if not self.transcript_api_key and environ.get("YOUTUBE_TRANSCRIPT_API_KEY"):
            updates["transcript_api_key"] = environ["YOUTUBE_TRANSCRIPT_API_KEY"]
        if not self.transcript_api_url and environ.get("YOUTUBE_TRANSCRIPT_API_URL"):
            updates["transcript_api_url"] = environ["YOUTUBE_TRANSCRIPT_API_URL"]
        return self.model_copy(update=updates) if updates else self


class Settings(BaseModel):
    """Runtime settings loaded from ``settings.yaml``."""

    output_directory: Path = Path("articles")
    request_timeout: float = Field(default=30.0, gt=0.0)
    draft: bool = True
    author: AuthorConfig = Field(default_factory=AuthorConfig)
    agents: AgentsConfig = Field(default_factory=AgentsConfig)
    youtube: YouTubeConfig = Field(default_factory=YouTubeConfig)
    categories: List[str] = Field(default_factory=list)

    @classmethod
    def from_yaml(cls, text: str, source: Path | str = "<string>") -> "Settings":
        """Parse settings from YAML text; ``source`` is only used in error messages."""

        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in settings file: {source}") from exc

        if not isinstance(data, dict):
            raise ConfigurationError(f"Settings file must contain a mapping: {source}")

        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ConfigurationError(f"Settings file is invalid: {source}\n{exc}") from exc

    @classmethod
    def from_file(cls, path: Path | str) -> "Settings":
        """Load settings from a YAML file on disk."""

        settings_path = Path(path)
        try:
            text = settings_path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise FileNotFoundError(f"Settings file not found: {settings_path}") from exc
        return cls.from_yaml(text, settings_path)

    def dump(self, path: Path | str) -> None:
        """Persist the settings back to disk as YAML."""

        settings_path = Path(path)
        settings_path.parent.mkdir(parents=True, exist_ok=True)
        payload = self.model_dump(mode="json")
        settings_path.write_text(
            yaml.safe_dump(payload, sort_keys=False, allow_unicode=True), encoding="utf-8"
        )


@dataclass
class ConfigOverrides:
    """Explicit file paths that replace the embedded defaults."""

    settings_path: Optional[Path] = None
    planner_prompt_path: Optional[Path] = None
    writer_prompt_path: Optional[Path] = None
    planner_schema_path: Optional[Path] = None
    template_path: Optional[Path] = None


class Config:
    """Resolve settings, prompts, schema and template from their layers.

    Each file is looked up in order: an explicit override (which must load or a
    :class:`~newswriter.errors.ConfigurationError` is raised), the project
    configuration directory, and finally the defaults shipped with the package.
    Everything is read eagerly so that a bad override aborts before any URL is
    processed.
    """

    def __init__(
        self,
        overrides: ConfigOverrides | None = None,
        *,
        config_dir: Path | str = CONFIG_DIR,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.overrides = overrides or ConfigOverrides()
        self.config_dir = Path(config_dir)

        settings_source = self._source(SETTINGS_FILENAME, self.overrides.settings_path)
        settings = Settings.from_yaml(
            self._resolve(SETTINGS_FILENAME, self.overrides.settings_path), settings_source
        )
        settings.youtube = settings.youtube.with_environment(environ)
        self.settings = settings

        self.planner_system_prompt = self._resolve(PLANNER_SYSTEM_PROMPT, self.overrides.planner_prompt_path)
        self.planner_user_prompt = self._resolve(PLANNER_USER_PROMPT)
        self.writer_system_prompt = self._resolve(WRITER_SYSTEM_PROMPT, self.overrides.writer_prompt_path)
        self.writer_user_prompt = self._resolve(WRITER_USER_PROMPT)
        self.template = self._resolve(ARTICLE_TEMPLATE, self.overrides.template_path)

        schema_text = self._resolve(PLANNER_SCHEMA, self.overrides.planner_schema_path)
        try:
            self.planner_schema = json.loads(schema_text)
        except json.JSONDecodeError as exc:
            source = self._source(PLANNER_SCHEMA, self.overrides.planner_schema_path)
            raise ConfigurationError(f"Invalid JSON in planner schema: {source}") from exc

    def _source(self, filename: str, override: Path | None = None) -> Path:
        if override is not None:
            return Path(override)
        local = self.config_dir / filename
        if local.is_file():
            return local
        return DEFAULTS_DIR / filename

    def _resolve(self, filename: str, override: Path | None = None) -> str:
        path = self._source(filename, override)
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            if override is not None:
                raise ConfigurationError(f"Cannot read override file {path}: {exc}") from exc
            raise

    def validate(self) -> None:
        """Check that every template carries the placeholders it is filled through."""

        required = (
            ("planner system prompt", self.planner_system_prompt, CATEGORIES_PLACEHOLDER),
            ("planner user prompt", self.planner_user_prompt, SOURCE_CONTENT_PLACEHOLDER),
            ("writer user prompt", self.writer_user_prompt, PLAN_PLACEHOLDER),
            ("article template", self.template, CONTENT_PLACEHOLDER),
        )
        for name, text, placeholder in required:
            if placeholder not in text:
                raise TemplateError(f"{name} must contain the {placeholder} placeholder")

        schema = self.planner_schema
        if not isinstance(schema, dict) or schema.get("type") != "object" or "properties" not in schema:
            raise TemplateError("planner schema must be a JSON object schema with 'properties'")

    @property
    def articles_path(self) -> Path:
        """Default location of the article list inside the configuration directory."""

        return self.config_dir / ARTICLES_FILENAME


def init_config_dir(config_dir: Path | str = CONFIG_DIR) -> List[Path]:
    """Copy the packaged defaults into ``config_dir`` without overwriting anything."""

    target = Path(config_dir)
    target.mkdir(parents=True, exist_ok=True)

    created: List[Path] = []
    for filename in DEFAULT_FILES:
        destination = target / filename
        if destination.exists():
            continue
        destination.write_text((DEFAULTS_DIR / filename).read_text(encoding="utf-8"), encoding="utf-8")
        created.append(destination)

    if created:
        logger.info("Wrote %d default configuration files to %s", len(created), target)
    return created
