"""Planner and writer stages backed by the OpenAI chat completions API."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from openai import APIError, OpenAI
from pydantic import ValidationError

from newswriter.config import (
    CATEGORIES_PLACEHOLDER,
    PLAN_PLACEHOLDER,
    SOURCE_CONTENT_PLACEHOLDER,
    Config,
)
from newswriter.errors import FetchError, GenerationError, SchemaValidationError, TemplateError
from newswriter.models import ContentResult, Plan

__all__ = [
    "AgentManager",
    "build_planner_system_prompt",
    "build_writer_user_prompt",
    "limit_content_tokens",
    "parse_plan",
    "serialize_plan",
    "strip_plan_block",
]

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
TRUNCATION_MARKER = "\n\n[Content truncated for processing...]"
ATTACHED_DOCUMENT_NOTE = "(The source document is attached to this message.)"

_PLAN_BLOCK_RE = re.compile(r"<plan>.*?</plan>", re.DOTALL | re.IGNORECASE)
_PLAN_TAG_RE = re.compile(r"</?plan>", re.IGNORECASE)
_CODE_FENCE_RE = re.compile(r"^```[\w-]*\n(.*?)\n?```$", re.DOTALL)


def limit_content_tokens(content: str, max_tokens: int) -> str:
    """Cut ``content`` to roughly ``max_tokens`` tokens, marking the cut visibly."""

    max_chars = max_tokens * CHARS_PER_TOKEN
    if len(content) <= max_chars:
        return content
    return content[:max_chars] + TRUNCATION_MARKER


def build_planner_system_prompt(template: str, categories: List[str]) -> str:
    """Inject the category taxonomy as a markdown list into the planner prompt."""

    if CATEGORIES_PLACEHOLDER not in template:
        raise TemplateError(f"planner system prompt must contain the {CATEGORIES_PLACEHOLDER} placeholder")
    listing = "\n".join(f"- {category}" for category in categories)
    return template.replace(CATEGORIES_PLACEHOLDER, listing)


def serialize_plan(plan: Plan) -> str:
    """Serialise a plan to the JSON embedded in the writer prompt."""

    return plan.model_dump_json(indent=2, exclude_none=True)


def _strip_code_fence(text: str) -> str:
    """Unwrap text that is entirely one fenced block."""

    match = _CODE_FENCE_RE.match(text.strip())
    if not match or "```" in match.group(1):
        return text
    return match.group(1)


def parse_plan(raw: str) -> Plan:
    """Parse planner output into a :class:`Plan`."""

    try:
        return Plan.model_validate_json(_strip_code_fence(raw))
    except ValidationError as exc:
        raise SchemaValidationError(f"failed to parse planner response: {exc}") from exc


def build_writer_user_prompt(template: str, plan: Plan) -> str:
    if PLAN_PLACEHOLDER not in template:
        raise TemplateError(f"writer user prompt must contain the {PLAN_PLACEHOLDER} placeholder")
    return template.replace(PLAN_PLACEHOLDER, serialize_plan(plan))


def strip_plan_block(text: str) -> str:
    """Remove any plan block the writer echoed back into its answer.

    Complete ``<plan>…</plan>`` blocks are dropped; a stray closing tag means
    the opening tag was lost, so everything up to it is dropped as well.
    """

    text = _PLAN_BLOCK_RE.sub("", text)
    closing = text.lower().rfind("</plan>")
    if closing != -1:
        text = text[closing + len("</plan>"):]
    text = _PLAN_TAG_RE.sub("", text)
    return _strip_code_fence(text.strip()).strip()


class AgentManager:
    """Run the planner and writer prompts against the configured models."""

    def __init__(self, api_key: str, config: Config, *, client: OpenAI | None = None) -> None:
        self.api_key = api_key
        self.config = config
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=self.api_key)
        return self._client

    def model_info(self) -> Tuple[str, str]:
        """Return the planner and writer model names."""

        agents = self.config.settings.agents
        return agents.planner.model, agents.writer.model

    def upload_file(self, path: Path) -> str:
        """Upload a local file for use in later prompts and return its file id."""

        try:
            with Path(path).open("rb") as file:
                uploaded = self.client.files.create(file=file, purpose="user_data")
        except APIError as exc:
            raise FetchError(f"uploading {Path(path).name}: {exc}") from exc
        return uploaded.id

    def plan(self, url: str, content: ContentResult) -> Plan:
        """Ask the planner model for a structured plan of the article."""

        logger.info("→ Planning %s", url)
        settings = self.config.settings
        planner = settings.agents.planner

        source = limit_content_tokens(content.text, planner.content_max_tokens)
        if not source and content.has_file:
            source = ATTACHED_DOCUMENT_NOTE

        system_prompt = build_planner_system_prompt(
            self.config.planner_system_prompt, settings.categories
        )
        if SOURCE_CONTENT_PLACEHOLDER not in self.config.planner_user_prompt:
            raise TemplateError(
                f"planner user prompt must contain the {SOURCE_CONTENT_PLACEHOLDER} placeholder"
            )
        user_prompt = self.config.planner_user_prompt.replace(SOURCE_CONTENT_PLACEHOLDER, source)

        raw = self._complete(
            "planner",
            model=planner.model,
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            file_id=content.file_id,
            max_tokens=planner.max_tokens,
            temperature=0.0,
            response_format={
                "type": "json_schema",
                "json_schema": {"name": "article_plan", "schema": self.config.planner_schema},
            },
        )
        plan = parse_plan(raw)

        if settings.categories:
            unknown = [category for category in plan.categories if category not in settings.categories]
            if unknown:
                logger.warning("Planner chose categories outside the taxonomy: %s", unknown)

        logger.info(
            "✓ Planned: %s | Categories: %s | Tags: %s | Deck: %s",
            plan.title,
            plan.categories,
            plan.tags,
            plan.deck,
        )
        return plan

    def write(self, content: ContentResult, plan: Plan) -> str:
        """Ask the writer model for the article body that follows ``plan``."""

        logger.info("→ Writing %s", plan.title)
        writer = self.config.settings.agents.writer

        user_prompt = build_writer_user_prompt(self.config.writer_user_prompt, plan)
        if content.text:
            user_prompt = f"{user_prompt}\n\nSource content:\n{content.text}"

        raw = self._complete(
            "writer",
            model=writer.model,
            system_prompt=self.config.writer_system_prompt,
            user_prompt=user_prompt,
            file_id=content.file_id,
            max_tokens=writer.max_tokens,
            temperature=writer.temperature,
        )

        body = strip_plan_block(raw)
        if not body:
            raise GenerationError("writer response contained no article body")

        logger.info("✓ Writing completed (%d words)", len(body.split()))
        return body

    def _complete(
        self,
        stage: str,
        *,
        model: str,
        system_prompt: str,
        user_prompt: str,
        file_id: str,
        max_tokens: int,
        temperature: float,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> str:
        user_content: List[Dict[str, Any]] = [{"type": "text", "text": user_prompt}]
        if file_id:
            user_content.append({"type": "file", "file": {"file_id": file_id}})

        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ]

        request: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_completion_tokens": max_tokens,
        }
        if response_format is not None:
            request["response_format"] = response_format

        logger.debug("%s request: model=%s prompt_chars=%d", stage, model, len(user_prompt))
        try:
            response = self.client.chat.completions.create(**request)
        except APIError as exc:
            raise GenerationError(f"{stage} agent failed: {exc}") from exc

        if not response.choices:
            raise GenerationError(f"no content in {stage} response")
        text = response.choices[0].message.content or ""
        if not text.strip():
            raise GenerationError(f"no content in {stage} response")
        return text.strip()
