from __future__ import annotations

import json
from pathlib import Path
from types import SimpleNamespace

import httpx
import openai
import pytest

from newswriter.config import Config
from newswriter.errors import FetchError, GenerationError, SchemaValidationError, TemplateError
from newswriter.models import ContentResult, Plan, Target
from newswriter.services.agents import (
    TRUNCATION_MARKER,
    AgentManager,
    build_planner_system_prompt,
    limit_content_tokens,
    parse_plan,
    serialize_plan,
    strip_plan_block,
)

PLAN_JSON = {
    "title": "T",
    "deck": "A short deck",
    "key_points": ["one", "two"],
    "structure": ["Intro", "Details"],
    "categories": ["Technology/Programming"],
    "tags": ["a", "b", "c"],
    "target": {"word_count": 600, "tone": "informative", "audience": "developers"},
}


def completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def api_error() -> openai.APIError:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    return openai.APIError("boom", request=request, body=None)


def make_agents(tmp_path: Path, replies):
    requests = []
    uploads = []

    def fake_create(**kwargs):
        requests.append(kwargs)
        reply = replies[len(requests) - 1]
        if isinstance(reply, Exception):
            raise reply
        return completion(reply)

    def fake_upload(file, purpose):
        uploads.append((Path(file.name).name, purpose))
        return SimpleNamespace(id="file-abc")

    client = SimpleNamespace(
        chat=SimpleNamespace(completions=SimpleNamespace(create=fake_create)),
        files=SimpleNamespace(create=fake_upload),
    )
    config = Config(config_dir=tmp_path, environ={})
    return AgentManager("sk-test", config, client=client), requests, uploads


def user_parts(request):
    return request["messages"][1]["content"]


def test_plan_parses_structured_response(tmp_path: Path) -> None:
    agents, requests, _ = make_agents(tmp_path, [json.dumps(PLAN_JSON)])

    plan = agents.plan("https://example.com/a", ContentResult(text="Source body"))

    assert plan.title == "T"
    assert plan.target.word_count == 600
    request = requests[0]
    assert request["model"] == "gpt-4o-mini"
    assert request["temperature"] == 0.0
    assert request["response_format"]["type"] == "json_schema"
    assert request["response_format"]["json_schema"]["schema"]["type"] == "object"
    assert "- Development/Programming" in request["messages"][0]["content"]
    assert "Source body" in user_parts(request)[0]["text"]


def test_plan_with_fenced_json(tmp_path: Path) -> None:
    agents, _, _ = make_agents(tmp_path, ["```json\n" + json.dumps(PLAN_JSON) + "\n```"])

    assert agents.plan("https://example.com/a", ContentResult(text="x")).title == "T"


def test_malformed_plan_is_schema_error(tmp_path: Path) -> None:
    agents, _, _ = make_agents(tmp_path, ['{"title": "T"'])

    with pytest.raises(SchemaValidationError):
        agents.plan("https://example.com/a", ContentResult(text="x"))


def test_plan_missing_required_field() -> None:
    data = dict(PLAN_JSON)
    del data["target"]

    with pytest.raises(SchemaValidationError):
        parse_plan(json.dumps(data))


def test_plan_serialization_keeps_empty_lists() -> None:
    plan = Plan(title="T", deck="D", target=Target(word_count=400, tone="neutral"))

    restored = parse_plan(serialize_plan(plan))

    assert restored == plan
    assert restored.tags == []
    assert json.loads(serialize_plan(plan))["categories"] == []


def test_deck_is_truncated() -> None:
    plan = Plan(title="T", deck="x" * 300, target=Target(word_count=400, tone="neutral"))

    assert len(plan.deck) == 150
    assert plan.deck.endswith("…")


def test_file_content_is_attached(tmp_path: Path) -> None:
    agents, requests, _ = make_agents(tmp_path, [json.dumps(PLAN_JSON), "Body text"])
    content = ContentResult(file_id="file-abc")

    plan = agents.plan("https://example.com/paper.pdf", content)
    agents.write(content, plan)

    for request in requests:
        assert user_parts(request)[-1] == {"type": "file", "file": {"file_id": "file-abc"}}
    assert "Source content:" not in user_parts(requests[1])[0]["text"]


def test_write_embeds_plan_and_source(tmp_path: Path) -> None:
    agents, requests, _ = make_agents(tmp_path, ["## Heading\n\nBody"])
    plan = parse_plan(json.dumps(PLAN_JSON))

    body = agents.write(ContentResult(text="Original source"), plan)

    assert body == "## Heading\n\nBody"
    text = user_parts(requests[0])[0]["text"]
    assert f"<plan>\n{serialize_plan(plan)}\n</plan>" in text
    assert text.endswith("Source content:\nOriginal source")
    assert requests[0]["model"] == "gpt-4o"
    assert requests[0]["temperature"] == 0.2
    assert requests[0]["max_completion_tokens"] == 6000
    assert len(user_parts(requests[0])) == 1


def test_write_strips_leaked_plan(tmp_path: Path) -> None:
    agents, _, _ = make_agents(tmp_path, ['<plan>\n{"title": "T"}\n</plan>\n\n## Story\n\nText'])

    body = agents.write(ContentResult(text="x"), parse_plan(json.dumps(PLAN_JSON)))

    assert body == "## Story\n\nText"


def test_write_only_plan_is_generation_error(tmp_path: Path) -> None:
    agents, _, _ = make_agents(tmp_path, ["<plan>{}</plan>"])

    with pytest.raises(GenerationError):
        agents.write(ContentResult(text="x"), parse_plan(json.dumps(PLAN_JSON)))


@pytest.mark.parametrize("reply", ["", "   ", None])
def test_empty_response_is_generation_error(tmp_path: Path, reply) -> None:
    agents, _, _ = make_agents(tmp_path, [reply])

    with pytest.raises(GenerationError, match="no content in planner response"):
        agents.plan("https://example.com/a", ContentResult(text="x"))


def test_api_error_is_generation_error(tmp_path: Path) -> None:
    agents, _, _ = make_agents(tmp_path, [api_error()])

    with pytest.raises(GenerationError, match="writer agent failed"):
        agents.write(ContentResult(text="x"), parse_plan(json.dumps(PLAN_JSON)))


def test_upload_file(tmp_path: Path) -> None:
    agents, _, uploads = make_agents(tmp_path, [])
    path = tmp_path / "doc.pdf"
    path.write_bytes(b"%PDF")

    assert agents.upload_file(path) == "file-abc"
    assert uploads == [("doc.pdf", "user_data")]


def test_upload_failure_is_fetch_error(tmp_path: Path) -> None:
    agents, _, _ = make_agents(tmp_path, [])

    def failing_upload(file, purpose):
        raise api_error()

    agents.client.files.create = failing_upload
    path = tmp_path / "doc.pdf"
    path.write_bytes(b"%PDF")

    with pytest.raises(FetchError, match="doc.pdf"):
        agents.upload_file(path)


def test_model_info(tmp_path: Path) -> None:
    agents, _, _ = make_agents(tmp_path, [])

    assert agents.model_info() == ("gpt-4o-mini", "gpt-4o")


def test_limit_content_tokens() -> None:
    assert limit_content_tokens("short", 10) == "short"

    truncated = limit_content_tokens("x" * 100, 10)
    assert truncated == "x" * 40 + TRUNCATION_MARKER


def test_long_source_is_truncated_for_planner(tmp_path: Path) -> None:
    agents, requests, _ = make_agents(tmp_path, [json.dumps(PLAN_JSON)])

    agents.plan("https://example.com/a", ContentResult(text="y" * 20000))

    text = user_parts(requests[0])[0]["text"]
    assert "y" * 8000 + TRUNCATION_MARKER in text
    assert "y" * 8001 not in text


def test_build_planner_system_prompt() -> None:
    prompt = build_planner_system_prompt("Pick one:\n{{categories}}", ["A/B", "C/D"])

    assert prompt == "Pick one:\n- A/B\n- C/D"

    with pytest.raises(TemplateError):
        build_planner_system_prompt("no placeholder", ["A/B"])


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Body", "Body"),
        ("<plan>{}</plan>\nBody", "Body"),
        ('{"title": "T"}\n</plan>\nBody', "Body"),
        ("```markdown\n## Body\n```", "## Body"),
        ("Intro\n\n```python\nprint(1)\n```\n\nOutro", "Intro\n\n```python\nprint(1)\n```\n\nOutro"),
    ],
)
def test_strip_plan_block(raw: str, expected: str) -> None:
    assert strip_plan_block(raw) == expected
