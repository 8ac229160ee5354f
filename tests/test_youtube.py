from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from newswriter.errors import FetchError, HTTPStatusError, InvalidVideoURLError, RetriesExhaustedError
from newswriter.services.youtube import RateLimiter, TranscriptClient, extract_video_id, is_video_url


class DummyResponse:
    def __init__(self, text: str, status_code: int = 200) -> None:
        self.text = text
        self.status_code = status_code


def make_client(tmp_path: Path, responses, *, retries: int = 5):
    calls = []
    sleeps = []

    def fake_get(url, params, timeout):
        calls.append(params)
        return responses[len(calls) - 1]

    client = TranscriptClient(
        "key",
        "https://transcripts.test/api",
        session=SimpleNamespace(get=fake_get),
        cache_dir=tmp_path / "cache",
        retries=retries,
        rate_limiter=RateLimiter(0.0, sleep=sleeps.append),
        sleep=sleeps.append,
    )
    return client, calls, sleeps


@pytest.mark.parametrize(
    "url, video_id",
    [
        ("https://www.youtube.com/watch?v=dQw4w9WgXcQ", "dQw4w9WgXcQ"),
        ("https://youtube.com/watch?v=dQw4w9WgXcQ&t=42", "dQw4w9WgXcQ"),
        ("https://m.youtube.com/watch?v=abc_DEF-123", "abc_DEF-123"),
        ("https://youtu.be/dQw4w9WgXcQ", "dQw4w9WgXcQ"),
        ("https://youtu.be/dQw4w9WgXcQ?si=share", "dQw4w9WgXcQ"),
        ("https://www.youtube.com/shorts/abc123", "abc123"),
        ("https://www.youtube.com/embed/abc123", "abc123"),
    ],
)
def test_extract_video_id(url: str, video_id: str) -> None:
    assert is_video_url(url)
    assert extract_video_id(url) == video_id


@pytest.mark.parametrize(
    "url",
    [
        "https://www.youtube.com/watch",
        "https://www.youtube.com/watch?v=",
        "https://youtu.be/",
        "https://example.com/watch?v=abc",
    ],
)
def test_extract_video_id_rejects(url: str) -> None:
    with pytest.raises(InvalidVideoURLError):
        extract_video_id(url)


def test_is_video_url_ignores_other_pages() -> None:
    assert not is_video_url("https://www.youtube.com/about")
    assert not is_video_url("https://example.com/video.mp4")


def test_retries_throttled_responses_with_increasing_delays(tmp_path: Path) -> None:
    responses = [DummyResponse("slow down", 429), DummyResponse("slow down", 429), DummyResponse("hello world")]
    client, calls, sleeps = make_client(tmp_path, responses)

    transcript = client.get_transcript("https://www.youtube.com/watch?v=abc123")

    assert transcript == "hello world"
    assert len(calls) == 3
    assert calls[0]["url"] == "https://www.youtube.com/watch?v=abc123"
    assert calls[0]["api_key"] == "key"
    assert len(sleeps) == 2
    assert 1.0 <= sleeps[0] <= 1.5
    assert 2.0 <= sleeps[1] <= 3.0
    assert sleeps[0] < sleeps[1]


def test_rate_limit_body_is_retried(tmp_path: Path) -> None:
    responses = [
        DummyResponse("upstream: too many 429 error responses", 400),
        DummyResponse("ok"),
    ]
    client, calls, _ = make_client(tmp_path, responses)

    assert client.get_transcript("https://youtu.be/abc123") == "ok"
    assert len(calls) == 2


def test_not_found_fails_without_retry(tmp_path: Path) -> None:
    client, calls, sleeps = make_client(tmp_path, [DummyResponse("missing", 404)])

    with pytest.raises(HTTPStatusError) as excinfo:
        client.get_transcript("https://youtu.be/abc123")

    assert excinfo.value.status_code == 404
    assert len(calls) == 1
    assert sleeps == []


def test_retries_exhausted(tmp_path: Path) -> None:
    client, calls, sleeps = make_client(tmp_path, [DummyResponse("busy", 503)] * 3, retries=3)

    with pytest.raises(RetriesExhaustedError) as excinfo:
        client.get_transcript("https://youtu.be/abc123")

    assert excinfo.value.attempts == 3
    assert excinfo.value.last_error.status_code == 503
    assert len(calls) == 3
    assert len(sleeps) == 2


def test_empty_transcript_is_error(tmp_path: Path) -> None:
    client, _, _ = make_client(tmp_path, [DummyResponse("   ")])

    with pytest.raises(FetchError, match="empty transcript"):
        client.get_transcript("https://youtu.be/abc123")


def test_cache_hit_skips_api(tmp_path: Path) -> None:
    client, calls, _ = make_client(tmp_path, [])
    cached = client.cache_path("abc123")
    cached.parent.mkdir(parents=True)
    cached.write_text("cached transcript", encoding="utf-8")

    assert client.get_transcript("https://youtu.be/abc123") == "cached transcript"
    assert calls == []


def test_successful_fetch_populates_cache(tmp_path: Path) -> None:
    client, calls, _ = make_client(tmp_path, [DummyResponse("fresh")])

    client.get_transcript("https://youtu.be/abc123")
    client.get_transcript("https://www.youtube.com/watch?v=abc123")

    assert len(calls) == 1
    assert client.cache_path("abc123").read_text(encoding="utf-8") == "fresh"


def test_cache_write_failure_is_not_fatal(tmp_path: Path) -> None:
    client, _, _ = make_client(tmp_path, [DummyResponse("fresh")])
    # A file where the cache directory should be makes every write fail.
    client.cache_dir = tmp_path / "blocked"
    client.cache_dir.write_text("", encoding="utf-8")

    assert client.get_transcript("https://youtu.be/abc123") == "fresh"


def test_rate_limiter_spaces_calls() -> None:
    now = [100.0]
    sleeps = []

    def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)
        now[0] += seconds

    limiter = RateLimiter(2.0, clock=lambda: now[0], sleep=fake_sleep)

    assert limiter.wait() == 0.0
    now[0] += 0.5
    assert limiter.wait() == pytest.approx(1.5)
    now[0] += 3.0
    assert limiter.wait() == 0.0
    assert sleeps == [pytest.approx(1.5)]


@pytest.mark.parametrize(
    "status, retryable",
    [(429, True), (500, True), (501, True), (503, True), (505, True), (599, True), (400, False), (404, False)],
)
def test_is_retryable_covers_server_errors(status: int, retryable: bool) -> None:
    error = HTTPStatusError(status, "https://www.youtube.com/watch?v=abc123", body="failure")

    assert TranscriptClient.is_retryable(error) is retryable


def test_not_implemented_is_retried(tmp_path: Path) -> None:
    client, calls, _ = make_client(tmp_path, [DummyResponse("nope", 501), DummyResponse("ok")])

    assert client.get_transcript("https://youtu.be/abc123") == "ok"
    assert len(calls) == 2
