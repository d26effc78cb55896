"""Digest synthesis tests."""

import json
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from roledigest.capabilities import Capabilities
from roledigest.config import Settings
from roledigest.services.digest import (
    build_fallback_digest,
    candidate_key,
    dedupe_against_history,
    reclassify_source_type,
    synthesize,
)
from roledigest.services.types import PLACEHOLDER_SUMMARY, Candidate

WEEK = datetime(2024, 3, 4)
LM_ON = Capabilities(language_model_enabled=True)
LM_OFF = Capabilities.offline()


def _candidate(
    index: int,
    source_type: str = "news",
    url: str | None = None,
    snippet: str = "",
) -> Candidate:
    return Candidate(
        title=f"Story {index}",
        url=url or f"https://news.example.com/n{index}",
        snippet=snippet or f"Jane Doe did thing {index}.",
        source_type=source_type,  # type: ignore[typeddict-item]
        date="2024-03-05",
    )


NEWS = [_candidate(i) for i in range(1, 8)]
VIDEO = _candidate(8, "video", "https://www.youtube.com/watch?v=abc")
SOCIAL = _candidate(9, "social", "https://x.com/janedoe/status/1")


def _model_response(summary: str, items: list[dict[str, str]], topics: list[str]) -> str:
    return json.dumps({"summary_text": summary, "topics": topics, "items": items})


# --- Cross-week dedup ---


def test_candidate_key_is_case_insensitive() -> None:
    assert candidate_key("https://A.com/x", "Title") == "https://a.com/x|title"
    assert candidate_key(None, None) == "|"


def test_dedupe_against_history_drops_seen_and_repeated() -> None:
    seen = candidate_key(NEWS[0]["url"], NEWS[0]["title"]).upper()

    survivors = dedupe_against_history([NEWS[0], NEWS[1], NEWS[1]], [seen])

    assert survivors == [NEWS[1]]


# --- Fallback ---


def test_fallback_digest_caps_items_and_writes_theme() -> None:
    content = build_fallback_digest(NEWS, "Jane Doe")

    assert len(content["items"]) == 6
    assert content["summary_text"].startswith("This week focused on Story")
    assert content["topics"] == ["weekly signal", "news coverage", "coverage"]
    assert all(item["content_hash"] for item in content["items"])


def test_fallback_item_gets_placeholder_summary() -> None:
    bare = Candidate(title="", url="https://a.com", snippet="", source_type="web", date="")

    item = build_fallback_digest([bare], "Jane Doe")["items"][0]

    assert item["source_title"] == "https://a.com"
    assert item["summary"] == PLACEHOLDER_SUMMARY


@pytest.mark.asyncio
async def test_no_candidates_gives_quiet_week() -> None:
    content = await synthesize("Jane Doe", WEEK, [], [], capabilities=LM_ON)

    assert content["summary_text"] == "This week focused on a quiet signal for Jane Doe."
    assert content["topics"] == ["quiet week", "weekly signal", "coverage"]
    assert content["items"] == []


@pytest.mark.asyncio
async def test_all_candidates_seen_before_gives_quiet_week() -> None:
    previous = [candidate_key(c["url"], c["title"]) for c in NEWS]

    content = await synthesize("Jane Doe", WEEK, NEWS, previous, capabilities=LM_ON)

    assert content["items"] == []
    assert "quiet signal" in content["summary_text"]


@pytest.mark.asyncio
@patch("roledigest.services.digest.call_gemini_with_retry", new_callable=AsyncMock)
async def test_language_model_disabled_uses_fallback(mock_call: AsyncMock) -> None:
    content = await synthesize("Jane Doe", WEEK, NEWS, [], capabilities=LM_OFF)

    assert len(content["items"]) == 6
    mock_call.assert_not_called()


# --- Model path ---


@pytest.mark.asyncio
@patch("roledigest.services.digest.create_gemini_client")
@patch("roledigest.services.digest.call_gemini_with_retry", new_callable=AsyncMock)
async def test_model_digest_is_repaired_and_normalized(
    mock_call: AsyncMock, mock_client: MagicMock
) -> None:
    items = [
        {
            "source_title": c["title"],
            "source_url": c["url"],
            "source_type": "video" if i == 0 else "news",
            "source_date": c["date"],
            "summary": f"Summary {i}",
        }
        for i, c in enumerate(NEWS)
    ]
    mock_call.return_value = _model_response(
        "Jane Doe opened a studio and Jane Doe's team shipped a product.",
        items,
        ["design", "studio", "launch"],
    )

    content = await synthesize(
        "Jane Doe", WEEK, [*NEWS, VIDEO, SOCIAL], [], capabilities=LM_ON
    )

    assert content["summary_text"] == (
        "Jane Doe opened a studio and their team shipped a product."
    )
    assert content["topics"] == ["design", "studio", "launch"]
    types = [item["source_type"] for item in content["items"]]
    assert types == ["news"] * 7 + ["video", "social"]
    assert content["items"][7]["source_url"] == VIDEO["url"]
    assert all(item["content_hash"] for item in content["items"])


@pytest.mark.asyncio
@patch("roledigest.services.digest.create_gemini_client")
@patch("roledigest.services.digest.call_gemini_with_retry", new_callable=AsyncMock)
async def test_model_items_are_capped_and_deduped(
    mock_call: AsyncMock, mock_client: MagicMock
) -> None:
    many = [_candidate(i) for i in range(1, 16)]
    items = [
        {"source_title": c["title"], "source_url": c["url"], "summary": "s"} for c in many
    ]
    items.append(dict(items[0]))
    mock_call.return_value = _model_response("A busy week of launches.", items, [])

    content = await synthesize("Jane Doe", WEEK, many, [], capabilities=LM_ON)

    assert len(content["items"]) == 12
    assert len({item["source_url"] for item in content["items"]}) == 12
    assert content["topics"] == ["weekly signal", "news coverage", "coverage"]


@pytest.mark.asyncio
@patch("roledigest.services.digest.create_gemini_client")
@patch("roledigest.services.digest.call_gemini_with_retry", new_callable=AsyncMock)
async def test_malformed_model_output_falls_back(
    mock_call: AsyncMock, mock_client: MagicMock
) -> None:
    mock_call.return_value = "Here is your digest! {not json"

    content = await synthesize("Jane Doe", WEEK, NEWS, [], capabilities=LM_ON)

    assert content["summary_text"].startswith("This week focused on")
    assert len(content["items"]) == 6


@pytest.mark.asyncio
@patch("roledigest.services.digest.create_gemini_client")
@patch("roledigest.services.digest.call_gemini_with_retry", new_callable=AsyncMock)
async def test_model_failure_falls_back(mock_call: AsyncMock, mock_client: MagicMock) -> None:
    mock_call.side_effect = RuntimeError("quota exceeded")

    content = await synthesize(
        "Jane Doe", WEEK, NEWS, [], capabilities=LM_ON, settings=Settings()
    )

    assert len(content["items"]) == 6


def test_reclassify_source_type_trusts_urls_over_labels() -> None:
    known = {"https://a.com/1": "custom"}

    assert reclassify_source_type("https://youtu.be/abc", "news", {}) == "video"
    assert reclassify_source_type("https://x.com/jane/status/1", "web", {}) == "social"
    assert reclassify_source_type("https://a.com/1", "news", known) == "custom"
    assert reclassify_source_type("https://b.com", "video", {}) == "web"
    assert reclassify_source_type("https://b.com", "news", {}) == "news"


@pytest.mark.asyncio
@patch("roledigest.services.digest.create_gemini_client")
@patch("roledigest.services.digest.call_gemini_with_retry", new_callable=AsyncMock)
async def test_repaired_video_survives_full_model_list(
    mock_call: AsyncMock, mock_client: MagicMock
) -> None:
    many = [_candidate(i) for i in range(10, 22)]
    items = [
        {"source_title": c["title"], "source_url": c["url"], "summary": "s"} for c in many
    ]
    mock_call.return_value = _model_response("A busy week of launches.", items, [])

    content = await synthesize(
        "Jane Doe", WEEK, [*many, VIDEO, SOCIAL], [], capabilities=LM_ON
    )

    types = [item["source_type"] for item in content["items"]]
    assert len(types) == 12
    assert types.count("video") == 1
    assert types.count("social") == 1
    assert types[:10] == ["news"] * 10


@pytest.mark.asyncio
@patch("roledigest.services.digest.create_gemini_client")
@patch("roledigest.services.digest.call_gemini_with_retry", new_callable=AsyncMock)
async def test_full_model_digest_keeps_valid_selection(
    mock_call: AsyncMock, mock_client: MagicMock
) -> None:
    web = _candidate(10, "web", "https://janedoe.example.org/about")
    candidates = [NEWS[0], NEWS[1], VIDEO, SOCIAL, web]
    extra = [_candidate(11), _candidate(12)]
    items = [
        {
            "source_title": c["title"],
            "source_url": c["url"],
            "source_type": c["source_type"],
            "source_date": c["date"],
            "summary": f"What happened in {c['title']}.",
        }
        for c in [*candidates, *extra]
    ]
    summary = (
        "Jane Doe opened a new design studio in Lisbon this week, hiring ten "
        "engineers and announcing a first product for early spring."
    )
    mock_call.return_value = _model_response(
        summary, items, ["design", "studio", "hiring"]
    )

    content = await synthesize("Jane Doe", WEEK, candidates, [], capabilities=LM_ON)

    types = [item["source_type"] for item in content["items"]]
    assert len(content["items"]) == 7
    assert types.count("video") == 1
    assert types.count("social") == 1
    assert 18 <= len(content["summary_text"].split()) <= 32
    assert content["summary_text"] == summary
