"""Biography source collection and writer tests."""

from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from roledigest.capabilities import Capabilities
from roledigest.config import Settings
from roledigest.services.bio import (
    BIO_NOT_CONFIGURED,
    BIO_UNAVAILABLE,
    NO_SOURCES_TEMPLATE,
    NO_STRONG_SOURCES_TEMPLATE,
    generate_bio,
    select_prompt_sources,
)
from roledigest.services.bio_sources import (
    BioSource,
    collect_bio_sources,
    profile_sources,
    score_bio_source,
)
from roledigest.services.profiles import OfficialProfileSet
from roledigest.services.search import ProviderGateway

LM_ON = Capabilities(language_model_enabled=True, search_enabled=True)


def _source(
    title: str = "Jane Doe launches studio",
    snippet: str = "Jane Doe announced a new design studio in Lisbon this spring.",
    url: str = "https://news.example.com/jane",
    *,
    score: float = 4.0,
    is_strong: bool = True,
) -> BioSource:
    return BioSource(
        title=title,
        url=url,
        snippet=snippet,
        source_type="news",
        date="",
        score=score,
        is_strong=is_strong,
    )


def _gateway(capabilities: Capabilities = LM_ON) -> ProviderGateway:
    return ProviderGateway(Settings(gemini_api_key="key"), capabilities)


# --- Scoring ---


def test_full_name_makes_source_strong() -> None:
    score, strong = score_bio_source(
        {"title": "Jane Doe speaks", "snippet": "", "url": "https://a.com", "source_type": "web"},
        ["jane", "doe"],
        "jane doe",
    )

    assert strong
    assert score == 4.0


def test_condensed_name_in_url_counts_as_full_name() -> None:
    _, strong = score_bio_source(
        {"title": "", "snippet": "", "url": "https://janedoe.com", "source_type": "web"},
        ["jane", "doe"],
        "jane doe",
    )

    assert strong


def test_single_token_match_is_weak() -> None:
    score, strong = score_bio_source(
        {"title": "Jane's cafe", "snippet": "", "url": "https://a.com", "source_type": "web"},
        ["jane", "doe"],
        "jane doe",
    )

    assert score == 1.0
    assert not strong


def test_news_and_profile_bonuses() -> None:
    news_score, _ = score_bio_source(
        {"title": "", "snippet": "", "url": "https://a.com", "source_type": "news"},
        ["jane", "doe"],
        "jane doe",
    )
    profile_score, _ = score_bio_source(
        {"title": "", "snippet": "", "url": "https://x.com/someone", "source_type": "social"},
        ["jane", "doe"],
        "jane doe",
    )

    assert news_score == 0.5
    assert profile_score == 1.0


def test_profile_sources_are_synthetic_and_labelled() -> None:
    sources = profile_sources(
        OfficialProfileSet(twitter="janedoe", youtube_channel_id="UCjane"), "Jane Doe"
    )

    assert [s["url"] for s in sources] == [
        "https://x.com/janedoe",
        "https://www.youtube.com/channel/UCjane",
    ]
    assert sources[0]["snippet"] == "Official X profile for Jane Doe."
    assert sources[1]["source_type"] == "video"


@pytest.mark.asyncio
async def test_collect_bio_sources_orders_by_score_and_dedupes() -> None:
    gateway = _gateway()

    async def fake_search(query: str, *args: Any, **kwargs: Any) -> dict[str, Any]:
        if query == "Jane Doe":
            return {
                "organic": [
                    {"title": "Jane", "link": "https://weak.example.com", "snippet": ""},
                    {"title": "Jane Doe", "link": "https://strong.example.com", "snippet": ""},
                    {"title": "Jane Doe again", "link": "https://strong.example.com/#x"},
                ]
            }
        return {}

    gateway.search = AsyncMock(side_effect=fake_search)

    sources = await collect_bio_sources(gateway, "Jane Doe", profiles=OfficialProfileSet())

    assert [s["url"] for s in sources] == [
        "https://strong.example.com",
        "https://weak.example.com",
    ]
    assert sources[0]["is_strong"]
    assert not sources[1]["is_strong"]


@pytest.mark.asyncio
async def test_collect_bio_sources_without_search_is_empty() -> None:
    gateway = _gateway(Capabilities(language_model_enabled=True))

    assert await collect_bio_sources(gateway, "Jane Doe") == []


# --- Prompt source selection ---


def test_select_prompt_sources_tops_up_with_weak() -> None:
    strong = _source()
    weak = _source(url="https://b.com", is_strong=False, score=1.0)

    selected, limited = select_prompt_sources([strong, weak])

    assert selected == [strong, weak]
    assert not limited


def test_select_prompt_sources_short_snippets_are_limited() -> None:
    selected, limited = select_prompt_sources(
        [_source(snippet="short"), _source(url="https://b.com", snippet="tiny")]
    )

    assert len(selected) == 2
    assert limited


# --- Writer ---


@pytest.mark.asyncio
@patch("roledigest.services.bio.call_gemini_with_retry", new_callable=AsyncMock)
@patch("roledigest.services.bio.collect_bio_sources", new_callable=AsyncMock)
async def test_no_sources_never_calls_model(
    mock_collect: AsyncMock, mock_call: AsyncMock
) -> None:
    mock_collect.return_value = []

    bio = await generate_bio(_gateway(), "Jane Doe", LM_ON)

    assert bio == NO_SOURCES_TEMPLATE.format(name="Jane Doe")
    mock_call.assert_not_called()


@pytest.mark.asyncio
@patch("roledigest.services.bio.call_gemini_with_retry", new_callable=AsyncMock)
@patch("roledigest.services.bio.collect_bio_sources", new_callable=AsyncMock)
async def test_only_weak_sources_never_calls_model(
    mock_collect: AsyncMock, mock_call: AsyncMock
) -> None:
    mock_collect.return_value = [
        _source(is_strong=False, score=1.0),
        _source(url="https://b.com", is_strong=False, score=1.0),
    ]

    bio = await generate_bio(_gateway(), "Jane Doe", LM_ON)

    assert bio == NO_STRONG_SOURCES_TEMPLATE.format(name="Jane Doe")
    mock_call.assert_not_called()


@pytest.mark.asyncio
@patch("roledigest.services.bio.collect_bio_sources", new_callable=AsyncMock)
async def test_language_model_disabled_returns_fixed_text(mock_collect: AsyncMock) -> None:
    mock_collect.return_value = [_source()]
    caps = Capabilities(language_model_enabled=False, search_enabled=True)

    assert await generate_bio(_gateway(caps), "Jane Doe", caps) == BIO_NOT_CONFIGURED


@pytest.mark.asyncio
@patch("roledigest.services.bio.create_gemini_client")
@patch("roledigest.services.bio.call_gemini_with_retry", new_callable=AsyncMock)
@patch("roledigest.services.bio.collect_bio_sources", new_callable=AsyncMock)
async def test_strong_sources_generate_bio(
    mock_collect: AsyncMock, mock_call: AsyncMock, mock_client: MagicMock
) -> None:
    mock_collect.return_value = [_source(), _source(url="https://b.com")]
    mock_call.return_value = "  Jane Doe is a designer.  "

    bio = await generate_bio(_gateway(), "Jane Doe", LM_ON)

    assert bio == "Jane Doe is a designer."
    prompt = mock_call.call_args.args[2]
    assert "[1] [news] Jane Doe launches studio" in prompt
    assert "2-paragraph bio" in prompt


@pytest.mark.asyncio
@patch("roledigest.services.bio.create_gemini_client")
@patch("roledigest.services.bio.call_gemini_with_retry", new_callable=AsyncMock)
@patch("roledigest.services.bio.collect_bio_sources", new_callable=AsyncMock)
async def test_model_failure_returns_unavailable(
    mock_collect: AsyncMock, mock_call: AsyncMock, mock_client: MagicMock
) -> None:
    mock_collect.return_value = [_source()]
    mock_call.side_effect = RuntimeError("quota")

    assert await generate_bio(_gateway(), "Jane Doe", LM_ON) == BIO_UNAVAILABLE
