"""Gemini helper tests."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from roledigest.services.gemini import (
    build_config,
    call_gemini_with_retry,
    parse_json_object,
)


def _make_client(*results: object) -> MagicMock:
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(side_effect=list(results))
    return client


@pytest.mark.asyncio
@patch("roledigest.services.gemini.asyncio.sleep", new_callable=AsyncMock)
async def test_retry_succeeds_after_failures(mock_sleep: AsyncMock) -> None:
    client = _make_client(RuntimeError("503"), RuntimeError("503"), MagicMock(text="ok"))

    text = await call_gemini_with_retry(client, "model", "prompt")

    assert text == "ok"
    assert [call.args[0] for call in mock_sleep.await_args_list] == [1.0, 2.0]


@pytest.mark.asyncio
@patch("roledigest.services.gemini.asyncio.sleep", new_callable=AsyncMock)
async def test_retry_raises_last_exception(mock_sleep: AsyncMock) -> None:
    client = _make_client(RuntimeError("a"), RuntimeError("b"), ValueError("c"))

    with pytest.raises(ValueError, match="c"):
        await call_gemini_with_retry(client, "model", "prompt")

    assert client.aio.models.generate_content.await_count == 3


@pytest.mark.asyncio
async def test_empty_response_text_becomes_empty_string() -> None:
    client = _make_client(MagicMock(text=None))

    assert await call_gemini_with_retry(client, "model", "prompt") == ""


def test_build_config_json_mode() -> None:
    config = build_config("system", temperature=0.4, max_output_tokens=2048, json_mode=True)

    assert config.response_mime_type == "application/json"
    assert config.temperature == 0.4
    assert config.max_output_tokens == 2048


def test_parse_json_object_handles_fences_and_garbage() -> None:
    assert parse_json_object('```json\n{"a": 1}\n```') == {"a": 1}
    assert parse_json_object('{"a": 1}') == {"a": 1}
    assert parse_json_object("not json") is None
    assert parse_json_object("[1, 2]") is None
    assert parse_json_object("") is None
