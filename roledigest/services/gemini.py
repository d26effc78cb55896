"""Shared Gemini API utilities.

Provides the client factory, a JSON/text generation config builder and the
async retry wrapper used by the synthesizer, item summarizer, narrator and
bio writer.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any

from google import genai
from google.genai import types

from roledigest.config import Settings, get_settings

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 3
_BACKOFF_SECONDS = 1.0

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def create_gemini_client(settings: Settings | None = None) -> genai.Client:
    """Gemini client for the configured key with the configured request timeout."""
    settings = settings or get_settings()
    return genai.Client(
        api_key=settings.gemini_api_key,
        http_options=types.HttpOptions(
            timeout=int(settings.gemini.timeout_seconds * 1000)
        ),
    )


def build_config(
    system_instruction: str,
    *,
    temperature: float = 0.3,
    max_output_tokens: int = 1024,
    json_mode: bool = False,
) -> types.GenerateContentConfig:
    """Build a generation config with a system instruction.

    Args:
        system_instruction: System prompt for the call.
        temperature: Sampling temperature.
        max_output_tokens: Output token cap.
        json_mode: Force a JSON object response.
    """
    return types.GenerateContentConfig(
        system_instruction=system_instruction,
        temperature=temperature,
        max_output_tokens=max_output_tokens,
        response_mime_type="application/json" if json_mode else None,
    )


async def call_gemini_with_retry(
    client: genai.Client,
    model: str,
    prompt: str,
    config: types.GenerateContentConfig | None = None,
    *,
    attempts: int = DEFAULT_ATTEMPTS,
) -> str:
    """Generate text, retrying failed calls with doubling delays (1s, 2s, ...).

    Args:
        client: Gemini API client.
        model: Model name, e.g. ``gemini-2.5-flash``.
        prompt: Prompt text.
        config: Generation config from ``build_config``.
        attempts: Total number of calls before giving up.

    Returns:
        The response text ("" when the model returned none).

    Raises:
        Exception: Whatever the final attempt raised.
    """
    attempt = 1
    while True:
        try:
            response = await client.aio.models.generate_content(
                model=model, contents=prompt, config=config
            )
            return response.text or ""
        except Exception as exc:
            if attempt >= attempts:
                logger.error(
                    "Gemini call to %s gave up after %d attempt(s): %s",
                    model,
                    attempt,
                    type(exc).__name__,
                )
                raise
            delay = _BACKOFF_SECONDS * 2 ** (attempt - 1)
            logger.warning(
                "Gemini call to %s failed (%d/%d): %s; next try in %.0fs",
                model,
                attempt,
                attempts,
                type(exc).__name__,
                delay,
            )
            await asyncio.sleep(delay)
            attempt += 1


def parse_json_object(text: str) -> dict[str, Any] | None:
    """Parse a model response as a JSON object.

    Tolerates a surrounding Markdown code fence. Returns None when the text
    is not valid JSON or does not decode to an object.
    """
    cleaned = _CODE_FENCE_RE.sub("", (text or "").strip())
    if not cleaned:
        return None
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.warning("Gemini returned invalid JSON: %.200s", cleaned)
        return None
    return data if isinstance(data, dict) else None
