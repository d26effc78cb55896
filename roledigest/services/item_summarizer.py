"""Per-item summaries for news, web and custom digest items.

Items are summarized in batches with Gemini. When outbound fetch is enabled
the page text is attached; items with too little text and no existing
summary are told to report that the source was not accessible instead of
inventing content.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from roledigest.capabilities import Capabilities
from roledigest.config import Settings, get_settings
from roledigest.services.gemini import (
    build_config,
    call_gemini_with_retry,
    create_gemini_client,
    parse_json_object,
)
from roledigest.services.narrator import ensure_sentence_end
from roledigest.services.search import ProviderGateway
from roledigest.services.types import PLACEHOLDER_SUMMARY, DigestItem

logger = logging.getLogger(__name__)

ACCESS_LIMITED_SUMMARY = "Summary unavailable due to access limits."
SUMMARIZED_TYPES = frozenset({"news", "web", "custom"})

_SYSTEM_PROMPT = """\
You summarize articles into one informative sentence. Focus on the most \
important outcome or announcement. Avoid vague phrasing, hype, or repeats of \
the headline. If text_length is below {min_text} characters, use fallback if \
provided; if both are empty, reply with: {unavailable}"""


def _existing_summary(item: DigestItem) -> str:
    """The item's current summary, unless it is the fixed placeholder."""
    summary = (item.get("summary") or "").strip()
    return "" if summary == PLACEHOLDER_SUMMARY else summary


async def _build_context(
    index: int,
    item: DigestItem,
    gateway: ProviderGateway,
    capabilities: Capabilities,
    max_chars: int,
) -> dict[str, Any]:
    text = ""
    if capabilities.outbound_fetch_enabled and item.get("source_url"):
        text = await gateway.fetch_page_text(item["source_url"], max_chars)
    return {
        "id": index,
        "title": item.get("source_title") or "",
        "url": item.get("source_url") or "",
        "text": text,
        "text_length": len(text),
        "fallback": _existing_summary(item),
    }


async def summarize_items(
    items: list[DigestItem],
    subject_name: str,
    *,
    gateway: ProviderGateway,
    capabilities: Capabilities,
    settings: Settings | None = None,
) -> list[DigestItem]:
    """Rewrite summaries of news, web and custom items.

    Video and social items are left untouched. A failed batch keeps its
    items' existing summaries and later batches still run.

    Args:
        items: Digest items in display order.
        subject_name: The subject's display name.
        gateway: Provider gateway used for page text.
        capabilities: Feature switches for this run.
        settings: Application settings (batch size, text limits, model).

    Returns:
        New list of items in the same order; every rewritten summary ends
        with terminal punctuation.
    """
    if not items or not capabilities.language_model_enabled:
        return items

    settings = settings or get_settings()
    limits = settings.digest

    targets = await asyncio.gather(
        *(
            _build_context(index, item, gateway, capabilities, limits.max_source_text)
            for index, item in enumerate(items)
            if item.get("source_type") in SUMMARIZED_TYPES
        )
    )
    if not targets:
        return items

    try:
        client = create_gemini_client(settings)
    except Exception:
        logger.warning("Could not create Gemini client for %s item summaries", subject_name)
        return items
    config = build_config(
        _SYSTEM_PROMPT.format(
            min_text=limits.min_useful_text, unavailable=ACCESS_LIMITED_SUMMARY
        ),
        temperature=0.2,
        max_output_tokens=1024,
        json_mode=True,
    )

    summaries: dict[int, str] = {}
    batch_size = max(1, limits.summary_batch_size)
    for start in range(0, len(targets), batch_size):
        batch = targets[start : start + batch_size]
        prompt = (
            f"Role model: {subject_name}\n"
            f"Items: {json.dumps(batch, ensure_ascii=False)}\n"
            'Return JSON with shape {"items": [{"id": number, "summary": string}]}. '
            "Each summary must be one sentence that adds context beyond the headline."
        )
        try:
            text = await call_gemini_with_retry(client, settings.gemini.model, prompt, config)
        except Exception:
            logger.warning(
                "Item summary batch %d failed for %s",
                start // batch_size + 1,
                subject_name,
            )
            continue

        parsed = parse_json_object(text)
        entries = parsed.get("items") if parsed else None
        if not isinstance(entries, list):
            logger.warning("Item summary batch for %s returned no items", subject_name)
            continue
        batch_ids = {context["id"] for context in batch}
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            entry_id = entry.get("id")
            summary = str(entry.get("summary") or "").strip()
            if isinstance(entry_id, int) and entry_id in batch_ids and summary:
                summaries[entry_id] = ensure_sentence_end(summary)

    logger.info("Summarized %d of %d item(s) for %s", len(summaries), len(items), subject_name)
    return [
        {**item, "summary": summaries[index]} if index in summaries else item
        for index, item in enumerate(items)
    ]
