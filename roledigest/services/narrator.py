"""One-sentence weekly narration.

``compose_theme_sentence`` builds the deterministic sentence used when the
language model is unavailable. ``narrate_digest`` asks Gemini to rewrite the
sentence from the finished items and returns None on weak output so the
caller keeps what it already has.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Sequence

from roledigest.capabilities import Capabilities
from roledigest.config import Settings, get_settings
from roledigest.services.gemini import (
    build_config,
    call_gemini_with_retry,
    create_gemini_client,
    parse_json_object,
)
from roledigest.services.search import ProviderGateway
from roledigest.services.types import Candidate, DigestItem

logger = logging.getLogger(__name__)

MAX_NARRATED_ITEMS = 10
MAX_THEME_CHARS = 180
MIN_NARRATION_WORDS = 12

_TYPE_RANK = {"news": 0, "video": 1, "social": 2, "web": 3, "custom": 4}
_CONNECT_AS_WORDS = {"they", "he", "she", "the"}
_LOWERCASE_WORDS = {"they", "he", "she", "the", "a", "an"}
_GENERIC_PHRASES = ("latest updates", "fresh mentions", "public updates", "mixed signals")
_TRAILING_PUNCT_RE = re.compile(r"[.!?]+$")
_SENTENCE_END_RE = re.compile(r"[.!?]\s*$")

_SYSTEM_PROMPT = (
    "You are a weekly digest editor. Use only the provided item metadata and "
    "full content. Write one sentence (20-32 words) that synthesizes the week's "
    "dominant theme(s). Be specific and cite at least two concrete developments "
    "if present. Do not list headlines."
)


def quiet_sentence(subject_name: str) -> str:
    return f"This week focused on a quiet signal for {subject_name}."


def prune_name_repeats(text: str, subject_name: str) -> str:
    """Keep the first mention of ``subject_name`` and turn the rest into pronouns.

    Matching is case-insensitive and bounded by non-word characters, so a
    name inside a longer word is left alone. A possessive ``Name's`` becomes
    "their", and a replacement that opens a sentence is capitalised.
    """
    if not text or not subject_name.strip():
        return text
    pattern = re.compile(
        r"(?<!\w)" + re.escape(subject_name.strip()) + r"(?P<possessive>['’]s)?(?!\w)",
        re.IGNORECASE,
    )
    if len(pattern.findall(text)) <= 1:
        return text

    count = 0

    def _replace(match: re.Match[str]) -> str:
        nonlocal count
        count += 1
        if count == 1:
            return match.group(0)
        pronoun = "their" if match.group("possessive") else "they"
        preceding = text[: match.start()].rstrip()
        if not preceding or preceding[-1] in ".!?":
            pronoun = pronoun.capitalize()
        return pronoun

    return pattern.sub(_replace, text)


def rank_for_theme(candidates: Sequence[Candidate]) -> list[Candidate]:
    """Order by source type (news first), then longer snippet first."""
    usable = [c for c in candidates if c.get("title") or c.get("snippet")]
    return sorted(
        usable,
        key=lambda c: (
            _TYPE_RANK.get(c.get("source_type") or "", len(_TYPE_RANK)),
            -len(c.get("snippet") or ""),
        ),
    )


def compose_theme_sentence(candidates: Sequence[Candidate], subject_name: str) -> str:
    """Build one sentence about the week from the strongest candidate.

    The sentence reads "This week focused on <title>", extended with a
    clause from the lead candidate's snippet, and is cut to 180 characters
    at a word boundary.
    """
    ranked = rank_for_theme(candidates)
    if not ranked:
        return quiet_sentence(subject_name)

    lead = ranked[0]
    title = (lead.get("title") or lead.get("url") or subject_name).strip()
    snippet = _TRAILING_PUNCT_RE.sub("", (lead.get("snippet") or "").strip())
    clause = prune_name_repeats(snippet, subject_name)

    sentence = f"This week focused on {title}"
    if clause:
        first_word = clause.split()[0].lower()
        starts_with_name = bool(subject_name) and clause.lower().startswith(
            subject_name.lower()
        )
        connector = "as" if starts_with_name or first_word in _CONNECT_AS_WORDS else "with"
        if first_word in _LOWERCASE_WORDS:
            clause = clause[0].lower() + clause[1:]
        sentence = f"{sentence}, {connector} {clause}."
    else:
        sentence = f"{sentence}."

    if len(sentence) > MAX_THEME_CHARS:
        trimmed = sentence[: MAX_THEME_CHARS - 3]
        cutoff = trimmed.rfind(" ")
        return f"{trimmed[: cutoff if cutoff > 120 else MAX_THEME_CHARS - 3]}..."
    return sentence


def is_weak_narration(text: str | None) -> bool:
    """Empty, too short or built from stock filler phrases."""
    trimmed = (text or "").strip()
    if not trimmed or len(trimmed.split()) < MIN_NARRATION_WORDS:
        return True
    lower = trimmed.lower()
    return any(phrase in lower for phrase in _GENERIC_PHRASES)


def ensure_sentence_end(text: str) -> str:
    """Append a period unless the text already ends a sentence."""
    trimmed = (text or "").strip()
    if not trimmed or _SENTENCE_END_RE.search(trimmed):
        return trimmed
    return f"{trimmed}."


async def _narration_context(
    index: int,
    item: DigestItem,
    gateway: ProviderGateway,
    capabilities: Capabilities,
    max_chars: int,
) -> dict[str, object]:
    content = ""
    if capabilities.outbound_fetch_enabled and item["source_url"]:
        content = await gateway.fetch_page_text(item["source_url"], max_chars)
    return {
        "id": index,
        "title": item["source_title"],
        "url": item["source_url"],
        "source_type": item["source_type"],
        "source_date": item["source_date"],
        "summary": item["summary"],
        "content": content,
    }


async def narrate_digest(
    items: Sequence[DigestItem],
    subject_name: str,
    *,
    gateway: ProviderGateway,
    capabilities: Capabilities,
    settings: Settings | None = None,
) -> str | None:
    """Ask Gemini for one sentence about the week's finished items.

    Args:
        items: Digest items with their final summaries.
        subject_name: The subject's display name.
        gateway: Provider gateway, used to attach page text when fetch is on.
        capabilities: Feature switches for this run.
        settings: Application settings.

    Returns:
        The new sentence, or None when the model is not configured, fails,
        or writes a weak sentence.
    """
    selected = list(items)[:MAX_NARRATED_ITEMS]
    if not selected or not capabilities.language_model_enabled:
        return None

    settings = settings or get_settings()
    contexts = await asyncio.gather(
        *(
            _narration_context(
                index, item, gateway, capabilities, settings.digest.max_source_text
            )
            for index, item in enumerate(selected)
        )
    )

    prompt = (
        f"Role model: {subject_name}\nItems: {json.dumps(contexts, ensure_ascii=False)}\n"
        'Return JSON with shape {"summary_text": string}.'
    )
    config = build_config(
        _SYSTEM_PROMPT, temperature=0.2, max_output_tokens=300, json_mode=True
    )
    try:
        client = create_gemini_client(settings)
        text = await call_gemini_with_retry(client, settings.gemini.model, prompt, config)
    except Exception:
        logger.warning("Digest narration failed for %s", subject_name, exc_info=True)
        return None

    parsed = parse_json_object(text)
    summary = str(parsed.get("summary_text") or "").strip() if parsed else ""
    if is_weak_narration(summary):
        logger.info("Discarding weak narration for %s", subject_name)
        return None
    return ensure_sentence_end(prune_name_repeats(summary, subject_name))
