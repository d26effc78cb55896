"""Weekly digest synthesis using the Gemini API.

Turns the week's candidates into one summary sentence, a few topics and a
bounded item list. The model's output is validated and repaired; when the
model is not configured or returns anything unusable, a deterministic
digest is built from the candidates instead.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from roledigest.capabilities import Capabilities
from roledigest.config import Settings, get_settings
from roledigest.services.gemini import (
    build_config,
    call_gemini_with_retry,
    create_gemini_client,
    parse_json_object,
)
from roledigest.services.narrator import (
    compose_theme_sentence,
    prune_name_repeats,
    quiet_sentence,
)
from roledigest.services.normalizer import (
    content_hash,
    is_social_url,
    is_video_url,
    sanitize_snippet,
    url_key,
)
from roledigest.services.types import (
    PLACEHOLDER_SUMMARY,
    Candidate,
    DigestContent,
    DigestItem,
    SourceType,
)

logger = logging.getLogger(__name__)

MAX_TOPICS = 6
MAX_SOCIAL_REPAIRS = 2

_TOPIC_LABELS: dict[str, str] = {
    "news": "news coverage",
    "video": "video appearances",
    "social": "social posts",
    "web": "web mentions",
    "custom": "custom sources",
}

_SYSTEM_PROMPT = (
    "You are a digest editor. Only include new, non-duplicative items. Return "
    "JSON only. Use only the provided candidates; do not invent new facts or sources."
)

_DIGEST_PROMPT = """\
Role model: {subject_name}
Week starting: {week_start}
Candidates: {candidates}

Return JSON with shape:
{{"summary_text": string, "topics": string[],
  "items": [{{"source_title": string, "source_url": string, "source_type": string,
             "source_date": string, "summary": string}}]}}

Rules:
- summary_text must be ONE sentence (18-28 words) that synthesizes the week's
  dominant theme and names one specific event, decision, or statement from the
  candidates.
- Do not list multiple headlines, do not chain clauses with commas, and do not
  repeat the role model's name more than once.
- Provide 3-5 topics (short noun phrases).
- Pick 6-10 items.
- If any candidates are videos or YouTube links, include at least one video item.
- If any candidates are social posts, include 1-3 social items."""


def candidate_key(url: str | None, title: str | None) -> str:
    """Cross-week identity of an item: ``url|title``, case-insensitive."""
    return f"{url or ''}|{title or ''}".lower()


def dedupe_against_history(
    candidates: Iterable[Candidate], previous_keys: Iterable[str]
) -> list[Candidate]:
    """Drop candidates already seen in earlier weeks or earlier in this list."""
    seen = {key.lower() for key in previous_keys}
    survivors: list[Candidate] = []
    for candidate in candidates:
        key = candidate_key(candidate.get("url"), candidate.get("title"))
        if key in seen:
            continue
        seen.add(key)
        survivors.append(candidate)
    return survivors


def item_from_candidate(candidate: Candidate) -> DigestItem:
    title = candidate.get("title") or candidate.get("url") or "Update"
    summary = candidate.get("snippet") or PLACEHOLDER_SUMMARY
    return DigestItem(
        source_title=title,
        source_url=candidate.get("url") or "",
        source_type=candidate.get("source_type") or "web",
        source_date=candidate.get("date") or "",
        summary=summary,
        content_hash=content_hash(title, summary),
        is_official=False,
    )


def fallback_topics(items: Sequence[DigestItem]) -> list[str]:
    if not items:
        return ["quiet week", "weekly signal", "coverage"]
    topics = ["weekly signal"]
    for item in items:
        label = _TOPIC_LABELS.get(item["source_type"])
        if label and label not in topics:
            topics.append(label)
    topics.append("coverage")
    return topics[:MAX_TOPICS]


def build_fallback_digest(
    candidates: Sequence[Candidate], subject_name: str, max_items: int = 6
) -> DigestContent:
    """Deterministic digest built without the language model.

    Never fails: with no usable candidates the digest carries the
    quiet-signal sentence and no items.
    """
    usable = [
        c for c in candidates if c.get("title") or c.get("url") or c.get("snippet")
    ]
    items = [item_from_candidate(c) for c in usable[:max_items]]
    summary_text = (
        compose_theme_sentence(usable, subject_name)
        if items
        else quiet_sentence(subject_name)
    )
    return DigestContent(
        summary_text=summary_text,
        topics=fallback_topics(items),
        items=items,
    )


def reclassify_source_type(
    url: str, claimed: Any, candidate_types: dict[str, SourceType]
) -> SourceType:
    """Derive an item's type without trusting the model's label.

    Video and social are only ever assigned from the URL. Otherwise the type
    of the matching candidate wins, then the claimed type when it is news,
    web or custom.
    """
    if is_video_url(url):
        return "video"
    if is_social_url(url):
        return "social"
    known = candidate_types.get(url_key(url))
    if known and known not in ("video", "social"):
        return known
    if claimed in ("news", "web", "custom"):
        return claimed
    return "web"


def _coerce_model_items(
    raw_items: list[Any], candidate_types: dict[str, SourceType]
) -> list[DigestItem]:
    items: list[DigestItem] = []
    seen: set[str] = set()
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        url = str(raw.get("source_url") or "").strip()
        title = sanitize_snippet(str(raw.get("source_title") or "")) or url
        if not title:
            continue
        key = url_key(url)
        if key and key in seen:
            continue
        if key:
            seen.add(key)
        summary = sanitize_snippet(str(raw.get("summary") or "")) or PLACEHOLDER_SUMMARY
        items.append(
            DigestItem(
                source_title=title,
                source_url=url,
                source_type=reclassify_source_type(
                    url, raw.get("source_type"), candidate_types
                ),
                source_date=str(raw.get("source_date") or ""),
                summary=summary,
                content_hash="",
                is_official=False,
            )
        )
    return items


def repair_media_coverage(
    items: list[DigestItem], candidates: Sequence[Candidate], max_items: int | None = None
) -> list[DigestItem]:
    """Make sure videos and social posts found this week are represented.

    Adds the first video candidate when no item is a video, and up to two
    social candidates when no item is social. With ``max_items`` set, the
    model's own items are trimmed first so the added items survive the cap.
    """
    present = {url_key(item["source_url"]) for item in items if item["source_url"]}
    additions: list[DigestItem] = []

    def _add(candidate: Candidate) -> bool:
        key = url_key(candidate.get("url"))
        if not key or key in present:
            return False
        item = item_from_candidate(candidate)
        item["source_type"] = reclassify_source_type(
            item["source_url"], item["source_type"], {}
        )
        additions.append(item)
        present.add(key)
        return True

    if not any(item["source_type"] == "video" for item in items):
        for candidate in candidates:
            if candidate.get("source_type") == "video" or is_video_url(candidate.get("url")):
                if _add(candidate):
                    break

    if not any(item["source_type"] == "social" for item in items):
        added = 0
        for candidate in candidates:
            if added >= MAX_SOCIAL_REPAIRS:
                break
            if candidate.get("source_type") == "social" or is_social_url(candidate.get("url")):
                if _add(candidate):
                    added += 1

    kept = list(items)
    if max_items is not None:
        kept = kept[: max(max_items - len(additions), 0)]
    return kept + additions


def finalize_items(items: list[DigestItem], max_items: int) -> list[DigestItem]:
    """Truncate and stamp content hashes."""
    finalized = items[:max_items]
    for item in finalized:
        item["content_hash"] = content_hash(item["source_title"], item["summary"])
    return finalized


def _parse_topics(raw_topics: Any) -> list[str]:
    if not isinstance(raw_topics, list):
        return []
    topics = [str(topic).strip() for topic in raw_topics if str(topic).strip()]
    return topics[:MAX_TOPICS]


def _candidates_for_prompt(candidates: Sequence[Candidate]) -> str:
    return json.dumps(
        [
            {
                "title": c.get("title"),
                "url": c.get("url"),
                "snippet": c.get("snippet"),
                "source_type": c.get("source_type"),
                "date": c.get("date"),
            }
            for c in candidates
        ],
        ensure_ascii=False,
    )


async def synthesize(
    subject_name: str,
    week_start: datetime,
    candidates: Sequence[Candidate],
    previous_keys: Sequence[str],
    *,
    capabilities: Capabilities,
    settings: Settings | None = None,
) -> DigestContent:
    """Synthesize one week's digest.

    Steps run strictly in order: cross-week dedup, model call, validation
    and repair, summary normalization.

    Args:
        subject_name: The subject's display name.
        week_start: Start of the digest week.
        candidates: This week's collected candidates.
        previous_keys: ``url|title`` keys from recent prior digests.
        capabilities: Feature switches for this run.
        settings: Application settings.

    Returns:
        A digest with a non-empty summary and at most ``max_items`` items.
        Never raises: every model failure falls back to the deterministic
        digest.
    """
    settings = settings or get_settings()
    survivors = dedupe_against_history(candidates, previous_keys)
    dropped = len(candidates) - len(survivors)
    if dropped:
        logger.debug("Dropped %d previously seen candidate(s) for %s", dropped, subject_name)

    if not capabilities.language_model_enabled or not survivors:
        return build_fallback_digest(
            survivors, subject_name, max_items=settings.digest.fallback_items
        )

    prompt = _DIGEST_PROMPT.format(
        subject_name=subject_name,
        week_start=week_start.isoformat(),
        candidates=_candidates_for_prompt(survivors),
    )
    config = build_config(
        _SYSTEM_PROMPT, temperature=0.4, max_output_tokens=2048, json_mode=True
    )
    try:
        client = create_gemini_client(settings)
        text = await call_gemini_with_retry(client, settings.gemini.model, prompt, config)
    except Exception:
        logger.warning("Digest synthesis failed for %s, using fallback", subject_name)
        return build_fallback_digest(
            survivors, subject_name, max_items=settings.digest.fallback_items
        )

    parsed = parse_json_object(text) or {}
    summary_text = str(parsed.get("summary_text") or "").strip()
    raw_items = parsed.get("items")
    if not summary_text or not isinstance(raw_items, list):
        logger.warning("Digest response for %s has an unexpected shape", subject_name)
        return build_fallback_digest(
            survivors, subject_name, max_items=settings.digest.fallback_items
        )

    candidate_types = {
        url_key(c.get("url")): c.get("source_type") or "web" for c in survivors
    }
    items = _coerce_model_items(raw_items, candidate_types)
    if not items:
        logger.warning("Digest response for %s has no usable items", subject_name)
        return build_fallback_digest(
            survivors, subject_name, max_items=settings.digest.fallback_items
        )

    items = repair_media_coverage(items, survivors, settings.digest.max_items)
    items = finalize_items(items, settings.digest.max_items)

    content = DigestContent(
        summary_text=prune_name_repeats(summary_text, subject_name),
        topics=_parse_topics(parsed.get("topics")) or fallback_topics(items),
        items=items,
    )
    logger.info(
        "Synthesized digest for %s: %d item(s), %d topic(s)",
        subject_name,
        len(items),
        len(content["topics"]),
    )
    return content
