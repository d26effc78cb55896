"""Evidence gathering for biography writing.

Collects search results about a subject, adds their resolved official
profiles as synthetic sources and scores every source for how strongly it
matches the subject's name.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from roledigest.services.normalizer import (
    dedupe_by_url,
    is_social_profile_url,
    is_video_url,
    name_tokens,
    sanitize_snippet,
)
from roledigest.services.profiles import OfficialProfileSet, resolve_official_profiles
from roledigest.services.search import ProviderGateway, SearchKind, TimeWindow
from roledigest.services.types import Candidate, SourceType

logger = logging.getLogger(__name__)

MAX_BIO_SOURCES = 12


class BioSource(Candidate):
    """A scored piece of evidence for a biography."""

    score: float
    is_strong: bool


def score_bio_source(
    source: Candidate, tokens: list[str], full_name: str
) -> tuple[float, bool]:
    """Score how strongly a source refers to the subject.

    One point per name token found in the title, snippet or URL, two more for
    the full name (or the condensed name inside the URL), one for a social
    profile URL and half a point for news. A source is strong when it carries
    the full name or reaches 2 points (1 for single-word names).

    Returns:
        ``(score, is_strong)``.
    """
    text = f"{source.get('title') or ''} {source.get('snippet') or ''}".lower()
    url = (source.get("url") or "").lower()
    condensed = "".join(tokens)
    has_full_name = bool(full_name) and (
        full_name in text or full_name in url or (bool(condensed) and condensed in url)
    )
    score = float(sum(1 for token in tokens if token in text or token in url))
    if has_full_name:
        score += 2
    if is_social_profile_url(source.get("url")):
        score += 1
    if source.get("source_type") == "news":
        score += 0.5
    min_score = 2 if len(tokens) > 1 else 1
    return score, has_full_name or score >= min_score


def profile_sources(profiles: OfficialProfileSet, subject_name: str) -> list[Candidate]:
    """Turn resolved official profiles into synthetic sources."""
    entries: list[tuple[str, str, str, SourceType]] = []
    if profiles.twitter:
        entries.append(
            (
                f"X profile: @{profiles.twitter}",
                f"https://x.com/{profiles.twitter}",
                "X profile",
                "social",
            )
        )
    if profiles.instagram:
        entries.append(
            (
                f"Instagram profile: @{profiles.instagram}",
                f"https://www.instagram.com/{profiles.instagram}",
                "Instagram profile",
                "social",
            )
        )
    if profiles.facebook:
        entries.append(
            (
                f"Facebook profile: {profiles.facebook}",
                f"https://www.facebook.com/{profiles.facebook}",
                "Facebook profile",
                "social",
            )
        )
    if profiles.linkedin:
        entries.append(
            (
                f"LinkedIn profile: {profiles.linkedin}",
                f"https://www.linkedin.com/in/{profiles.linkedin}",
                "LinkedIn profile",
                "social",
            )
        )
    if profiles.tiktok:
        entries.append(
            (
                f"TikTok profile: @{profiles.tiktok}",
                f"https://www.tiktok.com/@{profiles.tiktok}",
                "TikTok profile",
                "social",
            )
        )
    if profiles.youtube_username:
        entries.append(
            (
                f"YouTube channel: @{profiles.youtube_username}",
                f"https://www.youtube.com/@{profiles.youtube_username}",
                "YouTube channel",
                "video",
            )
        )
    elif profiles.youtube_channel_id:
        entries.append(
            (
                "YouTube channel",
                f"https://www.youtube.com/channel/{profiles.youtube_channel_id}",
                "YouTube channel",
                "video",
            )
        )

    return [
        Candidate(
            title=title,
            url=url,
            snippet=f"Official {label} for {subject_name}.",
            source_type=source_type,
            date="",
        )
        for title, url, label, source_type in entries
    ]


def _map_search_results(data: dict[str, Any]) -> list[Candidate]:
    candidates: list[Candidate] = []
    for entry in data.get("organic") or []:
        if not isinstance(entry, dict) or not entry.get("link"):
            continue
        link = str(entry["link"])
        source_type: SourceType = "web"
        if is_video_url(link):
            source_type = "video"
        elif is_social_profile_url(link):
            source_type = "social"
        candidates.append(
            Candidate(
                title=str(entry.get("title") or link),
                url=link,
                snippet=sanitize_snippet(str(entry.get("snippet") or "")),
                source_type=source_type,
                date=str(entry.get("date") or ""),
            )
        )
    return candidates


def _map_news_results(data: dict[str, Any]) -> list[Candidate]:
    return [
        Candidate(
            title=str(entry.get("title") or entry["link"]),
            url=str(entry["link"]),
            snippet=sanitize_snippet(str(entry.get("snippet") or "")),
            source_type="news",
            date=str(entry.get("date") or ""),
        )
        for entry in data.get("news") or []
        if isinstance(entry, dict) and entry.get("link")
    ]


async def collect_bio_sources(
    gateway: ProviderGateway,
    subject_name: str,
    profiles: OfficialProfileSet | None = None,
) -> list[BioSource]:
    """Gather and score biography evidence for a subject.

    Args:
        gateway: Provider gateway for this run.
        subject_name: The subject's display name.
        profiles: Already-resolved official profiles; resolved here when None.

    Returns:
        Up to 12 URL-unique sources ordered by score, then snippet length.
        [] when search is not configured.
    """
    if not gateway.capabilities.search_enabled:
        return []

    if profiles is None:
        profiles = await resolve_official_profiles(gateway, subject_name)

    primary, profile_pages, news = await asyncio.gather(
        gateway.safe_search(subject_name, time_window=TimeWindow.ANY),
        gateway.safe_search(
            f'{subject_name} (instagram OR x OR twitter OR tiktok OR youtube '
            f'OR "official site" OR "personal website")',
            time_window=TimeWindow.ANY,
        ),
        gateway.safe_search(
            f"{subject_name} interview OR statement",
            SearchKind.NEWS,
            time_window=TimeWindow.PAST_YEAR,
        ),
    )

    candidates = [
        *_map_search_results(primary.data if primary.ok else {}),
        *_map_search_results(profile_pages.data if profile_pages.ok else {}),
        *_map_news_results(news.data if news.ok else {}),
        *profile_sources(profiles, subject_name),
    ]

    tokens = name_tokens(subject_name)
    full_name = " ".join(tokens)
    scored: list[BioSource] = []
    for candidate in candidates:
        score, is_strong = score_bio_source(candidate, tokens, full_name)
        scored.append(BioSource(**candidate, score=score, is_strong=is_strong))
    scored.sort(key=lambda s: (-s["score"], -len(s["snippet"] or "")))

    sources = dedupe_by_url(scored)[:MAX_BIO_SOURCES]
    logger.info(
        "Collected %d bio source(s) for %s (%d strong)",
        len(sources),
        subject_name,
        sum(1 for s in sources if s["is_strong"]),
    )
    return sources
