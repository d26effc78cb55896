"""Weekly source collector.

Fans out news, web, social and video searches for a subject, merges the
subject's native YouTube channel feed, appends user-provided custom sources
and deduplicates the result by normalized URL.
"""

from __future__ import annotations

import asyncio
import logging
from calendar import timegm
from datetime import UTC, datetime
from typing import Any

import feedparser
import httpx

from roledigest.services.normalizer import (
    dedupe_by_url,
    is_social_post_url,
    is_video_url,
    sanitize_snippet,
)
from roledigest.services.profiles import OfficialProfileSet, resolve_official_profiles
from roledigest.services.search import ProviderGateway, SearchKind, TimeWindow
from roledigest.services.types import Candidate, CustomSource, SourceType
from roledigest.time_utils import to_iso_date

logger = logging.getLogger(__name__)

_FETCH_TIMEOUT = 10.0
_FEED_URL = "https://www.youtube.com/feeds/videos.xml"
_FEED_SNIPPET_CHARS = 260
_CUSTOM_SNIPPET_CHARS = 360

_GENERIC_SOCIAL_SITES = (
    "site:twitter.com OR site:x.com OR site:instagram.com OR site:facebook.com "
    "OR site:linkedin.com OR site:tiktok.com OR site:bsky.app"
)
_VIDEO_SITES = (
    "(site:youtube.com/watch OR site:youtu.be OR site:youtube.com/shorts "
    "OR site:youtube.com/live)"
)


def build_social_query(subject_name: str, profiles: OfficialProfileSet) -> str:
    """Narrow the social query to resolved handles, else search all platforms."""
    filters: list[str] = []
    if profiles.twitter:
        filters += [f"site:x.com/{profiles.twitter}", f"site:twitter.com/{profiles.twitter}"]
    if profiles.instagram:
        filters.append(f"site:instagram.com/{profiles.instagram}")
    if profiles.facebook:
        filters.append(f"site:facebook.com/{profiles.facebook}")
    if profiles.linkedin:
        filters.append(f"site:linkedin.com/in/{profiles.linkedin}")
    if profiles.tiktok:
        filters.append(f"site:tiktok.com/@{profiles.tiktok}")
    if filters:
        return " OR ".join(filters)
    return f"{subject_name} ({_GENERIC_SOCIAL_SITES})"


def build_video_query(subject_name: str, profiles: OfficialProfileSet) -> str:
    """Video-page query for the subject, plus their channel handle when known."""
    queries = [f"{subject_name} {_VIDEO_SITES}"]
    if profiles.youtube_username:
        queries.append(f"{profiles.youtube_username} {_VIDEO_SITES}")
    return " OR ".join(queries)


def _to_candidate(entry: dict[str, Any], source_type: SourceType) -> Candidate | None:
    url = str(entry.get("link") or "")
    if not url:
        return None
    return Candidate(
        title=sanitize_snippet(str(entry.get("title") or "")) or url,
        url=url,
        snippet=sanitize_snippet(str(entry.get("snippet") or "")),
        source_type=source_type,
        date=str(entry.get("date") or ""),
    )


def _news_candidates(data: dict[str, Any]) -> list[Candidate]:
    candidates = []
    for entry in data.get("news") or []:
        if not isinstance(entry, dict):
            continue
        link = str(entry.get("link") or "")
        candidate = _to_candidate(entry, "video" if is_video_url(link) else "news")
        if candidate:
            candidates.append(candidate)
    return candidates


def _search_candidates(data: dict[str, Any]) -> list[Candidate]:
    candidates = []
    for entry in data.get("organic") or []:
        if not isinstance(entry, dict):
            continue
        link = str(entry.get("link") or "")
        source_type: SourceType = "web"
        if is_video_url(link):
            source_type = "video"
        elif is_social_post_url(link):
            source_type = "social"
        candidate = _to_candidate(entry, source_type)
        if candidate:
            candidates.append(candidate)
    return candidates


def _filtered_candidates(
    data: dict[str, Any], source_type: SourceType
) -> list[Candidate]:
    """Keep only organic results whose URL really is a post or video."""
    matches = is_video_url if source_type == "video" else is_social_post_url
    candidates = []
    for entry in data.get("organic") or []:
        if not isinstance(entry, dict) or not matches(str(entry.get("link") or "")):
            continue
        candidate = _to_candidate(entry, source_type)
        if candidate:
            candidates.append(candidate)
    return candidates


def _parse_published(entry: feedparser.FeedParserDict) -> datetime | None:
    """Extract the published timestamp from a feed entry."""
    published_parsed = entry.get("published_parsed")
    if published_parsed is None:
        return None
    try:
        return datetime.fromtimestamp(timegm(published_parsed), tz=UTC)
    except (ValueError, OverflowError, OSError, TypeError):
        return None


async def fetch_channel_feed(channel_id: str, week_start: datetime) -> list[Candidate]:
    """Fetch a YouTube channel's Atom feed and keep this week's uploads.

    Every entry's published timestamp is compared against ``week_start``;
    the feed's own ordering is not relied on. Entries with a missing or
    malformed timestamp are dropped individually.

    Args:
        channel_id: YouTube channel id.
        week_start: Start of the digest week.

    Returns:
        Video candidates published on or after ``week_start``; [] on failure.
    """
    if not channel_id:
        return []
    if week_start.tzinfo is None:
        week_start = week_start.replace(tzinfo=UTC)

    try:
        async with httpx.AsyncClient(timeout=_FETCH_TIMEOUT) as client:
            resp = await client.get(_FEED_URL, params={"channel_id": channel_id})
            resp.raise_for_status()
    except httpx.HTTPStatusError as exc:
        logger.warning(
            "HTTP %d fetching channel feed %s", exc.response.status_code, channel_id
        )
        return []
    except httpx.HTTPError as exc:
        logger.warning("Network error fetching channel feed %s: %s", channel_id, exc)
        return []

    parsed = feedparser.parse(resp.text)
    videos: list[Candidate] = []
    for entry in parsed.entries:
        published = _parse_published(entry)
        link = entry.get("link")
        if published is None or not link or published < week_start:
            continue
        description = entry.get("media_description") or entry.get("summary") or ""
        videos.append(
            Candidate(
                title=sanitize_snippet(entry.get("title") or "") or link,
                url=link,
                snippet=sanitize_snippet(description)[:_FEED_SNIPPET_CHARS],
                source_type="video",
                date=published.date().isoformat(),
            )
        )
    logger.debug("Channel feed %s yielded %d video(s) this week", channel_id, len(videos))
    return videos


async def fetch_custom_source(gateway: ProviderGateway, url: str) -> str:
    """Return a short text snippet for a custom source.

    Falls back to a placeholder naming the URL when outbound fetch is
    disabled or the page yields no text, so the snippet is never empty.
    """
    text = await gateway.fetch_page_text(url, max_chars=_CUSTOM_SNIPPET_CHARS)
    return text or f"Custom source: {url}"


async def collect_sources(
    gateway: ProviderGateway,
    subject_name: str,
    week_start: datetime,
    custom_sources: list[CustomSource],
    profiles: OfficialProfileSet | None = None,
) -> list[Candidate]:
    """Collect this week's candidates for a subject.

    Args:
        gateway: Provider gateway for this run.
        subject_name: The subject's display name.
        week_start: Start of the digest week.
        custom_sources: User-provided URLs attached to the role model.
        profiles: Already-resolved official profiles; resolved here when None.

    Returns:
        Candidates deduplicated by normalized URL (first occurrence wins).
        A total search outage yields only the custom sources, never an error.
    """
    if profiles is None:
        profiles = await resolve_official_profiles(gateway, subject_name)

    news_items: list[Candidate] = []
    search_items: list[Candidate] = []
    social_items: list[Candidate] = []
    video_items: list[Candidate] = []

    if gateway.capabilities.search_enabled:
        labels = ["news", "search", "social", "video"]
        results = await asyncio.gather(
            gateway.search(f"{subject_name} update", SearchKind.NEWS),
            gateway.search(f'{subject_name} interview OR statement OR "thread"'),
            gateway.search(build_social_query(subject_name, profiles)),
            gateway.search(build_video_query(subject_name, profiles)),
            return_exceptions=True,
        )
        data: dict[str, dict[str, Any]] = {}
        for label, result in zip(labels, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning(
                    "Source query '%s' failed for %s: %s",
                    label,
                    subject_name,
                    type(result).__name__,
                )
                data[label] = {}
            else:
                data[label] = result
        news_items = _news_candidates(data["news"])
        search_items = _search_candidates(data["search"])
        social_items = _filtered_candidates(data["social"], "social")
        video_items = _filtered_candidates(data["video"], "video")

    if profiles.youtube_channel_id:
        feed_videos = await fetch_channel_feed(profiles.youtube_channel_id, week_start)
        if feed_videos:
            video_items = dedupe_by_url([*video_items, *feed_videos])

    if not video_items and gateway.capabilities.search_enabled:
        outcome = await gateway.safe_search(f"{subject_name} youtube", result_count=10)
        video_items = _filtered_candidates(outcome.data if outcome.ok else {}, "video")

    items: list[Candidate] = [*news_items, *search_items, *social_items, *video_items]

    source_date = to_iso_date(week_start)
    for source in custom_sources:
        url = source.get("url") or ""
        if not url:
            continue
        items.append(
            Candidate(
                title=source.get("label") or url,
                url=url,
                snippet=await fetch_custom_source(gateway, url),
                source_type="custom",
                date=source_date,
            )
        )

    unique = dedupe_by_url(items)
    logger.info(
        "Collected %d candidate(s) for %s (%d before dedup)",
        len(unique),
        subject_name,
        len(items),
    )
    return unique
