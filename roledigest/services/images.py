"""Profile image resolution.

Gathers image candidates from image search, Open Graph tags on profile and
result pages, the search knowledge graph and the knowledge base, then picks
the highest-scoring one. Scoring favours name and handle matches and trusted
hosts, and penalises logos, book covers, album art and tiny images.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

from roledigest.services import scraper
from roledigest.services.normalizer import dedupe_by_url, is_video_url, name_tokens
from roledigest.services.profiles import OfficialProfileSet, resolve_official_profiles
from roledigest.services.search import (
    ProviderError,
    ProviderGateway,
    SearchKind,
    SearchOutcome,
    TimeWindow,
)

logger = logging.getLogger(__name__)

KNOWLEDGE_GRAPH_BOOST = 6.0
KNOWLEDGE_BASE_BOOST = 8.0
PROFILE_PAGE_BOOST = 5.0
RESULT_PAGE_BOOST = 3.0

_MAX_OG_PAGES = 8
_BLOCKED_IMAGE_HOSTS = ("instagram.com", "cdninstagram.com", "facebook.com", "fbcdn.net")
_COMMONS_FILE_URL = "https://commons.wikimedia.org/wiki/Special:FilePath/{name}"
_WIKIDATA_PAGE_URL = "https://www.wikidata.org/wiki/{entity_id}"


@dataclass
class ImageCandidate:
    """One possible profile picture and where it was found."""

    title: str = ""
    image_url: str = ""
    thumbnail_url: str = ""
    source_url: str = ""
    source: str = ""
    boost: float = 0.0
    width: float | None = None
    height: float | None = None

    @classmethod
    def from_search_result(cls, entry: dict[str, Any]) -> ImageCandidate:
        return cls(
            title=str(entry.get("title") or ""),
            image_url=str(entry.get("imageUrl") or ""),
            thumbnail_url=str(entry.get("thumbnailUrl") or ""),
            source_url=str(entry.get("link") or ""),
            source=str(entry.get("source") or entry.get("domain") or ""),
            width=_to_number(entry.get("imageWidth") or entry.get("thumbnailWidth")),
            height=_to_number(entry.get("imageHeight") or entry.get("thumbnailHeight")),
        )


@dataclass
class ImageMatch:
    """The selected profile image."""

    image_url: str
    source_url: str
    score: float


def _to_number(value: Any) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def is_blocked_image_host(url: str) -> bool:
    """Hosts whose direct image URLs do not hotlink."""
    lower_url = (url or "").lower()
    return any(host in lower_url for host in _BLOCKED_IMAGE_HOSTS)


def resolve_image_url(candidate: ImageCandidate) -> str:
    """Choose between the direct image URL and its thumbnail.

    Data URLs are never returned, and direct URLs on hotlink-blocked hosts
    fall back to the thumbnail when one exists.
    """
    direct = candidate.image_url
    thumbnail = candidate.thumbnail_url
    if direct.startswith("data:"):
        return thumbnail if thumbnail and not thumbnail.startswith("data:") else ""
    if thumbnail.startswith("data:"):
        return direct
    if not direct:
        return thumbnail
    if is_blocked_image_host(direct) and thumbnail:
        return thumbnail
    return direct


def score_image_candidate(
    candidate: ImageCandidate, tokens: list[str], handle_hints: list[str]
) -> float:
    """Score how likely a candidate is a portrait of the subject."""
    image_url = (candidate.image_url or candidate.thumbnail_url).lower()
    text = " ".join(
        [
            candidate.title.lower(),
            candidate.source_url.lower(),
            candidate.source.lower(),
            image_url,
        ]
    )
    score = candidate.boost
    score += 2 * sum(1 for token in tokens if token in text)
    if any(handle and handle.lower() in text for handle in handle_hints):
        score += 3

    if "instagram.com" in text:
        score += 2
    if "x.com" in text or "twitter.com" in text:
        score += 2
    if "youtube.com" in text:
        score += 1
    if "tiktok.com" in text:
        score += 1
    if any(word in text for word in ("portrait", "headshot", "profile")):
        score += 1
    if any(host in text for host in ("commons.wikimedia.org", "wikipedia.org", "wikidata.org")):
        score += 3
    if "gstatic.com" in text:
        score += 2

    if any(word in text for word in ("logo", "brand", "icon", "vector", "stock")):
        score -= 3
    book_cover_signals = (
        "book cover",
        "paperback",
        "hardcover",
        "kindle",
        "isbn",
        "goodreads",
        "amazon.com",
    )
    if any(signal in text for signal in book_cover_signals) or (
        "cover" in text and "book" in text
    ):
        score -= 4
    elif "book" in text or "novel" in text:
        score -= 2
    if "album cover" in text or "tracklist" in text:
        score -= 2
    elif any(word in text for word in ("album", "spotify", "itunes")):
        score -= 1
    if image_url.endswith(".svg"):
        score -= 4

    width, height = candidate.width, candidate.height
    if width is not None and width < 120:
        score -= 2
    if height is not None and height < 120:
        score -= 2
    if width is not None and height is not None:
        if width >= 300 and height >= 300:
            score += 1
        if width >= 800 and height >= 800:
            score += 1
    return score


def _profile_page_urls(profiles: OfficialProfileSet) -> list[str]:
    urls = []
    if profiles.instagram:
        urls.append(f"https://www.instagram.com/{profiles.instagram}")
    if profiles.twitter:
        urls.append(f"https://x.com/{profiles.twitter}")
    if profiles.facebook:
        urls.append(f"https://www.facebook.com/{profiles.facebook}")
    if profiles.linkedin:
        urls.append(f"https://www.linkedin.com/in/{profiles.linkedin}")
    if profiles.tiktok:
        urls.append(f"https://www.tiktok.com/@{profiles.tiktok}")
    if profiles.youtube_username:
        urls.append(f"https://www.youtube.com/@{profiles.youtube_username}")
    elif profiles.youtube_channel_id:
        urls.append(f"https://www.youtube.com/channel/{profiles.youtube_channel_id}")
    return urls


def build_image_queries(subject_name: str, profiles: OfficialProfileSet) -> list[str]:
    """Image-search queries, narrowed to official profiles where known."""
    queries = [
        f"{subject_name} portrait",
        f"{subject_name} headshot",
        f"{subject_name} profile photo",
        f"{subject_name} instagram",
        f"{subject_name} x profile",
    ]
    if profiles.instagram:
        queries.append(f"site:instagram.com/{profiles.instagram} {subject_name}")
    if profiles.twitter:
        queries += [
            f"site:x.com/{profiles.twitter} {subject_name}",
            f"site:twitter.com/{profiles.twitter} {subject_name}",
        ]
    if profiles.facebook:
        queries.append(f"site:facebook.com/{profiles.facebook} {subject_name}")
    if profiles.linkedin:
        queries.append(f"site:linkedin.com/in/{profiles.linkedin} {subject_name}")
    if profiles.tiktok:
        queries.append(f"site:tiktok.com/@{profiles.tiktok} {subject_name}")
    if profiles.youtube_username:
        queries.append(f"site:youtube.com/@{profiles.youtube_username} {subject_name}")
    elif profiles.youtube_channel_id:
        queries.append(
            f"site:youtube.com/channel/{profiles.youtube_channel_id} {subject_name}"
        )
    return queries


def knowledge_graph_candidate(outcome: SearchOutcome) -> ImageCandidate | None:
    """Image attached to the search provider's knowledge-graph panel."""
    graph = outcome.data.get("knowledgeGraph") if outcome.ok else None
    if not isinstance(graph, dict):
        return None
    image_url = str(graph.get("imageUrl") or graph.get("image") or "")
    if not image_url:
        return None
    return ImageCandidate(
        title=str(graph.get("title") or "Knowledge graph"),
        image_url=image_url,
        source_url=str(graph.get("descriptionUrl") or graph.get("website") or ""),
        boost=KNOWLEDGE_GRAPH_BOOST,
    )


async def knowledge_base_candidate(
    gateway: ProviderGateway, subject_name: str
) -> ImageCandidate | None:
    """The knowledge base's image claim (P18), served from Wikimedia Commons."""
    try:
        entity_id = await gateway.lookup_knowledge_entity(subject_name)
        if not entity_id:
            return None
        image_name = await gateway.lookup_knowledge_claim(entity_id, "P18")
    except ProviderError as exc:
        logger.warning("Knowledge-base image lookup failed for %s: %s", subject_name, exc)
        return None
    if not image_name:
        return None
    return ImageCandidate(
        title=f"{subject_name} (Wikimedia Commons)",
        image_url=_COMMONS_FILE_URL.format(name=quote(image_name)),
        source_url=_WIKIDATA_PAGE_URL.format(entity_id=entity_id),
        boost=KNOWLEDGE_BASE_BOOST,
    )


async def _open_graph_candidate(
    gateway: ProviderGateway, page_url: str, subject_name: str, boost: float
) -> ImageCandidate | None:
    html = await gateway.fetch_page(page_url)
    image_url = scraper.extract_open_graph_image(html, page_url)
    if not image_url:
        return None
    return ImageCandidate(
        title=f"{subject_name} profile",
        image_url=image_url,
        source_url=page_url,
        boost=boost,
    )


def rank_image_candidates(
    candidates: list[ImageCandidate], tokens: list[str], handle_hints: list[str]
) -> list[tuple[float, ImageCandidate]]:
    """Resolve, dedupe by image URL and score candidates, best first.

    The sort is stable so equal scores keep their encounter order.
    """
    seen: set[str] = set()
    ranked: list[tuple[float, ImageCandidate]] = []
    for candidate in candidates:
        image_url = resolve_image_url(candidate)
        key = image_url.lower()
        if not key or key in seen:
            continue
        seen.add(key)
        candidate.image_url = image_url
        ranked.append((score_image_candidate(candidate, tokens, handle_hints), candidate))
    ranked.sort(key=lambda pair: pair[0], reverse=True)
    return ranked


async def resolve_profile_image(
    gateway: ProviderGateway,
    subject_name: str,
    profiles: OfficialProfileSet | None = None,
) -> ImageMatch | None:
    """Find the best profile image for a subject.

    Args:
        gateway: Provider gateway for this run.
        subject_name: The subject's display name.
        profiles: Already-resolved official profiles; resolved here when None.

    Returns:
        The top-scoring image, or None when search is not configured or no
        candidate survives.
    """
    if not gateway.capabilities.search_enabled:
        return None
    if profiles is None:
        profiles = await resolve_official_profiles(gateway, subject_name)

    primary = await gateway.safe_search(
        subject_name, time_window=TimeWindow.ANY, result_count=5
    )
    result_pages = [
        url
        for url in (str(entry.get("link") or "") for entry in primary.results("organic"))
        if url and not is_video_url(url)
    ][:5]

    queries = build_image_queries(subject_name, profiles)
    outcomes = await asyncio.gather(
        *(
            gateway.safe_search(
                query,
                SearchKind.IMAGES,
                time_window=TimeWindow.ANY,
                result_count=10,
                faces_only="portrait" in query or "headshot" in query,
            )
            for query in queries
        )
    )
    image_results = [
        ImageCandidate.from_search_result(entry)
        for outcome in outcomes
        for entry in outcome.results("images")
    ]

    profile_pages = [
        entry["url"] for entry in dedupe_by_url({"url": u} for u in _profile_page_urls(profiles))
    ]
    profile_keys = {url.lower() for url in profile_pages}
    pages = [
        entry["url"]
        for entry in dedupe_by_url({"url": u} for u in [*profile_pages, *result_pages])
    ][:_MAX_OG_PAGES]
    og_results = await asyncio.gather(
        *(
            _open_graph_candidate(
                gateway,
                url,
                subject_name,
                PROFILE_PAGE_BOOST if url.lower() in profile_keys else RESULT_PAGE_BOOST,
            )
            for url in pages
        )
    )

    candidates = [
        *image_results,
        *(c for c in og_results if c is not None),
    ]
    graph_candidate = knowledge_graph_candidate(primary)
    if graph_candidate:
        candidates.append(graph_candidate)
    base_candidate = await knowledge_base_candidate(gateway, subject_name)
    if base_candidate:
        candidates.append(base_candidate)

    ranked = rank_image_candidates(
        candidates, name_tokens(subject_name), profiles.handle_hints()
    )
    if not ranked:
        logger.info("No profile image candidates for %s", subject_name)
        return None
    score, best = ranked[0]
    logger.info("Selected profile image for %s (score %.1f)", subject_name, score)
    return ImageMatch(image_url=best.image_url, source_url=best.source_url, score=score)
