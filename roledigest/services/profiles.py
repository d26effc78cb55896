"""Official social and video profile resolution.

Discovers a subject's canonical handles by combining knowledge-base claims
with heuristic scans of search result URLs. Resolution is best effort: any
failing stage leaves its fields empty and the resolver never raises.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import asdict, dataclass, fields
from typing import Any

from roledigest.services.normalizer import is_video_url, normalize_handle
from roledigest.services.search import (
    ProviderError,
    ProviderGateway,
    SearchKind,
    TimeWindow,
    extract_claim_value,
)

logger = logging.getLogger(__name__)

# Knowledge-base property ids per profile field.
_CLAIM_PROPERTIES = {
    "twitter": "P2002",
    "instagram": "P2003",
    "facebook": "P2013",
    "linkedin": "P6634",
    "tiktok": "P7085",
    "youtube_channel_id": "P2397",
    "youtube_username": "P11245",
}

_HANDLE_BLOCKLIST = frozenset(
    {
        "home",
        "search",
        "hashtag",
        "intent",
        "share",
        "i",
        "explore",
        "status",
        "p",
        "reel",
        "reels",
        "tv",
        "posts",
        "videos",
        "watch",
        "login",
        "signup",
        "pages",
        "groups",
        "events",
        "help",
        "about",
        "story.php",
        "profile.php",
        "discover",
        "tag",
    }
)

_PLATFORM_DOMAINS = {
    "twitter": ("x.com", "twitter.com"),
    "instagram": ("instagram.com",),
    "facebook": ("facebook.com",),
    "linkedin": ("linkedin.com",),
    "tiktok": ("tiktok.com",),
}

_LINKEDIN_RE = re.compile(r"linkedin\.com/(?:in|company)/([^/?#]+)", re.IGNORECASE)
_YOUTUBE_CHANNEL_RE = re.compile(r"youtube\.com/channel/([^/?#]+)", re.IGNORECASE)
_YOUTUBE_USERNAME_RES = [
    re.compile(r"youtube\.com/@([^/?#]+)", re.IGNORECASE),
    re.compile(r"youtube\.com/user/([^/?#]+)", re.IGNORECASE),
    re.compile(r"youtube\.com/c/([^/?#]+)", re.IGNORECASE),
]

_COMBINED_SITES = (
    "site:instagram.com OR site:x.com OR site:twitter.com OR site:facebook.com "
    "OR site:linkedin.com OR site:tiktok.com OR site:youtube.com"
)


@dataclass
class OfficialProfileSet:
    """Resolved handles for one subject; empty strings mean unknown."""

    twitter: str = ""
    instagram: str = ""
    facebook: str = ""
    linkedin: str = ""
    tiktok: str = ""
    youtube_channel_id: str = ""
    youtube_username: str = ""

    def missing_fields(self) -> list[str]:
        return [f.name for f in fields(self) if not getattr(self, f.name)]

    def fill_from(self, other: OfficialProfileSet) -> None:
        """Copy values from ``other`` into fields that are still empty."""
        for name in self.missing_fields():
            setattr(self, name, getattr(other, name))

    def handle_hints(self) -> list[str]:
        """Non-empty social handles, used to recognise the subject's own pages."""
        values = [
            self.instagram,
            self.twitter,
            self.facebook,
            self.linkedin,
            self.tiktok,
            self.youtube_username,
        ]
        return [value for value in values if value]

    def is_official(self, url: str | None) -> bool:
        """Return True when ``url`` lives under one of the resolved accounts."""
        lower_url = (url or "").lower()
        if not lower_url:
            return False
        checks: list[str] = []
        if self.twitter:
            checks += [f"x.com/{self.twitter}", f"twitter.com/{self.twitter}"]
        if self.instagram:
            checks.append(f"instagram.com/{self.instagram}")
        if self.facebook:
            checks.append(f"facebook.com/{self.facebook}")
        if self.linkedin:
            checks += [
                f"linkedin.com/in/{self.linkedin}",
                f"linkedin.com/company/{self.linkedin}",
                f"linkedin.com/{self.linkedin}",
            ]
        if self.tiktok:
            checks.append(f"tiktok.com/@{self.tiktok}")
        if self.youtube_channel_id:
            checks.append(f"youtube.com/channel/{self.youtube_channel_id}")
        if self.youtube_username:
            checks += [
                f"youtube.com/@{self.youtube_username}",
                f"youtube.com/user/{self.youtube_username}",
                f"youtube.com/c/{self.youtube_username}",
            ]
        return any(_contains_path(lower_url, check.lower()) for check in checks)

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> OfficialProfileSet:
        data = data or {}
        return cls(
            **{
                f.name: str(data.get(f.name) or "")
                for f in fields(cls)
            }
        )


def _contains_path(url: str, prefix: str) -> bool:
    """Match ``prefix`` in ``url`` only when it ends at a path boundary."""
    pattern = r"(?:^|[/.])" + re.escape(prefix) + r"(?:$|[/?#])"
    return re.search(pattern, url) is not None


def extract_handle_from_url(url: str, domain: str) -> str:
    """Return the profile handle in ``url`` for ``domain``, or "".

    Path segments that are not profiles (search, status, hashtag, ...) are
    rejected.
    """
    if not url:
        return ""
    if domain == "linkedin.com":
        match = _LINKEDIN_RE.search(url)
    else:
        match = re.search(
            r"(?:^|[/.])" + re.escape(domain) + r"/([^/?#]+)", url, re.IGNORECASE
        )
    if not match:
        return ""
    handle = normalize_handle(match.group(1))
    if not handle or handle.lower() in _HANDLE_BLOCKLIST:
        return ""
    return handle


def extract_youtube_profile(url: str) -> tuple[str, str]:
    """Return ``(channel_id, username)`` from a channel URL; at most one is set."""
    if not url or is_video_url(url):
        return "", ""
    match = _YOUTUBE_CHANNEL_RE.search(url)
    if match:
        return match.group(1), ""
    for pattern in _YOUTUBE_USERNAME_RES:
        match = pattern.search(url)
        if match:
            return "", match.group(1)
    return "", ""


def profiles_from_urls(urls: list[str]) -> OfficialProfileSet:
    """Take the first handle per platform found across ``urls``."""
    found = OfficialProfileSet()
    for url in urls:
        for field_name, domains in _PLATFORM_DOMAINS.items():
            if getattr(found, field_name):
                continue
            for domain in domains:
                handle = extract_handle_from_url(url, domain)
                if handle:
                    setattr(found, field_name, handle)
                    break
        channel_id, username = extract_youtube_profile(url)
        if channel_id and not found.youtube_channel_id:
            found.youtube_channel_id = channel_id
        if username and not found.youtube_username:
            found.youtube_username = username
    return found


def _targeted_query(field_name: str, subject_name: str) -> str:
    queries = {
        "twitter": f"{subject_name} official X account",
        "instagram": f"site:instagram.com {subject_name}",
        "facebook": f"site:facebook.com {subject_name}",
        "linkedin": f"site:linkedin.com/in {subject_name}",
        "tiktok": f"site:tiktok.com {subject_name}",
        "youtube": f"site:youtube.com {subject_name} channel",
    }
    return queries[field_name]


async def _profiles_from_knowledge_base(
    gateway: ProviderGateway, subject_name: str
) -> OfficialProfileSet:
    if not gateway.capabilities.knowledge_base_enabled:
        return OfficialProfileSet()
    try:
        entity_id = await gateway.lookup_knowledge_entity(subject_name)
        if not entity_id:
            return OfficialProfileSet()
        claims = await gateway.fetch_knowledge_claims(entity_id)
    except ProviderError as exc:
        logger.warning("Knowledge-base profile lookup failed for %s: %s", subject_name, exc)
        return OfficialProfileSet()

    values = {
        field_name: extract_claim_value(claims, property_id)
        for field_name, property_id in _CLAIM_PROPERTIES.items()
    }
    return OfficialProfileSet(
        twitter=normalize_handle(values["twitter"]),
        instagram=normalize_handle(values["instagram"]),
        facebook=normalize_handle(values["facebook"]),
        linkedin=normalize_handle(values["linkedin"]),
        tiktok=normalize_handle(values["tiktok"]),
        youtube_channel_id=values["youtube_channel_id"],
        youtube_username=normalize_handle(values["youtube_username"]),
    )


async def _targeted_search(
    gateway: ProviderGateway, platform: str, subject_name: str
) -> OfficialProfileSet:
    """Search one platform and keep only the first handle for that platform."""
    outcome = await gateway.safe_search(
        _targeted_query(platform, subject_name),
        SearchKind.WEB,
        time_window=TimeWindow.PAST_YEAR,
        result_count=5,
    )
    urls = [str(entry.get("link") or "") for entry in outcome.results("organic")]
    discovered = profiles_from_urls([url for url in urls if url])
    if platform == "youtube":
        return OfficialProfileSet(
            youtube_channel_id=discovered.youtube_channel_id,
            youtube_username=discovered.youtube_username,
        )
    return OfficialProfileSet(**{platform: getattr(discovered, platform)})


async def _combined_search(
    gateway: ProviderGateway, subject_name: str
) -> OfficialProfileSet:
    outcome = await gateway.safe_search(
        f"{subject_name} ({_COMBINED_SITES})",
        SearchKind.WEB,
        time_window=TimeWindow.ANY,
        result_count=8,
    )
    urls = [str(entry.get("link") or "") for entry in outcome.results("organic")]
    return profiles_from_urls([url for url in urls if url])


async def resolve_official_profiles(
    gateway: ProviderGateway, subject_name: str
) -> OfficialProfileSet:
    """Resolve a subject's official handles.

    Stages:
        1. Knowledge-base claims for each platform property.
        2. One targeted search per platform that is still empty (concurrent).
        3. One combined multi-site query for anything still missing.

    Args:
        gateway: Provider gateway for this run.
        subject_name: The subject's display name.

    Returns:
        Whatever partial set could be assembled; never raises.
    """
    profiles = OfficialProfileSet()
    try:
        profiles = await _profiles_from_knowledge_base(gateway, subject_name)

        if not gateway.capabilities.search_enabled:
            return profiles

        missing = set(profiles.missing_fields())
        platforms = [name for name in _PLATFORM_DOMAINS if name in missing]
        if {"youtube_channel_id", "youtube_username"} <= missing:
            platforms.append("youtube")
        if platforms:
            discovered = await asyncio.gather(
                *(_targeted_search(gateway, p, subject_name) for p in platforms)
            )
            for partial in discovered:
                profiles.fill_from(partial)

        if profiles.missing_fields():
            profiles.fill_from(await _combined_search(gateway, subject_name))
    except Exception:
        logger.exception("Official profile lookup failed for %s", subject_name)

    logger.debug("Resolved official profiles for %s: %s", subject_name, profiles)
    return profiles
