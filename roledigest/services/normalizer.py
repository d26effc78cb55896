"""URL and text normalization shared by every pipeline stage.

All platform and media-type detection lives here so the collector,
synthesizer, resolvers and orchestrator classify URLs identically.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable, Mapping
from typing import Any, TypeVar
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from roledigest.services.types import SourceType

_VIDEO_PATTERNS = [
    re.compile(r"(?:^|[/.])youtube\.com/watch", re.IGNORECASE),
    re.compile(r"(?:^|[/.])youtube\.com/shorts/", re.IGNORECASE),
    re.compile(r"(?:^|[/.])youtube\.com/live/", re.IGNORECASE),
    re.compile(r"(?:^|[/.])youtube\.com/embed/", re.IGNORECASE),
    re.compile(r"(?:^|[/.])youtu\.be/", re.IGNORECASE),
]

_SOCIAL_POST_PATTERNS = [
    re.compile(r"(?:^|[/.])twitter\.com/[^/]+/status/", re.IGNORECASE),
    re.compile(r"(?:^|[/.])x\.com/[^/]+/status/", re.IGNORECASE),
    re.compile(r"(?:^|[/.])instagram\.com/(p|reel)/", re.IGNORECASE),
    re.compile(r"(?:^|[/.])facebook\.com/[^/]+/posts/", re.IGNORECASE),
    re.compile(r"(?:^|[/.])facebook\.com/[^/]+/videos/", re.IGNORECASE),
    re.compile(r"(?:^|[/.])facebook\.com/story\.php", re.IGNORECASE),
    re.compile(r"(?:^|[/.])linkedin\.com/posts/", re.IGNORECASE),
    re.compile(r"(?:^|[/.])linkedin\.com/feed/update/", re.IGNORECASE),
    re.compile(r"(?:^|[/.])tiktok\.com/@[^/]+/video/", re.IGNORECASE),
    re.compile(r"(?:^|[/.])bsky\.app/profile/[^/]+/post/", re.IGNORECASE),
]

SOCIAL_DOMAINS = (
    "twitter.com",
    "x.com",
    "instagram.com",
    "facebook.com",
    "linkedin.com",
    "tiktok.com",
    "bsky.app",
)

SOCIAL_PROFILE_DOMAINS = (*SOCIAL_DOMAINS, "youtube.com")

_TRACKING_PARAMS = frozenset(
    {"fbclid", "gclid", "igshid", "mc_cid", "mc_eid", "ref_src", "si"}
)

_HOST_ALIASES = {
    "twitter.com": "x.com",
    "www.twitter.com": "x.com",
    "mobile.twitter.com": "x.com",
    "www.x.com": "x.com",
    "youtube.com": "www.youtube.com",
    "m.youtube.com": "www.youtube.com",
    "m.facebook.com": "www.facebook.com",
}

_HANDLE_PREFIX_RE = re.compile(
    r"^(x\.com|twitter\.com|instagram\.com|facebook\.com|linkedin\.com)/",
    re.IGNORECASE,
)
_WHITESPACE_RE = re.compile(r"\s+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")

T = TypeVar("T", bound=Mapping[str, Any])


def sanitize_snippet(text: str | None) -> str:
    """Collapse whitespace runs to single spaces and trim."""
    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", text).strip()


def is_video_url(url: str | None) -> bool:
    """Return True for watch, shorts, live, embed and short-link video URLs."""
    return any(pattern.search(url or "") for pattern in _VIDEO_PATTERNS)


def is_social_post_url(url: str | None) -> bool:
    """Return True for an individual social post (not a bare profile)."""
    return any(pattern.search(url or "") for pattern in _SOCIAL_POST_PATTERNS)


def is_social_url(url: str | None) -> bool:
    """Return True for any page on a social platform (posts and profiles)."""
    host = extract_domain(url)
    return any(host == domain or host.endswith(f".{domain}") for domain in SOCIAL_DOMAINS)


def is_social_profile_url(url: str | None) -> bool:
    """Return True for a social or channel page that is not a post or video."""
    host = extract_domain(url)
    if not any(
        host == domain or host.endswith(f".{domain}") for domain in SOCIAL_PROFILE_DOMAINS
    ):
        return False
    if is_social_post_url(url):
        return False
    return not is_video_url(url)


def classify_url(url: str | None) -> SourceType:
    """Classify a URL as ``video``, ``social`` (post) or ``web``."""
    if is_video_url(url):
        return "video"
    if is_social_post_url(url):
        return "social"
    return "web"


def extract_domain(url: str | None) -> str:
    """Return the hostname without a leading ``www.``, or "" if unparseable."""
    if not url:
        return ""
    try:
        hostname = urlsplit(url).hostname or ""
    except ValueError:
        return ""
    return hostname.removeprefix("www.")


def normalize_url(url: str | None) -> str:
    """Canonicalize a URL for comparison and storage.

    Drops the fragment and tracking query parameters, lower-cases the
    scheme and host, and collapses legacy host aliases. Anything that does
    not parse as an absolute URL is returned unchanged.
    """
    if not url:
        return ""
    raw = url.strip()
    try:
        parts = urlsplit(raw)
        if not parts.scheme or not parts.netloc:
            return url
        host = parts.netloc.lower()
        host = _HOST_ALIASES.get(host, host)
        query = [
            (key, value)
            for key, value in parse_qsl(parts.query, keep_blank_values=True)
            if not key.lower().startswith("utm_")
            and key.lower() not in _TRACKING_PARAMS
        ]
        return urlunsplit(
            (parts.scheme.lower(), host, parts.path, urlencode(query), "")
        )
    except ValueError:
        return url


def url_key(url: str | None) -> str:
    """Case-insensitive identity key for a URL ("" when there is no URL)."""
    return normalize_url(url).lower()


def dedupe_by_url(items: Iterable[T], field: str = "url") -> list[T]:
    """Keep the first item per normalized URL, dropping items without one."""
    seen: set[str] = set()
    unique: list[T] = []
    for item in items:
        key = url_key(item.get(field))
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


def normalize_handle(value: str | None) -> str:
    """Strip ``@``, scheme, known host prefix and trailing slash from a handle."""
    if not value:
        return ""
    handle = value.strip().removeprefix("@")
    handle = re.sub(r"^https?://(www\.)?", "", handle, flags=re.IGNORECASE)
    handle = _HANDLE_PREFIX_RE.sub("", handle)
    return handle.removesuffix("/")


def name_tokens(name: str | None) -> list[str]:
    """Lower-cased alphanumeric tokens of a person's name."""
    cleaned = _NON_ALNUM_RE.sub(" ", (name or "").lower())
    return [token for token in cleaned.split() if token]


def content_hash(title: str, summary: str) -> str:
    """Fingerprint of an item's visible text, used as a storage upsert key."""
    return hashlib.sha256(f"{title}|{summary}".encode()).hexdigest()
