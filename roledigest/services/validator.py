"""Role model validation.

Checks that a name refers to a living person with a public online presence
before it can be tracked. Rejections carry a user-facing reason; a complete
search outage is reported separately so callers can answer with 503.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from roledigest.services.normalizer import (
    SOCIAL_PROFILE_DOMAINS,
    dedupe_by_url,
    extract_domain,
    sanitize_snippet,
)
from roledigest.services.search import (
    ProviderError,
    ProviderGateway,
    SearchKind,
    TimeWindow,
)

logger = logging.getLogger(__name__)

MIN_RECENT_ITEMS = 5
MIN_UNIQUE_DOMAINS = 2
MIN_DEATH_SIGNALS = 2
_MAX_DETAIL_CHARS = 160

DEATH_KEYWORDS = ("died", "obituary", "passed away", "funeral", "memorial", "in memoriam")
DEATH_NEGATION_KEYWORDS = (
    "hoax",
    "rumor",
    "fake",
    "false",
    "alive",
    "not dead",
    "debunk",
    "still alive",
)
ORGANIZATION_KEYWORDS = (
    "company",
    "organization",
    "agency",
    "institution",
    "university",
    "college",
    "corporation",
    "nonprofit",
    "non-profit",
    "government",
    "foundation",
)

NAME_REQUIRED = "Role model name required."
ORGANIZATION_REASON = "Role models must be living people, not organizations."
DECEASED_REASON = (
    "Role models must be living people with a significant online presence. "
    "This name appears to refer to someone who has passed away or is memorialized."
)
NO_PRESENCE_REASON = (
    "Role models must be living people with a significant online presence. "
    "We could not find enough recent public sources for that name."
)


class RoleModelRejected(Exception):
    """The name failed validation; ``reason`` is safe to show to users."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class SearchProviderUnavailable(Exception):
    """Every validation search failed."""

    def __init__(self, status: int | None = None, detail: str = "") -> None:
        self.status = status
        self.detail = detail
        label = f" ({status})" if status else ""
        super().__init__(
            f"Search provider unavailable{label}: {detail or 'Search provider error'}"
        )


class CapabilityMissing(Exception):
    """A required provider credential is not configured."""

    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(code)


@dataclass
class ValidationResult:
    """Outcome of validating a role model name."""

    ok: bool
    reason: str = ""
    signals: dict[str, int] = field(default_factory=dict)


def normalize_name(name: str | None) -> str:
    return " ".join((name or "").split())


def _map_results(data: dict[str, Any], key: str) -> list[dict[str, str]]:
    return [
        {
            "title": str(entry.get("title") or ""),
            "url": str(entry.get("link") or ""),
            "snippet": sanitize_snippet(str(entry.get("snippet") or "")),
        }
        for entry in data.get(key) or []
        if isinstance(entry, dict)
    ]


def matches_name(item: dict[str, str], name: str) -> bool:
    """Full name in the text, or the condensed name in the URL."""
    lower_name = name.lower()
    condensed = lower_name.replace(" ", "")
    text = f"{item['title']} {item['snippet']}".lower()
    return lower_name in text or (bool(condensed) and condensed in item["url"].lower())


def has_death_signal(item: dict[str, str], name: str) -> bool:
    """A result naming the subject with death wording and no denial."""
    text = f"{item['title']} {item['snippet']}".lower()
    if name.lower() not in text:
        return False
    if any(keyword in text for keyword in DEATH_NEGATION_KEYWORDS):
        return False
    return any(keyword in text for keyword in DEATH_KEYWORDS)


def is_organization(data: dict[str, Any]) -> bool:
    """The knowledge-graph panel describes an organization."""
    graph = data.get("knowledgeGraph")
    kind = str(graph.get("type") or "").lower() if isinstance(graph, dict) else ""
    return bool(kind) and any(keyword in kind for keyword in ORGANIZATION_KEYWORDS)


def _error_detail(error: ProviderError | None) -> str:
    """Readable provider message, preferring a JSON ``message`` field."""
    if error is None or not error.body:
        return ""
    detail = error.body
    try:
        parsed = json.loads(error.body)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict) and parsed.get("message"):
        detail = str(parsed["message"])
    return " ".join(detail.split())[:_MAX_DETAIL_CHARS]


async def has_recorded_death_date(gateway: ProviderGateway, name: str) -> bool:
    """True when the knowledge base records a date of death (P570)."""
    try:
        entity_id = await gateway.lookup_knowledge_entity(name)
        if not entity_id:
            return False
        return bool(await gateway.lookup_knowledge_claim(entity_id, "P570"))
    except ProviderError as exc:
        logger.warning("Knowledge-base death lookup failed for %s: %s", name, exc)
        return False


async def validate_role_model(gateway: ProviderGateway, name: str) -> ValidationResult:
    """Decide whether ``name`` can be tracked as a role model.

    Args:
        gateway: Provider gateway for this request.
        name: Name entered by the user.

    Returns:
        ``ValidationResult`` with ``ok`` and a user-facing ``reason`` when
        rejected.

    Raises:
        CapabilityMissing: The search provider is not configured.
        SearchProviderUnavailable: All four searches failed.
    """
    normalized = normalize_name(name)
    if not normalized:
        return ValidationResult(ok=False, reason=NAME_REQUIRED)
    if not gateway.capabilities.search_enabled:
        raise CapabilityMissing("SERPER_API_KEY_MISSING")

    *outcomes, recorded_death = await asyncio.gather(
        gateway.safe_search(normalized, time_window=TimeWindow.PAST_YEAR),
        gateway.safe_search(normalized, SearchKind.NEWS, time_window=TimeWindow.PAST_YEAR),
        gateway.safe_search(
            f'{normalized} obituary OR died OR death OR "passed away"',
            time_window=TimeWindow.ANY,
        ),
        gateway.safe_search(
            f"{normalized} (site:instagram.com OR site:x.com OR site:twitter.com "
            "OR site:tiktok.com OR site:youtube.com OR site:linkedin.com)",
            time_window=TimeWindow.ANY,
        ),
        has_recorded_death_date(gateway, normalized),
    )
    recent_search, recent_news, death_search, profile_search = outcomes

    failures = [outcome for outcome in outcomes if not outcome.ok]
    if len(failures) == len(outcomes):
        first_error = failures[0].error
        raise SearchProviderUnavailable(
            first_error.status if first_error else None, _error_detail(first_error)
        )
    if failures:
        logger.warning(
            "Validation searches partially failed for %s: %d of %d",
            normalized,
            len(failures),
            len(outcomes),
        )

    if is_organization(recent_search.data):
        return ValidationResult(ok=False, reason=ORGANIZATION_REASON)

    recent_items = dedupe_by_url(
        [
            *_map_results(recent_search.data, "organic"),
            *_map_results(recent_news.data, "news"),
        ]
    )
    recent_domains = {d for d in (extract_domain(i["url"]) for i in recent_items) if d}

    profile_items = _map_results(profile_search.data, "organic")
    profile_domains = {extract_domain(i["url"]) for i in profile_items}
    profile_matches = [i for i in profile_items if matches_name(i, normalized)]
    has_social_profile = any(d in SOCIAL_PROFILE_DOMAINS for d in profile_domains)

    if recorded_death:
        return ValidationResult(ok=False, reason=DECEASED_REASON)

    death_signals = sum(
        1
        for item in _map_results(death_search.data, "organic")
        if has_death_signal(item, normalized)
    )
    has_living_presence = (
        len(recent_items) >= MIN_RECENT_ITEMS and len(recent_domains) >= MIN_UNIQUE_DOMAINS
    )
    has_social_presence = has_social_profile and len(profile_matches) >= 1

    if death_signals >= MIN_DEATH_SIGNALS and not has_living_presence and not has_social_presence:
        return ValidationResult(ok=False, reason=DECEASED_REASON)

    signals = {"recent_count": len(recent_items), "domain_count": len(recent_domains)}
    if not has_living_presence:
        if not has_social_presence:
            return ValidationResult(ok=False, reason=NO_PRESENCE_REASON)
        signals["social_profiles"] = len(profile_matches)
    return ValidationResult(ok=True, signals=signals)


async def require_valid_role_model(gateway: ProviderGateway, name: str) -> str:
    """Validate ``name`` and return its normalized form.

    Raises:
        RoleModelRejected: The name failed validation.
        CapabilityMissing: The search provider is not configured.
        SearchProviderUnavailable: All validation searches failed.
    """
    result = await validate_role_model(gateway, name)
    if not result.ok:
        logger.info("Rejected role model %r: %s", name, result.reason)
        raise RoleModelRejected(result.reason)
    return normalize_name(name)
