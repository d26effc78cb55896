"""Weekly digest orchestration.

Stages for one subscriber:
    1. Compute the week boundary in the configured timezone
    2. Return the stored digest when one exists (no external calls)
    3. Load custom sources and keys from recent prior digests
    4. Resolve official profiles once
    5. Collect, synthesize, summarize items, narrate
    6. Tag official items, dedupe by URL, hash content
    7. Upsert the digest and refresh the profile cache
    8. Send the digest email when the user opted in
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TypedDict
from zoneinfo import ZoneInfo

from roledigest.config import Settings, get_settings
from roledigest.repositories.base import (
    DigestRecord,
    DigestRepository,
    RoleModelRecord,
    UserRecord,
)
from roledigest.services.collector import collect_sources
from roledigest.services.digest import candidate_key, synthesize
from roledigest.services.email import build_digest_email, build_share_url, send_digest_email
from roledigest.services.item_summarizer import summarize_items
from roledigest.services.narrator import narrate_digest
from roledigest.services.normalizer import content_hash, url_key
from roledigest.services.profiles import OfficialProfileSet, resolve_official_profiles
from roledigest.services.search import ProviderGateway
from roledigest.services.types import DigestContent, DigestItem
from roledigest.time_utils import to_iso_date, week_start_for

logger = logging.getLogger(__name__)


class WeeklyDigestResult(TypedDict):
    """Outcome of generating one subscriber's weekly digest."""

    digest: DigestRecord
    created: bool
    emailed: bool


class WeeklyRunResult(TypedDict):
    """Result stats for a weekly run over every active subscription."""

    subscriptions: int
    generated: int
    existing: int
    failed: int


def previous_item_keys(history: list[DigestRecord]) -> list[str]:
    """``url|title`` keys for every item in prior digests."""
    return [
        candidate_key(item.get("source_url"), item.get("source_title"))
        for digest in history
        for item in digest["items"]
    ]


def finalize_for_storage(
    items: list[DigestItem], profiles: OfficialProfileSet
) -> list[DigestItem]:
    """Tag official items, drop repeated URLs and recompute content hashes.

    Items without a URL are kept. Items whose title and summary repeat an
    earlier item are dropped so the content hash stays unique per digest.
    """
    seen_urls: set[str] = set()
    seen_hashes: set[str] = set()
    finalized: list[DigestItem] = []
    for item in items:
        key = url_key(item.get("source_url"))
        if key:
            if key in seen_urls:
                continue
            seen_urls.add(key)
        digest_hash = content_hash(item["source_title"], item["summary"])
        if digest_hash in seen_hashes:
            continue
        seen_hashes.add(digest_hash)
        finalized.append(
            {
                **item,
                "is_official": item.get("is_official") or profiles.is_official(item["source_url"]),
                "content_hash": digest_hash,
            }
        )
    return finalized


async def _maybe_send_email(
    repo: DigestRepository,
    user: UserRecord,
    role_model: RoleModelRecord,
    digest: DigestRecord,
    settings: Settings,
) -> bool:
    if not user["weekly_email_opt_in"] or not settings.smtp_url:
        return False

    origin = settings.client_origin.rstrip("/")
    email = build_digest_email(
        role_model["name"],
        dict(digest),
        build_share_url(origin, digest["id"]),
        f"{origin}/social",
    )
    try:
        sent = await send_digest_email(settings, user["email"], email.subject, email.text, email.html)
    except Exception as exc:
        logger.warning(
            "Digest email to %s failed: %s: %s", user["email"], type(exc).__name__, exc
        )
        return False
    if sent:
        repo.mark_email_sent(digest["id"])
    return sent


async def generate_weekly_digest(
    repo: DigestRepository,
    gateway: ProviderGateway,
    *,
    user: UserRecord,
    role_model: RoleModelRecord,
    force: bool = False,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> WeeklyDigestResult:
    """Generate (or return) the digest for the current week.

    Args:
        repo: Storage backend.
        gateway: Provider gateway for this run.
        user: Owner of the role model.
        role_model: Subject to digest.
        force: Regenerate even when this week's digest already exists.
        now: Reference time; defaults to the current time.
        settings: Application settings. Uses defaults if None.

    Returns:
        The stored digest, whether it was created in this call, and whether
        an email went out.

    Raises:
        Exception: Only repository failures propagate.
    """
    if settings is None:
        settings = get_settings()

    tz = ZoneInfo(settings.schedule.timezone)
    week_start = week_start_for(now or datetime.now(tz=tz), tz)
    week_key = to_iso_date(week_start)
    name = role_model["name"]
    role_model_id = role_model["id"]

    existing = repo.get_digest(role_model_id, week_key)
    if existing and not force:
        logger.info("Digest for %s week %s already exists, skipping", name, week_key)
        return WeeklyDigestResult(digest=existing, created=False, emailed=False)

    logger.info("Generating digest for %s week %s (force=%s)", name, week_key, force)
    capabilities = gateway.capabilities

    custom_sources = repo.list_custom_sources(role_model_id)
    history = repo.list_recent_digests(
        role_model_id, settings.digest.history_digests, before=week_key
    )
    previous_keys = previous_item_keys(history)

    profiles = await resolve_official_profiles(gateway, name)
    profiles.fill_from(
        OfficialProfileSet.from_dict(repo.get_official_profile_cache(role_model_id))
    )

    candidates = await collect_sources(
        gateway, name, week_start, custom_sources, profiles=profiles
    )
    logger.info("Collected %d candidate(s) for %s", len(candidates), name)

    content = await synthesize(
        name,
        week_start,
        candidates,
        previous_keys,
        capabilities=capabilities,
        settings=settings,
    )
    items = await summarize_items(
        content["items"], name, gateway=gateway, capabilities=capabilities, settings=settings
    )
    summary_text = content["summary_text"]
    narration = await narrate_digest(
        items, name, gateway=gateway, capabilities=capabilities, settings=settings
    )
    if narration:
        summary_text = narration

    final_content = DigestContent(
        summary_text=summary_text,
        topics=content["topics"],
        items=finalize_for_storage(items, profiles),
    )
    digest = repo.upsert_digest(role_model_id, week_key, final_content)
    repo.save_official_profile_cache(role_model_id, profiles.to_dict())
    logger.info(
        "Stored digest %s for %s week %s with %d item(s)",
        digest["id"],
        name,
        week_key,
        len(digest["items"]),
    )

    emailed = await _maybe_send_email(repo, user, role_model, digest, settings)
    return WeeklyDigestResult(digest=digest, created=True, emailed=emailed)


async def run_weekly_digests(
    repo: DigestRepository,
    gateway: ProviderGateway,
    settings: Settings | None = None,
) -> WeeklyRunResult:
    """Run the weekly digest for every user with an active role model.

    A failure for one subscriber is logged and the rest still run.
    """
    if settings is None:
        settings = get_settings()

    subscriptions = repo.list_active_subscriptions()
    result = WeeklyRunResult(
        subscriptions=len(subscriptions), generated=0, existing=0, failed=0
    )
    if not subscriptions:
        logger.warning("No active subscriptions, skipping weekly digests")
        return result

    for subscription in subscriptions:
        user = subscription["user"]
        role_model = subscription["role_model"]
        try:
            outcome = await generate_weekly_digest(
                repo, gateway, user=user, role_model=role_model, settings=settings
            )
        except Exception:
            logger.exception(
                "Weekly digest failed for user_id=%s role_model=%s",
                user["id"],
                role_model["name"],
            )
            result["failed"] += 1
            continue
        if outcome["created"]:
            result["generated"] += 1
        else:
            result["existing"] += 1

    logger.info("Weekly digests complete: %s", result)
    return result
