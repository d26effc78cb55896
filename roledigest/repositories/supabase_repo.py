"""Supabase implementation of the digest repository."""

from __future__ import annotations

import logging
from typing import Any, cast

from supabase import Client

from roledigest.repositories.base import (
    ROLE_MODEL_UPDATABLE_FIELDS,
    DigestRecord,
    RoleModelRecord,
    Subscription,
    UserRecord,
    utc_now_iso,
)
from roledigest.services.types import CustomSource, DigestContent, DigestItem

logger = logging.getLogger(__name__)

_DIGEST_COLUMNS = "id, role_model_id, week_start, summary_text, topics, generated_at, email_sent_at"
_ITEM_COLUMNS = (
    "position, source_url, source_title, source_type, source_date, summary, "
    "content_hash, is_official"
)


def _rows(response: Any) -> list[dict[str, Any]]:
    return cast(list[dict[str, Any]], response.data or [])


def _to_user(row: dict[str, Any]) -> UserRecord:
    return UserRecord(
        id=str(row["id"]),
        email=row["email"],
        display_name=row.get("display_name") or row["email"].split("@")[0],
        weekly_email_opt_in=bool(row.get("weekly_email_opt_in", True)),
        timezone=row.get("timezone") or "America/Los_Angeles",
        current_role_model_id=(
            str(row["current_role_model_id"]) if row.get("current_role_model_id") else None
        ),
    )


def _to_role_model(row: dict[str, Any]) -> RoleModelRecord:
    return RoleModelRecord(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        name=row["name"],
        bio_text=row.get("bio_text"),
        bio_updated_at=row.get("bio_updated_at"),
        image_url=row.get("image_url"),
        image_source_url=row.get("image_source_url"),
        is_active=bool(row.get("is_active", True)),
        created_at=row.get("created_at") or "",
    )


def _to_item(row: dict[str, Any]) -> DigestItem:
    return DigestItem(
        source_title=row.get("source_title") or "",
        source_url=row.get("source_url") or "",
        source_type=row.get("source_type") or "web",
        source_date=row.get("source_date") or "",
        summary=row.get("summary") or "",
        content_hash=row["content_hash"],
        is_official=bool(row.get("is_official")),
    )


class SupabaseDigestRepository:
    """Digest repository backed by Supabase tables."""

    def __init__(self, client: Client) -> None:
        self.client = client

    def _digest(self, row: dict[str, Any]) -> DigestRecord:
        items = _rows(
            self.client.table("digest_items")
            .select(_ITEM_COLUMNS)
            .eq("digest_week_id", row["id"])
            .order("position")
            .execute()
        )
        return DigestRecord(
            id=str(row["id"]),
            role_model_id=str(row["role_model_id"]),
            week_start=row["week_start"],
            summary_text=row.get("summary_text") or "",
            topics=list(row.get("topics") or []),
            items=[_to_item(item) for item in items],
            generated_at=row.get("generated_at") or "",
            email_sent_at=row.get("email_sent_at"),
        )

    # --- Digests ---

    def get_digest(self, role_model_id: str, week_start: str) -> DigestRecord | None:
        rows = _rows(
            self.client.table("digest_weeks")
            .select(_DIGEST_COLUMNS)
            .eq("role_model_id", role_model_id)
            .eq("week_start", week_start)
            .limit(1)
            .execute()
        )
        return self._digest(rows[0]) if rows else None

    def get_digest_by_id(self, digest_id: str) -> DigestRecord | None:
        rows = _rows(
            self.client.table("digest_weeks")
            .select(_DIGEST_COLUMNS)
            .eq("id", digest_id)
            .limit(1)
            .execute()
        )
        return self._digest(rows[0]) if rows else None

    def upsert_digest(
        self, role_model_id: str, week_start: str, content: DigestContent
    ) -> DigestRecord:
        now = utc_now_iso()
        row: dict[str, Any] = {
            "role_model_id": role_model_id,
            "week_start": week_start,
            "summary_text": content["summary_text"],
            "topics": content["topics"],
            "generated_at": now,
        }
        result = (
            self.client.table("digest_weeks")
            .upsert(row, on_conflict="role_model_id,week_start")
            .execute()
        )
        digest_row = _rows(result)[0]
        digest_id = digest_row["id"]

        self.client.table("digest_items").delete().eq("digest_week_id", digest_id).execute()
        if content["items"]:
            self.client.table("digest_items").upsert(
                [
                    {
                        "digest_week_id": digest_id,
                        "position": position,
                        "source_url": item["source_url"],
                        "source_title": item["source_title"],
                        "source_type": item["source_type"],
                        "source_date": item["source_date"],
                        "summary": item["summary"],
                        "content_hash": item["content_hash"],
                        "is_official": item["is_official"],
                        "created_at": now,
                    }
                    for position, item in enumerate(content["items"])
                ],
                on_conflict="digest_week_id,content_hash",
            ).execute()

        logger.info(
            "Persisted digest %s for role model %s week %s (%d items)",
            digest_id,
            role_model_id,
            week_start,
            len(content["items"]),
        )
        return DigestRecord(
            id=str(digest_id),
            role_model_id=role_model_id,
            week_start=week_start,
            summary_text=content["summary_text"],
            topics=list(content["topics"]),
            items=list(content["items"]),
            generated_at=digest_row.get("generated_at") or now,
            email_sent_at=digest_row.get("email_sent_at"),
        )

    def list_recent_digests(
        self, role_model_id: str, limit: int, before: str | None = None
    ) -> list[DigestRecord]:
        query = (
            self.client.table("digest_weeks")
            .select(_DIGEST_COLUMNS)
            .eq("role_model_id", role_model_id)
        )
        if before:
            query = query.lt("week_start", before)
        rows = _rows(query.order("week_start", desc=True).limit(limit).execute())
        return [self._digest(row) for row in rows]

    def mark_email_sent(self, digest_id: str) -> None:
        self.client.table("digest_weeks").update({"email_sent_at": utc_now_iso()}).eq(
            "id", digest_id
        ).execute()

    # --- Official profile cache ---

    def get_official_profile_cache(self, role_model_id: str) -> dict[str, Any] | None:
        rows = _rows(
            self.client.table("official_profile_cache")
            .select("profiles")
            .eq("role_model_id", role_model_id)
            .limit(1)
            .execute()
        )
        return cast(dict[str, Any], rows[0]["profiles"]) if rows else None

    def save_official_profile_cache(
        self, role_model_id: str, profiles: dict[str, Any]
    ) -> None:
        self.client.table("official_profile_cache").upsert(
            {
                "role_model_id": role_model_id,
                "profiles": profiles,
                "updated_at": utc_now_iso(),
            },
            on_conflict="role_model_id",
        ).execute()

    # --- Users and role models ---

    def upsert_user(self, email: str, display_name: str | None = None) -> UserRecord:
        rows = _rows(self.client.table("users").select("*").eq("email", email).execute())
        if rows:
            user_id = rows[0]["id"]
            updated = _rows(
                self.client.table("users")
                .update({"last_login_at": utc_now_iso()})
                .eq("id", user_id)
                .execute()
            )
            return _to_user(updated[0] if updated else rows[0])

        insert_data = {
            "email": email,
            "display_name": display_name or email.split("@")[0],
            "created_at": utc_now_iso(),
        }
        new_row = _rows(self.client.table("users").insert(insert_data).execute())[0]
        logger.info("Created new user: %s (id=%s)", email, new_row["id"])
        return _to_user(new_row)

    def get_user(self, user_id: str) -> UserRecord | None:
        rows = _rows(self.client.table("users").select("*").eq("id", user_id).execute())
        return _to_user(rows[0]) if rows else None

    def update_user_preferences(
        self, user_id: str, *, weekly_email_opt_in: bool
    ) -> UserRecord | None:
        rows = _rows(
            self.client.table("users")
            .update({"weekly_email_opt_in": weekly_email_opt_in})
            .eq("id", user_id)
            .execute()
        )
        return _to_user(rows[0]) if rows else None

    def set_active_role_model(
        self, user_id: str, name: str, custom_sources: list[CustomSource]
    ) -> RoleModelRecord:
        now = utc_now_iso()
        self.client.table("role_models").update({"is_active": False}).eq(
            "user_id", user_id
        ).execute()
        role_model = _rows(
            self.client.table("role_models")
            .insert({"user_id": user_id, "name": name, "is_active": True, "created_at": now})
            .execute()
        )[0]
        sources = [
            {
                "role_model_id": role_model["id"],
                "label": source.get("label"),
                "url": source["url"],
                "created_at": now,
            }
            for source in custom_sources
            if source.get("url")
        ]
        if sources:
            self.client.table("role_model_sources").insert(sources).execute()
        self.client.table("users").update(
            {"current_role_model_id": role_model["id"]}
        ).eq("id", user_id).execute()
        logger.info("Activated role model %s (%s) for user %s", name, role_model["id"], user_id)
        return _to_role_model(role_model)

    def get_role_model(self, role_model_id: str) -> RoleModelRecord | None:
        rows = _rows(
            self.client.table("role_models").select("*").eq("id", role_model_id).execute()
        )
        return _to_role_model(rows[0]) if rows else None

    def list_custom_sources(self, role_model_id: str) -> list[CustomSource]:
        rows = _rows(
            self.client.table("role_model_sources")
            .select("url, label")
            .eq("role_model_id", role_model_id)
            .order("created_at")
            .execute()
        )
        return [CustomSource(url=row["url"], label=row.get("label")) for row in rows]

    def update_role_model(
        self, role_model_id: str, fields: dict[str, Any]
    ) -> RoleModelRecord | None:
        updates = {k: v for k, v in fields.items() if k in ROLE_MODEL_UPDATABLE_FIELDS}
        if not updates:
            return self.get_role_model(role_model_id)
        rows = _rows(
            self.client.table("role_models")
            .update(updates)
            .eq("id", role_model_id)
            .execute()
        )
        return _to_role_model(rows[0]) if rows else None

    def list_active_subscriptions(self) -> list[Subscription]:
        users = _rows(
            self.client.table("users")
            .select("*")
            .not_.is_("current_role_model_id", "null")
            .execute()
        )
        role_model_ids = [row["current_role_model_id"] for row in users]
        if not role_model_ids:
            return []
        role_models = {
            str(row["id"]): _to_role_model(row)
            for row in _rows(
                self.client.table("role_models")
                .select("*")
                .in_("id", role_model_ids)
                .eq("is_active", True)
                .execute()
            )
        }
        subscriptions = []
        for row in users:
            role_model = role_models.get(str(row["current_role_model_id"]))
            if role_model:
                subscriptions.append(Subscription(user=_to_user(row), role_model=role_model))
        return subscriptions
