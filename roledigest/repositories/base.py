"""Storage interface shared by the Supabase and SQLite backends.

The pipeline depends only on ``DigestRepository``; both backends implement
the identical feature set so either can be selected by configuration.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Protocol, TypedDict

from roledigest.services.types import CustomSource, DigestContent, DigestItem


class UserRecord(TypedDict):
    """A signed-in user."""

    id: str
    email: str
    display_name: str
    weekly_email_opt_in: bool
    timezone: str
    current_role_model_id: str | None


class RoleModelRecord(TypedDict):
    """A tracked public figure belonging to one user."""

    id: str
    user_id: str
    name: str
    bio_text: str | None
    bio_updated_at: str | None
    image_url: str | None
    image_source_url: str | None
    is_active: bool
    created_at: str


class DigestRecord(TypedDict):
    """A stored weekly digest."""

    id: str
    role_model_id: str
    week_start: str
    summary_text: str
    topics: list[str]
    items: list[DigestItem]
    generated_at: str
    email_sent_at: str | None


class Subscription(TypedDict):
    """A user paired with their active role model."""

    user: UserRecord
    role_model: RoleModelRecord


class DigestRepository(Protocol):
    """Persistence operations used by the pipeline and the HTTP layer."""

    # --- Digests ---

    def get_digest(self, role_model_id: str, week_start: str) -> DigestRecord | None: ...

    def get_digest_by_id(self, digest_id: str) -> DigestRecord | None: ...

    def upsert_digest(
        self, role_model_id: str, week_start: str, content: DigestContent
    ) -> DigestRecord:
        """Insert or replace the digest for ``(role_model_id, week_start)``.

        A rerun keeps the existing digest id and replaces its items.
        """
        ...

    def list_recent_digests(
        self, role_model_id: str, limit: int, before: str | None = None
    ) -> list[DigestRecord]:
        """Newest first; ``before`` excludes weeks on or after that date."""
        ...

    def mark_email_sent(self, digest_id: str) -> None: ...

    # --- Official profile cache ---

    def get_official_profile_cache(self, role_model_id: str) -> dict[str, Any] | None: ...

    def save_official_profile_cache(
        self, role_model_id: str, profiles: dict[str, Any]
    ) -> None: ...

    # --- Users and role models ---

    def upsert_user(self, email: str, display_name: str | None = None) -> UserRecord: ...

    def get_user(self, user_id: str) -> UserRecord | None: ...

    def update_user_preferences(
        self, user_id: str, *, weekly_email_opt_in: bool
    ) -> UserRecord | None: ...

    def set_active_role_model(
        self, user_id: str, name: str, custom_sources: list[CustomSource]
    ) -> RoleModelRecord:
        """Deactivate the user's current role model and activate a new one."""
        ...

    def get_role_model(self, role_model_id: str) -> RoleModelRecord | None: ...

    def list_custom_sources(self, role_model_id: str) -> list[CustomSource]: ...

    def update_role_model(
        self, role_model_id: str, fields: dict[str, Any]
    ) -> RoleModelRecord | None: ...

    def list_active_subscriptions(self) -> list[Subscription]: ...


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(tz=UTC).isoformat()


ROLE_MODEL_UPDATABLE_FIELDS = frozenset(
    {"bio_text", "bio_updated_at", "image_url", "image_source_url"}
)
