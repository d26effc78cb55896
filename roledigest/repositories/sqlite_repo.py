"""SQLite implementation of the digest repository (stdlib ``sqlite3``)."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

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

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT UNIQUE NOT NULL,
    display_name TEXT NOT NULL,
    weekly_email_opt_in INTEGER NOT NULL DEFAULT 1,
    timezone TEXT NOT NULL DEFAULT 'America/Los_Angeles',
    current_role_model_id TEXT,
    created_at TEXT NOT NULL,
    last_login_at TEXT
);

CREATE TABLE IF NOT EXISTS role_models (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users (id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    bio_text TEXT,
    bio_updated_at TEXT,
    image_url TEXT,
    image_source_url TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS role_model_sources (
    id TEXT PRIMARY KEY,
    role_model_id TEXT NOT NULL REFERENCES role_models (id) ON DELETE CASCADE,
    label TEXT,
    url TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS digest_weeks (
    id TEXT PRIMARY KEY,
    role_model_id TEXT NOT NULL REFERENCES role_models (id) ON DELETE CASCADE,
    week_start TEXT NOT NULL,
    summary_text TEXT NOT NULL,
    topics TEXT NOT NULL DEFAULT '[]',
    generated_at TEXT NOT NULL,
    email_sent_at TEXT,
    UNIQUE (role_model_id, week_start)
);

CREATE TABLE IF NOT EXISTS digest_items (
    id TEXT PRIMARY KEY,
    digest_week_id TEXT NOT NULL REFERENCES digest_weeks (id) ON DELETE CASCADE,
    position INTEGER NOT NULL,
    source_url TEXT,
    source_title TEXT,
    source_type TEXT,
    source_date TEXT,
    summary TEXT,
    content_hash TEXT NOT NULL,
    is_official INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    UNIQUE (digest_week_id, content_hash)
);

CREATE TABLE IF NOT EXISTS official_profile_cache (
    role_model_id TEXT PRIMARY KEY REFERENCES role_models (id) ON DELETE CASCADE,
    profiles TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_role_models_user ON role_models (user_id);
CREATE INDEX IF NOT EXISTS idx_digest_weeks_role ON digest_weeks (role_model_id);
CREATE INDEX IF NOT EXISTS idx_digest_items_week ON digest_items (digest_week_id);
"""


def _new_id() -> str:
    return str(uuid.uuid4())


class SqliteDigestRepository:
    """Digest repository backed by a local SQLite file (or ``:memory:``)."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, timeout=30.0, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._lock = threading.Lock()
        self.init_database()

    def init_database(self) -> None:
        """Create tables and indexes if they do not exist."""
        with self._transaction() as conn:
            conn.executescript(_SCHEMA)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run statements atomically, rolling back on error."""
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error:
                self._conn.rollback()
                logger.exception("SQLite transaction failed (%s)", self.db_path)
                raise

    def close(self) -> None:
        self._conn.close()

    # --- Row mapping ---

    @staticmethod
    def _user(row: sqlite3.Row) -> UserRecord:
        return UserRecord(
            id=row["id"],
            email=row["email"],
            display_name=row["display_name"],
            weekly_email_opt_in=bool(row["weekly_email_opt_in"]),
            timezone=row["timezone"],
            current_role_model_id=row["current_role_model_id"],
        )

    @staticmethod
    def _role_model(row: sqlite3.Row) -> RoleModelRecord:
        return RoleModelRecord(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            bio_text=row["bio_text"],
            bio_updated_at=row["bio_updated_at"],
            image_url=row["image_url"],
            image_source_url=row["image_source_url"],
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
        )

    def _digest(self, conn: sqlite3.Connection, row: sqlite3.Row) -> DigestRecord:
        item_rows = conn.execute(
            "SELECT * FROM digest_items WHERE digest_week_id = ? ORDER BY position",
            (row["id"],),
        ).fetchall()
        items = [
            DigestItem(
                source_title=item["source_title"] or "",
                source_url=item["source_url"] or "",
                source_type=item["source_type"] or "web",
                source_date=item["source_date"] or "",
                summary=item["summary"] or "",
                content_hash=item["content_hash"],
                is_official=bool(item["is_official"]),
            )
            for item in item_rows
        ]
        return DigestRecord(
            id=row["id"],
            role_model_id=row["role_model_id"],
            week_start=row["week_start"],
            summary_text=row["summary_text"],
            topics=json.loads(row["topics"] or "[]"),
            items=items,
            generated_at=row["generated_at"],
            email_sent_at=row["email_sent_at"],
        )

    # --- Digests ---

    def get_digest(self, role_model_id: str, week_start: str) -> DigestRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM digest_weeks WHERE role_model_id = ? AND week_start = ?",
                (role_model_id, week_start),
            ).fetchone()
            return self._digest(conn, row) if row else None

    def get_digest_by_id(self, digest_id: str) -> DigestRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM digest_weeks WHERE id = ?", (digest_id,)
            ).fetchone()
            return self._digest(conn, row) if row else None

    def upsert_digest(
        self, role_model_id: str, week_start: str, content: DigestContent
    ) -> DigestRecord:
        now = utc_now_iso()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO digest_weeks
                    (id, role_model_id, week_start, summary_text, topics, generated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (role_model_id, week_start) DO UPDATE SET
                    summary_text = excluded.summary_text,
                    topics = excluded.topics,
                    generated_at = excluded.generated_at
                """,
                (
                    _new_id(),
                    role_model_id,
                    week_start,
                    content["summary_text"],
                    json.dumps(content["topics"]),
                    now,
                ),
            )
            row = conn.execute(
                "SELECT * FROM digest_weeks WHERE role_model_id = ? AND week_start = ?",
                (role_model_id, week_start),
            ).fetchone()
            conn.execute("DELETE FROM digest_items WHERE digest_week_id = ?", (row["id"],))
            conn.executemany(
                """
                INSERT INTO digest_items
                    (id, digest_week_id, position, source_url, source_title, source_type,
                     source_date, summary, content_hash, is_official, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (digest_week_id, content_hash) DO NOTHING
                """,
                [
                    (
                        _new_id(),
                        row["id"],
                        position,
                        item["source_url"],
                        item["source_title"],
                        item["source_type"],
                        item["source_date"],
                        item["summary"],
                        item["content_hash"],
                        int(item["is_official"]),
                        now,
                    )
                    for position, item in enumerate(content["items"])
                ],
            )
            digest = self._digest(conn, row)
        logger.info(
            "Persisted digest %s for role model %s week %s (%d items)",
            digest["id"],
            role_model_id,
            week_start,
            len(digest["items"]),
        )
        return digest

    def list_recent_digests(
        self, role_model_id: str, limit: int, before: str | None = None
    ) -> list[DigestRecord]:
        query = "SELECT * FROM digest_weeks WHERE role_model_id = ?"
        params: list[Any] = [role_model_id]
        if before:
            query += " AND week_start < ?"
            params.append(before)
        query += " ORDER BY week_start DESC LIMIT ?"
        params.append(limit)
        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._digest(conn, row) for row in rows]

    def mark_email_sent(self, digest_id: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE digest_weeks SET email_sent_at = ? WHERE id = ?",
                (utc_now_iso(), digest_id),
            )

    # --- Official profile cache ---

    def get_official_profile_cache(self, role_model_id: str) -> dict[str, Any] | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT profiles FROM official_profile_cache WHERE role_model_id = ?",
                (role_model_id,),
            ).fetchone()
        return json.loads(row["profiles"]) if row else None

    def save_official_profile_cache(
        self, role_model_id: str, profiles: dict[str, Any]
    ) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO official_profile_cache (role_model_id, profiles, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT (role_model_id) DO UPDATE SET
                    profiles = excluded.profiles,
                    updated_at = excluded.updated_at
                """,
                (role_model_id, json.dumps(profiles), utc_now_iso()),
            )

    # --- Users and role models ---

    def upsert_user(self, email: str, display_name: str | None = None) -> UserRecord:
        now = utc_now_iso()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO users (id, email, display_name, created_at, last_login_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (email) DO UPDATE SET last_login_at = excluded.last_login_at
                """,
                (_new_id(), email, display_name or email.split("@")[0], now, now),
            )
            row = conn.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
        return self._user(row)

    def get_user(self, user_id: str) -> UserRecord | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._user(row) if row else None

    def update_user_preferences(
        self, user_id: str, *, weekly_email_opt_in: bool
    ) -> UserRecord | None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE users SET weekly_email_opt_in = ? WHERE id = ?",
                (int(weekly_email_opt_in), user_id),
            )
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._user(row) if row else None

    def set_active_role_model(
        self, user_id: str, name: str, custom_sources: list[CustomSource]
    ) -> RoleModelRecord:
        now = utc_now_iso()
        role_model_id = _new_id()
        with self._transaction() as conn:
            conn.execute(
                "UPDATE role_models SET is_active = 0 WHERE user_id = ?", (user_id,)
            )
            conn.execute(
                """
                INSERT INTO role_models (id, user_id, name, is_active, created_at)
                VALUES (?, ?, ?, 1, ?)
                """,
                (role_model_id, user_id, name, now),
            )
            conn.executemany(
                """
                INSERT INTO role_model_sources (id, role_model_id, label, url, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (_new_id(), role_model_id, source.get("label"), source["url"], now)
                    for source in custom_sources
                    if source.get("url")
                ],
            )
            conn.execute(
                "UPDATE users SET current_role_model_id = ? WHERE id = ?",
                (role_model_id, user_id),
            )
            row = conn.execute(
                "SELECT * FROM role_models WHERE id = ?", (role_model_id,)
            ).fetchone()
        logger.info("Activated role model %s (%s) for user %s", name, role_model_id, user_id)
        return self._role_model(row)

    def get_role_model(self, role_model_id: str) -> RoleModelRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM role_models WHERE id = ?", (role_model_id,)
            ).fetchone()
        return self._role_model(row) if row else None

    def list_custom_sources(self, role_model_id: str) -> list[CustomSource]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT url, label FROM role_model_sources WHERE role_model_id = ? "
                "ORDER BY created_at",
                (role_model_id,),
            ).fetchall()
        return [CustomSource(url=row["url"], label=row["label"]) for row in rows]

    def update_role_model(
        self, role_model_id: str, fields: dict[str, Any]
    ) -> RoleModelRecord | None:
        updates = {k: v for k, v in fields.items() if k in ROLE_MODEL_UPDATABLE_FIELDS}
        with self._transaction() as conn:
            if updates:
                assignments = ", ".join(f"{column} = ?" for column in updates)
                conn.execute(
                    f"UPDATE role_models SET {assignments} WHERE id = ?",  # noqa: S608
                    (*updates.values(), role_model_id),
                )
            row = conn.execute(
                "SELECT * FROM role_models WHERE id = ?", (role_model_id,)
            ).fetchone()
        return self._role_model(row) if row else None

    def list_active_subscriptions(self) -> list[Subscription]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT u.id AS user_key, r.id AS role_model_key
                FROM users u
                JOIN role_models r ON r.id = u.current_role_model_id
                WHERE r.is_active = 1
                ORDER BY u.created_at
                """
            ).fetchall()
            subscriptions = []
            for row in rows:
                user = conn.execute(
                    "SELECT * FROM users WHERE id = ?", (row["user_key"],)
                ).fetchone()
                role_model = conn.execute(
                    "SELECT * FROM role_models WHERE id = ?", (row["role_model_key"],)
                ).fetchone()
                subscriptions.append(
                    Subscription(user=self._user(user), role_model=self._role_model(role_model))
                )
        return subscriptions
