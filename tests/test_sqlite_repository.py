"""SQLite repository tests."""

from roledigest.repositories.base import UserRecord
from roledigest.repositories.sqlite_repo import SqliteDigestRepository
from roledigest.services.types import DigestContent, DigestItem


def _item(index: int, **overrides: object) -> DigestItem:
    item = DigestItem(
        source_title=f"Story {index}",
        source_url=f"https://a.com/{index}",
        source_type="news",
        source_date="2024-03-05",
        summary=f"Summary {index}.",
        content_hash=f"hash-{index}",
        is_official=False,
    )
    item.update(overrides)  # type: ignore[typeddict-item]
    return item


def _content(*items: DigestItem, summary: str = "A week.") -> DigestContent:
    return DigestContent(summary_text=summary, topics=["design"], items=list(items))


def test_upsert_user_is_idempotent_by_email(repo: SqliteDigestRepository) -> None:
    first = repo.upsert_user("jane@example.com")
    second = repo.upsert_user("jane@example.com", display_name="Ignored")

    assert first["id"] == second["id"]
    assert second["display_name"] == "jane"
    assert second["weekly_email_opt_in"] is True
    assert second["current_role_model_id"] is None


def test_update_preferences(repo: SqliteDigestRepository, user: UserRecord) -> None:
    updated = repo.update_user_preferences(user["id"], weekly_email_opt_in=False)

    assert updated is not None
    assert updated["weekly_email_opt_in"] is False
    assert repo.update_user_preferences("missing", weekly_email_opt_in=True) is None


def test_set_active_role_model_replaces_previous(
    repo: SqliteDigestRepository, user: UserRecord
) -> None:
    old = repo.set_active_role_model(user["id"], "Old Name", [])
    new = repo.set_active_role_model(
        user["id"],
        "Jane Doe",
        [{"url": "https://janedoe.com", "label": "Site"}, {"url": ""}],
    )

    assert repo.get_role_model(old["id"])["is_active"] is False  # type: ignore[index]
    assert new["is_active"] is True
    assert repo.get_user(user["id"])["current_role_model_id"] == new["id"]  # type: ignore[index]
    assert repo.list_custom_sources(new["id"]) == [
        {"url": "https://janedoe.com", "label": "Site"}
    ]


def test_update_role_model_ignores_unknown_fields(
    repo: SqliteDigestRepository, user: UserRecord
) -> None:
    role_model = repo.set_active_role_model(user["id"], "Jane Doe", [])

    updated = repo.update_role_model(role_model["id"], {"bio_text": "Bio", "name": "Hacked"})

    assert updated is not None
    assert updated["bio_text"] == "Bio"
    assert updated["name"] == "Jane Doe"


def test_upsert_digest_keeps_id_and_replaces_items(
    repo: SqliteDigestRepository, user: UserRecord
) -> None:
    role_model = repo.set_active_role_model(user["id"], "Jane Doe", [])

    first = repo.upsert_digest(role_model["id"], "2024-03-04", _content(_item(1), _item(2)))
    second = repo.upsert_digest(
        role_model["id"], "2024-03-04", _content(_item(3, is_official=True), summary="Rerun.")
    )

    assert second["id"] == first["id"]
    assert second["summary_text"] == "Rerun."
    assert [item["source_title"] for item in second["items"]] == ["Story 3"]
    assert second["items"][0]["is_official"] is True
    assert repo.get_digest_by_id(first["id"]) == second


def test_duplicate_content_hash_is_stored_once(
    repo: SqliteDigestRepository, user: UserRecord
) -> None:
    role_model = repo.set_active_role_model(user["id"], "Jane Doe", [])

    digest = repo.upsert_digest(
        role_model["id"],
        "2024-03-04",
        _content(_item(1), _item(2, content_hash="hash-1")),
    )

    assert len(digest["items"]) == 1


def test_list_recent_digests_before_week(
    repo: SqliteDigestRepository, user: UserRecord
) -> None:
    role_model = repo.set_active_role_model(user["id"], "Jane Doe", [])
    for week in ("2024-02-19", "2024-02-26", "2024-03-04"):
        repo.upsert_digest(role_model["id"], week, _content(_item(1)))

    recent = repo.list_recent_digests(role_model["id"], 6, before="2024-03-04")

    assert [d["week_start"] for d in recent] == ["2024-02-26", "2024-02-19"]
    assert len(repo.list_recent_digests(role_model["id"], 1)) == 1


def test_mark_email_sent(repo: SqliteDigestRepository, user: UserRecord) -> None:
    role_model = repo.set_active_role_model(user["id"], "Jane Doe", [])
    digest = repo.upsert_digest(role_model["id"], "2024-03-04", _content())

    repo.mark_email_sent(digest["id"])

    assert repo.get_digest_by_id(digest["id"])["email_sent_at"]  # type: ignore[index]


def test_official_profile_cache_round_trip(
    repo: SqliteDigestRepository, user: UserRecord
) -> None:
    role_model = repo.set_active_role_model(user["id"], "Jane Doe", [])

    assert repo.get_official_profile_cache(role_model["id"]) is None
    repo.save_official_profile_cache(role_model["id"], {"twitter": "janedoe"})
    repo.save_official_profile_cache(role_model["id"], {"twitter": "jane"})

    assert repo.get_official_profile_cache(role_model["id"]) == {"twitter": "jane"}


def test_active_subscriptions_only_include_current_role_models(
    repo: SqliteDigestRepository, user: UserRecord
) -> None:
    repo.upsert_user("idle@example.com")
    repo.set_active_role_model(user["id"], "Old Name", [])
    current = repo.set_active_role_model(user["id"], "Jane Doe", [])

    subscriptions = repo.list_active_subscriptions()

    assert len(subscriptions) == 1
    assert subscriptions[0]["user"]["id"] == user["id"]
    assert subscriptions[0]["role_model"]["id"] == current["id"]


def test_file_database_creates_parent_directory(tmp_path) -> None:
    path = tmp_path / "nested" / "digest.db"
    repository = SqliteDigestRepository(str(path))
    try:
        repository.upsert_user("jane@example.com")
    finally:
        repository.close()

    assert path.exists()
