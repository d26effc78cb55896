"""Digest endpoint tests."""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from roledigest.main import app
from roledigest.repositories.base import UserRecord
from roledigest.repositories.sqlite_repo import SqliteDigestRepository
from roledigest.services.types import DigestContent, DigestItem

client = TestClient(app)

ITEM = DigestItem(
    source_title="Studio opens",
    source_url="https://news.example.com/studio",
    source_type="news",
    source_date="2024-03-05",
    summary="Jane Doe opened a studio.",
    content_hash="h1",
    is_official=False,
)


def test_list_digests_without_role_model_is_empty() -> None:
    response = client.get("/api/digests")

    assert response.status_code == 200
    assert response.json() == []


def test_list_digests_newest_first(repo: SqliteDigestRepository, user: UserRecord) -> None:
    role_model = repo.set_active_role_model(user["id"], "Jane Doe", [])
    for week in ("2024-02-26", "2024-03-04"):
        repo.upsert_digest(
            role_model["id"], week, DigestContent(summary_text="A week.", topics=[], items=[ITEM])
        )

    response = client.get("/api/digests")

    body = response.json()
    assert [d["week_start"] for d in body] == ["2024-03-04", "2024-02-26"]
    assert body[0]["items"][0]["source_title"] == "Studio opens"
    assert "content_hash" not in body[0]["items"][0]


def test_run_requires_role_model() -> None:
    assert client.post("/api/digests/run").status_code == 400


def test_run_generates_and_reuses_digest(
    repo: SqliteDigestRepository, user: UserRecord
) -> None:
    repo.set_active_role_model(user["id"], "Jane Doe", [])

    first = client.post("/api/digests/run")
    cached = client.post("/api/digests/run", params={"force": "false"})
    forced = client.post("/api/digests/run")

    assert first.status_code == 200
    assert first.json()["created"] is True
    assert first.json()["digest"]["items"] == []
    assert "quiet signal" in first.json()["digest"]["summary_text"]
    assert cached.json()["created"] is False
    assert forced.json()["created"] is True
    assert forced.json()["digest"]["id"] == first.json()["digest"]["id"]


@patch("roledigest.services.weekly.collect_sources", new_callable=AsyncMock)
def test_run_failure_returns_502(
    mock_collect: AsyncMock, repo: SqliteDigestRepository, user: UserRecord
) -> None:
    repo.set_active_role_model(user["id"], "Jane Doe", [])
    mock_collect.side_effect = RuntimeError("boom")

    response = client.post("/api/digests/run")

    assert response.status_code == 502
    assert "RuntimeError" in response.json()["detail"]


def test_shared_digest_includes_role_model(
    repo: SqliteDigestRepository, user: UserRecord
) -> None:
    role_model = repo.set_active_role_model(user["id"], "Jane Doe", [])
    repo.update_role_model(role_model["id"], {"image_url": "https://img/jane.jpg"})
    digest = repo.upsert_digest(
        role_model["id"], "2024-03-04", DigestContent(summary_text="A week.", topics=[], items=[])
    )

    response = client.get(f"/api/digests/share/{digest['id']}")

    assert response.status_code == 200
    body = response.json()
    assert body["role_model_name"] == "Jane Doe"
    assert body["role_model_image"] == "https://img/jane.jpg"


def test_shared_digest_missing_returns_404() -> None:
    response = client.get("/api/digests/share/unknown")

    assert response.status_code == 404
