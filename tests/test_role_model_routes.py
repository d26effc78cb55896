"""Role model endpoint tests."""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from roledigest.main import app
from roledigest.repositories.base import UserRecord
from roledigest.repositories.sqlite_repo import SqliteDigestRepository
from roledigest.services.images import ImageMatch
from roledigest.services.validator import RoleModelRejected, SearchProviderUnavailable

client = TestClient(app)

IMAGE = ImageMatch(
    image_url="https://img.example.com/jane.jpg",
    source_url="https://en.wikipedia.org/wiki/Jane_Doe",
    score=12.0,
)


@patch("roledigest.routers.role_model.resolve_profile_image", new_callable=AsyncMock)
@patch("roledigest.routers.role_model.generate_bio", new_callable=AsyncMock)
@patch("roledigest.routers.role_model.require_valid_role_model", new_callable=AsyncMock)
def test_choose_role_model_stores_bio_and_image(
    mock_validate: AsyncMock,
    mock_bio: AsyncMock,
    mock_image: AsyncMock,
    repo: SqliteDigestRepository,
    user: UserRecord,
) -> None:
    mock_validate.return_value = "Jane Doe"
    mock_bio.return_value = "Jane Doe is a designer."
    mock_image.return_value = IMAGE

    response = client.post(
        "/api/role-model",
        json={
            "name": "  jane doe ",
            "custom_sources": [{"url": " https://janedoe.com/blog ", "label": "Blog"}],
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["role_model"]["name"] == "Jane Doe"
    assert body["role_model"]["bio_text"] == "Jane Doe is a designer."
    assert body["role_model"]["image_url"] == IMAGE.image_url
    assert body["user"]["current_role_model_id"] == body["role_model"]["id"]
    assert repo.list_custom_sources(body["role_model"]["id"]) == [
        {"url": "https://janedoe.com/blog", "label": "Blog"}
    ]


@patch("roledigest.routers.role_model.resolve_profile_image", new_callable=AsyncMock)
@patch("roledigest.routers.role_model.generate_bio", new_callable=AsyncMock)
@patch("roledigest.routers.role_model.require_valid_role_model", new_callable=AsyncMock)
def test_image_failure_keeps_role_model(
    mock_validate: AsyncMock, mock_bio: AsyncMock, mock_image: AsyncMock
) -> None:
    mock_validate.return_value = "Jane Doe"
    mock_bio.return_value = "Bio."
    mock_image.side_effect = RuntimeError("image search down")

    response = client.post("/api/role-model", json={"name": "Jane Doe"})

    assert response.status_code == 200
    assert response.json()["role_model"]["image_url"] is None


@patch("roledigest.routers.role_model.require_valid_role_model", new_callable=AsyncMock)
def test_rejected_name_returns_422_with_reason(mock_validate: AsyncMock) -> None:
    mock_validate.side_effect = RoleModelRejected("Role models must be living people.")

    response = client.post("/api/role-model", json={"name": "Acme Corp"})

    assert response.status_code == 422
    assert response.json()["detail"] == "Role models must be living people."


def test_missing_search_key_returns_503() -> None:
    response = client.post("/api/role-model", json={"name": "Jane Doe"})

    assert response.status_code == 503
    assert "SERPER_API_KEY" in response.json()["detail"]


@patch("roledigest.routers.role_model.require_valid_role_model", new_callable=AsyncMock)
def test_out_of_credits_message(mock_validate: AsyncMock) -> None:
    mock_validate.side_effect = SearchProviderUnavailable(400, "Not enough credits")

    response = client.post("/api/role-model", json={"name": "Jane Doe"})

    assert response.status_code == 503
    assert "out of credits" in response.json()["detail"]


def test_name_length_is_validated() -> None:
    assert client.post("/api/role-model", json={"name": ""}).status_code == 422
    assert client.post("/api/role-model", json={"name": "x" * 121}).status_code == 422
    too_many = [{"url": f"https://a.com/{i}"} for i in range(11)]
    response = client.post("/api/role-model", json={"name": "Jane", "custom_sources": too_many})
    assert response.status_code == 422


def test_bio_requires_role_model() -> None:
    response = client.post("/api/role-model/bio")

    assert response.status_code == 400
    assert response.json()["detail"] == "No role model set"


@patch("roledigest.routers.role_model.generate_bio", new_callable=AsyncMock)
def test_regenerate_bio(
    mock_bio: AsyncMock, repo: SqliteDigestRepository, user: UserRecord
) -> None:
    role_model = repo.set_active_role_model(user["id"], "Jane Doe", [])
    mock_bio.return_value = "Fresh bio."

    response = client.post("/api/role-model/bio")

    assert response.status_code == 200
    assert response.json()["bio_text"] == "Fresh bio."
    assert repo.get_role_model(role_model["id"])["bio_text"] == "Fresh bio."  # type: ignore[index]


@patch("roledigest.routers.role_model.resolve_profile_image", new_callable=AsyncMock)
def test_stored_image_is_returned_without_lookup(
    mock_image: AsyncMock, repo: SqliteDigestRepository, user: UserRecord
) -> None:
    role_model = repo.set_active_role_model(user["id"], "Jane Doe", [])
    repo.update_role_model(role_model["id"], {"image_url": "https://img/stored.jpg"})

    response = client.get("/api/role-model/image")

    assert response.json()["image_url"] == "https://img/stored.jpg"
    mock_image.assert_not_called()


@patch("roledigest.routers.role_model.resolve_profile_image", new_callable=AsyncMock)
def test_refresh_stores_new_image(
    mock_image: AsyncMock, repo: SqliteDigestRepository, user: UserRecord
) -> None:
    role_model = repo.set_active_role_model(user["id"], "Jane Doe", [])
    repo.update_role_model(role_model["id"], {"image_url": "https://img/stored.jpg"})
    mock_image.return_value = IMAGE

    response = client.get("/api/role-model/image", params={"refresh": "true"})

    assert response.json() == {
        "image_url": IMAGE.image_url,
        "image_source_url": IMAGE.source_url,
    }
    assert repo.get_role_model(role_model["id"])["image_url"] == IMAGE.image_url  # type: ignore[index]


@patch("roledigest.routers.role_model.resolve_profile_image", new_callable=AsyncMock)
def test_failed_lookup_keeps_stored_image(
    mock_image: AsyncMock, repo: SqliteDigestRepository, user: UserRecord
) -> None:
    role_model = repo.set_active_role_model(user["id"], "Jane Doe", [])
    repo.update_role_model(role_model["id"], {"image_url": "https://img/stored.jpg"})
    mock_image.side_effect = RuntimeError("down")

    response = client.get("/api/role-model/image", params={"refresh": "true"})

    assert response.status_code == 200
    assert response.json()["image_url"] == "https://img/stored.jpg"


@patch("roledigest.routers.role_model.resolve_profile_image", new_callable=AsyncMock)
def test_failed_lookup_without_stored_image_returns_502(
    mock_image: AsyncMock, repo: SqliteDigestRepository, user: UserRecord
) -> None:
    repo.set_active_role_model(user["id"], "Jane Doe", [])
    mock_image.side_effect = RuntimeError("down")

    response = client.get("/api/role-model/image")

    assert response.status_code == 502


def test_no_image_found_returns_empty_strings(
    repo: SqliteDigestRepository, user: UserRecord
) -> None:
    repo.set_active_role_model(user["id"], "Jane Doe", [])

    response = client.get("/api/role-model/image")

    assert response.status_code == 200
    assert response.json() == {"image_url": "", "image_source_url": ""}
