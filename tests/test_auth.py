"""Auth dependency and endpoint tests.

Tests JWT verification with PyJWT: valid, expired, invalid, and missing tokens.
"""

import time
from typing import Any
from unittest.mock import MagicMock, patch

import jwt
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from roledigest.auth import get_current_user
from roledigest.main import app
from roledigest.repositories.base import UserRecord
from roledigest.repositories.factory import get_repository
from roledigest.repositories.sqlite_repo import SqliteDigestRepository

JWT_SECRET = "test-jwt-secret-for-testing"

client = TestClient(app)


def _make_token(
    *,
    email: str | None = "jane@example.com",
    expired: bool = False,
    audience: str = "authenticated",
    metadata: dict[str, Any] | None = None,
) -> str:
    """Create a JWT token for testing."""
    now = int(time.time())
    payload: dict[str, Any] = {
        "sub": "user-sub-123",
        "aud": audience,
        "iat": now,
        "exp": now - 100 if expired else now + 3600,
    }
    if email:
        payload["email"] = email
    if metadata:
        payload["user_metadata"] = metadata
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def _make_mock_settings(secret: str = JWT_SECRET) -> MagicMock:
    settings = MagicMock()
    settings.supabase_jwt_secret = secret
    return settings


def _build_test_app(repo: SqliteDigestRepository) -> FastAPI:
    """Minimal app with a protected endpoint and the real auth dependency."""
    test_app = FastAPI()

    @test_app.get("/protected")
    async def protected_endpoint(
        user: UserRecord = Depends(get_current_user),
    ) -> dict[str, str]:
        return {"user_id": user["id"], "display_name": user["display_name"]}

    test_app.dependency_overrides[get_repository] = lambda: repo
    return test_app


def _get(repo: SqliteDigestRepository, headers: dict[str, str]) -> Any:
    return TestClient(_build_test_app(repo)).get("/protected", headers=headers)


@patch("roledigest.auth.get_settings")
def test_valid_token_upserts_user_by_email(
    mock_get_settings: MagicMock, repo: SqliteDigestRepository
) -> None:
    mock_get_settings.return_value = _make_mock_settings()
    token = _make_token(metadata={"full_name": "Jane Doe"})

    first = _get(repo, {"Authorization": f"Bearer {token}"})
    second = _get(repo, {"Authorization": f"Bearer {token}"})

    assert first.status_code == 200
    assert first.json()["display_name"] == "Jane Doe"
    assert second.json()["user_id"] == first.json()["user_id"]


@patch("roledigest.auth.get_settings")
def test_display_name_defaults_to_email_prefix(
    mock_get_settings: MagicMock, repo: SqliteDigestRepository
) -> None:
    mock_get_settings.return_value = _make_mock_settings()

    response = _get(repo, {"Authorization": f"Bearer {_make_token()}"})

    assert response.json()["display_name"] == "jane"


@patch("roledigest.auth.get_settings")
def test_expired_token_returns_401(
    mock_get_settings: MagicMock, repo: SqliteDigestRepository
) -> None:
    mock_get_settings.return_value = _make_mock_settings()

    response = _get(repo, {"Authorization": f"Bearer {_make_token(expired=True)}"})

    assert response.status_code == 401
    assert "expired" in response.json()["detail"].lower()


@patch("roledigest.auth.get_settings")
def test_invalid_token_returns_401(
    mock_get_settings: MagicMock, repo: SqliteDigestRepository
) -> None:
    mock_get_settings.return_value = _make_mock_settings()

    response = _get(repo, {"Authorization": "Bearer not-a-valid-jwt"})

    assert response.status_code == 401
    assert "invalid" in response.json()["detail"].lower()


@patch("roledigest.auth.get_settings")
def test_wrong_audience_returns_401(
    mock_get_settings: MagicMock, repo: SqliteDigestRepository
) -> None:
    mock_get_settings.return_value = _make_mock_settings()

    response = _get(repo, {"Authorization": f"Bearer {_make_token(audience='anon')}"})

    assert response.status_code == 401


@patch("roledigest.auth.get_settings")
def test_missing_email_claim_returns_401(
    mock_get_settings: MagicMock, repo: SqliteDigestRepository
) -> None:
    mock_get_settings.return_value = _make_mock_settings()

    response = _get(repo, {"Authorization": f"Bearer {_make_token(email=None)}"})

    assert response.status_code == 401
    assert "email" in response.json()["detail"].lower()


@patch("roledigest.auth.get_settings")
def test_non_bearer_header_returns_401(
    mock_get_settings: MagicMock, repo: SqliteDigestRepository
) -> None:
    mock_get_settings.return_value = _make_mock_settings()

    response = _get(repo, {"Authorization": f"Token {_make_token()}"})

    assert response.status_code == 401
    assert "format" in response.json()["detail"].lower()


@patch("roledigest.auth.get_settings")
def test_missing_secret_returns_500(
    mock_get_settings: MagicMock, repo: SqliteDigestRepository
) -> None:
    mock_get_settings.return_value = _make_mock_settings(secret="")

    response = _get(repo, {"Authorization": f"Bearer {_make_token()}"})

    assert response.status_code == 500


def test_missing_auth_header_returns_422(repo: SqliteDigestRepository) -> None:
    """Missing Authorization header returns 422 (FastAPI validation)."""
    response = _get(repo, {})

    assert response.status_code == 422


# --- Endpoints (auth overridden in conftest) ---


def test_me_without_role_model(user: UserRecord) -> None:
    response = client.get("/api/auth/me")

    assert response.status_code == 200
    body = response.json()
    assert body["user"]["email"] == user["email"]
    assert body["role_model"] is None


def test_me_with_role_model(repo: SqliteDigestRepository, user: UserRecord) -> None:
    repo.set_active_role_model(user["id"], "Jane Doe", [])

    response = client.get("/api/auth/me")

    assert response.json()["role_model"]["name"] == "Jane Doe"


def test_update_preferences(repo: SqliteDigestRepository, user: UserRecord) -> None:
    response = client.patch("/api/preferences", json={"weekly_email_opt_in": False})

    assert response.status_code == 200
    assert response.json()["weekly_email_opt_in"] is False
    assert repo.get_user(user["id"])["weekly_email_opt_in"] is False  # type: ignore[index]


def test_update_preferences_requires_boolean() -> None:
    response = client.patch("/api/preferences", json={})

    assert response.status_code == 422
