"""Shared test fixtures.

Provides an in-memory SQLite repository, a signed-in test user and
dependency overrides so protected endpoints can be tested without real
JWT tokens or provider credentials.
"""

from collections.abc import Iterator

import pytest

from roledigest.auth import get_current_user
from roledigest.capabilities import Capabilities
from roledigest.config import Settings
from roledigest.deps import get_gateway
from roledigest.main import app
from roledigest.repositories.base import UserRecord
from roledigest.repositories.factory import get_repository
from roledigest.repositories.sqlite_repo import SqliteDigestRepository
from roledigest.services.search import ProviderGateway

MOCK_EMAIL = "tester@example.com"


@pytest.fixture
def repo() -> Iterator[SqliteDigestRepository]:
    repository = SqliteDigestRepository(":memory:")
    yield repository
    repository.close()


@pytest.fixture
def user(repo: SqliteDigestRepository) -> UserRecord:
    return repo.upsert_user(MOCK_EMAIL, display_name="Tester")


@pytest.fixture
def offline_gateway() -> ProviderGateway:
    """Gateway with every external dependency switched off."""
    return ProviderGateway(Settings(), Capabilities.offline())


@pytest.fixture(autouse=True)
def override_dependencies(
    repo: SqliteDigestRepository,
    user: UserRecord,
    offline_gateway: ProviderGateway,
) -> Iterator[None]:
    """Override auth, storage and gateway dependencies for all tests.

    Tests in test_auth.py that need real JWT behavior should
    create their own FastAPI app instance instead of using the global app.
    """

    async def _mock_get_current_user() -> UserRecord:
        return repo.get_user(user["id"]) or user

    app.dependency_overrides[get_current_user] = _mock_get_current_user
    app.dependency_overrides[get_repository] = lambda: repo
    app.dependency_overrides[get_gateway] = lambda: offline_gateway
    yield
    app.dependency_overrides.clear()
