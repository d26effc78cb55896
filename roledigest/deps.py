"""Shared FastAPI dependencies."""

from fastapi import Depends, HTTPException, status

from roledigest.auth import get_current_user
from roledigest.config import get_settings
from roledigest.repositories.base import DigestRepository, RoleModelRecord, UserRecord
from roledigest.repositories.factory import get_repository
from roledigest.services.search import ProviderGateway


def get_gateway() -> ProviderGateway:
    """Return a provider gateway for one request."""
    return ProviderGateway(get_settings())


def get_active_role_model(
    user: UserRecord = Depends(get_current_user),
    repo: DigestRepository = Depends(get_repository),
) -> RoleModelRecord:
    """The current user's active role model.

    Raises:
        HTTPException: 400 when the user has not chosen one.
    """
    role_model_id = user["current_role_model_id"]
    role_model = repo.get_role_model(role_model_id) if role_model_id else None
    if role_model is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No role model set",
        )
    return role_model
