"""Authentication and preference route handlers."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from roledigest.auth import get_current_user
from roledigest.repositories.base import DigestRepository, UserRecord
from roledigest.repositories.factory import get_repository
from roledigest.schemas.users import MeResponse, PreferencesUpdate, UserResponse

router = APIRouter(prefix="/api", tags=["auth"])


@router.get("/auth/me", response_model=MeResponse)
async def get_me(
    user: UserRecord = Depends(get_current_user),
    repo: DigestRepository = Depends(get_repository),
) -> dict[str, Any]:
    """Return the current user and their active role model, if any."""
    role_model_id = user["current_role_model_id"]
    role_model = repo.get_role_model(role_model_id) if role_model_id else None
    return {"user": user, "role_model": role_model}


@router.patch("/preferences", response_model=UserResponse)
async def update_preferences(
    body: PreferencesUpdate,
    user: UserRecord = Depends(get_current_user),
    repo: DigestRepository = Depends(get_repository),
) -> UserRecord:
    """Toggle the weekly digest email."""
    updated = repo.update_user_preferences(
        user["id"], weekly_email_opt_in=body.weekly_email_opt_in
    )
    if updated is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )
    return updated
