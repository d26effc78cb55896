"""Weekly digest route handlers."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from roledigest.auth import get_current_user
from roledigest.deps import get_active_role_model, get_gateway
from roledigest.repositories.base import (
    DigestRecord,
    DigestRepository,
    RoleModelRecord,
    UserRecord,
)
from roledigest.repositories.factory import get_repository
from roledigest.schemas.digest import (
    DigestResponse,
    DigestRunResponse,
    SharedDigestResponse,
)
from roledigest.services.search import ProviderGateway
from roledigest.services.weekly import WeeklyDigestResult, generate_weekly_digest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/digests", tags=["digests"])

RECENT_DIGEST_LIMIT = 6


@router.get("", response_model=list[DigestResponse])
async def list_digests(
    user: UserRecord = Depends(get_current_user),
    repo: DigestRepository = Depends(get_repository),
) -> list[DigestRecord]:
    """List the most recent digests for the active role model, newest first."""
    role_model_id = user["current_role_model_id"]
    if not role_model_id:
        return []
    return repo.list_recent_digests(role_model_id, RECENT_DIGEST_LIMIT)


@router.post("/run", response_model=DigestRunResponse)
async def run_digest(
    force: bool = Query(default=True),
    user: UserRecord = Depends(get_current_user),
    role_model: RoleModelRecord = Depends(get_active_role_model),
    repo: DigestRepository = Depends(get_repository),
    gateway: ProviderGateway = Depends(get_gateway),
) -> WeeklyDigestResult:
    """Generate this week's digest now (regenerates by default)."""
    try:
        return await generate_weekly_digest(
            repo, gateway, user=user, role_model=role_model, force=force
        )
    except Exception as exc:
        logger.exception("Digest generation failed for %s", role_model["name"])
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Digest generation failed: {type(exc).__name__}",
        ) from exc


@router.get("/share/{digest_id}", response_model=SharedDigestResponse)
async def get_shared_digest(
    digest_id: str,
    repo: DigestRepository = Depends(get_repository),
) -> dict[str, Any]:
    """Public read of a single digest; no authentication required."""
    digest = repo.get_digest_by_id(digest_id)
    if digest is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Digest not found",
        )
    role_model = repo.get_role_model(digest["role_model_id"])
    return {
        **digest,
        "role_model_name": role_model["name"] if role_model else "",
        "role_model_image": (role_model["image_url"] or "") if role_model else "",
    }
