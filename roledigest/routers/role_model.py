"""Role model route handlers."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from roledigest.auth import get_current_user
from roledigest.deps import get_active_role_model, get_gateway
from roledigest.repositories.base import (
    DigestRepository,
    RoleModelRecord,
    UserRecord,
    utc_now_iso,
)
from roledigest.repositories.factory import get_repository
from roledigest.schemas.role_model import (
    BioResponse,
    ImageResponse,
    RoleModelCreate,
)
from roledigest.schemas.users import MeResponse
from roledigest.services.bio import generate_bio
from roledigest.services.images import resolve_profile_image
from roledigest.services.search import ProviderGateway
from roledigest.services.types import CustomSource
from roledigest.services.validator import (
    CapabilityMissing,
    RoleModelRejected,
    SearchProviderUnavailable,
    require_valid_role_model,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/role-model", tags=["role-model"])


def _unavailable_message(exc: SearchProviderUnavailable) -> str:
    detail = exc.detail
    if "not enough credits" in detail.lower():
        return "Search provider out of credits. Add Serper credits to continue."
    if detail:
        return f"Search provider unavailable: {detail}"
    return "Search provider unavailable. Please try again shortly."


@router.post("", response_model=MeResponse)
async def choose_role_model(
    body: RoleModelCreate,
    user: UserRecord = Depends(get_current_user),
    repo: DigestRepository = Depends(get_repository),
    gateway: ProviderGateway = Depends(get_gateway),
) -> dict[str, Any]:
    """Validate a name and make it the user's active role model.

    The biography and profile image are generated right away; failures there
    leave the role model in place without them.
    """
    try:
        name = await require_valid_role_model(gateway, body.name)
    except RoleModelRejected as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=exc.reason,
        ) from exc
    except CapabilityMissing as exc:
        logger.warning("Role model validation unavailable: %s", exc.code)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Search provider key missing. Set SERPER_API_KEY to enable validation.",
        ) from exc
    except SearchProviderUnavailable as exc:
        logger.warning("Role model validation failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=_unavailable_message(exc),
        ) from exc

    sources = [
        CustomSource(url=source.url.strip(), label=source.label)
        for source in body.custom_sources
    ]
    role_model = repo.set_active_role_model(user["id"], name, sources)

    bio_text = await generate_bio(gateway, name, gateway.capabilities)
    fields = {"bio_text": bio_text, "bio_updated_at": utc_now_iso()}
    try:
        image = await resolve_profile_image(gateway, name)
    except Exception as exc:
        logger.warning("Profile image lookup failed for %s: %s", name, type(exc).__name__)
        image = None
    if image:
        fields.update(image_url=image.image_url, image_source_url=image.source_url)
    role_model = repo.update_role_model(role_model["id"], fields) or role_model

    return {"user": repo.get_user(user["id"]) or user, "role_model": role_model}


@router.post("/bio", response_model=BioResponse)
async def regenerate_bio(
    role_model: RoleModelRecord = Depends(get_active_role_model),
    repo: DigestRepository = Depends(get_repository),
    gateway: ProviderGateway = Depends(get_gateway),
) -> dict[str, Any]:
    """Generate and store a fresh sourced biography."""
    bio_text = await generate_bio(gateway, role_model["name"], gateway.capabilities)
    updated = repo.update_role_model(
        role_model["id"], {"bio_text": bio_text, "bio_updated_at": utc_now_iso()}
    )
    return {"bio_text": bio_text, "role_model": updated or role_model}


@router.get("/image", response_model=ImageResponse)
async def get_role_model_image(
    refresh: bool = Query(default=False),
    role_model: RoleModelRecord = Depends(get_active_role_model),
    repo: DigestRepository = Depends(get_repository),
    gateway: ProviderGateway = Depends(get_gateway),
) -> ImageResponse:
    """Return the stored profile image, resolving it when missing or refreshed.

    A failed lookup keeps the stored image; with nothing stored it is a 502.
    """
    existing = ImageResponse(
        image_url=role_model["image_url"] or "",
        image_source_url=role_model["image_source_url"] or "",
    )
    if existing.image_url and not refresh:
        return existing

    try:
        image = await resolve_profile_image(gateway, role_model["name"])
    except Exception as exc:
        logger.warning(
            "Profile image lookup failed for %s: %s", role_model["name"], type(exc).__name__
        )
        if existing.image_url:
            return existing
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Role model image lookup failed",
        ) from exc

    if image is None:
        return existing
    repo.update_role_model(
        role_model["id"],
        {"image_url": image.image_url, "image_source_url": image.source_url},
    )
    return ImageResponse(image_url=image.image_url, image_source_url=image.source_url)
