"""Pipeline route handlers for the token-guarded weekly trigger."""

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, status

from roledigest.config import get_settings
from roledigest.deps import get_gateway
from roledigest.repositories.base import DigestRepository
from roledigest.repositories.factory import get_repository
from roledigest.schemas.digest import WeeklyRunResponse
from roledigest.services.search import ProviderGateway
from roledigest.services.weekly import WeeklyRunResult, run_weekly_digests

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/pipeline", tags=["pipeline"])


@router.post("/weekly/run", response_model=WeeklyRunResponse)
async def trigger_weekly_run(
    x_pipeline_token: str | None = Header(default=None, alias="X-Pipeline-Token"),
    repo: DigestRepository = Depends(get_repository),
    gateway: ProviderGateway = Depends(get_gateway),
) -> WeeklyRunResult:
    """Run this week's digest for every active subscription.

    Same code path as the scheduled job; intended for external cron.
    """
    logger.info("Manual weekly run requested")
    settings = get_settings()
    expected_token = settings.pipeline_trigger_token
    if expected_token and x_pipeline_token != expected_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid pipeline trigger token",
        )

    try:
        return await run_weekly_digests(repo, gateway, settings)
    except Exception as exc:
        logger.exception("Weekly run failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Weekly run failed: {type(exc).__name__}",
        ) from exc
