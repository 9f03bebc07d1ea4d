"""Scheduled job endpoints, called by an external scheduler."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from outreach_research.pipeline import ResearchPipeline
from outreach_research.web.deps import get_config, get_pipeline

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/cron", tags=["cron"])

security = HTTPBearer(auto_error=False)


def verify_cron_secret(creds: HTTPAuthorizationCredentials | None = Depends(security)) -> None:
    secret = get_config().cron_secret
    if not secret:
        return
    if not creds or creds.credentials != secret:
        logger.warning("Rejected cron call with missing or invalid secret")
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/research", dependencies=[Depends(verify_cron_secret)])
async def weekly_research(pipeline: ResearchPipeline = Depends(get_pipeline)):
    """Weekly keyword research across all active businesses."""
    summary = await pipeline.run_weekly_research()
    return summary.model_dump(mode="json")


@router.get("/places-research", dependencies=[Depends(verify_cron_secret)])
async def places_research(pipeline: ResearchPipeline = Depends(get_pipeline)):
    """Daily lead research: sweep expired cache, then one target per business."""
    summary = await pipeline.run_pending_targets()
    return summary.model_dump(mode="json")
