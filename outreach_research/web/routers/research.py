"""Research API: trigger runs, read revealed results, process lead targets."""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from outreach_research.pipeline import ResearchPipeline
from outreach_research.web.deps import get_pipeline

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/research", tags=["research"])

_ERROR_STATUS = {
    "Business not found": 404,
    "Active subscription required": 403,
    "No keywords configured for business": 400,
    "Reddit scraping provider not active": 400,
    "Places scraping provider not active": 400,
    "Email verification provider not active": 400,
}


def _respond(result) -> JSONResponse | dict:
    """Configuration errors are client errors; failed scrapes or verification are 502."""
    body = result.model_dump(mode="json")
    if result.success:
        return body
    return JSONResponse(body, status_code=_ERROR_STATUS.get(result.error, 502))


@router.post("/{business_id}/initial")
async def trigger_initial(business_id: str, pipeline: ResearchPipeline = Depends(get_pipeline)):
    """Run initial keyword research. Scoring continues in the background."""
    result = await pipeline.trigger_initial_research(business_id)
    return _respond(result)


@router.post("/{business_id}/weekly")
async def trigger_weekly(business_id: str, pipeline: ResearchPipeline = Depends(get_pipeline)):
    result = await pipeline.trigger_weekly_research(business_id)
    return _respond(result)


@router.get("/{business_id}/results")
async def revealed_results(
    business_id: str,
    platform: str = "reddit",
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    now: datetime | None = None,
    pipeline: ResearchPipeline = Depends(get_pipeline),
):
    """Results revealed so far; ``now`` is accepted for previewing the schedule."""
    result = pipeline.get_revealed_results(business_id, platform, limit, offset, now)
    if not result.success:
        return JSONResponse(result.model_dump(mode="json"), status_code=500)
    return result.model_dump(mode="json")


@router.get("/{business_id}/stats")
async def research_stats(business_id: str, pipeline: ResearchPipeline = Depends(get_pipeline)):
    result = pipeline.get_research_stats(business_id)
    if not result.success:
        return JSONResponse(result.model_dump(mode="json"), status_code=500)
    return result.model_dump(mode="json")


@router.get("/{business_id}/targets")
async def target_status(business_id: str, pipeline: ResearchPipeline = Depends(get_pipeline)):
    result = pipeline.get_target_status(business_id)
    if not result.success:
        return JSONResponse(result.model_dump(mode="json"), status_code=500)
    return result.model_dump(mode="json")


@router.post("/{business_id}/targets/{index}/process")
async def process_target(
    business_id: str,
    index: int,
    pipeline: ResearchPipeline = Depends(get_pipeline),
):
    """Fulfil one target now instead of waiting for the daily pass."""
    status = pipeline.get_target_status(business_id)
    if not status.success:
        return JSONResponse(status.model_dump(mode="json"), status_code=500)
    targets = status.targets
    if index < 0 or index >= len(targets):
        return JSONResponse({"success": False, "error": "Target not found"}, status_code=404)
    result = await pipeline.process_target(business_id, targets[index], index)
    return _respond(result)
