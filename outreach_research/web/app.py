"""FastAPI application exposing research triggers, reads and cron jobs."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from outreach_research.web.deps import close_db, close_pipeline, get_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown: initialize DB, run migrations, drain scoring."""
    logger.info("Starting research API...")
    get_db()  # connects + runs migrations
    yield
    await close_pipeline()
    close_db()
    logger.info("Research API shut down.")


app = FastAPI(
    title="Outreach Research",
    description="Keyword research runs, staggered reveal, and cached lead research",
    lifespan=lifespan,
)

# --- Register routers ---
from outreach_research.web.routers.cron import router as cron_router
from outreach_research.web.routers.research import router as research_router

app.include_router(research_router, prefix="/api")
app.include_router(cron_router, prefix="/api")


@app.get("/health")
async def health():
    return {"status": "ok"}
