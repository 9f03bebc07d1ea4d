"""Dependency injection for FastAPI: shared config, database and pipeline."""

from __future__ import annotations

from functools import lru_cache

from outreach_research.config import Config, load_config
from outreach_research.db.database import Database
from outreach_research.pipeline import ResearchPipeline


@lru_cache
def get_config() -> Config:
    return load_config()


_db_instance: Database | None = None
_pipeline_instance: ResearchPipeline | None = None


def get_db() -> Database:
    global _db_instance
    if _db_instance is None or _db_instance.conn is None:
        cfg = get_config()
        _db_instance = Database(cfg.database_path)
        _db_instance.connect()
        # Run migrations on first connect
        from outreach_research.db.migrations import run_migrations
        run_migrations(_db_instance)
    return _db_instance


def get_pipeline() -> ResearchPipeline:
    global _pipeline_instance
    if _pipeline_instance is None:
        _pipeline_instance = ResearchPipeline(get_db(), get_config())
    return _pipeline_instance


async def close_pipeline() -> None:
    global _pipeline_instance
    if _pipeline_instance:
        await _pipeline_instance.close()
        _pipeline_instance = None


def close_db() -> None:
    global _db_instance
    if _db_instance:
        _db_instance.close()
        _db_instance = None
