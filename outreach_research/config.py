"""Configuration management via environment variables and .env file."""

from __future__ import annotations

import os
import sys

from dotenv import load_dotenv
from pydantic import BaseModel


class Config(BaseModel):
    """Application configuration loaded from environment."""

    # Storage
    database_path: str = ".outreach_research.db"

    # Embeddings (relevance scoring)
    openai_api_key: str = ""
    embedding_model: str = "text-embedding-3-small"

    # Apify (content source, places scraper, email verification actors)
    apify_base_url: str = "https://api.apify.com/v2"
    apify_poll_interval: float = 5.0

    # Bounded waits (seconds)
    scrape_timeout: int = 300
    verify_timeout: int = 300
    embed_timeout: int = 30

    # Research runs
    max_keywords: int = 5
    initial_posts_per_keyword: int = 1000
    weekly_posts_per_keyword: int = 200
    insert_batch_size: int = 50
    weekly_business_delay: float = 1.0

    # Places lead research
    lead_insert_batch_size: int = 100
    cache_ttl_days: int = 180  # ~6 months

    # Relevance scoring
    scoring_batch_size: int = 20
    scoring_batch_delay: float = 0.5
    scoring_max_chars: int = 2000

    # Web server
    cron_secret: str = ""
    web_host: str = "0.0.0.0"
    web_port: int = 8000


def load_config() -> Config:
    """Load configuration from .env file and environment variables.

    Environment variables override .env values. Scraper and verification
    API keys are not read here: they live on the ``api_providers`` rows.
    """
    load_dotenv()

    openai_key = os.getenv("OPENAI_API_KEY", "")

    # Scoring degrades (every item fails) without a key, research still runs
    if not openai_key:
        print("  Note: OPENAI_API_KEY not set, relevance scoring will fail", file=sys.stderr)

    return Config(
        database_path=os.getenv("DATABASE_PATH", ".outreach_research.db"),
        openai_api_key=openai_key,
        embedding_model=os.getenv("EMBEDDING_MODEL", "text-embedding-3-small"),
        apify_base_url=os.getenv("APIFY_BASE_URL", "https://api.apify.com/v2"),
        scrape_timeout=int(os.getenv("SCRAPE_TIMEOUT", "300")),
        verify_timeout=int(os.getenv("VERIFY_TIMEOUT", "300")),
        embed_timeout=int(os.getenv("EMBED_TIMEOUT", "30")),
        max_keywords=int(os.getenv("MAX_KEYWORDS", "5")),
        cache_ttl_days=int(os.getenv("CACHE_TTL_DAYS", "180")),
        scoring_batch_size=int(os.getenv("SCORING_BATCH_SIZE", "20")),
        scoring_batch_delay=float(os.getenv("SCORING_BATCH_DELAY", "0.5")),
        scoring_max_chars=int(os.getenv("SCORING_MAX_CHARS", "2000")),
        cron_secret=os.getenv("CRON_SECRET", ""),
        web_host=os.getenv("WEB_HOST", "0.0.0.0"),
        web_port=int(os.getenv("WEB_PORT", "8000")),
    )
