"""Reddit keyword research through the Apify reddit scraper actor."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from outreach_research.config import Config
from outreach_research.models import ContentItem, RedditScrapingProvider, RunType, ScrapeRun
from outreach_research.sources.apify import ApifyClient

logger = logging.getLogger(__name__)

PLATFORM = "reddit"


def format_search_term(keyword: str) -> str:
    """Quote multi-word keywords so the scraper matches the exact phrase."""
    keyword = keyword.strip()
    if " " in keyword and not (keyword.startswith('"') and keyword.endswith('"')):
        return f'"{keyword}"'
    return keyword


def build_scraper_input(
    keyword: str,
    mode: RunType,
    max_posts: int,
    proxy_groups: list[str] | None = None,
) -> dict[str, Any]:
    """Actor input for one keyword.

    Initial runs pull the all-time backlog sorted by hot; weekly runs pull
    the past week sorted by new.
    """
    initial = mode == "initial"
    return {
        "searchTerms": [format_search_term(keyword)],
        "sort": "hot" if initial else "new",
        "time": "all" if initial else "week",
        "maxPosts": max_posts,
        "searchPosts": True,
        "searchComments": False,
        "searchCommunities": False,
        "startUrls": [],
        "crawlCommentsPerPost": False,
        "fastMode": True,
        "searchSort": "new",
        "withinCommunity": "",
        "searchTime": "all" if initial else "week",
        "includeNSFW": False,
        "proxy": {
            "useApifyProxy": True,
            "apifyProxyGroups": proxy_groups or ["RESIDENTIAL"],
        },
        "maxPostsCount": 900,
        "maxCommentsCount": 900,
        "maxCommentsPerPost": 900,
        "maxCommunitiesCount": 900,
    }


def normalize_items(raw_items: list[dict]) -> list[ContentItem]:
    """Convert scraper rows to ContentItems, dropping rows without a stable id."""
    items = []
    dropped = 0
    for raw in raw_items:
        if not isinstance(raw, dict):
            dropped += 1
            continue
        item = ContentItem.from_scraper(raw)
        if not item.external_id:
            dropped += 1
            continue
        items.append(item)
    if dropped:
        logger.debug("Dropped %d scraper rows without an id", dropped)
    return items


class RedditSource:
    """Content source adapter: one keyword in, normalized content items out."""

    platform = PLATFORM

    def __init__(self, config: Config, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self._transport = transport

    async def run(
        self,
        keyword: str,
        mode: RunType,
        provider: RedditScrapingProvider,
    ) -> ScrapeRun:
        max_posts = (
            self.config.initial_posts_per_keyword
            if mode == "initial"
            else self.config.weekly_posts_per_keyword
        )
        run_input = build_scraper_input(keyword, mode, max_posts, provider.proxy_groups)

        async with ApifyClient(
            provider.api_key,
            base_url=self.config.apify_base_url,
            poll_interval=self.config.apify_poll_interval,
            transport=self._transport,
        ) as client:
            run = await client.call_actor(
                provider.actor_id, run_input, timeout=self.config.scrape_timeout,
            )

        items = normalize_items(run.items)
        logger.info("Keyword %r (%s): %d items", keyword, mode, len(items))
        return ScrapeRun(run_id=run.run_id, dataset_id=run.dataset_id, items=items)
