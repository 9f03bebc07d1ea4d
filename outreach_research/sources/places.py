"""Business-listing (Google Maps places) scrape for location lead targets."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from outreach_research.config import Config
from outreach_research.models import PlacesLeadsProvider, ResearchTarget, ScrapeRun
from outreach_research.sources.apify import ApifyClient

logger = logging.getLogger(__name__)


def build_places_input(
    target: ResearchTarget,
    max_results: int,
    language: str = "en",
) -> dict[str, Any]:
    """Actor input for one target: contact scraping on, everything else off."""
    return {
        "searchStringsArray": [target.search_term],
        "locationQuery": target.location_query(),
        "maxCrawledPlacesPerSearch": max_results,
        "language": language,
        # Emails only come from the detail page contact scrape
        "scrapeContacts": True,
        "scrapePlaceDetailPage": True,
        "skipClosedPlaces": False,
        "includeWebResults": False,
        "scrapeDirectories": False,
        "maxImages": 0,
        "scrapeImageAuthors": False,
        "scrapeReviewsPersonalData": False,
        "scrapeSocialMediaProfiles": {
            "facebooks": False,
            "instagrams": False,
            "twitters": False,
            "youtubes": False,
            "tiktoks": False,
        },
        "maximumLeadsEnrichmentRecords": 0,
        "scrapeTableReservationProvider": False,
    }


class PlacesSource:
    """Runs the places actor for a target and returns the raw listing rows."""

    def __init__(self, config: Config, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self._transport = transport

    async def run(self, target: ResearchTarget, provider: PlacesLeadsProvider) -> ScrapeRun:
        run_input = build_places_input(target, provider.max_results, provider.language)
        logger.info(
            "Running places scrape for %r in %r", target.search_term, run_input["locationQuery"],
        )
        async with ApifyClient(
            provider.api_key,
            base_url=self.config.apify_base_url,
            poll_interval=self.config.apify_poll_interval,
            transport=self._transport,
        ) as client:
            run = await client.call_actor(
                provider.actor_id, run_input, timeout=self.config.scrape_timeout,
            )
        run.items = [i for i in run.items if isinstance(i, dict)]
        return run
