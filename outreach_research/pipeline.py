"""Research orchestration: keyword research runs, staggered reveal, lead targets."""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime
from typing import Any, Callable

from outreach_research.analysis.embeddings import EmbeddingClient
from outreach_research.analysis.relevance import RelevanceScorer, ScoringQueue
from outreach_research.cache.store import PLACES_KIND, ScrapeCache, target_cache_key
from outreach_research.cache.targets import TargetStore, next_unfulfilled
from outreach_research.config import Config
from outreach_research.db.database import Database, utc_now
from outreach_research.db.repository import ResearchRepository
from outreach_research.leads.extraction import extract_leads
from outreach_research.leads.verification import EmailVerifier, LeadStore
from outreach_research.models import (
    ContentItem,
    CronSummary,
    ResearchResult,
    ResearchRunResult,
    ResearchStats,
    ResearchTarget,
    RevealedResults,
    RunType,
    ScrapeRun,
    TargetResult,
    TargetStatus,
    VerifiedLead,
)
from outreach_research.reveal import distribute_reveal_times
from outreach_research.sources.places import PlacesSource
from outreach_research.sources.reddit import PLATFORM as REDDIT_PLATFORM
from outreach_research.sources.reddit import RedditSource

logger = logging.getLogger(__name__)

REDDIT_PROVIDER = "reddit-scraping"
PLACES_PROVIDER = "places-leads"
VERIFICATION_PROVIDER = "email-verification"
PLACES_PLATFORM = "places"

# Headroom over the client-side bound before the orchestrator gives up on a call
_TIMEOUT_GRACE = 30


class ResearchPipeline:
    """Runs research for businesses against injected sources and oracles.

    Every public coroutine returns a result object; failures are logged and
    reported through ``success``/``error`` rather than raised.
    """

    def __init__(
        self,
        db: Database,
        config: Config,
        content_source: RedditSource | None = None,
        places_source: PlacesSource | None = None,
        verifier: EmailVerifier | None = None,
        embedder: EmbeddingClient | None = None,
        scoring_queue: ScoringQueue | None = None,
        clock: Callable[[], datetime] | None = None,
        rng: random.Random | None = None,
    ):
        self.db = db
        self.config = config
        self.repo = ResearchRepository(db)
        self.cache = ScrapeCache(db, ttl_days=config.cache_ttl_days)
        self.targets = TargetStore(db)
        self.leads = LeadStore(db, batch_size=config.lead_insert_batch_size)

        self.content_source = content_source or RedditSource(config)
        self.places_source = places_source or PlacesSource(config)
        self.verifier = verifier or EmailVerifier(config)
        self.embedder = embedder or EmbeddingClient(
            config.openai_api_key, config.embedding_model, config.embed_timeout,
        )
        self.scoring_queue = scoring_queue or ScoringQueue(RelevanceScorer(
            self.repo,
            self.embedder,
            batch_size=config.scoring_batch_size,
            batch_delay=config.scoring_batch_delay,
            max_chars=config.scoring_max_chars,
        ))
        self.clock = clock or utc_now
        self.rng = rng

    # --- Keyword research runs ---

    async def trigger_initial_research(self, business_id: str) -> ResearchRunResult:
        """First run for a business: deep scrape, all time, sorted by hot."""
        return await self._run_research(business_id, "initial")

    async def trigger_weekly_research(self, business_id: str) -> ResearchRunResult:
        """Refresh run: past week only, sorted by new."""
        return await self._run_research(business_id, "weekly")

    async def _run_research(self, business_id: str, mode: RunType) -> ResearchRunResult:
        run_id: int | None = None
        try:
            business = self.repo.get_business(business_id)
            if business is None:
                return ResearchRunResult(success=False, error="Business not found")

            keywords = business.keywords[: self.config.max_keywords]
            if not keywords:
                return ResearchRunResult(success=False, error="No keywords configured for business")

            if not self.repo.has_active_subscription(business.user_id):
                return ResearchRunResult(success=False, error="Active subscription required")

            provider = self.repo.get_provider(REDDIT_PROVIDER)
            if provider is None:
                return ResearchRunResult(success=False, error="Reddit scraping provider not active")

            run_id = self.repo.create_run(business, mode, keywords, REDDIT_PROVIDER, now=self.clock())
            logger.info(
                "Starting %s research run %d for %s with %d keywords",
                mode, run_id, business_id, len(keywords),
            )

            scrapes = await asyncio.gather(
                *(self._scrape_keyword_safe(keyword, mode, provider) for keyword in keywords)
            )
            succeeded = [s for s in scrapes if s is not None]
            if not succeeded:
                error = f"All {len(keywords)} keyword scrapes failed"
                self.repo.fail_run(run_id, error, now=self.clock())
                return ResearchRunResult(success=False, run_id=run_id, error=error)
            if len(succeeded) < len(keywords):
                logger.warning(
                    "Run %d: %d/%d keyword scrapes failed",
                    run_id, len(keywords) - len(succeeded), len(keywords),
                )

            posts = _unique_posts(item for scrape in succeeded for item in scrape.items)
            logger.info("Run %d: %d posts after filtering", run_id, len(posts))

            scheduled = distribute_reveal_times(posts, now=self.clock(), rng=self.rng)
            records = [
                {
                    "business_id": business_id,
                    "research_run_id": run_id,
                    "platform": REDDIT_PLATFORM,
                    "external_id": s.item.external_id,
                    "title": s.item.title,
                    "url": s.item.link,
                    "score": s.item.score,
                    "result_data": s.item.raw or s.item.model_dump(exclude={"raw"}),
                    "reveal_at": s.reveal_at,
                }
                for s in scheduled
            ]
            inserted = self.repo.insert_results(records, batch_size=self.config.insert_batch_size)
            if inserted < len(records):
                logger.info("Run %d: %d duplicate results skipped", run_id, len(records) - inserted)

            last = succeeded[-1]
            self.repo.complete_run(
                run_id, len(posts), last.run_id or None, last.dataset_id or None, now=self.clock(),
            )
            self._submit_scoring(business_id, run_id)
            return ResearchRunResult(success=True, run_id=run_id, item_count=len(posts))

        except Exception as e:
            logger.exception("Research run failed for business %s", business_id)
            error = str(e) or type(e).__name__
            if run_id is not None:
                self._fail_run_quietly(run_id, error)
            return ResearchRunResult(success=False, run_id=run_id, error=error)

    async def _scrape_keyword_safe(self, keyword: str, mode: RunType, provider) -> ScrapeRun | None:
        """Scrape one keyword; a failure only drops this keyword's items."""
        try:
            return await asyncio.wait_for(
                self.content_source.run(keyword, mode, provider),
                timeout=self.config.scrape_timeout + _TIMEOUT_GRACE,
            )
        except Exception as e:
            logger.warning("Scrape failed for keyword %r: %s", keyword, e)
            return None

    def _submit_scoring(self, business_id: str, run_id: int) -> None:
        try:
            self.scoring_queue.submit(business_id, run_id)
        except Exception as e:
            # Scoring never affects the run outcome
            logger.error("Could not queue scoring for run %d: %s", run_id, e)

    def _fail_run_quietly(self, run_id: int, error: str) -> None:
        try:
            self.repo.fail_run(run_id, error, now=self.clock())
        except Exception:
            logger.exception("Could not mark run %d failed", run_id)

    # --- Read path ---

    def get_revealed_results(
        self,
        business_id: str,
        platform: str = REDDIT_PLATFORM,
        limit: int = 50,
        offset: int = 0,
        now: datetime | None = None,
    ) -> RevealedResults:
        """Results whose reveal time has passed, most relevant first."""
        now = now or self.clock()
        try:
            if platform == PLACES_PLATFORM:
                return self._places_results(business_id, limit, offset, now)
            results, total = self.repo.revealed_results(business_id, platform, now, limit, offset)
            return RevealedResults(
                results=results,
                total=total,
                next_reveal_at=self.repo.next_reveal_at(business_id, now, platform),
            )
        except Exception as e:
            logger.exception("Failed to read results for business %s", business_id)
            return RevealedResults(success=False, error=str(e) or type(e).__name__)

    def _places_results(
        self,
        business_id: str,
        limit: int,
        offset: int,
        now: datetime,
    ) -> RevealedResults:
        # Fulfilled targets -> raw scrapes -> deliverable leads
        fulfilled = [t for t in self.targets.get_targets(business_id) if t.is_fulfilled]
        scrape_ids = {t.scrape_result_id for t in fulfilled if t.scrape_result_id is not None}
        # Targets stamped without a scrape id resolve through their live cache entry
        unresolved = [
            t.cache_id for t in fulfilled
            if t.scrape_result_id is None and t.cache_id is not None
        ]
        scrape_ids.update(self.repo.scrape_ids_for_cache_entries(unresolved))
        leads, total = self.leads.leads_for_scrapes(sorted(scrape_ids), limit, offset)
        return RevealedResults(
            results=[_lead_as_result(lead, now) for lead in leads],
            total=total,
        )

    def get_research_stats(self, business_id: str, now: datetime | None = None) -> ResearchStats:
        now = now or self.clock()
        try:
            total = self.repo.count_results(business_id)
            revealed = self.repo.count_results(business_id, revealed_by=now)
            return ResearchStats(
                total_results=total,
                revealed_count=revealed,
                pending_count=total - revealed,
                last_run_at=self.repo.last_completed_run_at(business_id),
                next_reveal_at=self.repo.next_reveal_at(business_id, now),
            )
        except Exception as e:
            logger.exception("Failed to compute stats for business %s", business_id)
            return ResearchStats(success=False, error=str(e) or type(e).__name__)

    def get_target_status(self, business_id: str) -> TargetStatus:
        try:
            return self.targets.target_status(business_id)
        except Exception as e:
            logger.exception("Failed to read targets for business %s", business_id)
            return TargetStatus(success=False, error=str(e) or type(e).__name__)

    # --- Lead research targets ---

    async def process_target(
        self,
        business_id: str,
        target: ResearchTarget,
        index: int,
    ) -> TargetResult:
        """Fulfil one target from the shared cache, scraping only on a miss."""
        try:
            places = self.repo.get_provider(PLACES_PROVIDER)
            if places is None:
                return TargetResult(success=False, error="Places scraping provider not active")
            verification = self.repo.get_provider(VERIFICATION_PROVIDER)
            if verification is None:
                return TargetResult(success=False, error="Email verification provider not active")

            key = target_cache_key(target)
            entry = self.cache.lookup(key, now=self.clock())
            if entry is not None:
                logger.info("Cache hit for %r in %s", target.search_term, target.location_query())
                self.targets.mark_fulfilled(
                    business_id, index, entry.id, entry.result_count,
                    scrape_result_id=entry.scrape_result_id, now=self.clock(),
                )
                return TargetResult(
                    success=True,
                    cache_id=entry.id,
                    scrape_result_id=entry.scrape_result_id,
                    result_count=entry.result_count,
                    email_count=entry.email_count,
                    from_cache=True,
                )

            logger.info("Cache miss for %r in %s, scraping", target.search_term, target.location_query())
            run = await asyncio.wait_for(
                self.places_source.run(target, places),
                timeout=self.config.scrape_timeout + _TIMEOUT_GRACE,
            )
            scrape_id = self.repo.save_scrape_result(
                PLACES_PROVIDER,
                places.actor_id,
                run,
                {
                    "search_term": target.search_term,
                    "location": target.location_query(),
                    "cache_key": key,
                },
            )

            extraction = extract_leads(run.items, default_industry=target.industry or target.search_term)
            email_count = 0
            if extraction.leads:
                try:
                    results = await asyncio.wait_for(
                        self.verifier.verify([lead.email for lead in extraction.leads], verification),
                        timeout=self.config.verify_timeout + _TIMEOUT_GRACE,
                    )
                except Exception as e:
                    # Nothing is stored unverified
                    logger.error("Email verification failed for target %d of %s: %s", index, business_id, e)
                    return TargetResult(
                        success=False,
                        scrape_result_id=scrape_id,
                        error=f"Email verification failed: {e}",
                    )
                saved = self.leads.save_verified_leads(extraction.leads, results, scrape_id)
                email_count = saved.total_processed
                logger.info(
                    "Target %d of %s: %d deliverable, %d new, %d duplicate leads",
                    index, business_id, saved.total_processed, saved.total_inserted, saved.total_duplicates,
                )

            try:
                cache_id = self.cache.upsert(
                    key,
                    kind=PLACES_KIND,
                    topic=target.search_term,
                    country=target.country,
                    state=target.state_code or target.state,
                    city=target.city,
                    scrape_result_id=scrape_id,
                    result_count=len(run.items),
                    email_count=email_count,
                    now=self.clock(),
                )
            except Exception as e:
                logger.error("Failed to create cache entry for %s: %s", key, e)
                return TargetResult(
                    success=False,
                    scrape_result_id=scrape_id,
                    error=f"Failed to create cache entry: {e}",
                )

            self.targets.mark_fulfilled(
                business_id, index, cache_id, len(run.items), scrape_result_id=scrape_id, now=self.clock(),
            )
            return TargetResult(
                success=True,
                cache_id=cache_id,
                scrape_result_id=scrape_id,
                result_count=len(run.items),
                email_count=email_count,
                from_cache=False,
            )

        except Exception as e:
            logger.exception("Target %d of business %s failed", index, business_id)
            return TargetResult(success=False, error=str(e) or type(e).__name__)

    # --- Cron passes ---

    async def run_pending_targets(self) -> CronSummary:
        """Daily pass: sweep the cache, then one pending target per business."""
        try:
            cleaned = self.cache.cleanup_expired(now=self.clock())
            businesses = self.targets.businesses_with_pending_targets()
        except Exception as e:
            logger.exception("Places research pass failed")
            return CronSummary(success=False, message=str(e) or type(e).__name__)

        summary = CronSummary(cleaned_cache=cleaned)
        if not businesses:
            summary.message = "No businesses with pending targets"
            return summary

        for business in businesses:
            entry: dict[str, Any] = {"business_id": business["id"], "name": business["name"]}
            if not self.repo.has_active_subscription(business["user_id"]):
                entry.update(success=False, error="No active subscription")
                summary.results.append(entry)
                continue

            pending = next_unfulfilled(business["targets"])
            if pending is None:
                continue
            index, target = pending
            result = await self.process_target(business["id"], target, index)

            summary.processed += 1
            if result.success:
                summary.succeeded += 1
                summary.total_items += result.result_count or 0
            entry.update(target_index=index, **result.model_dump(exclude_none=True))
            summary.results.append(entry)

        summary.message = f"Processed {summary.processed} targets, {summary.succeeded} succeeded"
        logger.info(summary.message)
        return summary

    async def run_weekly_research(self) -> CronSummary:
        """Weekly pass over every active business that has keywords."""
        try:
            businesses = self.repo.active_businesses_with_keywords()
        except Exception as e:
            logger.exception("Weekly research pass failed")
            return CronSummary(success=False, message=str(e) or type(e).__name__)

        summary = CronSummary()
        if not businesses:
            summary.message = "No active businesses"
            return summary

        for i, business in enumerate(businesses):
            if not business.keywords:
                continue
            if i > 0:
                await asyncio.sleep(self.config.weekly_business_delay)

            result = await self.trigger_weekly_research(business.id)
            summary.processed += 1
            if result.success:
                summary.succeeded += 1
                summary.total_items += result.item_count or 0
            summary.results.append({
                "business_id": business.id,
                "name": business.name,
                **result.model_dump(exclude_none=True),
            })

        summary.message = f"Processed {summary.processed} businesses, {summary.succeeded} succeeded"
        logger.info(summary.message)
        return summary

    async def close(self) -> None:
        """Wait for queued scoring, then release the embedding client."""
        await self.scoring_queue.drain()
        await self.embedder.close()


def _unique_posts(items) -> list[ContentItem]:
    """Drop comments and repeats of the same post across keywords."""
    seen: set[str] = set()
    posts = []
    for item in items:
        if item.is_comment or item.external_id in seen:
            continue
        seen.add(item.external_id)
        posts.append(item)
    return posts


def _lead_as_result(lead: VerifiedLead, now: datetime) -> ResearchResult:
    return ResearchResult(
        id=lead.id,
        platform=PLACES_PLATFORM,
        external_id=lead.email,
        title=lead.company_name,
        url=lead.website,
        result_data=lead.model_dump(mode="json"),
        reveal_at=lead.created_at or now,
    )
