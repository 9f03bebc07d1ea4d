"""Pydantic data models for the research and lead pipeline."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

DELIVERABLE = "Deliverable"

RunType = Literal["initial", "weekly"]


# ---------------------------------------------------------------------------
# Business-side records (owned by the dashboard, read by the pipeline)
# ---------------------------------------------------------------------------

class ResearchTarget(BaseModel):
    """One (industry-or-keyword, location) pair a business wants researched."""
    industry: str = ""
    country: str = "US"
    country_name: str = ""
    state: str | None = None
    state_code: str | None = None
    city: str | None = None
    keyword: str | None = None  # Overrides industry as the search term
    # Status tracking, stamped once after the target is processed
    fulfilled_at: datetime | None = None
    cache_id: int | None = None
    scrape_result_id: int | None = None  # Survives the cache entry being swept
    result_count: int | None = None

    @property
    def search_term(self) -> str:
        return (self.keyword or self.industry or "business").strip()

    @property
    def is_fulfilled(self) -> bool:
        return self.fulfilled_at is not None

    def location_query(self) -> str:
        """Human-readable location for the places scraper, most specific first."""
        parts = [p for p in (self.city, self.state) if p]
        parts.append(self.country_name or self.country)
        return ", ".join(parts)


class Business(BaseModel):
    id: str
    user_id: str
    name: str = ""
    description: str = ""
    target_audience: str = ""
    industry: str = ""
    keywords: list[str] = Field(default_factory=list)
    is_active: bool = True
    targets: list[ResearchTarget] = Field(default_factory=list)

    @field_validator("keywords", mode="before")
    @classmethod
    def drop_blank_keywords(cls, v):
        if v is None:
            return []
        return [k.strip() for k in v if k and k.strip()]


# ---------------------------------------------------------------------------
# Provider configuration (validated at the boundary where the JSON is read)
# ---------------------------------------------------------------------------

class RedditScrapingProvider(BaseModel):
    kind: Literal["reddit-scraping"]
    api_key: str
    actor_id: str = "harshmaur/reddit-scraper-pro"
    proxy_groups: list[str] = Field(default_factory=lambda: ["RESIDENTIAL"])


class PlacesLeadsProvider(BaseModel):
    kind: Literal["places-leads"]
    api_key: str
    actor_id: str = "compass/crawler-google-places"
    max_results: int = 50
    language: str = "en"


class EmailVerificationProvider(BaseModel):
    kind: Literal["email-verification"]
    api_key: str
    actor_id: str


ProviderConfig = Annotated[
    Union[RedditScrapingProvider, PlacesLeadsProvider, EmailVerificationProvider],
    Field(discriminator="kind"),
]
provider_config_adapter: TypeAdapter[ProviderConfig] = TypeAdapter(ProviderConfig)


# ---------------------------------------------------------------------------
# Content source models
# ---------------------------------------------------------------------------

class ContentItem(BaseModel):
    """A single scraped post or comment, normalized from the scraper payload."""
    external_id: str
    title: str = ""
    body: str = ""
    url: str = ""
    permalink: str = ""
    subreddit: str = ""
    author: str = ""
    score: int = 0
    num_comments: int = 0
    created_at: str = ""
    data_type: str | None = None  # "post" / "comment"
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_comment(self) -> bool:
        return (self.data_type or "").lower() == "comment"

    @property
    def link(self) -> str:
        return self.url or self.permalink

    @classmethod
    def from_scraper(cls, data: dict[str, Any]) -> ContentItem:
        return cls(
            external_id=str(data.get("id") or data.get("parsedId") or ""),
            title=data.get("title") or "",
            body=data.get("body") or data.get("selftext") or "",
            url=data.get("url") or "",
            permalink=data.get("permalink") or "",
            subreddit=data.get("subreddit") or data.get("communityName") or "",
            author=data.get("author") or data.get("username") or "",
            score=_to_int(data.get("score", data.get("upVotes"))),
            num_comments=_to_int(data.get("numComments", data.get("numberOfComments"))),
            created_at=str(data.get("createdAt") or data.get("created") or ""),
            data_type=data.get("dataType"),
            raw=data,
        )


class ScrapeRun(BaseModel):
    """Output of one actor run: identifiers plus the dataset items."""
    run_id: str = ""
    dataset_id: str = ""
    items: list[Any] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Cache / raw scrape models
# ---------------------------------------------------------------------------

class CacheEntry(BaseModel):
    id: int
    cache_key: str
    kind: str
    topic: str
    country: str
    state: str | None = None
    city: str | None = None
    scrape_result_id: int | None = None
    result_count: int = 0
    email_count: int = 0
    scraped_at: datetime
    expires_at: datetime


class RawScrapeResult(BaseModel):
    id: int
    provider_slug: str
    actor_id: str
    run_id: str = ""
    dataset_id: str = ""
    input_config: dict[str, Any] = Field(default_factory=dict)
    results: list[Any] = Field(default_factory=list)
    item_count: int = 0
    status: str = "completed"
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Lead models
# ---------------------------------------------------------------------------

class ExtractedLead(BaseModel):
    email: str
    domain: str
    company_name: str | None = None
    lead_type: Literal["business", "person"] = "business"
    phone: str | None = None
    website: str | None = None
    address: str | None = None
    city: str = ""
    state: str = ""
    country_code: str = "US"
    industry: str = "Unknown"


class ExtractionResult(BaseModel):
    leads: list[ExtractedLead] = Field(default_factory=list)
    total_emails_found: int = 0
    unique_domains_found: int = 0
    skipped_invalid_emails: int = 0


class VerificationResult(BaseModel):
    """One verification oracle verdict for one email."""
    email: str
    domain: str = ""
    state: str = "Unknown"  # "Deliverable", "Undeliverable", "Risky", ...
    is_valid: bool = False
    free: bool = False
    role: bool = False
    disposable: bool = False
    accept_all: bool = False
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_deliverable(self) -> bool:
        # Both conditions are required
        return self.state == DELIVERABLE and self.is_valid


class LeadSaveResult(BaseModel):
    total_processed: int = 0
    total_inserted: int = 0
    total_duplicates: int = 0
    lead_lists_created: int = 0
    errors: list[str] = Field(default_factory=list)


class VerifiedLead(BaseModel):
    id: int
    lead_list_id: int | None = None
    email: str
    domain: str
    company_name: str | None = None
    lead_type: str = "business"
    phone: str | None = None
    website: str | None = None
    address: str | None = None
    city: str = ""
    state: str = ""
    country_code: str = "US"
    industry: str = ""
    verification_state: str
    verification_data: dict[str, Any] | None = None
    source_scrape_id: int | None = None
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Research run / result models
# ---------------------------------------------------------------------------

class ResearchResult(BaseModel):
    id: int | str
    business_id: str | None = None
    research_run_id: int | None = None
    platform: str
    external_id: str | None = None
    title: str | None = None
    url: str | None = None
    score: int | None = None
    result_data: dict[str, Any] = Field(default_factory=dict)
    reveal_at: datetime
    relevance_score: float | None = None
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Entry point results (never raised, always returned)
# ---------------------------------------------------------------------------

class ResearchRunResult(BaseModel):
    success: bool
    run_id: int | None = None
    item_count: int | None = None
    error: str | None = None


class TargetResult(BaseModel):
    success: bool
    cache_id: int | None = None
    scrape_result_id: int | None = None
    result_count: int | None = None
    email_count: int | None = None
    from_cache: bool | None = None
    error: str | None = None


class RevealedResults(BaseModel):
    success: bool = True
    results: list[ResearchResult] = Field(default_factory=list)
    total: int = 0
    next_reveal_at: datetime | None = None
    error: str | None = None


class ResearchStats(BaseModel):
    success: bool = True
    total_results: int = 0
    revealed_count: int = 0
    pending_count: int = 0
    last_run_at: datetime | None = None
    next_reveal_at: datetime | None = None
    error: str | None = None


class ScoringOutcome(BaseModel):
    scored: int = 0
    failed: int = 0
    skipped: int = 0


class TargetStatus(BaseModel):
    success: bool = True
    error: str | None = None
    targets: list[ResearchTarget] = Field(default_factory=list)
    fulfilled: int = 0
    pending: int = 0
    all_fulfilled: bool = False


class CronSummary(BaseModel):
    """Outcome of one cron pass over many businesses."""
    success: bool = True
    message: str | None = None
    processed: int = 0
    succeeded: int = 0
    total_items: int = 0
    cleaned_cache: int = 0
    results: list[dict[str, Any]] = Field(default_factory=list)


def _to_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0
