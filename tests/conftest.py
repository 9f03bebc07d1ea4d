"""Shared fixtures: a migrated temporary database, seed helpers, fake collaborators."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from outreach_research.config import Config
from outreach_research.db.database import Database
from outreach_research.db.migrations import run_migrations
from outreach_research.models import ContentItem, ScrapeRun, VerificationResult
from outreach_research.pipeline import ResearchPipeline
from outreach_research.sources.apify import ApifyError

FROZEN_NOW = datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db(tmp_path):
    database = Database(str(tmp_path / "research.db"))
    database.connect()
    run_migrations(database)
    yield database
    database.close()


@pytest.fixture
def config(tmp_path):
    return Config(
        database_path=str(tmp_path / "research.db"),
        apify_poll_interval=0,
        scoring_batch_delay=0,
        weekly_business_delay=0,
    )


# --- Seed helpers ---

def seed_business(
    db: Database,
    business_id: str = "biz-1",
    user_id: str = "user-1",
    keywords: list[str] | None = None,
    targets: list[dict] | None = None,
    subscription: str = "active",
    name: str = "Acme CRM",
    is_active: bool = True,
) -> None:
    db.update(
        "INSERT OR IGNORE INTO profiles (id, email, subscription_status) VALUES (?, ?, ?)",
        (user_id, f"{user_id}@acme.io", subscription),
    )
    db.insert(
        "INSERT INTO businesses "
        "(id, user_id, name, description, target_audience, industry, keywords, targets, is_active) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            business_id, user_id, name,
            "CRM software for small sales teams",
            "Small business owners",
            "Software",
            json.dumps(["crm software", "sales pipeline"] if keywords is None else keywords),
            json.dumps(targets) if targets is not None else None,
            int(is_active),
        ),
    )


def seed_provider(
    db: Database,
    slug: str,
    config: dict | None = None,
    api_key: str = "apify-token",
    is_active: bool = True,
) -> None:
    db.insert(
        "INSERT INTO api_providers (slug, name, api_key, config, is_active) VALUES (?, ?, ?, ?, ?)",
        (slug, slug.title(), api_key, json.dumps(config or {}), int(is_active)),
    )


def seed_all_providers(db: Database) -> None:
    seed_provider(db, "reddit-scraping")
    seed_provider(db, "places-leads")
    seed_provider(db, "email-verification", {"actor_id": "verifier/email-check"})


def make_post(post_id: str, title: str = "", data_type: str = "post", **extra) -> dict:
    return {
        "id": post_id,
        "title": title or f"Post {post_id}",
        "body": extra.pop("body", f"Body of {post_id}"),
        "url": f"https://www.reddit.com/r/smallbusiness/comments/{post_id}/",
        "communityName": "r/smallbusiness",
        "username": "someone",
        "upVotes": extra.pop("upVotes", 3),
        "numberOfComments": 1,
        "createdAt": "2025-03-01T10:00:00.000Z",
        "dataType": data_type,
        **extra,
    }


def make_place(name: str, email: str | None, **extra) -> dict:
    row = {
        "title": name,
        "website": f"https://{name.lower().replace(' ', '')}.com",
        "phone": "+1 555-0100",
        "address": "1 Main St, Austin, TX",
        "city": "Austin",
        "state": "Texas",
        "countryCode": "US",
        "categoryName": "Plumber",
        **extra,
    }
    if email is not None:
        row["emails"] = [email]
    return row


TARGET_AUSTIN = {
    "industry": "Plumber",
    "country": "US",
    "country_name": "United States",
    "state": "Texas",
    "state_code": "TX",
    "city": "Austin",
}


# --- Fake collaborators ---

class FakeContentSource:
    platform = "reddit"

    def __init__(self, posts_by_keyword: dict[str, list[dict]] | None = None, fail: set[str] = frozenset()):
        self.posts_by_keyword = posts_by_keyword or {}
        self.fail = set(fail)
        self.calls: list[tuple[str, str]] = []

    async def run(self, keyword, mode, provider) -> ScrapeRun:
        self.calls.append((keyword, mode))
        if keyword in self.fail:
            raise ApifyError(f"Actor run failed for {keyword}")
        rows = self.posts_by_keyword.get(keyword, [])
        return ScrapeRun(
            run_id=f"run-{keyword}",
            dataset_id=f"ds-{keyword}",
            items=[ContentItem.from_scraper(r) for r in rows],
        )


class FakePlacesSource:
    def __init__(self, rows: list[dict] | None = None):
        self.rows = rows or []
        self.calls = 0

    async def run(self, target, provider) -> ScrapeRun:
        self.calls += 1
        return ScrapeRun(run_id=f"places-{self.calls}", dataset_id=f"pds-{self.calls}", items=list(self.rows))


class FakeVerifier:
    """Marks every email deliverable unless listed in ``undeliverable``.

    Emails in ``invalid`` come back ``Deliverable`` but with ``IsValid`` false.
    """

    def __init__(
        self,
        undeliverable: set[str] = frozenset(),
        error: Exception | None = None,
        invalid: set[str] = frozenset(),
    ):
        self.undeliverable = set(undeliverable)
        self.invalid = set(invalid)
        self.error = error
        self.calls: list[list[str]] = []

    async def verify(self, emails, provider) -> list[VerificationResult]:
        self.calls.append(list(emails))
        if self.error:
            raise self.error
        return [
            VerificationResult(
                email=e,
                domain=e.split("@")[1],
                state="Undeliverable" if e in self.undeliverable else "Deliverable",
                is_valid=e not in self.undeliverable and e not in self.invalid,
                data={"Email": e},
            )
            for e in emails
        ]


class FakeEmbedder:
    """Two-dimensional embeddings: texts mentioning CRM point one way, others the other."""

    def __init__(self, fail_on: str | None = None):
        self.fail_on = fail_on
        self.calls = 0
        self.closed = False

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.fail_on and self.fail_on in text:
            raise RuntimeError("embedding service unavailable")
        return [1.0, 0.0] if "crm" in text.lower() else [0.0, 1.0]

    async def close(self) -> None:
        self.closed = True


class FrozenClock:
    def __init__(self, now: datetime = FROZEN_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def make_pipeline(db, config, clock):
    def factory(**overrides) -> ResearchPipeline:
        kwargs = {
            "content_source": FakeContentSource(),
            "places_source": FakePlacesSource(),
            "verifier": FakeVerifier(),
            "embedder": FakeEmbedder(),
            "clock": clock,
        }
        kwargs.update(overrides)
        return ResearchPipeline(db, config, **kwargs)
    return factory
