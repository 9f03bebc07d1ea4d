"""Content-addressed scrape cache shared across all tenants.

Identical scrape targets (same kind, topic, country, state, city after
normalization) map to the same key, so the external scrape is paid for once
and reused by every business that asks for it until the entry expires.
"""

from __future__ import annotations

import hashlib
import logging
import re
from datetime import datetime, timedelta

from outreach_research.db.database import Database, to_iso, utc_now
from outreach_research.models import CacheEntry, ResearchTarget

logger = logging.getLogger(__name__)

KEY_SEPARATOR = "|"
PLACES_KIND = "places"
DEFAULT_TTL_DAYS = 180

_WHITESPACE = re.compile(r"\s+")


def cache_key(
    kind: str,
    topic: str,
    country: str,
    state: str | None = None,
    city: str | None = None,
) -> str:
    """Deterministic fingerprint of a scrape target.

    Components are normalized and joined in fixed positional order, then
    hashed. A component containing the separator is rejected.
    """
    parts = [
        _normalize_text(kind),
        _normalize_text(topic),
        (country or "").strip().upper(),
        (state or "").strip().upper(),
        _normalize_text(city or ""),
    ]
    for part in parts:
        if KEY_SEPARATOR in part:
            raise ValueError(f"Cache key component may not contain {KEY_SEPARATOR!r}: {part!r}")
    if not parts[0] or not parts[1] or not parts[2]:
        raise ValueError("Cache key requires kind, topic and country")
    return _hash(KEY_SEPARATOR.join(parts))


def target_cache_key(target: ResearchTarget, kind: str = PLACES_KIND) -> str:
    """The canonical key for a location target. Every call site goes through here."""
    return cache_key(
        kind,
        target.search_term,
        target.country,
        target.state_code or target.state,
        target.city,
    )


class ScrapeCache:
    """SQLite-backed cache entries pointing at raw scrape results."""

    def __init__(self, db: Database, ttl_days: int = DEFAULT_TTL_DAYS):
        self.db = db
        self.ttl_days = ttl_days

    def lookup(self, key: str, now: datetime | None = None) -> CacheEntry | None:
        """Return the live entry for ``key``, or None if missing or expired."""
        now = now or utc_now()
        row = self.db.fetchone(
            "SELECT * FROM scrape_cache WHERE cache_key = ? AND expires_at > ?",
            (key, to_iso(now)),
        )
        if not row:
            return None
        return CacheEntry.model_validate(dict(row))

    def upsert(
        self,
        key: str,
        *,
        kind: str,
        topic: str,
        country: str,
        state: str | None = None,
        city: str | None = None,
        scrape_result_id: int | None = None,
        result_count: int = 0,
        email_count: int = 0,
        now: datetime | None = None,
    ) -> int:
        """Insert or replace the entry for ``key`` and return its id.

        Last writer wins. Storage errors propagate to the caller.
        """
        scraped_at = now or utc_now()
        expires_at = scraped_at + timedelta(days=self.ttl_days)
        self.db.update(
            """
            INSERT INTO scrape_cache (
                cache_key, kind, topic, country, state, city,
                scrape_result_id, result_count, email_count, scraped_at, expires_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(cache_key) DO UPDATE SET
                kind = excluded.kind,
                topic = excluded.topic,
                country = excluded.country,
                state = excluded.state,
                city = excluded.city,
                scrape_result_id = excluded.scrape_result_id,
                result_count = excluded.result_count,
                email_count = excluded.email_count,
                scraped_at = excluded.scraped_at,
                expires_at = excluded.expires_at
            """,
            (
                key, kind, topic, country, state, city,
                scrape_result_id, result_count, email_count,
                to_iso(scraped_at), to_iso(expires_at),
            ),
        )
        row = self.db.fetchone("SELECT id FROM scrape_cache WHERE cache_key = ?", (key,))
        if row is None:
            raise RuntimeError(f"Cache entry {key} missing after upsert")
        return row["id"]

    def cleanup_expired(self, now: datetime | None = None) -> int:
        """Delete entries past expiry. Returns the number removed."""
        now = now or utc_now()
        removed = self.db.update(
            "DELETE FROM scrape_cache WHERE expires_at <= ?",
            (to_iso(now),),
        )
        if removed:
            logger.info("Removed %d expired cache entries", removed)
        return removed

    def stats(self, now: datetime | None = None) -> dict:
        """Live/expired entry counts and scrape date range."""
        now_iso = to_iso(now or utc_now())
        row = self.db.fetchone(
            """
            SELECT
                COUNT(*) AS total,
                SUM(CASE WHEN expires_at > ? THEN 1 ELSE 0 END) AS live,
                MIN(scraped_at) AS oldest,
                MAX(scraped_at) AS newest
            FROM scrape_cache
            """,
            (now_iso,),
        )
        total = row["total"] or 0
        live = row["live"] or 0
        return {
            "total": total,
            "live": live,
            "expired": total - live,
            "oldest": row["oldest"],
            "newest": row["newest"],
        }


def _normalize_text(value: str) -> str:
    return _WHITESPACE.sub(" ", (value or "").strip().lower())


def _hash(text: str) -> str:
    return hashlib.sha256(text.encode()).hexdigest()
