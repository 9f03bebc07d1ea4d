"""Queries the research pipeline runs against the SQLite store."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from outreach_research.cache.targets import parse_targets
from outreach_research.db.database import Database, to_iso, utc_now
from outreach_research.models import (
    Business,
    ProviderConfig,
    RawScrapeResult,
    ResearchResult,
    RunType,
    ScrapeRun,
    provider_config_adapter,
)

logger = logging.getLogger(__name__)

_RESULT_COLUMNS = (
    "id, business_id, research_run_id, platform, external_id, title, url, score, "
    "result_data, reveal_at, relevance_score, created_at"
)


class ResearchRepository:
    """All research-side reads and writes, over an explicitly passed Database."""

    def __init__(self, db: Database):
        self.db = db

    # --- Collaborator rows ---

    def get_business(self, business_id: str) -> Business | None:
        row = self.db.fetchone("SELECT * FROM businesses WHERE id = ?", (business_id,))
        return _business_from_row(row) if row else None

    def active_businesses_with_keywords(self) -> list[Business]:
        rows = self.db.fetchall(
            "SELECT * FROM businesses WHERE is_active = 1 AND keywords IS NOT NULL "
            "ORDER BY created_at"
        )
        return [_business_from_row(r) for r in rows]

    def has_active_subscription(self, user_id: str) -> bool:
        row = self.db.fetchone(
            "SELECT subscription_status FROM profiles WHERE id = ?", (user_id,),
        )
        return bool(row) and row["subscription_status"] == "active"

    def get_provider(self, slug: str) -> ProviderConfig | None:
        """Active provider config for ``slug``, validated; None if inactive or invalid."""
        row = self.db.fetchone(
            "SELECT api_key, config FROM api_providers WHERE slug = ? AND is_active = 1",
            (slug,),
        )
        if not row or not row["api_key"]:
            return None
        try:
            config = json.loads(row["config"] or "{}")
            return provider_config_adapter.validate_python(
                {**config, "kind": slug, "api_key": row["api_key"]}
            )
        except (ValueError, ValidationError) as e:
            logger.warning("Provider %s has invalid config: %s", slug, e)
            return None

    # --- Research runs ---

    def create_run(
        self,
        business: Business,
        run_type: RunType,
        keywords: list[str],
        provider_slug: str,
        now: datetime | None = None,
    ) -> int:
        return self.db.insert(
            "INSERT INTO research_runs "
            "(business_id, user_id, provider_slug, run_type, status, keywords_used, started_at) "
            "VALUES (?, ?, ?, ?, 'running', ?, ?)",
            (
                business.id, business.user_id, provider_slug, run_type,
                json.dumps(keywords), to_iso(now or utc_now()),
            ),
        )

    def complete_run(
        self,
        run_id: int,
        item_count: int,
        scraper_run_id: str | None = None,
        scraper_dataset_id: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        return self.db.update(
            "UPDATE research_runs SET status = 'completed', item_count = ?, "
            "scraper_run_id = ?, scraper_dataset_id = ?, completed_at = ? "
            "WHERE id = ? AND status = 'running'",
            (item_count, scraper_run_id, scraper_dataset_id, to_iso(now or utc_now()), run_id),
        ) > 0

    def fail_run(self, run_id: int, error: str, now: datetime | None = None) -> bool:
        return self.db.update(
            "UPDATE research_runs SET status = 'failed', error = ?, completed_at = ? "
            "WHERE id = ? AND status = 'running'",
            (error[:1000], to_iso(now or utc_now()), run_id),
        ) > 0

    def last_completed_run_at(self, business_id: str) -> str | None:
        row = self.db.fetchone(
            "SELECT completed_at FROM research_runs "
            "WHERE business_id = ? AND status = 'completed' "
            "ORDER BY completed_at DESC LIMIT 1",
            (business_id,),
        )
        return row["completed_at"] if row else None

    # --- Research results ---

    def insert_results(self, records: list[dict[str, Any]], batch_size: int = 50) -> int:
        """Insert result rows, absorbing duplicates.

        Each batch goes in as one statement; if it hits the unique index the
        batch is retried row by row so non-conflicting rows still land.
        Returns the number of rows inserted.
        """
        sql = (
            "INSERT INTO research_results "
            "(business_id, research_run_id, platform, external_id, title, url, score, "
            "result_data, reveal_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)"
        )
        rows = [
            (
                r["business_id"], r["research_run_id"], r["platform"], r["external_id"],
                r.get("title"), r.get("url"), r.get("score", 0),
                json.dumps(r.get("result_data") or {}), to_iso(r["reveal_at"]),
            )
            for r in records
        ]

        inserted = 0
        for start in range(0, len(rows), batch_size):
            batch = rows[start:start + batch_size]
            batch_no = start // batch_size + 1
            try:
                self.db.executemany(sql, batch)
                self.db.commit()
                inserted += len(batch)
            except sqlite3.IntegrityError:
                self.db.rollback()
                logger.info("Batch %d: duplicates found, inserting individually", batch_no)
                for row in batch:
                    try:
                        self.db.insert(sql, row)
                        inserted += 1
                    except sqlite3.IntegrityError:
                        continue
            except sqlite3.Error as e:
                self.db.rollback()
                logger.error("Failed to insert research results batch %d: %s", batch_no, e)
        return inserted

    def revealed_results(
        self,
        business_id: str,
        platform: str,
        now: datetime,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ResearchResult], int]:
        now_iso = to_iso(now)
        total = self.db.fetchone(
            "SELECT COUNT(*) AS cnt FROM research_results "
            "WHERE business_id = ? AND platform = ? AND reveal_at <= ?",
            (business_id, platform, now_iso),
        )["cnt"]
        rows = self.db.fetchall(
            f"SELECT {_RESULT_COLUMNS} FROM research_results "
            "WHERE business_id = ? AND platform = ? AND reveal_at <= ? "
            "ORDER BY relevance_score IS NULL, relevance_score DESC, reveal_at DESC, id "
            "LIMIT ? OFFSET ?",
            (business_id, platform, now_iso, limit, offset),
        )
        return [_result_from_row(r) for r in rows], total

    def next_reveal_at(
        self,
        business_id: str,
        now: datetime,
        platform: str | None = None,
    ) -> str | None:
        sql = "SELECT MIN(reveal_at) AS next_at FROM research_results WHERE business_id = ? AND reveal_at > ?"
        params: tuple = (business_id, to_iso(now))
        if platform:
            sql += " AND platform = ?"
            params += (platform,)
        row = self.db.fetchone(sql, params)
        return row["next_at"] if row else None

    def count_results(self, business_id: str, revealed_by: datetime | None = None) -> int:
        if revealed_by is None:
            row = self.db.fetchone(
                "SELECT COUNT(*) AS cnt FROM research_results WHERE business_id = ?",
                (business_id,),
            )
        else:
            row = self.db.fetchone(
                "SELECT COUNT(*) AS cnt FROM research_results "
                "WHERE business_id = ? AND reveal_at <= ?",
                (business_id, to_iso(revealed_by)),
            )
        return row["cnt"]

    def unscored_results(
        self,
        business_id: str,
        run_id: int | None = None,
    ) -> list[tuple[int, dict[str, Any]]]:
        sql = (
            "SELECT id, result_data FROM research_results "
            "WHERE business_id = ? AND relevance_score IS NULL"
        )
        params: tuple = (business_id,)
        if run_id is not None:
            sql += " AND research_run_id = ?"
            params += (run_id,)
        rows = self.db.fetchall(sql + " ORDER BY id", params)
        return [(r["id"], json.loads(r["result_data"] or "{}")) for r in rows]

    def set_relevance_score(self, result_id: int, score: float) -> bool:
        """Write a score once; an existing score is never overwritten."""
        return self.db.update(
            "UPDATE research_results SET relevance_score = ? "
            "WHERE id = ? AND relevance_score IS NULL",
            (score, result_id),
        ) > 0

    # --- Raw scrapes ---

    def save_scrape_result(
        self,
        provider_slug: str,
        actor_id: str,
        run: ScrapeRun,
        input_config: dict[str, Any],
    ) -> int:
        return self.db.insert(
            "INSERT INTO scrape_results "
            "(provider_slug, actor_id, run_id, dataset_id, input_config, results_data, item_count, status) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, 'completed')",
            (
                provider_slug, actor_id, run.run_id, run.dataset_id,
                json.dumps(input_config), json.dumps(run.items), len(run.items),
            ),
        )

    def get_scrape_result(self, scrape_result_id: int) -> RawScrapeResult | None:
        row = self.db.fetchone("SELECT * FROM scrape_results WHERE id = ?", (scrape_result_id,))
        if not row:
            return None
        data = dict(row)
        data["input_config"] = json.loads(data["input_config"] or "{}")
        data["results"] = json.loads(data.pop("results_data") or "[]")
        return RawScrapeResult.model_validate(data)

    def scrape_ids_for_cache_entries(self, cache_ids: list[int]) -> list[int]:
        if not cache_ids:
            return []
        placeholders = ",".join("?" for _ in cache_ids)
        rows = self.db.fetchall(
            f"SELECT scrape_result_id FROM scrape_cache "
            f"WHERE id IN ({placeholders}) AND scrape_result_id IS NOT NULL",
            tuple(cache_ids),
        )
        return [r["scrape_result_id"] for r in rows]


def _business_from_row(row: sqlite3.Row) -> Business:
    return Business(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"] or "",
        description=row["description"] or "",
        target_audience=row["target_audience"] or "",
        industry=row["industry"] or "",
        keywords=json.loads(row["keywords"] or "[]"),
        is_active=bool(row["is_active"]),
        targets=parse_targets(row["targets"]),
    )


def _result_from_row(row: sqlite3.Row) -> ResearchResult:
    data = dict(row)
    data["result_data"] = json.loads(data["result_data"] or "{}")
    return ResearchResult.model_validate(data)
