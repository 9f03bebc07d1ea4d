"""Email verification gate and verified-lead persistence.

Only leads the oracle reports as ``Deliverable`` *and* valid are stored. If
the oracle call fails the whole pass fails: nothing is persisted unverified.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any

import httpx

from outreach_research.config import Config
from outreach_research.db.database import Database
from outreach_research.leads.extraction import group_leads_by_location
from outreach_research.models import (
    EmailVerificationProvider,
    ExtractedLead,
    LeadSaveResult,
    VerificationResult,
    VerifiedLead,
)
from outreach_research.sources.apify import ApifyClient

logger = logging.getLogger(__name__)


def parse_verification_item(item: dict[str, Any]) -> VerificationResult:
    """Normalize one verification actor row (fields appear in either case)."""
    data = item.get("data") if isinstance(item.get("data"), dict) else {}
    email = data.get("email") or data.get("Email") or item.get("email") or ""
    return VerificationResult(
        email=str(email).strip().lower(),
        domain=item.get("domain") or data.get("Domain") or "",
        state=item.get("state") or "Unknown",
        is_valid=bool(data.get("IsValid", False)),
        free=bool(data.get("Free", False)),
        role=bool(data.get("Role", False)),
        disposable=bool(data.get("Disposable", False)),
        accept_all=bool(data.get("AcceptAll", False)),
        data=data,
    )


def filter_deliverable(
    leads: list[ExtractedLead],
    results: list[VerificationResult],
) -> list[ExtractedLead]:
    deliverable = {r.email.lower() for r in results if r.is_deliverable}
    return [lead for lead in leads if lead.email.lower() in deliverable]


class EmailVerifier:
    """Verification oracle backed by an Apify email-verification actor."""

    def __init__(self, config: Config, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self._transport = transport

    async def verify(
        self,
        emails: list[str],
        provider: EmailVerificationProvider,
    ) -> list[VerificationResult]:
        """Verify all emails of one extraction pass in a single actor call."""
        if not emails:
            return []
        logger.info("Verifying %d emails", len(emails))
        async with ApifyClient(
            provider.api_key,
            base_url=self.config.apify_base_url,
            poll_interval=self.config.apify_poll_interval,
            transport=self._transport,
        ) as client:
            run = await client.call_actor(
                provider.actor_id, {"emailList": emails}, timeout=self.config.verify_timeout,
            )
        results = [parse_verification_item(i) for i in run.items if isinstance(i, dict)]
        deliverable = sum(1 for r in results if r.is_deliverable)
        logger.info("Email verification: %d/%d deliverable", deliverable, len(emails))
        return results


class LeadStore:
    """Lead lists and verified leads (shared across tenants)."""

    def __init__(self, db: Database, batch_size: int = 100):
        self.db = db
        self.batch_size = batch_size

    def find_or_create_lead_list(
        self,
        lead_type: str,
        industry: str,
        city: str,
        state: str,
        country_code: str,
    ) -> tuple[int, bool]:
        """Return (lead_list_id, created). Safe against concurrent creation."""
        created = self.db.update(
            "INSERT OR IGNORE INTO lead_lists (lead_type, industry, city, state, country_code) "
            "VALUES (?, ?, ?, ?, ?)",
            (lead_type, industry, city, state, country_code),
        ) > 0
        row = self.db.fetchone(
            "SELECT id FROM lead_lists WHERE lead_type = ? AND industry = ? AND city = ? "
            "AND state = ? AND country_code = ?",
            (lead_type, industry, city, state, country_code),
        )
        return row["id"], created

    def insert_verified_leads(
        self,
        lead_list_id: int,
        leads: list[ExtractedLead],
        results: list[VerificationResult],
        source_scrape_id: int | None,
    ) -> LeadSaveResult:
        """Insert leads in batches, ignoring (email, country_code) conflicts."""
        outcome = LeadSaveResult()
        if not leads:
            return outcome

        by_email = {r.email.lower(): r for r in results}
        records = []
        for lead in leads:
            verification = by_email.get(lead.email.lower())
            if verification is None:
                # Never store a lead the oracle did not rule on
                continue
            records.append((
                lead_list_id, lead.email, lead.domain, lead.company_name, lead.lead_type,
                lead.phone, lead.website, lead.address, lead.city, lead.state,
                lead.country_code, lead.industry, verification.state,
                json.dumps(verification.data), source_scrape_id,
            ))

        for start in range(0, len(records), self.batch_size):
            batch = records[start:start + self.batch_size]
            try:
                cur = self.db.executemany(
                    """
                    INSERT OR IGNORE INTO verified_leads (
                        lead_list_id, email, domain, company_name, lead_type,
                        phone, website, address, city, state,
                        country_code, industry, verification_state,
                        verification_data, source_scrape_id
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    batch,
                )
                inserted = max(cur.rowcount, 0)
                if source_scrape_id is not None:
                    # Link conflict-ignored rows too, so every scrape reaches its leads
                    self.db.executemany(
                        "INSERT OR IGNORE INTO verified_lead_sources (lead_id, scrape_result_id) "
                        "SELECT id, ? FROM verified_leads WHERE email = ? AND country_code = ?",
                        [(source_scrape_id, rec[1], rec[10]) for rec in batch],
                    )
                if inserted:
                    self.db.execute(
                        "UPDATE lead_lists SET lead_count = lead_count + ? WHERE id = ?",
                        (inserted, lead_list_id),
                    )
                self.db.commit()
            except sqlite3.Error as e:
                self.db.rollback()
                outcome.errors.append(f"Batch {start // self.batch_size + 1}: {e}")
                continue
            outcome.total_inserted += inserted
            outcome.total_duplicates += len(batch) - inserted
        return outcome

    def save_verified_leads(
        self,
        leads: list[ExtractedLead],
        results: list[VerificationResult],
        source_scrape_id: int | None,
    ) -> LeadSaveResult:
        """Keep deliverable leads, file them under lead lists, and insert them."""
        outcome = LeadSaveResult()
        deliverable = filter_deliverable(leads, results)
        outcome.total_processed = len(deliverable)
        if not deliverable:
            return outcome

        for key, group in group_leads_by_location(deliverable).items():
            lead_list_id, created = self.find_or_create_lead_list(*key)
            if created:
                outcome.lead_lists_created += 1
            inserted = self.insert_verified_leads(lead_list_id, group, results, source_scrape_id)
            outcome.total_inserted += inserted.total_inserted
            outcome.total_duplicates += inserted.total_duplicates
            outcome.errors.extend(inserted.errors)

        if outcome.errors:
            logger.warning("Lead insert errors: %s", "; ".join(outcome.errors))
        return outcome

    def leads_for_scrapes(
        self,
        scrape_result_ids: list[int],
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[VerifiedLead], int]:
        """Deliverable leads any of the given raw scrapes produced, newest first."""
        if not scrape_result_ids:
            return [], 0
        placeholders = ",".join("?" for _ in scrape_result_ids)
        params = tuple(scrape_result_ids)
        total = self.db.fetchone(
            f"SELECT COUNT(DISTINCT l.id) AS cnt FROM verified_leads l "
            f"JOIN verified_lead_sources s ON s.lead_id = l.id "
            f"WHERE s.scrape_result_id IN ({placeholders}) AND l.verification_state = 'Deliverable'",
            params,
        )["cnt"]
        rows = self.db.fetchall(
            f"SELECT DISTINCT l.* FROM verified_leads l "
            f"JOIN verified_lead_sources s ON s.lead_id = l.id "
            f"WHERE s.scrape_result_id IN ({placeholders}) AND l.verification_state = 'Deliverable' "
            f"ORDER BY l.created_at DESC, l.id DESC LIMIT ? OFFSET ?",
            params + (limit, offset),
        )
        leads = []
        for row in rows:
            data = dict(row)
            data["verification_data"] = json.loads(data["verification_data"] or "null")
            leads.append(VerifiedLead.model_validate(data))
        return leads, total

    def lead_list_stats(self) -> dict:
        rows = self.db.fetchall("SELECT industry, country_code, lead_count FROM lead_lists")
        by_country: dict[str, int] = {}
        by_industry: dict[str, int] = {}
        for row in rows:
            by_country[row["country_code"]] = by_country.get(row["country_code"], 0) + row["lead_count"]
            by_industry[row["industry"]] = by_industry.get(row["industry"], 0) + row["lead_count"]
        return {
            "total_lists": len(rows),
            "total_leads": sum(by_country.values()),
            "by_country": by_country,
            "by_industry": by_industry,
        }
