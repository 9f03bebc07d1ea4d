"""Extract contact emails from places scrape rows, one lead per company domain."""

from __future__ import annotations

import logging
import re
from typing import Any

from outreach_research.models import ExtractedLead, ExtractionResult

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Placeholder / site-builder domains that show up as filler contact emails
DENYLISTED_DOMAINS = (
    "example.com",
    "test.com",
    "localhost",
    "godaddy.com",
    "wix.com",
    "squarespace.com",
)

# Substrings that mean a URL was mis-parsed as an email
_URL_MARKERS = ("http", "www.", "//")


def clean_email(email: str) -> str:
    email = email.strip().lower()
    if email.startswith("%20"):
        email = email[3:]
    if email.endswith("%20"):
        email = email[:-3]
    return email.strip()


def email_domain(email: str) -> str | None:
    parts = email.split("@")
    if len(parts) != 2 or not parts[1]:
        return None
    return parts[1]


def is_valid_email(email: str) -> bool:
    """Basic shape check plus placeholder-domain and mis-parse rejection."""
    if not email or not _EMAIL_RE.match(email):
        return False
    if any(marker in email for marker in _URL_MARKERS):
        return False
    domain = email_domain(email)
    if domain is None:
        return False
    for denied in DENYLISTED_DOMAINS:
        if domain == denied or domain.endswith("." + denied):
            return False
    return True


def _item_emails(item: dict[str, Any]) -> list[str]:
    emails = []
    single = item.get("email")
    if isinstance(single, str) and single:
        emails.append(single)
    many = item.get("emails")
    if isinstance(many, list):
        emails.extend(e for e in many if isinstance(e, str) and e)
    return emails


def _item_industry(item: dict[str, Any], default_industry: str) -> str:
    if item.get("categoryName"):
        return item["categoryName"]
    categories = item.get("categories")
    if isinstance(categories, list) and categories and categories[0]:
        return categories[0]
    return default_industry


def extract_leads(
    items: list[dict[str, Any]],
    default_industry: str = "Unknown",
) -> ExtractionResult:
    """Collect valid emails from scrape rows, keeping the first per domain.

    One lead per company domain is the product policy: several addresses at
    the same domain reach the same business. ``total_emails_found`` counts
    every raw occurrence, including repeats.
    """
    by_domain: dict[str, ExtractedLead] = {}
    total_found = 0
    skipped = 0

    for item in items:
        for raw_email in _item_emails(item):
            total_found += 1
            email = clean_email(raw_email)
            if not is_valid_email(email):
                skipped += 1
                continue

            domain = email_domain(email)
            if domain in by_domain:
                continue

            by_domain[domain] = ExtractedLead(
                email=email,
                domain=domain,
                company_name=item.get("title") or None,
                phone=item.get("phone") or item.get("phoneUnformatted") or None,
                website=item.get("website") or None,
                address=item.get("address") or None,
                city=item.get("city") or "",
                state=item.get("state") or "",
                country_code=item.get("countryCode") or "US",
                industry=_item_industry(item, default_industry),
            )

    result = ExtractionResult(
        leads=list(by_domain.values()),
        total_emails_found=total_found,
        unique_domains_found=len(by_domain),
        skipped_invalid_emails=skipped,
    )
    logger.info(
        "Extracted %d leads (%d emails found, %d invalid)",
        len(result.leads), total_found, skipped,
    )
    return result


def location_group_key(lead: ExtractedLead) -> tuple[str, str, str, str, str]:
    return (lead.lead_type, lead.industry, lead.city, lead.state, lead.country_code)


def group_leads_by_location(
    leads: list[ExtractedLead],
) -> dict[tuple[str, str, str, str, str], list[ExtractedLead]]:
    """Group leads by (lead type, industry, city, state, country) for lead lists."""
    groups: dict[tuple[str, str, str, str, str], list[ExtractedLead]] = {}
    for lead in leads:
        groups.setdefault(location_group_key(lead), []).append(lead)
    return groups
