from __future__ import annotations

import asyncio
import json

import httpx

from outreach_research.db.repository import ResearchRepository
from outreach_research.leads.extraction import extract_leads
from outreach_research.leads.verification import (
    EmailVerifier,
    LeadStore,
    filter_deliverable,
    parse_verification_item,
)
from outreach_research.models import EmailVerificationProvider, ScrapeRun, VerificationResult

from conftest import make_place


def _verdict(email: str, state: str = "Deliverable", valid: bool = True) -> VerificationResult:
    return VerificationResult(email=email, domain=email.split("@")[1], state=state, is_valid=valid)


def _scrape_id(db) -> int:
    return ResearchRepository(db).save_scrape_result(
        "places-leads", "compass/crawler-google-places", ScrapeRun(run_id="r1", items=[]), {},
    )


def test_parse_verification_item_reads_nested_data():
    result = parse_verification_item({
        "state": "Deliverable",
        "domain": "acerooter.com",
        "data": {"Email": "Hello@AceRooter.com", "IsValid": True, "Free": False, "Role": True},
    })
    assert result.email == "hello@acerooter.com"
    assert result.is_deliverable
    assert result.role


def test_deliverable_requires_state_and_validity():
    assert _verdict("a@a.com").is_deliverable
    assert not _verdict("a@a.com", valid=False).is_deliverable
    assert not _verdict("a@a.com", state="Risky").is_deliverable
    assert not parse_verification_item({"data": {"Email": "a@a.com", "IsValid": True}}).is_deliverable


def test_filter_deliverable_drops_everything_else():
    leads = extract_leads([
        make_place("A", "a@a-co.com"),
        make_place("B", "b@b-co.com"),
        make_place("C", "c@c-co.com"),
    ]).leads
    results = [_verdict("a@a-co.com"), _verdict("b@b-co.com", state="Undeliverable", valid=False)]

    kept = filter_deliverable(leads, results)
    # c@ had no verdict at all
    assert [lead.email for lead in kept] == ["a@a-co.com"]


def test_save_verified_leads_only_stores_deliverable(db):
    store = LeadStore(db)
    scrape_id = _scrape_id(db)
    leads = extract_leads([
        make_place("A", "a@a-co.com"),
        make_place("B", "b@b-co.com"),
        make_place("C", "c@c-co.com", city="Dallas"),
    ]).leads
    results = [_verdict("a@a-co.com"), _verdict("b@b-co.com", "Undeliverable", False), _verdict("c@c-co.com")]

    outcome = store.save_verified_leads(leads, results, scrape_id)

    assert outcome.total_processed == 2
    assert outcome.total_inserted == 2
    assert outcome.lead_lists_created == 2
    rows = db.fetchall("SELECT email, verification_state FROM verified_leads ORDER BY email")
    assert [(r["email"], r["verification_state"]) for r in rows] == [
        ("a@a-co.com", "Deliverable"),
        ("c@c-co.com", "Deliverable"),
    ]


def test_resaving_same_leads_is_ignored(db):
    store = LeadStore(db)
    scrape_id = _scrape_id(db)
    leads = extract_leads([make_place("A", "a@a-co.com")]).leads
    results = [_verdict("a@a-co.com")]

    store.save_verified_leads(leads, results, scrape_id)
    again = store.save_verified_leads(leads, results, scrape_id)

    assert again.total_inserted == 0
    assert again.total_duplicates == 1
    assert again.lead_lists_created == 0
    assert db.fetchone("SELECT COUNT(*) AS cnt FROM verified_leads")["cnt"] == 1
    assert db.fetchone("SELECT lead_count FROM lead_lists")["lead_count"] == 1


def test_find_or_create_lead_list_is_idempotent(db):
    store = LeadStore(db)
    first, created = store.find_or_create_lead_list("business", "Plumber", "Austin", "Texas", "US")
    second, created_again = store.find_or_create_lead_list("business", "Plumber", "Austin", "Texas", "US")
    assert created and not created_again
    assert first == second


def test_leads_for_scrapes_pages_deliverable_leads(db):
    store = LeadStore(db)
    scrape_id = _scrape_id(db)
    other_scrape = _scrape_id(db)
    rows = [make_place(f"Shop {i}", f"owner@shop{i}.com") for i in range(5)]
    leads = extract_leads(rows).leads
    store.save_verified_leads(leads, [_verdict(lead.email) for lead in leads], scrape_id)

    page, total = store.leads_for_scrapes([scrape_id], limit=2, offset=0)
    assert total == 5
    assert len(page) == 2
    assert all(lead.source_scrape_id == scrape_id for lead in page)
    assert store.leads_for_scrapes([other_scrape]) == ([], 0)
    assert store.leads_for_scrapes([]) == ([], 0)


def test_deliverable_but_invalid_verdicts_persist_nothing(db):
    store = LeadStore(db)
    rows = [make_place(f"Shop {i}", f"owner@shop{i}.com") for i in range(10)]
    leads = extract_leads(rows).leads
    results = [_verdict(lead.email, state="Deliverable", valid=False) for lead in leads]

    saved = store.save_verified_leads(leads, results, _scrape_id(db))

    assert saved.total_processed == 0
    assert saved.total_inserted == 0
    assert db.fetchone("SELECT COUNT(*) AS cnt FROM verified_leads")["cnt"] == 0
    assert db.fetchone("SELECT COUNT(*) AS cnt FROM lead_lists")["cnt"] == 0


def test_duplicate_leads_are_linked_to_every_scrape(db):
    store = LeadStore(db)
    first_scrape = _scrape_id(db)
    second_scrape = _scrape_id(db)
    leads = extract_leads([make_place("A", "a@a-co.com"), make_place("B", "b@b-co.com")]).leads
    results = [_verdict(lead.email) for lead in leads]

    store.save_verified_leads(leads, results, first_scrape)
    again = store.save_verified_leads(leads, results, second_scrape)

    assert again.total_inserted == 0
    assert again.total_duplicates == 2
    assert db.fetchone("SELECT COUNT(*) AS cnt FROM verified_leads")["cnt"] == 2
    page, total = store.leads_for_scrapes([second_scrape])
    assert total == 2
    assert {lead.email for lead in page} == {"a@a-co.com", "b@b-co.com"}
    # Both scrapes together still count each lead once
    assert store.leads_for_scrapes([first_scrape, second_scrape])[1] == 2


def test_lead_list_stats(db):
    store = LeadStore(db)
    scrape_id = _scrape_id(db)
    leads = extract_leads([make_place("A", "a@a-co.com"), make_place("B", "b@b-co.com")]).leads
    store.save_verified_leads(leads, [_verdict(lead.email) for lead in leads], scrape_id)

    stats = store.lead_list_stats()
    assert stats["total_lists"] == 1
    assert stats["total_leads"] == 2
    assert stats["by_industry"] == {"Plumber": 2}


def _verification_transport(seen: list[dict]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "POST" and path.endswith("/runs"):
            seen.append(json.loads(request.content))
            return httpx.Response(201, json={"data": {
                "id": "v-run", "status": "SUCCEEDED", "defaultDatasetId": "v-ds",
            }})
        if path.endswith("/datasets/v-ds/items"):
            return httpx.Response(200, json=[
                {"state": "Deliverable", "data": {"Email": "a@a-co.com", "IsValid": True}},
                {"state": "Undeliverable", "data": {"Email": "b@b-co.com", "IsValid": False}},
            ])
        return httpx.Response(404)
    return httpx.MockTransport(handler)


def test_email_verifier_calls_actor_once(config):
    seen: list[dict] = []
    verifier = EmailVerifier(config, transport=_verification_transport(seen))
    provider = EmailVerificationProvider(kind="email-verification", api_key="k", actor_id="verifier/email")

    results = asyncio.run(verifier.verify(["a@a-co.com", "b@b-co.com"], provider))

    assert seen == [{"emailList": ["a@a-co.com", "b@b-co.com"]}]
    assert [r.is_deliverable for r in results] == [True, False]


def test_email_verifier_skips_empty_list(config):
    seen: list[dict] = []
    verifier = EmailVerifier(config, transport=_verification_transport(seen))
    provider = EmailVerificationProvider(kind="email-verification", api_key="k", actor_id="verifier/email")

    assert asyncio.run(verifier.verify([], provider)) == []
    assert seen == []
