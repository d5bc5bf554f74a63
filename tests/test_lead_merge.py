"""Tests for lead find-or-create and additive merging."""

import asyncio
from datetime import datetime, timezone

import pytest

from voice_crm.core.db import StoreError
from voice_crm.core.models import CallRecord, ExtractedFacts
from voice_crm.services.assignee import StoreAssigneeResolver
from voice_crm.services.lead_merge import (
    LEADS_TABLE,
    LeadMergeEngine,
    build_custom_fields,
    calculate_data_quality_score,
)

ORG = "org-1"
PHONE = "+15551234567"


def fixed_clock():
    return datetime(2026, 10, 12, 16, 0, tzinfo=timezone.utc)


def make_engine(store, **kwargs):
    return LeadMergeEngine(store, StoreAssigneeResolver(store), clock=fixed_clock, **kwargs)


class TestDataQualityScore:
    """Weighted completeness percentage."""

    def test_empty_and_full(self) -> None:
        assert calculate_data_quality_score(ExtractedFacts()) == 0
        full = ExtractedFacts(
            first_name="John", last_name="Smith", phone=PHONE, email="john@example.com",
            city="Austin", state="TX", street="1 Main St", postcode="78701", country="US",
            company="Acme", job_title="Owner", interest_level=7, budget="$10k",
            timeline="next month", appointment_date="2026-10-16",
        )
        assert calculate_data_quality_score(full) == 100

    def test_essential_fields_count_double(self) -> None:
        assert calculate_data_quality_score(ExtractedFacts(phone=PHONE)) == 10
        assert calculate_data_quality_score(ExtractedFacts(budget="$5k")) == 5


class TestBuildCustomFields:
    """Custom fields only carry what the call mentioned."""

    def test_address_block_only_when_known(self) -> None:
        assert "address" not in build_custom_fields(ExtractedFacts(interest_level=7))
        fields = build_custom_fields(ExtractedFacts(city="Austin"))
        assert fields["address"] == {"city": "Austin"}

    def test_calling_company_kept_apart(self) -> None:
        fields = build_custom_fields(ExtractedFacts(calling_company_name="SunBright Solar"))
        assert fields["calling_company"] == {"name": "SunBright Solar"}
        assert "company" not in fields


class TestLeadMergeEngine:
    """Create, update and concurrency behavior."""

    @pytest.mark.asyncio
    async def test_create_lead(self, store) -> None:
        store.tables["organizations"].append({"id": ORG, "owner_id": "user-owner"})
        engine = make_engine(store)
        facts = ExtractedFacts(full_name="John Smith", interest_level=7, is_qualified_lead=True)
        call = CallRecord(id="row-1", vapi_call_id="call-1", duration=240)

        lead = await engine.merge_lead(ORG, PHONE, facts, call=call)

        assert lead.first_name == "John"
        assert lead.last_name == "Smith"
        assert lead.lead_source == "ai_call"
        assert lead.lead_quality == "hot"
        assert lead.score == 70
        assert lead.qualification_status == "qualified"
        assert lead.call_attempts == 1
        assert lead.assigned_to == "user-owner"
        assert lead.phone_validated is True
        assert len(lead.notes) == 1
        assert lead.notes[0]["call_id"] == "row-1"
        assert lead.custom_fields["call_history"][0]["call_id"] == "call-1"

    @pytest.mark.asyncio
    async def test_campaign_creator_preferred_as_assignee(self, store) -> None:
        store.tables["campaigns"].append({"id": "camp-1", "created_by": "user-campaign"})
        store.tables["organizations"].append({"id": ORG, "owner_id": "user-owner"})
        engine = make_engine(store)

        lead = await engine.merge_lead(
            ORG, PHONE, ExtractedFacts(interest_level=6), call=CallRecord(id="row-1", campaign_id="camp-1")
        )

        assert lead.assigned_to == "user-campaign"
        assert lead.campaign_id == "camp-1"

    @pytest.mark.asyncio
    async def test_second_call_merges_additively(self, store) -> None:
        engine = make_engine(store)
        await engine.merge_lead(
            ORG, PHONE, ExtractedFacts(first_name="John", city="Austin", state="TX", interest_level=7)
        )

        lead = await engine.merge_lead(ORG, PHONE, ExtractedFacts(budget="$15,000", email="john@example.com"))

        rows = store.rows(LEADS_TABLE)
        assert len(rows) == 1
        assert lead.call_attempts == 2
        assert lead.first_name == "John"
        assert lead.email == "john@example.com"
        assert lead.custom_fields["address"] == {"city": "Austin", "state": "TX"}
        assert lead.custom_fields["budget"] == "$15,000"
        assert lead.custom_fields["interest_level"] == 7
        assert lead.lead_quality == "hot"
        assert len(lead.notes) == 2

    @pytest.mark.asyncio
    async def test_data_quality_never_drops_on_sparse_call(self, store) -> None:
        engine = make_engine(store)
        first = await engine.merge_lead(
            ORG, PHONE, ExtractedFacts(first_name="John", email="john@example.com", city="Austin", state="TX")
        )

        second = await engine.merge_lead(ORG, PHONE, ExtractedFacts())

        assert second.data_quality_score >= first.data_quality_score

    @pytest.mark.asyncio
    async def test_notes_capped(self, store) -> None:
        engine = make_engine(store, notes_cap=3)
        for interest in range(6, 11):
            await engine.merge_lead(ORG, PHONE, ExtractedFacts(interest_level=interest))

        lead = (await engine.find_lead(ORG, PHONE))
        notes = lead["custom_fields"]["notes"]
        assert len(notes) == 3
        assert "(10/10)" in notes[-1]["content"]
        assert len(lead["custom_fields"]["call_history"]) == 5

    @pytest.mark.asyncio
    async def test_concurrent_merges_create_one_lead(self, store) -> None:
        engine = make_engine(store)

        await asyncio.gather(
            engine.merge_lead(ORG, PHONE, ExtractedFacts(city="Austin")),
            engine.merge_lead(ORG, PHONE, ExtractedFacts(budget="$5k")),
        )

        rows = store.rows(LEADS_TABLE)
        assert len(rows) == 1
        assert rows[0]["call_attempts"] == 2
        assert rows[0]["custom_fields"]["budget"] == "$5k"
        assert rows[0]["city"] == "Austin"

    @pytest.mark.asyncio
    async def test_leads_scoped_by_organization(self, store) -> None:
        engine = make_engine(store)
        await engine.merge_lead("org-1", PHONE, ExtractedFacts(interest_level=7))
        await engine.merge_lead("org-2", PHONE, ExtractedFacts(interest_level=7))

        assert len(store.rows(LEADS_TABLE)) == 2

    @pytest.mark.asyncio
    async def test_same_call_merged_again_replaces_its_entries(self, store) -> None:
        engine = make_engine(store)
        call = CallRecord(id="row-1", vapi_call_id="call-1")
        await engine.merge_lead(ORG, PHONE, ExtractedFacts(interest_level=6), call=call)
        await engine.merge_lead(ORG, PHONE, ExtractedFacts(interest_level=6), call=CallRecord(id="row-2", vapi_call_id="call-2"))

        lead = await engine.merge_lead(ORG, PHONE, ExtractedFacts(interest_level=9), call=call)

        assert lead.call_attempts == 2
        notes = lead.custom_fields["notes"]
        assert [note["call_id"] for note in notes] == ["row-2", "row-1"]
        assert "(9/10)" in notes[-1]["content"]
        history = lead.custom_fields["call_history"]
        assert [entry["call_id"] for entry in history] == ["call-2", "call-1"]
        assert history[-1]["interest_level"] == 9


class TestLeadLocks:
    """Per-lead locks are released once no merge needs them."""

    @pytest.mark.asyncio
    async def test_locks_dropped_after_sequential_merges(self, store) -> None:
        engine = make_engine(store)

        for number in range(50):
            await engine.merge_lead(ORG, f"+1555000{number:04d}", ExtractedFacts(interest_level=7))

        assert engine._locks == {}
        assert engine._lock_users == {}

    @pytest.mark.asyncio
    async def test_locks_dropped_after_concurrent_merges(self, store) -> None:
        engine = make_engine(store)

        await asyncio.gather(*(engine.merge_lead(ORG, PHONE, ExtractedFacts(budget=f"${n}k")) for n in range(5)))

        assert len(store.rows(LEADS_TABLE)) == 1
        assert engine._locks == {}

    @pytest.mark.asyncio
    async def test_lock_released_when_merge_fails(self, store) -> None:
        engine = make_engine(store)
        store.fail_inserts.add(LEADS_TABLE)

        with pytest.raises(StoreError):
            await engine.merge_lead(ORG, PHONE, ExtractedFacts(interest_level=7))

        assert engine._locks == {}
