"""Tests for appointment, task and follow-up creation."""

import pytest

from voice_crm.core.brief_models import ActionItems, Brief, BriefAppointment, BriefTask, CalendarSection
from voice_crm.core.models import ExtractedFacts
from voice_crm.services.side_effects import (
    APPOINTMENTS_TABLE,
    FOLLOW_UP_TASKS_TABLE,
    TASKS_TABLE,
    DispatchContext,
    SideEffectDispatcher,
    build_appointment,
    resolve_due_date,
)

from .fakes import REFERENCE_MONDAY

CONTEXT = DispatchContext(organization_id="org-1", lead_id="lead-1", call_id="row-1", contact_name="John Smith")


def solar_brief() -> Brief:
    return Brief(
        calendar=CalendarSection(
            appointments=[BriefAppointment(type="consultation", date="Friday", time="6:00 PM", confirmed=True)]
        ),
        action_items=ActionItems(
            tasks_to_do=[
                BriefTask(task="Get Budget", deadline="2026-10-13", priority="high"),
                BriefTask(task="Send financing brochure", deadline="asap", priority="critical"),
            ]
        ),
    )


class TestBuilders:
    """Row construction."""

    def test_appointment_from_relative_date(self) -> None:
        record = build_appointment(solar_brief().calendar.appointments[0], CONTEXT, REFERENCE_MONDAY)

        assert record.title == "Consultation with John Smith"
        assert record.date == "2026-10-16"
        assert record.scheduled_at == "2026-10-16T18:00:00"
        assert record.status == "confirmed"
        assert record.location_type == "phone"

    def test_vague_time_has_no_scheduled_at(self) -> None:
        appointment = BriefAppointment(type="visit", date="2026-10-20", time="evening", location="On-site")
        record = build_appointment(appointment, CONTEXT, REFERENCE_MONDAY)

        assert record.scheduled_at is None
        assert record.time == "evening"
        assert record.location_type == "in_person"
        assert record.status == "scheduled"

    @pytest.mark.parametrize(
        "deadline,expected",
        [
            ("asap", "2026-10-12"),
            ("2026-10-20", "2026-10-20"),
            ("tomorrow", "2026-10-13"),
            ("whenever", "2026-10-13"),
            (None, "2026-10-13"),
        ],
    )
    def test_resolve_due_date(self, deadline, expected) -> None:
        assert resolve_due_date(deadline, REFERENCE_MONDAY) == expected


class TestSideEffectDispatcher:
    """Dispatch creates every record independently."""

    @pytest.mark.asyncio
    async def test_creates_all_records(self, store) -> None:
        facts = ExtractedFacts(next_steps=["Email financing options"])

        result = await SideEffectDispatcher(store).dispatch(CONTEXT, solar_brief(), facts, REFERENCE_MONDAY)

        assert result.ok
        assert (result.appointments_created, result.tasks_created, result.follow_ups_created) == (1, 2, 1)
        tasks = store.rows(TASKS_TABLE)
        assert tasks[1]["priority"] == "medium"
        assert tasks[1]["due_date"] == "2026-10-12"
        assert store.rows(FOLLOW_UP_TASKS_TABLE)[0]["title"] == "Email financing options"

    @pytest.mark.asyncio
    async def test_failure_isolated_per_table(self, store) -> None:
        store.fail_inserts.add(APPOINTMENTS_TABLE)

        result = await SideEffectDispatcher(store).dispatch(CONTEXT, solar_brief(), None, REFERENCE_MONDAY)

        assert not result.ok
        assert result.appointments_created == 0
        assert result.tasks_created == 2
        assert len(result.failures) == 1
        assert result.failures[0].startswith("appointment:")

    @pytest.mark.asyncio
    async def test_appointment_from_facts_without_brief(self, store) -> None:
        facts = ExtractedFacts(appointment_date="2026-10-16", appointment_time="6 PM")

        result = await SideEffectDispatcher(store).dispatch(CONTEXT, None, facts, REFERENCE_MONDAY)

        assert result.appointments_created == 1
        row = store.rows(APPOINTMENTS_TABLE)[0]
        assert row["type"] == "consultation"
        assert row["scheduled_at"] == "2026-10-16T18:00:00"

    @pytest.mark.asyncio
    async def test_second_run_for_same_call_replaces_records(self, store) -> None:
        facts = ExtractedFacts(next_steps=["Email financing options"])
        other_call = DispatchContext(organization_id="org-1", lead_id="lead-1", call_id="row-2")
        dispatcher = SideEffectDispatcher(store)
        await dispatcher.dispatch(other_call, solar_brief(), None, REFERENCE_MONDAY)
        await dispatcher.dispatch(CONTEXT, solar_brief(), facts, REFERENCE_MONDAY)

        result = await dispatcher.dispatch(CONTEXT, solar_brief(), facts, REFERENCE_MONDAY)

        assert result.ok
        assert [row["call_id"] for row in store.rows(APPOINTMENTS_TABLE)] == ["row-2", "row-1"]
        assert sorted(row["call_id"] for row in store.rows(TASKS_TABLE)) == ["row-1", "row-1", "row-2", "row-2"]
        assert len(store.rows(FOLLOW_UP_TASKS_TABLE)) == 1

    @pytest.mark.asyncio
    async def test_table_skipped_when_previous_rows_cannot_be_cleared(self, store) -> None:
        store.fail_deletes.add(TASKS_TABLE)

        result = await SideEffectDispatcher(store).dispatch(CONTEXT, solar_brief(), None, REFERENCE_MONDAY)

        assert result.appointments_created == 1
        assert result.tasks_created == 0
        assert store.rows(TASKS_TABLE) == []
        assert result.failures == ["tasks: delete from tasks failed"]

    @pytest.mark.asyncio
    async def test_records_carry_assignee(self, store) -> None:
        context = DispatchContext(organization_id="org-1", lead_id="lead-1", call_id="row-1", assigned_to="user-owner")

        await SideEffectDispatcher(store).dispatch(
            context, solar_brief(), ExtractedFacts(next_steps=["Send brochure"]), REFERENCE_MONDAY
        )

        assert {row["assigned_to"] for row in store.rows(TASKS_TABLE)} == {"user-owner"}
        assert store.rows(FOLLOW_UP_TASKS_TABLE)[0]["assigned_to"] == "user-owner"
