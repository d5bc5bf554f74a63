"""Side-Effect Dispatcher: appointments, tasks and follow-ups from a processed call.

Every record is created independently; one failure is logged and collected
without blocking the rest. Records an earlier run created for the same call
are removed first, so re-processing a call replaces its side effects.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from ..core.brief_models import Brief, BriefAppointment, BriefTask
from ..core.db import DuplicateRecordError, RecordStore, StoreError
from ..core.models import AppointmentRecord, ExtractedFacts, TaskRecord
from .date_resolution import combine_date_time, next_business_day, resolve_relative_date

logger = logging.getLogger(__name__)

APPOINTMENTS_TABLE = "appointments"
TASKS_TABLE = "tasks"
FOLLOW_UP_TASKS_TABLE = "follow_up_tasks"

TASK_PRIORITIES = {"low", "medium", "high", "urgent"}


@dataclass
class DispatchResult:
    """Outcome of one dispatch run."""

    appointments_created: int = 0
    tasks_created: int = 0
    follow_ups_created: int = 0
    failures: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass
class DispatchContext:
    """Identifiers every created record is linked to."""

    organization_id: Optional[str]
    lead_id: Optional[str]
    call_id: Optional[str]
    campaign_id: Optional[str] = None
    assigned_to: Optional[str] = None
    contact_name: Optional[str] = None


def resolve_due_date(deadline: Optional[str], now: datetime) -> str:
    """Turn a task deadline into an ISO date; unknown deadlines fall on the next business day."""
    if deadline:
        text = deadline.strip()
        if text.lower() in ("today", "asap", "immediately"):
            return now.date().isoformat()
        try:
            return date.fromisoformat(text[:10]).isoformat()
        except ValueError:
            resolved = resolve_relative_date(text, now)
            if resolved:
                return resolved.isoformat()
    return next_business_day(now).isoformat()


def build_appointment(appointment: BriefAppointment, context: DispatchContext, now: datetime) -> AppointmentRecord:
    appointment_date = appointment.date
    if appointment_date:
        resolved = resolve_relative_date(appointment_date, now)
        if resolved:
            appointment_date = resolved.isoformat()

    who = context.contact_name or "prospect"
    return AppointmentRecord(
        organization_id=context.organization_id,
        lead_id=context.lead_id,
        campaign_id=context.campaign_id,
        call_id=context.call_id,
        title=f"{appointment.type.replace('_', ' ').title()} with {who}",
        type=appointment.type,
        date=appointment_date,
        time=appointment.time,
        scheduled_at=combine_date_time(appointment_date, appointment.time),
        duration_minutes=appointment.duration or 30,
        location_type="in_person" if appointment.location else "phone",
        location_details=appointment.location,
        agenda=appointment.agenda,
        preparation_notes=appointment.preparation_notes,
        status="confirmed" if appointment.confirmed else "scheduled",
    )


def build_task(task: BriefTask, context: DispatchContext, now: datetime) -> TaskRecord:
    priority = task.priority if task.priority in TASK_PRIORITIES else "medium"
    return TaskRecord(
        organization_id=context.organization_id,
        lead_id=context.lead_id,
        call_id=context.call_id,
        title=task.task,
        description=f"Created from call {context.call_id}" if context.call_id else None,
        due_date=resolve_due_date(task.deadline, now),
        priority=priority,
        category="sales",
        assigned_to=context.assigned_to,
        created_by="AI System",
    )


class SideEffectDispatcher:
    """Creates appointment, task and follow-up records for a processed call."""

    def __init__(self, store: RecordStore):
        self.store = store

    async def _create(self, table: str, row: Dict[str, Any], label: str, result: DispatchResult) -> bool:
        try:
            await self.store.insert(table, row)
            return True
        except DuplicateRecordError:
            logger.info(f"{label} already exists, skipping")
            return False
        except StoreError as e:
            logger.error(f"❌ Failed to create {label}: {e}")
            result.failures.append(f"{label}: {e}")
            return False

    async def _clear_previous(self, table: str, context: DispatchContext, result: DispatchResult) -> bool:
        """Remove rows an earlier run created for this call; False when the table must be skipped."""
        if not context.call_id:
            return True
        try:
            removed = await self.store.delete(table, eq={"call_id": context.call_id})
        except StoreError as e:
            logger.error(f"❌ Failed to clear previous {table} for call {context.call_id}: {e}")
            result.failures.append(f"{table}: {e}")
            return False
        if removed:
            logger.info(f"Replacing {len(removed)} {table} rows from an earlier run of call {context.call_id}")
        return True

    async def dispatch(
        self,
        context: DispatchContext,
        brief: Optional[Brief],
        facts: Optional[ExtractedFacts],
        now: datetime,
    ) -> DispatchResult:
        """Create every record implied by the brief and facts.

        Args:
            context: Organization, lead and call the records belong to
            brief: Brief for the call; supplies appointments and tasks
            facts: Extracted facts; supplies next steps and an appointment when no brief exists
            now: Reference time for due dates and relative appointment dates

        Returns:
            Counts of created records and the collected failures
        """
        result = DispatchResult()

        appointments: List[BriefAppointment] = list(brief.calendar.appointments) if brief else []
        if not appointments and facts is not None and facts.has_appointment:
            appointments.append(
                BriefAppointment(
                    type=facts.appointment_type or "consultation",
                    date=facts.appointment_date,
                    time=facts.appointment_time,
                )
            )

        if not await self._clear_previous(APPOINTMENTS_TABLE, context, result):
            appointments = []
        for appointment in appointments:
            try:
                record = build_appointment(appointment, context, now)
            except ValueError as e:
                result.failures.append(f"appointment: {e}")
                continue
            if await self._create(APPOINTMENTS_TABLE, record.model_dump(), "appointment", result):
                result.appointments_created += 1
                logger.info(f"📅 Appointment created for {record.date} {record.time or ''}".rstrip())

        tasks: List[BriefTask] = list(brief.action_items.tasks_to_do) if brief else []
        if not await self._clear_previous(TASKS_TABLE, context, result):
            tasks = []
        for task in tasks:
            record = build_task(task, context, now)
            if await self._create(TASKS_TABLE, record.model_dump(), f"task '{task.task}'", result):
                result.tasks_created += 1

        steps: List[str] = list(facts.next_steps) if facts is not None else []
        if not await self._clear_previous(FOLLOW_UP_TASKS_TABLE, context, result):
            steps = []
        for step in steps:
            record = TaskRecord(
                organization_id=context.organization_id,
                lead_id=context.lead_id,
                call_id=context.call_id,
                title=step,
                description=f"Next step agreed on call {context.call_id}",
                due_date=next_business_day(now).isoformat(),
                category="follow_up",
                assigned_to=context.assigned_to,
                created_by="AI System",
            )
            if await self._create(FOLLOW_UP_TASKS_TABLE, record.model_dump(), f"follow-up '{step}'", result):
                result.follow_ups_created += 1

        if result.failures:
            logger.warning(f"⚠️ {len(result.failures)} side effects failed for call {context.call_id}")
        logger.info(
            f"✅ Side effects for call {context.call_id}: {result.appointments_created} appointments, "
            f"{result.tasks_created} tasks, {result.follow_ups_created} follow-ups"
        )
        return result
