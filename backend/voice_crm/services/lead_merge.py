"""Lead Merge Engine.

Finds or creates the lead for a ``(organization, phone)`` pair and folds the
facts from a new call into it. Merging is additive: columns and custom fields
are only overlaid with values the new call produced, notes and call history
are appended. Re-processing a call replaces the note and history entry that
call produced earlier.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from ..core.brief_models import Brief
from ..core.db import DuplicateRecordError, RecordStore
from ..core.models import CallRecord, ExtractedFacts, Lead, LeadNote
from ..llm.brief_generator import render_pre_call_note
from ..llm.qualification import lead_quality_tier
from .assignee import AssigneeResolver

logger = logging.getLogger(__name__)

LEADS_TABLE = "leads"
CALL_HISTORY_CAP = 50

# (facts field, lead column, custom_fields key) used to fill gaps from the stored lead
_STORED_FALLBACKS = [
    ("first_name", "first_name", None),
    ("last_name", "last_name", None),
    ("phone", "phone", None),
    ("email", "email", None),
    ("city", "city", None),
    ("state", "state", None),
    ("street", "address_line1", None),
    ("postcode", "postal_code", None),
    ("country", "country", None),
    ("company", "company", None),
    ("job_title", "job_title", None),
    ("interest_level", None, "interest_level"),
    ("budget", None, "budget"),
    ("timeline", None, "timeline"),
]


def _present(values: Dict[str, Any]) -> Dict[str, Any]:
    """Drop keys without content (None, empty strings, empty lists and dicts)."""
    return {key: value for key, value in values.items() if value not in (None, "", [], {})}


def _history_key(call: Optional[CallRecord]) -> Optional[str]:
    return (call.vapi_call_id or call.id) if call else None


def calculate_data_quality_score(facts: ExtractedFacts) -> int:
    """Weighted completeness of the lead fields as a 0-100 percentage.

    Name, phone, email, city and state count double.
    """
    essential = [
        facts.first_name or facts.full_name,
        facts.phone,
        facts.email,
        facts.city,
        facts.state,
    ]
    additional = [
        facts.last_name,
        facts.street,
        facts.postcode,
        facts.country,
        facts.company,
        facts.job_title,
        facts.interest_level,
        facts.budget,
        facts.timeline,
        facts.appointment_date,
    ]
    total = 2 * len(essential) + len(additional)
    score = 2 * sum(1 for value in essential if value) + sum(1 for value in additional if value)
    return round(score / total * 100)


def fill_from_lead(facts: ExtractedFacts, lead: Dict[str, Any]) -> ExtractedFacts:
    """Facts with unmentioned fields taken from what the lead already holds."""
    custom = lead.get("custom_fields") or {}
    address = custom.get("address") or {}
    updates: Dict[str, Any] = {}
    for field, column, custom_key in _STORED_FALLBACKS:
        if getattr(facts, field):
            continue
        stored = lead.get(column) if column else custom.get(custom_key)
        if not stored and field in ("street", "postcode"):
            stored = address.get("street" if field == "street" else "zip_code")
        if stored:
            updates[field] = stored
    return facts.model_copy(update=updates) if updates else facts


def build_lead_columns(facts: ExtractedFacts) -> Dict[str, Any]:
    """Lead table columns the facts carry a value for."""
    first_name = facts.first_name
    last_name = facts.last_name
    if facts.full_name and not first_name:
        parts = facts.full_name.split()
        first_name = parts[0]
        last_name = last_name or (" ".join(parts[1:]) or None)

    return _present({
        "first_name": first_name,
        "last_name": last_name,
        "email": facts.email,
        "company": facts.company,
        "job_title": facts.job_title,
        "address_line1": facts.street,
        "city": facts.city,
        "state": facts.state,
        "postal_code": facts.postcode,
        "country": facts.country,
        "lead_source": facts.lead_source,
        "next_call_at": facts.next_call_date,
        "converted": facts.converted,
        "conversion_value": facts.conversion_value,
    })


def build_custom_fields(facts: ExtractedFacts, brief: Optional[Brief] = None) -> Dict[str, Any]:
    """Custom-field entries produced by this call.

    Sub-objects (address, calling company, appointment) are only included
    when at least one of their members is known, so a shallow merge keeps
    the stored block intact otherwise.
    """
    fields = _present({
        "interest_level": facts.interest_level,
        "budget": facts.budget,
        "timeline": facts.timeline,
        "decision_authority": facts.decision_authority,
        "pain_points": facts.pain_points,
        "current_solution": facts.current_solution,
        "competitors": facts.competitors,
        "industry": facts.industry,
        "company_size": facts.company_size,
        "website": facts.website,
        "department": facts.department,
        "alternate_phone": facts.alternate_phone,
        "referral_source": facts.referral_source,
        "questions_asked": facts.questions_asked,
        "objections_raised": facts.objections_raised,
        "buying_signals": facts.buying_signals,
        "next_steps": facts.next_steps,
        "sentiment": facts.sentiment,
        "confidence_score": facts.confidence_score,
    })

    address = _present({
        "street": facts.street,
        "city": facts.city,
        "state": facts.state,
        "zip_code": facts.postcode,
        "country": facts.country,
    })
    if address:
        fields["address"] = address

    calling_company = _present({
        "name": facts.calling_company_name,
        "service": facts.calling_company_service,
        "representative": facts.calling_company_rep,
        "contact_number": facts.calling_company_phone,
    })
    if calling_company:
        fields["calling_company"] = calling_company

    if facts.has_appointment:
        fields["appointment"] = _present({
            "date": facts.appointment_date,
            "time": facts.appointment_time,
            "type": facts.appointment_type,
        })

    if brief is not None:
        fields["brief"] = brief.model_dump(mode="json")
        fields["missing_info"] = [item.model_dump(mode="json") for item in brief.action_items.missing_info]
        fields["win_probability"] = brief.ai_recommendations.win_probability
        if brief.ai_recommendations.next_best_action:
            fields["next_best_action"] = brief.ai_recommendations.next_best_action

    return fields


class LeadMergeEngine:
    """Find-or-create and merge leads, one writer per lead key at a time."""

    def __init__(
        self,
        store: RecordStore,
        assignee_resolver: Optional[AssigneeResolver] = None,
        notes_cap: int = 20,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """Initialize merge engine.

        Args:
            store: Record store holding the ``leads`` table
            assignee_resolver: Resolves the default owner of new leads
            notes_cap: Number of most recent notes kept on a lead
            clock: Source of the current time for note and call timestamps
        """
        self.store = store
        self.assignee_resolver = assignee_resolver
        self.notes_cap = notes_cap
        self.clock = clock
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._lock_users: Dict[Tuple[str, str], int] = {}

    @asynccontextmanager
    async def _lead_lock(self, key: Tuple[str, str]) -> AsyncIterator[None]:
        """Hold the lock for one lead key; the entry is dropped once nobody holds or awaits it."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def find_lead(self, organization_id: str, phone: str) -> Optional[Dict[str, Any]]:
        return await self.store.select_one(
            LEADS_TABLE, eq={"organization_id": organization_id, "phone": phone}
        )

    def _new_note(self, facts: ExtractedFacts, brief: Optional[Brief], call_id: Optional[str]) -> Dict[str, Any]:
        now = self.clock().isoformat()
        note = LeadNote(
            id=f"ai-note-{uuid.uuid4().hex[:12]}",
            content=render_pre_call_note(facts, brief),
            created_at=now,
            last_updated=now,
            call_id=call_id,
        )
        return note.model_dump()

    def _history_entry(self, facts: ExtractedFacts, call: Optional[CallRecord]) -> Dict[str, Any]:
        return _present({
            "call_id": _history_key(call),
            "date": self.clock().isoformat(),
            "duration": call.duration if call else None,
            "interest_level": facts.interest_level,
            "summary": facts.summary,
            "qualified": facts.is_qualified_lead,
        })

    def _derived(self, merged: ExtractedFacts) -> Dict[str, Any]:
        return {
            "lead_quality": lead_quality_tier(merged.interest_level),
            "score": round((merged.interest_level or 5) * 10),
            "status": "qualified",
            "qualification_status": "qualified",
            "call_status": "completed",
            "last_call_at": self.clock().isoformat(),
            "phone_validated": bool(merged.phone),
            "email_validated": bool(merged.email),
            "data_quality_score": calculate_data_quality_score(merged),
        }

    async def merge_lead(
        self,
        organization_id: str,
        phone: str,
        facts: ExtractedFacts,
        brief: Optional[Brief] = None,
        call: Optional[CallRecord] = None,
    ) -> Lead:
        """Merge one call's facts into the lead for ``(organization_id, phone)``.

        Args:
            organization_id: Owning organization
            phone: Prospect phone number, the lead key within the organization
            facts: Normalized facts from the call
            brief: Brief generated for the call, if any
            call: The call record the facts came from

        Returns:
            The lead as stored after the merge
        """
        facts = facts.model_copy(update={"phone": facts.phone or phone})
        async with self._lead_lock((organization_id, phone)):
            existing = await self.find_lead(organization_id, phone)
            if existing is None:
                try:
                    return await self._create(organization_id, phone, facts, brief, call)
                except DuplicateRecordError:
                    logger.info(f"Lead for {phone} created concurrently, merging instead")
                    existing = await self.find_lead(organization_id, phone)
                    if existing is None:
                        raise
            return await self._update(existing, facts, brief, call)

    async def _create(
        self,
        organization_id: str,
        phone: str,
        facts: ExtractedFacts,
        brief: Optional[Brief],
        call: Optional[CallRecord],
    ) -> Lead:
        campaign_id = call.campaign_id if call else None
        assigned_to = None
        if self.assignee_resolver:
            assigned_to = await self.assignee_resolver.resolve(organization_id, campaign_id)

        custom_fields = build_custom_fields(facts, brief)
        custom_fields["notes"] = [self._new_note(facts, brief, call.id if call else None)]
        custom_fields["call_history"] = [self._history_entry(facts, call)]

        row = {
            "id": str(uuid.uuid4()),
            "organization_id": organization_id,
            "campaign_id": campaign_id,
            "phone": phone,
            "lead_source": "ai_call",
            **build_lead_columns(facts),
            **self._derived(facts),
            "call_attempts": 1,
            "assigned_to": assigned_to,
            "custom_fields": custom_fields,
            "created_at": self.clock().isoformat(),
            "updated_at": self.clock().isoformat(),
        }
        stored = await self.store.insert(LEADS_TABLE, row)
        logger.info(f"✅ Lead created: {stored.get('id')} ({phone})")
        return Lead.model_validate(stored)

    async def _update(
        self,
        existing: Dict[str, Any],
        facts: ExtractedFacts,
        brief: Optional[Brief],
        call: Optional[CallRecord],
    ) -> Lead:
        old_custom = dict(existing.get("custom_fields") or {})
        note_key = call.id if call else None
        history_key = _history_key(call)

        notes: List[Dict[str, Any]] = [
            note for note in old_custom.get("notes") or [] if not note_key or note.get("call_id") != note_key
        ]
        notes.append(self._new_note(facts, brief, note_key))

        old_history: List[Dict[str, Any]] = list(old_custom.get("call_history") or [])
        history = [entry for entry in old_history if not history_key or entry.get("call_id") != history_key]
        repeat_call = len(history) < len(old_history)
        history.append(self._history_entry(facts, call))
        if repeat_call:
            logger.info(f"Call {history_key} already merged into lead {existing['id']}, replacing its entries")

        custom_fields = {
            **old_custom,
            **build_custom_fields(facts, brief),
            "notes": notes[-self.notes_cap:],
            "call_history": history[-CALL_HISTORY_CAP:],
        }

        merged = fill_from_lead(facts, existing)
        values = {
            **build_lead_columns(facts),
            **self._derived(merged),
            "call_attempts": int(existing.get("call_attempts") or 0) + (0 if repeat_call else 1),
            "custom_fields": custom_fields,
            "updated_at": self.clock().isoformat(),
        }
        if not existing.get("campaign_id") and call and call.campaign_id:
            values["campaign_id"] = call.campaign_id

        rows = await self.store.update(LEADS_TABLE, values, eq={"id": existing["id"]})
        logger.info(f"✅ Lead updated: {existing['id']} ({len(notes[-self.notes_cap:])} notes)")
        return Lead.model_validate(rows[0] if rows else {**existing, **values})
