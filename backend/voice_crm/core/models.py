"""Pydantic models for call, lead, and side-effect records."""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CallStatus(str, Enum):
    """Lifecycle status of a call record."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"


# Status only moves forward; completed and failed are both terminal.
STATUS_RANK: Dict[str, int] = {
    CallStatus.PENDING.value: 0,
    CallStatus.IN_PROGRESS.value: 1,
    CallStatus.COMPLETED.value: 2,
    CallStatus.FAILED.value: 2,
}


class CallRecord(BaseModel):
    """Canonical call record as stored in the ``calls`` table."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    vapi_call_id: Optional[str] = None
    organization_id: Optional[str] = None
    campaign_id: Optional[str] = None
    phone_number: Optional[str] = None
    contact_name: Optional[str] = None
    assistant_id: Optional[str] = None
    status: str = CallStatus.PENDING.value
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration: Optional[float] = None
    end_reason: Optional[str] = None
    outcome: Optional[str] = None
    cost: Optional[float] = None
    transcript: Optional[str] = None
    partial_transcript: Optional[str] = None
    summary: Optional[str] = None
    sentiment: Optional[str] = None
    ai_score: Optional[int] = None
    is_qualified: Optional[bool] = None
    created_crm_contact: Optional[bool] = None
    recording_url: Optional[str] = None
    analysis: Optional[Dict[str, Any]] = None
    raw_payload: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    lead_id: Optional[str] = None
    processed_at: Optional[datetime] = None

    @property
    def ready_for_extraction(self) -> bool:
        """A call is processed once it has ended and carries a transcript."""
        return self.status == CallStatus.COMPLETED.value and bool((self.transcript or "").strip())

    @property
    def reference_time(self) -> Optional[datetime]:
        return self.ended_at or self.started_at


class ExtractedFacts(BaseModel):
    """Flat, normalized view over whatever the extraction step produced.

    Every scalar is optional and ``None`` means "not mentioned". List fields
    are empty when nothing was mentioned.
    """

    # Prospect identity
    full_name: Optional[str] = Field(None, description="Prospect's full name")
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    alternate_phone: Optional[str] = None

    # Address
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postcode: Optional[str] = None
    country: Optional[str] = None

    # Employment
    company: Optional[str] = Field(None, description="Prospect's own employer, never the calling company")
    job_title: Optional[str] = None
    department: Optional[str] = None
    industry: Optional[str] = None
    company_size: Optional[str] = None
    website: Optional[str] = None

    # Lead tracking
    lead_source: Optional[str] = None
    referral_source: Optional[str] = None
    previous_interaction: Optional[str] = None

    # Qualification
    interest_level: Optional[int] = Field(None, description="Interest level from 1 to 10")
    budget: Optional[str] = None
    timeline: Optional[str] = None
    decision_authority: Optional[str] = None
    pain_points: List[str] = Field(default_factory=list)
    current_solution: Optional[str] = None
    competitors: List[str] = Field(default_factory=list)

    # Conversation
    questions_asked: List[str] = Field(default_factory=list)
    objections_raised: List[str] = Field(default_factory=list)
    buying_signals: List[str] = Field(default_factory=list)
    next_steps: List[str] = Field(default_factory=list)
    summary: Optional[str] = None

    # Appointment
    appointment_date: Optional[str] = None
    appointment_time: Optional[str] = None
    appointment_type: Optional[str] = None

    # Calling company (who placed the call)
    calling_company_name: Optional[str] = None
    calling_company_service: Optional[str] = None
    calling_company_rep: Optional[str] = None
    calling_company_phone: Optional[str] = None

    # Conversion
    converted: Optional[bool] = None
    conversion_value: Optional[float] = None
    next_call_date: Optional[str] = None
    last_call_date: Optional[str] = None

    sentiment: Optional[str] = None
    confidence_score: Optional[float] = None
    is_qualified_lead: bool = False

    @field_validator("interest_level", mode="before")
    @classmethod
    def clamp_interest_level(cls, value: Any) -> Optional[int]:
        if value is None or value == "":
            return None
        if isinstance(value, bool):
            return None
        if isinstance(value, str):
            match = re.search(r"\d+(?:\.\d+)?", value)
            if not match:
                return None
            value = float(match.group(0))
        try:
            number = int(round(float(value)))
        except (TypeError, ValueError):
            return None
        return max(1, min(10, number))

    @property
    def display_name(self) -> Optional[str]:
        if self.full_name:
            return self.full_name
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) if parts else None

    @property
    def has_appointment(self) -> bool:
        return bool(self.appointment_date or self.appointment_time)


class LeadNote(BaseModel):
    """Timestamped note stored in ``custom_fields.notes``."""

    id: str
    content: str
    created_by: str = "AI System"
    created_at: str
    last_updated: str
    tag: str = "ai-summary"
    call_id: Optional[str] = None


class Lead(BaseModel):
    """Durable CRM lead, unique per (phone, organization)."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    organization_id: Optional[str] = None
    campaign_id: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    company: Optional[str] = None
    job_title: Optional[str] = None
    address_line1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    lead_source: Optional[str] = None
    lead_quality: Optional[str] = None
    status: Optional[str] = None
    qualification_status: Optional[str] = None
    score: Optional[int] = None
    call_status: Optional[str] = None
    call_attempts: int = 0
    last_call_at: Optional[str] = None
    next_call_at: Optional[str] = None
    converted: Optional[bool] = None
    conversion_value: Optional[float] = None
    phone_validated: Optional[bool] = None
    email_validated: Optional[bool] = None
    data_quality_score: Optional[int] = None
    assigned_to: Optional[str] = None
    custom_fields: Dict[str, Any] = Field(default_factory=dict)

    @property
    def notes(self) -> List[Dict[str, Any]]:
        return list(self.custom_fields.get("notes") or [])


class AppointmentRecord(BaseModel):
    """Row written to the ``appointments`` table."""

    organization_id: Optional[str] = None
    lead_id: Optional[str] = None
    campaign_id: Optional[str] = None
    call_id: Optional[str] = None
    title: str
    type: str = "meeting"
    date: Optional[str] = None
    time: Optional[str] = None
    scheduled_at: Optional[str] = None
    duration_minutes: int = 30
    location_type: str = "phone"
    location_details: Optional[str] = None
    agenda: List[str] = Field(default_factory=list)
    preparation_notes: List[str] = Field(default_factory=list)
    status: str = "scheduled"
    created_by: str = "AI System"


class TaskRecord(BaseModel):
    """Row written to the ``tasks`` or ``follow_up_tasks`` table."""

    organization_id: Optional[str] = None
    lead_id: Optional[str] = None
    call_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    due_date: str
    priority: str = "medium"
    category: str = "follow_up"
    status: str = "pending"
    assigned_to: Optional[str] = None
    created_by: str = "AI System"
