"""Pydantic models for the sales follow-up brief.

Fields are snake_case in Python and accept camelCase on input, which is
what the brief model returns.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class BriefSection(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class NextContact(BriefSection):
    date: Optional[str] = None
    time: Optional[str] = None
    method: str = "phone"
    purpose: Optional[str] = None


class ExecutiveSummary(BriefSection):
    call_outcome: str = "unknown"
    interest_level: int = 5
    ready_to_buy: bool = False
    next_action: Optional[NextContact] = None
    priority: str = "medium"


class ContactInfo(BriefSection):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    best_time_to_call: Optional[str] = None


class CompanyDetails(BriefSection):
    company: Optional[str] = None
    job_title: Optional[str] = None
    company_size: Optional[str] = None
    industry: Optional[str] = None


class LocationDetails(BriefSection):
    full_address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None


class BudgetInfo(BriefSection):
    amount: Optional[str] = None
    approved: bool = False


class TimelineInfo(BriefSection):
    urgency: str = "medium"
    target_date: Optional[str] = None


class AuthorityInfo(BriefSection):
    is_decision_maker: bool = False
    decision_makers: List[str] = Field(default_factory=list)


class NeedInfo(BriefSection):
    pain_points: List[str] = Field(default_factory=list)
    current_solution: Optional[str] = None


class QualificationSection(BriefSection):
    budget: BudgetInfo = Field(default_factory=BudgetInfo)
    timeline: TimelineInfo = Field(default_factory=TimelineInfo)
    authority: AuthorityInfo = Field(default_factory=AuthorityInfo)
    need: NeedInfo = Field(default_factory=NeedInfo)


class ConversationInsights(BriefSection):
    questions_asked: List[str] = Field(default_factory=list)
    objections: List[str] = Field(default_factory=list)
    buying_signals: List[str] = Field(default_factory=list)
    competitors_mentioned: List[str] = Field(default_factory=list)
    specific_requirements: List[str] = Field(default_factory=list)


class BriefAppointment(BriefSection):
    type: str = "meeting"
    date: Optional[str] = None
    time: Optional[str] = None
    confirmed: bool = False
    duration: int = 30
    location: Optional[str] = None
    agenda: List[str] = Field(default_factory=list)
    preparation_notes: List[str] = Field(default_factory=list)


class FollowUp(BriefSection):
    date: str
    action: str
    notes: Optional[str] = None


class CalendarSection(BriefSection):
    appointments: List[BriefAppointment] = Field(default_factory=list)
    next_contact: Optional[NextContact] = None
    follow_up_schedule: List[FollowUp] = Field(default_factory=list)


class MissingInfo(BriefSection):
    field: str
    importance: str = "important"
    how_to_get: Optional[str] = None
    question: Optional[str] = None


class BriefTask(BriefSection):
    task: str
    deadline: Optional[str] = None
    priority: str = "medium"


class ActionItems(BriefSection):
    missing_info: List[MissingInfo] = Field(default_factory=list)
    tasks_to_do: List[BriefTask] = Field(default_factory=list)
    documents_to_send: List[str] = Field(default_factory=list)
    information_to_gather: List[str] = Field(default_factory=list)


class PersonalInfo(BriefSection):
    interests: List[str] = Field(default_factory=list)
    communication_style: str = "conversational"


class NegotiationInfo(BriefSection):
    price_expectation: Optional[str] = None
    negotiation_points: List[str] = Field(default_factory=list)


class CompetitivePosition(BriefSection):
    current_vendor: Optional[str] = None
    switching_factors: List[str] = Field(default_factory=list)


class SalesIntelligence(BriefSection):
    personal_info: PersonalInfo = Field(default_factory=PersonalInfo)
    negotiation: NegotiationInfo = Field(default_factory=NegotiationInfo)
    competitive_position: CompetitivePosition = Field(default_factory=CompetitivePosition)


class AIRecommendations(BriefSection):
    next_best_action: Optional[str] = None
    talking_points: List[str] = Field(default_factory=list)
    win_probability: int = 50
    suggested_offer: Optional[str] = None
    personalized_approach: Optional[str] = None


class BriefMetadata(BriefSection):
    call_id: Optional[str] = None
    call_date: Optional[str] = None
    call_duration: Optional[float] = None
    sentiment: str = "neutral"
    call_quality: int = 5
    data_completeness: int = 0


class Brief(BriefSection):
    """Structured follow-up brief for one call."""

    executive_summary: ExecutiveSummary = Field(default_factory=ExecutiveSummary)
    contact_info: ContactInfo = Field(default_factory=ContactInfo)
    company_details: CompanyDetails = Field(default_factory=CompanyDetails)
    location_details: LocationDetails = Field(default_factory=LocationDetails)
    qualification: QualificationSection = Field(default_factory=QualificationSection)
    conversation_insights: ConversationInsights = Field(default_factory=ConversationInsights)
    calendar: CalendarSection = Field(default_factory=CalendarSection)
    action_items: ActionItems = Field(default_factory=ActionItems)
    sales_intelligence: SalesIntelligence = Field(default_factory=SalesIntelligence)
    ai_recommendations: AIRecommendations = Field(default_factory=AIRecommendations)
    metadata: BriefMetadata = Field(default_factory=BriefMetadata)
    source: str = Field(default="heuristic", description="'model' or 'heuristic'")

    def missing_fields(self) -> List[str]:
        return [item.field for item in self.action_items.missing_info]
