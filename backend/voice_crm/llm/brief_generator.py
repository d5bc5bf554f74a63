"""Sales follow-up brief generation.

A brief is built by one JSON-mode model request when a model is configured.
Each section of the model's answer is validated on its own, and any missing
or malformed section is replaced by the heuristic version.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from ..core.brief_models import (
    ActionItems,
    AIRecommendations,
    Brief,
    AuthorityInfo,
    BriefMetadata,
    BudgetInfo,
    CalendarSection,
    CompanyDetails,
    CompetitivePosition,
    ContactInfo,
    ConversationInsights,
    ExecutiveSummary,
    LocationDetails,
    NeedInfo,
    NegotiationInfo,
    PersonalInfo,
    QualificationSection,
    SalesIntelligence,
    TimelineInfo,
)
from ..core.config import Settings
from ..core.models import ExtractedFacts
from ..core.tracing import trace_llm_call
from ..services.date_resolution import normalize_time, resolve_relative_date
from . import brief_extractors as ex
from .llm_providers import LLMProvider, get_llm_provider, parse_json_object

logger = logging.getLogger(__name__)

BRIEF_PROMPT = """You are an expert sales intelligence analyst. Extract EVERYTHING from the call transcript to create an ultra-detailed brief for the sales team.

Provide:
1. Every piece of information mentioned, no matter how small
2. What information is MISSING, why it matters, and the exact question to ask for it
3. Specific action items and follow-up questions
4. Calendar events with exact dates and times
5. Personal details for rapport building
6. Strategic recommendations

For CALENDAR ITEMS, resolve relative dates ("next Tuesday", "Friday") against the reference date given
below and return ISO dates (YYYY-MM-DD). Keep vague times like "evening" verbatim.

Return a JSON object with exactly these keys:
executiveSummary {callOutcome, interestLevel (1-10), readyToBuy, nextAction {date, time, method, purpose}, priority}
contactInfo {fullName, phone, email, bestTimeToCall}
companyDetails {company, jobTitle, companySize, industry}
locationDetails {fullAddress, city, state, zipCode}
qualification {budget {amount, approved}, timeline {urgency, targetDate}, authority {isDecisionMaker, decisionMakers[]}, need {painPoints[], currentSolution}}
conversationInsights {questionsAsked[], objections[], buyingSignals[], competitorsMentioned[], specificRequirements[]}
calendar {appointments [{type, date, time, confirmed, duration, location, agenda[], preparationNotes[]}], nextContact, followUpSchedule [{date, action, notes}]}
actionItems {missingInfo [{field, importance (critical/important/nice-to-have), howToGet, question}], tasksToDo [{task, deadline, priority}], documentsToSend[], informationToGather[]}
salesIntelligence {personalInfo {interests[], communicationStyle}, negotiation {priceExpectation, negotiationPoints[]}, competitivePosition {currentVendor, switchingFactors[]}}
aiRecommendations {nextBestAction, talkingPoints[], winProbability (5-95), suggestedOffer, personalizedApproach}
metadata {sentiment, callQuality (1-10), dataCompleteness (0-100)}

Respond ONLY with valid JSON, no other text."""

SECTION_MODELS = {
    "executive_summary": ExecutiveSummary,
    "contact_info": ContactInfo,
    "company_details": CompanyDetails,
    "location_details": LocationDetails,
    "qualification": QualificationSection,
    "conversation_insights": ConversationInsights,
    "calendar": CalendarSection,
    "action_items": ActionItems,
    "sales_intelligence": SalesIntelligence,
    "ai_recommendations": AIRecommendations,
    "metadata": BriefMetadata,
}


def generate_basic_brief(
    transcript: str,
    provider_metadata: Optional[Dict[str, Any]] = None,
    existing_lead: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Brief:
    """Build a brief from transcript heuristics alone.

    Args:
        transcript: Call transcript
        provider_metadata: Call metadata from the voice provider
        existing_lead: Existing lead row for this prospect, if any
        now: Reference time for resolving spoken dates

    Returns:
        Heuristic brief
    """
    now = now or datetime.now(timezone.utc)
    metadata = provider_metadata or {}
    customer = metadata.get("customer") or {}
    lead = existing_lead or {}
    lower = (transcript or "").lower()

    appointments = ex.extract_appointments(transcript, now)
    missing_info = ex.identify_missing_info(transcript, existing_lead)
    next_contact = ex.determine_next_contact(appointments, now)

    return Brief(
        executive_summary=ExecutiveSummary(
            call_outcome=ex.determine_call_outcome(transcript),
            interest_level=ex.calculate_interest_level(transcript),
            ready_to_buy="ready" in lower or "let's do it" in lower,
            next_action=next_contact,
            priority=ex.calculate_priority(transcript),
        ),
        contact_info=ContactInfo(
            full_name=customer.get("name") or " ".join(
                p for p in (lead.get("first_name"), lead.get("last_name")) if p
            ) or None,
            phone=customer.get("number") or lead.get("phone"),
            email=ex.extract_email(transcript) or lead.get("email"),
            best_time_to_call=ex.extract_best_time_to_call(transcript),
        ),
        company_details=CompanyDetails(
            company=ex.extract_company(transcript) or lead.get("company"),
            job_title=ex.extract_job_title(transcript) or lead.get("job_title"),
            company_size=ex.extract_company_size(transcript),
            industry=ex.extract_industry(transcript),
        ),
        location_details=LocationDetails(
            full_address=ex.extract_address(transcript),
            city=ex.extract_city(transcript),
            state=ex.extract_state(transcript),
            zip_code=ex.extract_zip_code(transcript),
        ),
        qualification=QualificationSection(
            budget=BudgetInfo(amount=ex.extract_budget(transcript), approved="budget approved" in lower),
            timeline=TimelineInfo(urgency=ex.extract_urgency(transcript), target_date=ex.extract_target_date(transcript)),
            authority=AuthorityInfo(
                is_decision_maker=ex.is_decision_maker(transcript),
                decision_makers=ex.extract_decision_makers(transcript),
            ),
            need=NeedInfo(
                pain_points=ex.extract_pain_points(transcript),
                current_solution=ex.extract_current_solution(transcript),
            ),
        ),
        conversation_insights=ConversationInsights(
            questions_asked=ex.extract_questions(transcript),
            objections=ex.extract_objections(transcript),
            buying_signals=ex.extract_buying_signals(transcript),
            competitors_mentioned=ex.extract_competitors(transcript),
            specific_requirements=ex.extract_requirements(transcript),
        ),
        calendar=CalendarSection(
            appointments=appointments,
            next_contact=next_contact,
            follow_up_schedule=ex.create_follow_up_schedule(transcript, appointments, now),
        ),
        action_items=ActionItems(
            missing_info=missing_info,
            tasks_to_do=ex.generate_tasks(transcript, missing_info, now),
            documents_to_send=ex.identify_documents_to_send(transcript),
            information_to_gather=ex.identify_info_to_gather(transcript),
        ),
        sales_intelligence=SalesIntelligence(
            personal_info=PersonalInfo(
                interests=ex.extract_personal_interests(transcript),
                communication_style=ex.analyze_communication_style(transcript),
            ),
            negotiation=NegotiationInfo(
                price_expectation=ex.extract_price_expectation(transcript),
                negotiation_points=ex.extract_negotiation_points(transcript),
            ),
            competitive_position=CompetitivePosition(
                current_vendor=ex.extract_current_vendor(transcript),
                switching_factors=ex.extract_switching_factors(transcript),
            ),
        ),
        ai_recommendations=AIRecommendations(
            next_best_action=ex.recommend_next_action(transcript, appointments, missing_info),
            talking_points=ex.generate_talking_points(transcript, missing_info),
            win_probability=ex.calculate_win_probability(transcript),
            suggested_offer=ex.suggest_offer(transcript),
            personalized_approach=ex.suggest_approach(transcript),
        ),
        metadata=BriefMetadata(
            call_id=metadata.get("callId"),
            call_date=now.isoformat(),
            call_duration=metadata.get("duration"),
            sentiment=ex.analyze_sentiment(transcript),
            call_quality=ex.assess_call_quality(transcript),
            data_completeness=ex.calculate_data_completeness(transcript, now, existing_lead),
        ),
        source="heuristic",
    )


def enrich_and_validate_brief(data: Dict[str, Any], basic: Brief, now: datetime) -> Brief:
    """Merge a model brief with the heuristic one, section by section.

    Args:
        data: Parsed model response (camelCase or snake_case keys)
        basic: Heuristic brief for the same transcript
        now: Reference time for resolving relative appointment dates

    Returns:
        Validated brief
    """
    sections: Dict[str, Any] = {}
    replaced: List[str] = []
    for name, model in SECTION_MODELS.items():
        raw = data.get(to_camel(name), data.get(name))
        section = None
        if isinstance(raw, dict) and raw:
            try:
                section = model.model_validate(raw)
            except ValidationError as e:
                logger.warning(f"⚠️ Brief section {name} invalid, using heuristic: {e.error_count()} errors")
        if section is None:
            section = getattr(basic, name)
            replaced.append(name)
        sections[name] = section

    calendar: CalendarSection = sections["calendar"]
    for appointment in calendar.appointments:
        resolved = resolve_relative_date(appointment.date, now)
        if resolved:
            appointment.date = resolved.isoformat()
        appointment.time = normalize_time(appointment.time)

    if replaced:
        logger.info(f"Brief sections filled from heuristics: {', '.join(replaced)}")
    return Brief(**sections, source="model")


def render_pre_call_note(facts: ExtractedFacts, brief: Optional[Brief] = None) -> str:
    """Narrative pre-call brief stored as a lead note."""
    name = facts.first_name or facts.display_name or "Customer"
    service = facts.calling_company_service or "Consultation"
    interest = facts.interest_level
    if interest is not None and interest >= 7:
        interest_desc = "High interest"
    elif interest is not None and interest >= 5:
        interest_desc = "Moderate interest"
    else:
        interest_desc = "New to the offering"

    parts = [f"Pre-Call Brief for {name} - {service} Follow-Up"]

    parts.append("\nCustomer Background:")
    parts.append(f"Name: {facts.display_name or 'Unknown'}")
    parts.append(f"Interest Level: {interest_desc} ({interest or 'Unknown'}/10)")
    parts.append(f"Status: {'Qualified for consultation' if facts.is_qualified_lead else 'Needs further qualification'}")
    if facts.summary:
        parts.append(f"Call Summary: {facts.summary}")

    parts.append("\nAddress Information:")
    parts.append(f"Street Address: {facts.street or 'Not provided'}")
    parts.append(f"City: {facts.city or 'Not provided'}")
    parts.append(f"State: {facts.state or 'Not provided'}")
    parts.append(f"ZIP Code: {facts.postcode or 'Not provided'}")

    if facts.has_appointment:
        scheduled = " at ".join(p for p in (facts.appointment_date, facts.appointment_time) if p)
        parts.append("\nAppointment Details:")
        parts.append(f"Scheduled: {scheduled}")
        parts.append(f"Type: {facts.appointment_type or 'Consultation'}")

    parts.append("\nKey Points to Remember:")
    if facts.pain_points:
        parts.append(f"- Customer needs: {', '.join(facts.pain_points)}")
    if facts.objections_raised:
        parts.append(f"- Concerns raised: {', '.join(facts.objections_raised)}")
    if facts.questions_asked:
        parts.append(f"- Questions asked: {', '.join(facts.questions_asked)}")
    if facts.current_solution:
        parts.append(f"- Current solution: {facts.current_solution}")
    if facts.timeline:
        parts.append(f"- Timeline: {facts.timeline}")
    if facts.budget:
        parts.append(f"- Budget: {facts.budget}")

    parts.append("\nWhat to Prepare:")
    if not facts.budget or "not sure" in facts.budget.lower():
        parts.append("- Clear explanation of financing options")
    if facts.competitors:
        parts.append("- Competitive comparison materials")
    if facts.pain_points:
        parts.append("- Solutions for specific needs discussed")
    parts.append(f"- Pricing and package overview for {service}")
    parts.append("- Company credentials and testimonials")

    if brief is not None and brief.action_items.missing_info:
        parts.append("\nQuestions to Ask:")
        for item in brief.action_items.missing_info:
            parts.append(f"- {item.field}: {item.question}")

    parts.append("\nCustomer Communication Style:")
    if facts.sentiment == "positive":
        parts.append("Engaged and receptive - ready to learn more")
    elif facts.sentiment == "negative":
        parts.append("Skeptical - needs trust building and education")
    else:
        parts.append("Neutral - needs more information")

    parts.append("\nNotes for Approach:")
    if facts.phone:
        parts.append(f"Confirm appointment via text to: {facts.phone}")
    if facts.email:
        parts.append(f"Send confirmation email to: {facts.email}")
    if facts.decision_authority:
        parts.append(f"Decision authority: {facts.decision_authority}")
    if interest is not None and interest < 5:
        parts.append("- Take educational approach, no pressure")
        parts.append("- Focus on building trust first")
    elif interest is not None and interest >= 7:
        parts.append("- Customer is ready to move forward")
        parts.append("- Have contract and payment options ready")
    else:
        parts.append("- Balance information with soft close attempts")
    if facts.next_steps:
        parts.append(f"Next actions: {', '.join(facts.next_steps)}")

    return "\n".join(parts)


class BriefGenerator:
    """Builds a ``Brief`` for a qualifying call."""

    def __init__(self, settings: Settings, provider: Optional[LLMProvider] = None):
        self.settings = settings
        self._llm_client = provider
        self._llm_unavailable = False

    @property
    def llm_client(self) -> Optional[LLMProvider]:
        """Lazy load LLM client."""
        if self._llm_client is None and not self._llm_unavailable:
            try:
                self._llm_client = get_llm_provider(self.settings)
            except ValueError as e:
                logger.warning(f"⚠️ Model brief disabled: {e}")
                self._llm_unavailable = True
        return self._llm_client

    async def generate(
        self,
        transcript: str,
        provider_metadata: Optional[Dict[str, Any]] = None,
        existing_lead: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Brief:
        """Generate a brief, preferring the model and falling back to heuristics.

        Args:
            transcript: Call transcript
            provider_metadata: Call metadata from the voice provider
            existing_lead: Existing lead row for this prospect, if any
            now: Reference time for resolving spoken dates

        Returns:
            Brief; never raises for model failures
        """
        now = now or datetime.now(timezone.utc)
        basic = generate_basic_brief(transcript, provider_metadata, existing_lead, now)
        if self.llm_client is None:
            return basic

        data = await self._generate_with_llm(transcript, provider_metadata, existing_lead, now)
        if data is None:
            logger.warning("⚠️ Model brief failed, using heuristic brief")
            return basic

        brief = enrich_and_validate_brief(data, basic, now)
        logger.info(f"✅ Brief generated with {len(brief.calendar.appointments)} appointments")
        return brief

    @trace_llm_call("brief")
    async def _generate_with_llm(
        self,
        transcript: str,
        provider_metadata: Optional[Dict[str, Any]],
        existing_lead: Optional[Dict[str, Any]],
        now: datetime,
    ) -> Optional[Dict[str, Any]]:
        user_message = (
            f"Reference date: {now.date().isoformat()} ({now.strftime('%A')})\n\n"
            f"Call Transcript:\n{transcript}\n\n"
            f"VAPI Data: {json.dumps(provider_metadata or {}, default=str)}\n\n"
            f"Existing Lead Data: {json.dumps(existing_lead or {}, default=str)}"
        )
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(
                    self.llm_client.generate_response,
                    system_prompt=BRIEF_PROMPT,
                    user_message=user_message,
                    temperature=self.settings.llm_temperature,
                    max_tokens=4000,
                    model=self.settings.brief_model,
                ),
                timeout=self.settings.llm_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ Model brief timed out after {self.settings.llm_timeout_seconds}s")
            return None
        except Exception as e:
            logger.warning(f"⚠️ Model brief error: {e}")
            return None
        return parse_json_object(response)
