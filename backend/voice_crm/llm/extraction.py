"""Structured fact extraction from call transcripts.

The primary path asks the configured LLM for a JSON object and coalesces
whatever shape comes back into ``ExtractedFacts``. When no model is
configured, or the call fails, deterministic keyword heuristics are used.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..core.config import Settings
from ..core.models import ExtractedFacts
from ..core.tracing import trace_llm_call
from . import brief_extractors as extractors
from .llm_providers import LLMProvider, get_llm_provider, parse_json_object
from .qualification import detect_signals, qualifies_from_facts

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """You are an expert AI sales analyst. Extract ALL available information from the call transcript. Populate every field you find and leave null anything that is not mentioned. Never guess.

CRITICAL: Distinguish between:
1. THE PROSPECT (the person being called): their personal details and their own employer
2. THE CALLING COMPANY (who is selling): the company placing the call, its service and its rep
Never put the calling company into the prospect's company field.

Return a JSON object with these groups and keys:

PROSPECT_INFORMATION: "Full name", "First name", "Last name", "Email", "Phone", "Alternative phone",
  "Complete address" {"Street", "City", "State/Region", "Postcode", "Country"},
  "Company", "Job title", "Department", "Industry", "Company size", "Website"
CALLING_COMPANY: "Company name", "Service/product", "Sales rep name", "Contact number"
QUALIFICATION_DETAILS: "Interest level" (1-10), "Budget", "Timeline", "Decision-making authority",
  "Pain points" (array), "Current solution", "Competitors" (array)
APPOINTMENT_INFORMATION: "Date", "Time" (keep phrases like "evening" or "after 6pm" verbatim), "Type"
CONVERSATION_ANALYSIS: "Questions asked" (array), "Objections raised" (array), "Buying signals" (array),
  "Next steps" (array), "Summary", "Sentiment" (positive/negative/neutral/mixed)
LEAD_TRACKING: "Lead source", "Referral source", "Previous interaction"
CONVERSION_DATA: "Converted" (true/false), "Conversion value", "Next call date", "Last call date"
QUALIFIED: true or false
CONFIDENCE: 0.0-1.0

QUALIFIED is true only if ANY of:
- Interest level >= 6
- An appointment was scheduled
- Pricing or a proposal was requested
- Contact information was provided willingly
- The prospect asked to be contacted again

QUALIFIED is false if ANY of:
- The prospect said "not interested" explicitly
- The prospect hung up immediately
- The prospect asked to be removed from the list
- Interest level <= 3

Respond ONLY with valid JSON, no other text."""

Path = Tuple[str, ...]
Transform = Callable[[Any], Any]

EMPTY_MARKERS = {"", "null", "none", "n/a", "na", "unknown", "not mentioned", "not provided", "not specified"}


# Value transforms. Each returns None when the value is not usable.

def _as_str(value: Any) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if not isinstance(value, str):
        return None
    text = value.strip()
    return None if text.lower() in EMPTY_MARKERS else text


def _as_list(value: Any) -> Optional[List[str]]:
    if isinstance(value, str):
        text = _as_str(value)
        return [text] if text else None
    if isinstance(value, (list, tuple)):
        items = [item for item in (_as_str(v) for v in value) if item]
        return items or None
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "y", "qualified"):
            return True
        if lowered in ("false", "no", "n", "not qualified"):
            return False
    return None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = re.search(r"\d[\d,]*(?:\.\d+)?", value)
        if match:
            return float(match.group(0).replace(",", ""))
    return None


def _as_interest(value: Any) -> Optional[Any]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str) and re.search(r"\d", value):
        return value
    return None


def _as_sentiment(value: Any) -> Optional[str]:
    text = _as_str(value)
    if not text:
        return None
    lowered = text.lower()
    for sentiment in ("positive", "negative", "mixed", "neutral"):
        if sentiment in lowered:
            return sentiment
    return None


# Group aliases the model uses interchangeably across calls

PROSPECT = ("PROSPECT_INFORMATION", "prospectInformation", "prospect_information", "prospect", "contact")
ADDRESS = ("Complete address", "completeAddress", "address")
EMPLOYMENT = ("PROFESSIONAL_INFO", "professionalInfo", "professional") + PROSPECT
CALLING = ("CALLING_COMPANY", "callingCompany", "calling_company")
QUALIFICATION = ("QUALIFICATION_DETAILS", "qualificationDetails", "qualification_details", "qualification")
APPOINTMENT = ("APPOINTMENT_INFORMATION", "appointmentInformation", "appointment_information", "appointment")
BEHAVIORAL = ("BEHAVIORAL_INSIGHTS", "behavioralInsights", "behavioral")
CONVERSATION = ("CONVERSATION_ANALYSIS", "conversationAnalysis", "conversation_analysis", "conversation")
TRACKING = ("LEAD_TRACKING", "leadTracking", "tracking")
CONVERSION = ("CONVERSION_DATA", "conversionData", "conversion")


def _grouped(groups: Sequence[str], keys: Sequence[str]) -> List[Path]:
    return [(group, key) for group in groups for key in keys]


def _flat(*keys: str) -> List[Path]:
    return [(key,) for key in keys]


def _address(keys: Sequence[str]) -> List[Path]:
    paths = [(group, address, key) for group in PROSPECT for address in ADDRESS for key in keys]
    paths += [(address, key) for address in ADDRESS for key in keys]
    return paths


def _aliases(transform: Transform, *path_lists: List[Path]) -> List[Tuple[Path, Transform]]:
    return [(path, transform) for paths in path_lists for path in paths]


# Ordered (path, transform) lookups per field; the first usable value wins.
FIELD_ALIASES: Dict[str, List[Tuple[Path, Transform]]] = {
    "full_name": _aliases(
        _as_str,
        _grouped(PROSPECT, ["Full name", "fullName", "full_name", "name", "Name"]),
        _flat("fullName", "full_name", "prospectName", "name"),
        [("data", "fullName"), ("data", "name")],
    ),
    "first_name": _aliases(_as_str, _grouped(PROSPECT, ["First name", "firstName", "first_name"]), _flat("firstName", "first_name")),
    "last_name": _aliases(_as_str, _grouped(PROSPECT, ["Last name", "lastName", "last_name"]), _flat("lastName", "last_name")),
    "email": _aliases(_as_str, _grouped(PROSPECT, ["Email", "Email address", "email"]), _flat("email", "emailAddress")),
    "phone": _aliases(
        _as_str,
        _grouped(PROSPECT, ["Phone", "Phone number", "phone", "phoneNumber"]),
        _flat("phone", "phoneNumber", "phone_number"),
    ),
    "alternate_phone": _aliases(
        _as_str,
        _grouped(PROSPECT, ["Alternative phone", "alternativePhone", "alternatePhone"]),
        _flat("alternativePhone", "alternatePhone"),
    ),
    "street": _aliases(
        _as_str,
        _address(["Street", "street", "Address line 1", "addressLine1", "line1"]),
        _grouped(PROSPECT, ["Street address", "address"]),
        _flat("address", "street", "streetAddress"),
    ),
    "city": _aliases(_as_str, _address(["City", "city"]), _grouped(PROSPECT, ["City", "city"]), _flat("city")),
    "state": _aliases(
        _as_str,
        _address(["State/Region", "State", "state", "region", "Region"]),
        _grouped(PROSPECT, ["State", "state"]),
        _flat("state", "region"),
    ),
    "postcode": _aliases(
        _as_str,
        _address(["Postcode", "ZIP", "Zip code", "postcode", "zipCode", "zip", "postalCode"]),
        _grouped(PROSPECT, ["Postcode", "ZIP", "zipCode", "postcode"]),
        _flat("postcode", "zipCode", "zip", "postalCode"),
    ),
    "country": _aliases(_as_str, _address(["Country", "country"]), _grouped(PROSPECT, ["Country", "country"]), _flat("country")),
    "company": _aliases(_as_str, _grouped(EMPLOYMENT, ["Company", "company", "Employer", "employer"]), _flat("company", "employer")),
    "job_title": _aliases(_as_str, _grouped(EMPLOYMENT, ["Job title", "jobTitle", "title"]), _flat("jobTitle", "job_title", "title")),
    "department": _aliases(_as_str, _grouped(EMPLOYMENT, ["Department", "department"]), _flat("department")),
    "industry": _aliases(_as_str, _grouped(EMPLOYMENT, ["Industry", "industry"]), _flat("industry")),
    "company_size": _aliases(_as_str, _grouped(EMPLOYMENT, ["Company size", "companySize"]), _flat("companySize", "company_size")),
    "website": _aliases(_as_str, _grouped(EMPLOYMENT, ["Website", "website"]), _flat("website")),
    "lead_source": _aliases(_as_str, _grouped(TRACKING, ["Lead source", "leadSource", "source"]), _flat("leadSource", "lead_source")),
    "referral_source": _aliases(_as_str, _grouped(TRACKING, ["Referral source", "referralSource"]), _flat("referralSource")),
    "previous_interaction": _aliases(
        _as_str,
        _grouped(TRACKING, ["Previous interaction", "previousInteraction"]),
        _flat("previousInteraction"),
    ),
    "interest_level": _aliases(
        _as_interest,
        _grouped(QUALIFICATION, ["Interest level", "interestLevel", "interest_level", "interest"]),
        _flat("interestLevel", "interest_level", "INTEREST_LEVEL"),
    ),
    "budget": _aliases(_as_str, _grouped(QUALIFICATION, ["Budget", "budget"]), _flat("budget")),
    "timeline": _aliases(_as_str, _grouped(QUALIFICATION, ["Timeline", "timeline"]), _flat("timeline")),
    "decision_authority": _aliases(
        _as_str,
        _grouped(QUALIFICATION, ["Decision-making authority", "Decision authority", "decisionAuthority"]),
        _flat("decisionAuthority", "decision_authority"),
    ),
    "pain_points": _aliases(_as_list, _grouped(QUALIFICATION, ["Pain points", "painPoints"]), _flat("painPoints", "pain_points")),
    "current_solution": _aliases(
        _as_str,
        _grouped(QUALIFICATION, ["Current solution", "currentSolution"]),
        _flat("currentSolution", "current_solution"),
    ),
    "competitors": _aliases(_as_list, _grouped(QUALIFICATION, ["Competitors", "competitors"]), _flat("competitors")),
    "questions_asked": _aliases(
        _as_list,
        _grouped(CONVERSATION, ["Questions asked", "questionsAsked", "questions"]),
        _flat("questionsAsked", "questions"),
    ),
    "objections_raised": _aliases(
        _as_list,
        _grouped(CONVERSATION, ["Objections raised", "objectionsRaised", "objections"]),
        _grouped(BEHAVIORAL, ["Key concerns", "keyConcerns", "objections"]),
        _flat("objectionsRaised", "objections"),
    ),
    "buying_signals": _aliases(
        _as_list,
        _grouped(CONVERSATION, ["Buying signals", "buyingSignals"]),
        _flat("buyingSignals", "buying_signals"),
    ),
    "next_steps": _aliases(_as_list, _grouped(CONVERSATION, ["Next steps", "nextSteps"]), _flat("nextSteps", "next_steps")),
    "summary": _aliases(_as_str, _grouped(CONVERSATION, ["Summary", "summary"]), _flat("summary", "callSummary")),
    "appointment_date": _aliases(
        _as_str,
        _grouped(APPOINTMENT, ["Date", "date", "appointmentDate"]),
        _flat("appointmentDate", "appointment_date"),
    ),
    "appointment_time": _aliases(
        _as_str,
        _grouped(APPOINTMENT, ["Time", "time", "appointmentTime"]),
        _flat("appointmentTime", "appointment_time"),
    ),
    "appointment_type": _aliases(
        _as_str,
        _grouped(APPOINTMENT, ["Type", "type", "appointmentType"]),
        _flat("appointmentType", "appointment_type"),
    ),
    "calling_company_name": _aliases(
        _as_str,
        _grouped(CALLING, ["Company name", "companyName", "name"]),
        _flat("callingCompany", "callingCompanyName"),
    ),
    "calling_company_service": _aliases(
        _as_str,
        _grouped(CALLING, ["Service/product", "service", "product"]),
        _flat("callingCompanyService"),
    ),
    "calling_company_rep": _aliases(
        _as_str,
        _grouped(CALLING, ["Sales rep name", "rep", "representative", "salesRep"]),
        _flat("callingCompanyRep"),
    ),
    "calling_company_phone": _aliases(
        _as_str,
        _grouped(CALLING, ["Contact number", "contactNumber", "phone"]),
        _flat("callingCompanyPhone"),
    ),
    "converted": _aliases(_as_bool, _grouped(CONVERSION, ["Converted", "converted"]), _flat("converted")),
    "conversion_value": _aliases(
        _as_float,
        _grouped(CONVERSION, ["Conversion value", "conversionValue"]),
        _flat("conversionValue"),
    ),
    "next_call_date": _aliases(_as_str, _grouped(CONVERSION, ["Next call date", "nextCallDate"]), _flat("nextCallDate")),
    "last_call_date": _aliases(_as_str, _grouped(CONVERSION, ["Last call date", "lastCallDate"]), _flat("lastCallDate")),
    "sentiment": _aliases(_as_sentiment, _grouped(CONVERSATION, ["Sentiment", "sentiment"]), _flat("sentiment")),
    "confidence_score": _aliases(_as_float, _flat("CONFIDENCE", "confidenceScore", "confidence_score", "confidence")),
    "is_qualified_lead": _aliases(
        _as_bool,
        _flat("QUALIFIED", "isQualifiedLead", "is_qualified_lead", "qualified"),
        _grouped(QUALIFICATION, ["Qualified", "qualified", "isQualifiedLead"]),
    ),
}


def lookup_path(data: Any, path: Path) -> Any:
    """Walk nested dicts along ``path``; None when any step is missing."""
    current = data
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
        if current is None:
            return None
    return current


def coalesce_field(data: Dict[str, Any], field: str) -> Any:
    for path, transform in FIELD_ALIASES[field]:
        value = transform(lookup_path(data, path))
        if value is not None:
            return value
    return None


def normalize_extracted_data(raw: Dict[str, Any], transcript: str = "") -> ExtractedFacts:
    """Coalesce a model response of any known shape into ``ExtractedFacts``.

    Args:
        raw: Parsed JSON object returned by the model
        transcript: Transcript used to apply the qualification rule when the
            model gave no explicit verdict

    Returns:
        Normalized facts
    """
    values = {field: coalesce_field(raw, field) for field in FIELD_ALIASES}
    verdict = values.pop("is_qualified_lead")

    if values["full_name"] and not (values["first_name"] or values["last_name"]):
        parts = values["full_name"].split()
        values["first_name"] = parts[0]
        if len(parts) > 1:
            values["last_name"] = " ".join(parts[1:])

    if values["confidence_score"] is None:
        values["confidence_score"] = 0.7
    elif values["confidence_score"] > 1:
        values["confidence_score"] = values["confidence_score"] / 100

    facts = ExtractedFacts(**{key: value for key, value in values.items() if value is not None})
    facts.is_qualified_lead = verdict if verdict is not None else qualifies_from_facts(facts, transcript)
    return facts


def basic_extraction(
    transcript: str,
    provider_metadata: Optional[Dict[str, Any]] = None,
    reference_time: Optional[datetime] = None,
) -> ExtractedFacts:
    """Keyword and regex extraction used when no model result is available."""
    text = transcript or ""
    lower = text.lower()
    customer = (provider_metadata or {}).get("customer") or {}

    interest: Optional[int] = None
    if "interested" in lower:
        interest = 7
    if "very interested" in lower:
        interest = 9
    if "not interested" in lower:
        interest = 2

    budget_match = re.search(
        r"budget[^.?!\n]{0,40}?(\$[\d,]+(?:\.\d+)?\s*(?:k|m)?|\d+\s*(?:k|thousand|grand))",
        text,
        re.IGNORECASE,
    )
    timeline = next(
        (phrase for phrase in ("next week", "next month", "this quarter", "asap", "immediately") if phrase in lower),
        None,
    )

    qualified = interest is not None and interest >= 6
    signals = detect_signals(text)
    # Decline first, then scheduling/pricing/close signals; the latter win when both fire.
    if signals.declined:
        qualified = False
        interest = min(interest or 0, 3) or 1
    if signals.strong_positive:
        qualified = True
        interest = max(interest or 5, 7)

    appointment = None
    if reference_time is not None:
        found = extractors.extract_appointments(text, reference_time)
        appointment = found[0] if found else None

    full_name = _as_str(customer.get("name"))
    first_name = last_name = None
    if full_name:
        parts = full_name.split()
        first_name = parts[0]
        last_name = " ".join(parts[1:]) or None

    return ExtractedFacts(
        full_name=full_name,
        first_name=first_name,
        last_name=last_name,
        email=extractors.extract_email(text),
        phone=extractors.extract_phone(text) or _as_str(customer.get("number")),
        city=extractors.extract_city(text),
        state=extractors.extract_state(text),
        postcode=extractors.extract_zip_code(text),
        company=extractors.extract_company(text),
        job_title=extractors.extract_job_title(text),
        interest_level=interest,
        budget=budget_match.group(1).strip() if budget_match else None,
        timeline=timeline,
        questions_asked=extractors.extract_questions(text),
        objections_raised=extractors.extract_objections(text),
        buying_signals=extractors.extract_buying_signals(text),
        appointment_date=appointment.date if appointment else None,
        appointment_time=appointment.time if appointment else None,
        appointment_type=appointment.type if appointment else None,
        sentiment=extractors.analyze_sentiment(text),
        confidence_score=0.5,
        is_qualified_lead=qualified,
    )


class ExtractionEngine:
    """Turns a transcript into ``ExtractedFacts``."""

    def __init__(self, settings: Settings, provider: Optional[LLMProvider] = None):
        """Initialize the engine.

        Args:
            settings: Application settings with LLM config
            provider: Pre-built LLM provider, created lazily from settings when None
        """
        self.settings = settings
        self._llm_client = provider
        self._llm_unavailable = False

    @property
    def llm_client(self) -> Optional[LLMProvider]:
        """Lazy load LLM client; None when no model credential is configured."""
        if self._llm_client is None and not self._llm_unavailable:
            try:
                self._llm_client = get_llm_provider(self.settings)
            except ValueError as e:
                logger.warning(f"⚠️ LLM extraction disabled: {e}")
                self._llm_unavailable = True
        return self._llm_client

    async def extract(
        self,
        transcript: str,
        provider_metadata: Optional[Dict[str, Any]] = None,
        reference_time: Optional[datetime] = None,
    ) -> ExtractedFacts:
        """Extract facts from a transcript.

        Args:
            transcript: Raw call transcript
            provider_metadata: Call metadata from the voice provider
            reference_time: When the call happened, for resolving spoken dates

        Returns:
            Normalized facts; never raises for model failures
        """
        if self.llm_client is None:
            logger.info("No LLM configured, using heuristic extraction")
            return basic_extraction(transcript, provider_metadata, reference_time)

        raw = await self._extract_with_llm(transcript, provider_metadata)
        if raw is None:
            logger.warning("⚠️ LLM extraction failed, falling back to heuristic extraction")
            return basic_extraction(transcript, provider_metadata, reference_time)

        facts = normalize_extracted_data(raw, transcript)
        logger.info(
            f"✅ Extracted facts: qualified={facts.is_qualified_lead}, interest={facts.interest_level}"
        )
        return facts

    @trace_llm_call("extraction")
    async def _extract_with_llm(
        self,
        transcript: str,
        provider_metadata: Optional[Dict[str, Any]],
    ) -> Optional[Dict[str, Any]]:
        user_message = (
            f"Analyze this call transcript and extract ALL information:\n\n{transcript}\n\n"
            f"VAPI Data: {json.dumps(provider_metadata or {}, default=str)}"
        )
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(
                    self.llm_client.generate_response,
                    system_prompt=EXTRACTION_PROMPT,
                    user_message=user_message,
                    temperature=self.settings.llm_temperature,
                    max_tokens=2000,
                    model=self.settings.extraction_model,
                ),
                timeout=self.settings.llm_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ LLM extraction timed out after {self.settings.llm_timeout_seconds}s")
            return None
        except Exception as e:
            logger.warning(f"⚠️ LLM extraction error: {e}")
            return None

        parsed = parse_json_object(response)
        if parsed is None and response:
            logger.warning("Failed to parse LLM response as JSON")
        return parsed
