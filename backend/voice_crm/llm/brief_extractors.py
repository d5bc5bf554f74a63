"""Heuristic extractors used to build a brief without a model.

Each function is a pure function of the transcript (and, where it takes
one, the existing lead snapshot and a reference ``now``).
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Pattern

from ..core.brief_models import BriefAppointment, BriefTask, FollowUp, MissingInfo, NextContact
from ..services.date_resolution import (
    WEEKDAY_PATTERN,
    next_business_day,
    normalize_time,
    resolve_relative_date,
)

EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
PHONE_RE = re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b")

_TIME = r"\d{1,2}(?::\d{2})?\s*(?:a\.?\s?m\.?|p\.?\s?m\.?)"
_DAY = rf"(?:(?:this|next)\s+)?{WEEKDAY_PATTERN}|today|tomorrow"

APPOINTMENT_PATTERNS: List[Pattern] = [
    # "Friday at 6 PM", "tomorrow around 10am"
    re.compile(rf"\b(?P<day>{_DAY})\b,?\s*(?:at|@|around|by)?\s*(?P<time>{_TIME})", re.IGNORECASE),
    # "6 PM on Friday"
    re.compile(rf"\b(?P<time>{_TIME})\s*,?\s*(?:on\s+)?(?P<day>{_DAY})\b", re.IGNORECASE),
    # "Friday evening", "Thursday after 6pm"
    re.compile(
        rf"\b(?P<day>{_DAY})\s+(?P<time>morning|afternoon|evening|night|(?:after|before)\s+{_TIME})",
        re.IGNORECASE,
    ),
]

CONFIRMATION_WORDS = (
    "works", "perfect", "sounds good", "great", "confirmed", "see you", "booked", "that's fine", "yes",
)

US_STATES = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas", "CA": "California",
    "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware", "FL": "Florida", "GA": "Georgia",
    "HI": "Hawaii", "ID": "Idaho", "IL": "Illinois", "IN": "Indiana", "IA": "Iowa",
    "KS": "Kansas", "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine", "MD": "Maryland",
    "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota", "MS": "Mississippi", "MO": "Missouri",
    "MT": "Montana", "NE": "Nebraska", "NV": "Nevada", "NH": "New Hampshire", "NJ": "New Jersey",
    "NM": "New Mexico", "NY": "New York", "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio",
    "OK": "Oklahoma", "OR": "Oregon", "PA": "Pennsylvania", "RI": "Rhode Island", "SC": "South Carolina",
    "SD": "South Dakota", "TN": "Tennessee", "TX": "Texas", "UT": "Utah", "VT": "Vermont",
    "VA": "Virginia", "WA": "Washington", "WV": "West Virginia", "WI": "Wisconsin", "WY": "Wyoming",
}

INDUSTRIES = [
    "technology", "healthcare", "finance", "retail", "manufacturing",
    "education", "real estate", "construction", "hospitality", "automotive",
    "energy", "telecommunications", "media", "transportation", "agriculture",
]

NOT_A_PLACE = {
    "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday",
    "January", "February", "March", "April", "May", "June", "July", "August",
    "September", "October", "November", "December", "The", "This", "That",
}


def _lower(transcript: str) -> str:
    return (transcript or "").lower()


def _first(patterns: Iterable[str], text: str, group: int = 0, flags: int = re.IGNORECASE) -> Optional[str]:
    for pattern in patterns:
        match = re.search(pattern, text, flags)
        if match:
            value = match.group(group) if group <= (match.lastindex or 0) else match.group(0)
            if value:
                return value.strip()
    return None


def _collect(patterns: Iterable[str], text: str, limit: Optional[int] = None, flags: int = re.IGNORECASE) -> List[str]:
    found: List[str] = []
    for pattern in patterns:
        for match in re.finditer(pattern, text, flags):
            value = (match.group(1) if match.lastindex else match.group(0)).strip()
            if value and value not in found:
                found.append(value)
    return found[:limit] if limit else found


def prospect_text(transcript: str) -> str:
    """Return only the prospect's side of a speaker-labelled transcript.

    Lines labelled "User:" or "Customer:" are kept; an unlabelled transcript
    is returned unchanged.
    """
    lines = (transcript or "").splitlines()
    prospect_lines = [
        re.sub(r"^\s*(?:user|customer|prospect)\s*:\s*", "", line, flags=re.IGNORECASE)
        for line in lines
        if re.match(r"^\s*(?:user|customer|prospect)\s*:", line, re.IGNORECASE)
    ]
    return "\n".join(prospect_lines) if prospect_lines else (transcript or "")


def _existing(existing_lead: Optional[Dict[str, Any]], *keys: str) -> Optional[Any]:
    if not existing_lead:
        return None
    custom = existing_lead.get("custom_fields") or {}
    for key in keys:
        value = existing_lead.get(key) or custom.get(key)
        if value:
            return value
    return None


# Contact and company details

def extract_email(transcript: str) -> Optional[str]:
    match = EMAIL_RE.search(transcript or "")
    return match.group(0) if match else None


def extract_phone(transcript: str) -> Optional[str]:
    match = PHONE_RE.search(transcript or "")
    return match.group(0) if match else None


def extract_budget(transcript: str) -> Optional[str]:
    """Find a budget or spend figure in the transcript."""
    return _first(
        [
            r"\$\s?\d[\d,]*(?:\.\d{2})?\s*(?:k|m)?\b",
            r"\b\d+(?:,\d{3})*(?:\.\d{2})?\s*(?:dollars|usd|eur|gbp|pounds)\b",
            r"\bbudget\b[^.?!\n]{0,40}?\b\d[\d,]*\s*(?:k|thousand|grand)?",
        ],
        transcript or "",
    )


def extract_company(transcript: str) -> Optional[str]:
    """Find the prospect's own company, ignoring how the caller introduced themselves."""
    text = prospect_text(transcript)
    return _first(
        [
            r"(?:I work (?:at|for)|I'm with|I am with|we're with|my company is|our company is|I own|I run)\s+"
            r"((?:[A-Z][A-Za-z0-9&']*\s?){1,4})",
            r"\b((?:[A-Z][A-Za-z0-9&]*\s){1,3}(?:Inc|LLC|Ltd|Corp|Company))\b",
        ],
        text,
        group=1,
        flags=0,
    )


def extract_job_title(transcript: str) -> Optional[str]:
    text = prospect_text(transcript)
    return _first(
        [
            r"(?:I'm|I am|work as|role is|position is)\s+(?:a |an |the )?"
            r"((?:[A-Za-z]+\s){0,3}(?:manager|director|executive|coordinator|specialist|analyst|"
            r"developer|engineer|consultant|owner|founder|president|ceo|cfo|cto))\b",
            r"(?:title is|job is)\s+([A-Za-z ]+)",
        ],
        text,
        group=1,
    )


def extract_best_time_to_call(transcript: str) -> Optional[str]:
    return _first(
        [
            rf"best time[^.?!\n]*?({_TIME})",
            rf"call[^.?!\n]*?(?:after|before|at|around)\s*({_TIME})",
            r"(?:morning|afternoon|evening)s?\s+(?:work|is good|is best|are best)",
        ],
        transcript or "",
    )


def extract_address(transcript: str) -> Optional[str]:
    return _first(
        [
            r"\b\d+\s+(?:[A-Za-z]+\s){1,4}(?:street|st|avenue|ave|road|rd|lane|ln|drive|dr|boulevard|blvd|court|ct|way)\b",
            r"(?:address is|located at|find us at)\s+([^,.\n]+)",
        ],
        transcript or "",
    )


def extract_city(transcript: str) -> Optional[str]:
    text = prospect_text(transcript)
    for match in re.finditer(
        r"(?:I live in|I'm in|we're in|we are in|located in|based in|city of|out in|here in)\s+"
        r"([A-Z][a-z]+(?:\s[A-Z][a-z]+)?)",
        text,
    ):
        candidate = match.group(1)
        if candidate.split()[0] not in NOT_A_PLACE:
            return candidate
    return None


def extract_state(transcript: str) -> Optional[str]:
    text = transcript or ""
    for abbr, name in US_STATES.items():
        if re.search(rf"\b{name}\b", text):
            return abbr
    match = re.search(r",\s*([A-Z]{2})\b", text)
    if match and match.group(1) in US_STATES:
        return match.group(1)
    return None


def extract_zip_code(transcript: str) -> Optional[str]:
    match = re.search(r"\b\d{5}(?:-\d{4})?\b", transcript or "")
    return match.group(0) if match else None


def extract_company_size(transcript: str) -> Optional[str]:
    return _first(
        [
            r"\b\d+\s*(?:employees|people|staff)\b",
            r"\b(?:small|medium|large|enterprise)\s+(?:business|company|organization)\b",
        ],
        transcript or "",
    )


def extract_industry(transcript: str) -> Optional[str]:
    lower = _lower(transcript)
    for industry in INDUSTRIES:
        if re.search(rf"\b{industry}\b", lower):
            return industry
    return None


# Qualification

def extract_target_date(transcript: str) -> Optional[str]:
    return _first(
        [
            r"(?:by|before|deadline is|need it by|target date is)\s+([A-Z][a-z]+\s+\d{1,2})",
            r"(?:in|within)\s+\d+\s*(?:days|weeks|months)",
            r"\bQ[1-4]\s*\d{4}\b",
            r"\b(?:next week|next month|this quarter|this year|asap|immediately)\b",
        ],
        transcript or "",
    )


def extract_urgency(transcript: str) -> str:
    lower = _lower(transcript)
    if "urgent" in lower or "asap" in lower:
        return "urgent"
    if "soon" in lower or "quickly" in lower:
        return "high"
    if "eventually" in lower or "future" in lower:
        return "low"
    return "medium"


def is_decision_maker(transcript: str) -> bool:
    lower = _lower(transcript)
    return any(
        phrase in lower
        for phrase in ("i decide", "i approve", "my decision", "i'm the owner", "i am the owner", "i run the", "homeowner")
    )


def extract_decision_makers(transcript: str) -> List[str]:
    text = transcript or ""
    makers = _collect([r"(?:speak with|talk to|involve|consult with|check with)\s+(?:my |our |the )?([a-z]+)"], text)
    for match in re.finditer(r"\b(?:boss|manager|director|ceo|cfo|owner|partner|wife|husband|spouse)\b", text, re.IGNORECASE):
        word = match.group(0).lower()
        if word not in makers:
            makers.append(word)
    return makers


def extract_pain_points(transcript: str) -> List[str]:
    return _collect(
        [
            r"(?:problem|issue|challenge|struggle|difficulty|pain|frustration)s?\s+(?:is|are|with)\s+([^,.?!\n]+)",
            r"(?:too|very)\s+(expensive|slow|complicated|difficult|time-consuming|manual|high)",
            r"(?:need|want|looking for)\s+(?:to |a |an )?([^,.?!\n]+)",
        ],
        transcript or "",
        limit=5,
    )


def extract_current_solution(transcript: str) -> Optional[str]:
    return _first(
        [
            r"(?:currently using|current solution is|right now we use|we currently have)\s+([^,.?!\n]+)",
            r"(?:working with|using)\s+([A-Za-z0-9 ]+?)\s+(?:for|to)\b",
        ],
        transcript or "",
        group=1,
    )


# Conversation

def extract_questions(transcript: str) -> List[str]:
    questions = []
    for sentence in re.findall(r"[^.!?\n]+\?", transcript or ""):
        sentence = re.sub(r"^\s*(?:ai|assistant|user|customer|agent)\s*:\s*", "", sentence.strip(), flags=re.IGNORECASE)
        if sentence:
            questions.append(sentence)
    return questions[:10]


def extract_objections(transcript: str) -> List[str]:
    return _collect(
        [
            r"(?:concerns?|worried|hesitant|not sure)\s+(?:about|with|that|if)\s+([^,.?!\n]+)",
            r"(?:too|very)\s+(expensive|risky|complicated)",
            r"\b(?:but|however|although)\s+([^,.?!\n]+)",
        ],
        transcript or "",
        limit=5,
    )


def extract_buying_signals(transcript: str) -> List[str]:
    text = transcript or ""
    lower = text.lower()
    signals = []
    for phrase in (
        "sounds good", "interested", "like that", "perfect", "exactly what",
        "when can", "how soon", "next step", "move forward", "get started",
    ):
        index = lower.find(phrase)
        if index == -1:
            continue
        if phrase == "interested" and lower[max(0, index - 4):index] == "not ":
            continue
        signals.append(text[max(0, index - 20):index + 50].strip())
    return signals


def extract_competitors(transcript: str) -> List[str]:
    return _collect(
        [
            r"(?:looking at|considering|talking to|spoke with|comparing with)\s+([A-Z][A-Za-z0-9]+(?:\s[A-Z][A-Za-z0-9]+)*)",
            r"(?:vendor|supplier|provider|competitor)\s+(?:is |called |named )?([A-Z][A-Za-z0-9]+(?:\s[A-Z][A-Za-z0-9]+)*)",
        ],
        transcript or "",
        flags=0,
    )


def extract_requirements(transcript: str) -> List[str]:
    return _collect(
        [
            r"(?:need|require|must have|essential|important)\s+(?:to |that |for )?\s*([^,.?!\n]+)",
            r"(?:looking for|want)\s+(?:something that|a solution that|to be able to)\s+([^,.?!\n]+)",
        ],
        transcript or "",
        limit=10,
    )


def extract_personal_interests(transcript: str) -> List[str]:
    return _collect(
        [
            r"(?:my hobby is|hobbies are|i enjoy|i love)\s+([^,.?!\n]+)",
            r"(?:in my free time|on weekends)\s+(?:i |we )?\s*([^,.?!\n]+)",
        ],
        transcript or "",
    )


def extract_price_expectation(transcript: str) -> Optional[str]:
    return _first(
        [
            r"(?:expecting|thinking|budget|spend)\s+(?:around |about |roughly )?(\$[\d,]+)",
            r"(\$[\d,]+)\s+(?:range|ballpark|area)",
        ],
        transcript or "",
        group=1,
    )


def extract_negotiation_points(transcript: str) -> List[str]:
    return _collect(
        [
            r"(?:if|provided that|as long as|assuming)\s+([^,.?!\n]+)",
            r"(?:negotiate|flexible on|discuss)\s+([^,.?!\n]+)",
        ],
        transcript or "",
        limit=5,
    )


def extract_current_vendor(transcript: str) -> Optional[str]:
    return _first(
        [
            r"(?:currently with|vendor is|provider is|we use)\s+([A-Z][A-Za-z0-9]+(?:\s[A-Z][A-Za-z0-9]+)*)",
            r"([A-Z][A-Za-z0-9]+(?:\s[A-Z][A-Za-z0-9]+)*)\s+(?:is our|as our)\s+(?:vendor|provider|supplier)",
        ],
        transcript or "",
        group=1,
        flags=0,
    )


def extract_switching_factors(transcript: str) -> List[str]:
    return _collect(
        [
            r"(?:switch if|change if|move if|consider if)\s+([^,.?!\n]+)",
            r"(?:problem with current|issue with current)\s+(?:\w+\s)?(?:is |are )?\s*([^,.?!\n]+)",
        ],
        transcript or "",
    )


# Calendar

def determine_appointment_type(transcript: str, position: int) -> str:
    """Classify an appointment by the words within 50 characters of it."""
    text = transcript or ""
    context = text[max(0, position - 50):position + 50].lower()
    if "demo" in context:
        return "demo"
    if "consultation" in context or "assessment" in context:
        return "consultation"
    if "visit" in context or "come by" in context or "come out" in context:
        return "visit"
    if "meeting" in context:
        return "meeting"
    if "call back" in context or "callback" in context:
        return "callback"
    return "follow_up"


def extract_appointments(transcript: str, now: datetime) -> List[BriefAppointment]:
    """Find agreed appointments and resolve their dates against ``now``.

    Times that are not exact ("evening", "after 6pm") are kept as text.
    """
    text = transcript or ""
    found = []
    for pattern in APPOINTMENT_PATTERNS:
        for match in pattern.finditer(text):
            found.append(match)
    found.sort(key=lambda m: m.start())

    appointments: List[BriefAppointment] = []
    seen = set()
    last_end = -1
    for match in found:
        if match.start() < last_end:
            continue
        last_end = match.end()

        day_phrase = re.sub(r"\s+", " ", match.group("day"))
        resolved = resolve_relative_date(day_phrase, now)
        appointment_date = resolved.isoformat() if resolved else day_phrase
        appointment_time = normalize_time(match.group("time"))
        key = (appointment_date, appointment_time)
        if key in seen:
            continue
        seen.add(key)

        context = text[max(0, match.start() - 80):match.end() + 120].lower()
        in_person = any(word in context for word in ("come by", "come out", "visit", "in person", "on-site", "your home"))
        appointments.append(
            BriefAppointment(
                type=determine_appointment_type(text, match.start()),
                date=appointment_date,
                time=appointment_time,
                confirmed=any(word in context for word in CONFIRMATION_WORDS),
                location="On-site" if in_person else None,
                agenda=["Review needs discussed on the call", "Present tailored options"],
            )
        )
    return appointments


def determine_next_contact(appointments: List[BriefAppointment], now: datetime) -> NextContact:
    if appointments:
        first = appointments[0]
        return NextContact(
            date=first.date,
            time=first.time,
            method="in_person" if first.type == "visit" else "phone",
            purpose=f"{first.type} as scheduled",
        )
    return NextContact(
        date=(now.date() + timedelta(days=1)).isoformat(),
        time="10:00 AM",
        method="phone",
        purpose="Follow up on initial conversation",
    )


def create_follow_up_schedule(transcript: str, appointments: List[BriefAppointment], now: datetime) -> List[FollowUp]:
    """Day-after follow-up for the first appointment, weekly touches for interested prospects."""
    schedule: List[FollowUp] = []
    if appointments:
        try:
            appointment_day = date.fromisoformat(appointments[0].date or "")
        except ValueError:
            appointment_day = None
        if appointment_day:
            schedule.append(
                FollowUp(
                    date=(appointment_day + timedelta(days=1)).isoformat(),
                    action="Follow up on appointment",
                    notes="Check how the meeting went, address any concerns",
                )
            )
    if calculate_interest_level(transcript) >= 6:
        for week in range(1, 5):
            schedule.append(
                FollowUp(
                    date=(now.date() + timedelta(days=7 * week)).isoformat(),
                    action=f"Week {week} follow-up",
                    notes="Check progress, maintain engagement",
                )
            )
    return schedule


# Action items

def identify_missing_info(transcript: str, existing_lead: Optional[Dict[str, Any]] = None) -> List[MissingInfo]:
    """Checklist of information still needed, each with a follow-up question."""
    lower = _lower(transcript)
    missing: List[MissingInfo] = []

    if not extract_email(transcript) and not _existing(existing_lead, "email"):
        missing.append(MissingInfo(
            field="Email Address",
            importance="critical",
            how_to_get="Ask directly in next call",
            question="What's the best email address to send you the proposal/information?",
        ))
    if not extract_budget(transcript) and not _existing(existing_lead, "budget"):
        missing.append(MissingInfo(
            field="Budget",
            importance="critical",
            how_to_get="Discuss pricing expectations",
            question="To ensure we provide the right solution, what budget range are you working with?",
        ))
    if not extract_company(transcript) and not _existing(existing_lead, "company"):
        missing.append(MissingInfo(
            field="Company Name",
            importance="important",
            how_to_get="Ask about their business",
            question="What company are you with?",
        ))
    if not extract_job_title(transcript) and not _existing(existing_lead, "job_title"):
        missing.append(MissingInfo(
            field="Job Title/Role",
            importance="important",
            how_to_get="Ask about their role",
            question="What's your role at the company?",
        ))
    if "decision" not in lower and "approve" not in lower:
        missing.append(MissingInfo(
            field="Decision Making Process",
            importance="critical",
            how_to_get="Understand approval process",
            question="Who else would be involved in making this decision?",
        ))
    if not extract_target_date(transcript) and not _existing(existing_lead, "timeline"):
        missing.append(MissingInfo(
            field="Implementation Timeline",
            importance="important",
            how_to_get="Understand urgency",
            question="When are you looking to have a solution in place?",
        ))
    return missing


def generate_tasks(transcript: str, missing_info: List[MissingInfo], now: datetime) -> List[BriefTask]:
    lower = _lower(transcript)
    follow_up_day = next_business_day(now).isoformat()
    tasks = [
        BriefTask(task=f"Get {info.field}", deadline=follow_up_day, priority="high")
        for info in missing_info
        if info.importance == "critical"
    ]
    if "send" in lower or "email" in lower:
        tasks.append(BriefTask(task="Send follow-up email with information", deadline=now.date().isoformat(), priority="urgent"))
    if "proposal" in lower:
        tasks.append(BriefTask(task="Prepare and send proposal", deadline=follow_up_day, priority="high"))
    return tasks


def identify_documents_to_send(transcript: str) -> List[str]:
    lower = _lower(transcript)
    docs = []
    if "brochure" in lower:
        docs.append("Product brochure")
    if "pricing" in lower or "cost" in lower:
        docs.append("Pricing sheet")
    if "proposal" in lower:
        docs.append("Custom proposal")
    if "case study" in lower or "example" in lower:
        docs.append("Case studies")
    if "specification" in lower or "specs" in lower:
        docs.append("Technical specifications")
    return docs


def identify_info_to_gather(transcript: str) -> List[str]:
    lower = _lower(transcript)
    info = []
    if "research" in lower or "look into" in lower:
        info.append("Research prospect's company and industry")
    if "competitor" in lower:
        info.append("Competitive analysis and comparison")
    if "reference" in lower or "testimonial" in lower:
        info.append("Gather relevant customer references")
    return info


# Scoring

def calculate_interest_level(transcript: str) -> int:
    """Interest on a 1-10 scale from keyword signals, starting at 5."""
    lower = _lower(transcript)
    score = 5
    positive_interest = lower.replace("not interested", "")
    if "very interested" in positive_interest:
        score += 3
    elif "interested" in positive_interest:
        score += 2
    if "appointment" in lower:
        score += 2
    if "when can" in lower:
        score += 1
    if "how much" in lower:
        score += 1
    if "sounds good" in lower:
        score += 1
    if "not interested" in lower:
        score -= 4
    if "too expensive" in lower:
        score -= 2
    if "not now" in lower:
        score -= 2
    if "already have" in lower:
        score -= 1
    return max(1, min(10, score))


def calculate_priority(transcript: str) -> str:
    lower = _lower(transcript)
    if "urgent" in lower or "asap" in lower:
        return "urgent"
    interest = calculate_interest_level(transcript)
    if interest >= 8:
        return "high"
    if interest >= 5:
        return "medium"
    return "low"


def calculate_win_probability(transcript: str) -> int:
    """Additive win probability starting at 50, bounded to [5, 95]."""
    lower = _lower(transcript)
    probability = 50
    if "appointment" in lower or "schedule" in lower:
        probability += 20
    if "very interested" in lower:
        probability += 15
    if "budget approved" in lower:
        probability += 15
    if "decision maker" in lower:
        probability += 10
    if extract_email(transcript):
        probability += 5
    if "not interested" in lower:
        probability -= 30
    if "happy with current" in lower:
        probability -= 20
    if "no budget" in lower:
        probability -= 25
    if "just looking" in lower:
        probability -= 15
    return max(5, min(95, probability))


def calculate_data_completeness(transcript: str, now: datetime, existing_lead: Optional[Dict[str, Any]] = None) -> int:
    """Percentage of a fixed 10-item checklist that is known."""
    checks = [
        extract_email(transcript) or _existing(existing_lead, "email"),
        extract_company(transcript) or _existing(existing_lead, "company"),
        extract_job_title(transcript) or _existing(existing_lead, "job_title"),
        extract_budget(transcript) or _existing(existing_lead, "budget"),
        extract_target_date(transcript) or _existing(existing_lead, "timeline"),
        extract_address(transcript) or _existing(existing_lead, "address_line1", "address"),
        is_decision_maker(transcript),
        extract_pain_points(transcript),
        extract_current_solution(transcript),
        extract_appointments(transcript, now),
    ]
    return round(sum(1 for check in checks if check) / len(checks) * 100)


def analyze_sentiment(transcript: str) -> str:
    lower = _lower(transcript)
    negative_words = ["not interested", "expensive", "problem", "issue", "concerned", "worried", "difficult"]
    negative = sum(1 for word in negative_words if word in lower)
    remainder = lower.replace("not interested", "")
    positive_words = ["good", "great", "excellent", "interested", "love", "perfect", "amazing", "definitely"]
    positive = sum(1 for word in positive_words if word in remainder)

    if positive > negative * 2:
        return "positive"
    if negative > positive * 2:
        return "negative"
    if positive and negative:
        return "mixed"
    return "neutral"


def analyze_communication_style(transcript: str) -> str:
    lower = _lower(transcript)
    if any(word in lower for word in ("data", "number", "fact")):
        return "analytical"
    if any(word in lower for word in ("feel", "team", "people")):
        return "relational"
    if any(word in lower for word in ("quick", "bottom line", "cut to")):
        return "direct"
    return "conversational"


def assess_call_quality(transcript: str) -> int:
    text = transcript or ""
    quality = 5
    if len(text) > 1000:
        quality += 2
    if len(extract_questions(text)) > 3:
        quality += 1
    if extract_email(text):
        quality += 1
    if extract_budget(text):
        quality += 1
    if len(text) < 200:
        quality -= 2
    if "not interested" in text.lower():
        quality -= 1
    return max(1, min(10, quality))


def determine_call_outcome(transcript: str) -> str:
    lower = _lower(transcript)
    if "not interested" in lower:
        return "not_qualified"
    if "appointment" in lower or "meeting" in lower or "schedule" in lower:
        return "meeting_booked"
    if "call me back" in lower or "follow up" in lower:
        return "callback_scheduled"
    if "interested" in lower:
        return "qualified"
    return "needs_nurturing"


# Recommendations

def recommend_next_action(transcript: str, appointments: List[BriefAppointment], missing_info: List[MissingInfo]) -> str:
    if appointments:
        first = appointments[0]
        return f"Prepare for {first.type} on {first.date} at {first.time}. Create agenda and gather materials."
    critical = [info.field for info in missing_info if info.importance == "critical"]
    if critical:
        return f"Call back to gather critical missing information: {', '.join(critical)}"
    if calculate_interest_level(transcript) >= 7:
        return "Send proposal and schedule follow-up call within 48 hours"
    return "Nurture lead with valuable content and check in next week"


def generate_talking_points(transcript: str, missing_info: List[MissingInfo]) -> List[str]:
    points = [f"How our solution addresses: {pain}" for pain in extract_pain_points(transcript)[:3]]
    points.extend(info.question for info in missing_info[:2] if info.question)
    points.append("ROI and cost savings demonstration")
    points.append("Implementation timeline and support")
    return points


def suggest_offer(transcript: str) -> str:
    lower = _lower(transcript)
    if calculate_interest_level(transcript) >= 8:
        return "Provide best pricing with implementation incentive"
    if "price" in lower or "expensive" in lower:
        return "Offer flexible payment terms or starter package"
    if "trial" in lower or "test" in lower:
        return "Propose pilot program or free trial period"
    return "Standard package with follow-up consultation"


def suggest_approach(transcript: str) -> str:
    style = analyze_communication_style(transcript)
    if style == "analytical":
        return "Focus on data, ROI metrics, and detailed specifications"
    if style == "relational":
        return "Emphasize partnership, support, and success stories"
    if style == "direct":
        return "Get to the point quickly, focus on bottom-line benefits"
    if calculate_interest_level(transcript) < 5:
        return "Educational approach, provide value before selling"
    return "Consultative approach, understand needs before proposing"
