"""Qualification rules shared by the extraction and brief steps."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from ..core.models import ExtractedFacts

QUALIFIED_INTEREST = 6
DECLINED_INTEREST = 3

DECLINE_PATTERNS = [
    r"\bnot interested\b",
    r"\bremove me\b",
    r"\btake me off\b",
    r"\bdo not call\b",
    r"\bdon'?t call (?:me|us|here) again\b",
    r"\bstop calling\b",
]

APPOINTMENT_PATTERNS = [
    r"\bappointment\b",
    r"\bschedule\b",
    r"\bbook (?:a|an|the)\b",
    r"\b(?:mon|tues|wednes|thurs|fri|satur|sun)day\b.{0,20}?\b\d{1,2}(?::\d{2})?\s*(?:a\.?m\.?|p\.?m\.?)",
]

PRICING_PATTERNS = [r"\bpricing\b", r"\bproposal\b", r"\bquote\b", r"\bhow much\b"]

CALLBACK_PATTERNS = [r"\bcall me back\b", r"\bcall back\b", r"\bfollow up with me\b"]

AFFIRMATIVE_CLOSE_PATTERNS = [r"\bthat sounds good\b", r"\bthat sounds reasonable\b", r"\bsounds great\b"]

CONTACT_PATTERNS = [
    r"\bmy email is\b",
    r"\bemail me at\b",
    r"\bmy (?:cell|number|phone) is\b",
    r"\breach me at\b",
]


def _matches_any(patterns, text: str) -> bool:
    return any(re.search(pattern, text, re.IGNORECASE) for pattern in patterns)


@dataclass
class QualificationSignals:
    """Phrase-level signals found in a transcript."""

    declined: bool = False
    appointment_scheduled: bool = False
    pricing_requested: bool = False
    callback_requested: bool = False
    contact_shared: bool = False
    affirmative_close: bool = False

    @property
    def strong_positive(self) -> bool:
        return (
            self.appointment_scheduled
            or self.pricing_requested
            or self.callback_requested
            or self.affirmative_close
        )


def detect_signals(transcript: str) -> QualificationSignals:
    text = transcript or ""
    return QualificationSignals(
        declined=_matches_any(DECLINE_PATTERNS, text),
        appointment_scheduled=_matches_any(APPOINTMENT_PATTERNS, text),
        pricing_requested=_matches_any(PRICING_PATTERNS, text),
        callback_requested=_matches_any(CALLBACK_PATTERNS, text),
        contact_shared=_matches_any(CONTACT_PATTERNS, text),
        affirmative_close=_matches_any(AFFIRMATIVE_CLOSE_PATTERNS, text),
    )


def qualifies(
    interest_level: Optional[int],
    *,
    appointment_scheduled: bool = False,
    pricing_requested: bool = False,
    contact_shared: bool = False,
    callback_requested: bool = False,
    declined: bool = False,
) -> bool:
    """Apply the lead qualification rule.

    A lead qualifies with interest of 6 or more, or when an appointment,
    pricing request, shared contact details or a callback request is present.
    A decline or interest of 3 or less disqualifies, except that an agreed
    appointment, a callback or a pricing request outranks an earlier decline,
    the same precedence the heuristic extraction applies.

    Args:
        interest_level: Interest on a 1-10 scale, None if unknown
        appointment_scheduled: An appointment was agreed
        pricing_requested: Pricing or a proposal was requested
        contact_shared: The prospect volunteered contact details
        callback_requested: The prospect asked to be called back
        declined: The prospect declined or asked for removal

    Returns:
        Qualification verdict
    """
    if appointment_scheduled or callback_requested or pricing_requested:
        return True
    if declined:
        return False
    if interest_level is not None and interest_level <= DECLINED_INTEREST:
        return False
    if interest_level is not None and interest_level >= QUALIFIED_INTEREST:
        return True
    return contact_shared


def qualifies_from_facts(facts: ExtractedFacts, transcript: str = "") -> bool:
    """Rule verdict for facts that came without an explicit model verdict."""
    signals = detect_signals(transcript)
    return qualifies(
        facts.interest_level,
        appointment_scheduled=facts.has_appointment or signals.appointment_scheduled,
        pricing_requested=signals.pricing_requested,
        contact_shared=signals.contact_shared,
        callback_requested=signals.callback_requested,
        declined=signals.declined,
    )


def should_generate_brief(facts: ExtractedFacts, threshold: int = 5) -> bool:
    """Briefs are built for qualified leads and for borderline interest."""
    if facts.is_qualified_lead:
        return True
    return facts.interest_level is not None and facts.interest_level >= threshold


def lead_quality_tier(interest_level: Optional[int]) -> str:
    """Map interest to a lead quality tier."""
    if interest_level is None:
        return "cold"
    if interest_level >= 7:
        return "hot"
    if interest_level >= 5:
        return "warm"
    if interest_level >= 3:
        return "cool"
    return "cold"
