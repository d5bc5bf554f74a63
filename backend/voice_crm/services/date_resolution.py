"""Relative date and time resolution.

Every function takes an explicit reference ``now``; nothing here reads the
wall clock.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from typing import Optional, Union

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

MONTHS = [
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
]

WEEKDAY_PATTERN = r"(?:mon|tues|wednes|thurs|fri|satur|sun)day"

TIME_PATTERN = re.compile(
    r"^\s*(\d{1,2})(?::(\d{2}))?\s*(a\.?\s?m\.?|p\.?\s?m\.?)?\s*$",
    re.IGNORECASE,
)

DateLike = Union[date, datetime]


def _as_date(now: DateLike) -> date:
    return now.date() if isinstance(now, datetime) else now


def resolve_weekday(name: str, now: DateLike) -> Optional[date]:
    """Resolve a weekday name to its next occurrence after ``now``.

    Today is excluded: "Friday" said on a Friday means a week later.
    """
    key = name.strip().lower()
    if key not in WEEKDAYS:
        return None
    today = _as_date(now)
    days_ahead = (WEEKDAYS.index(key) - today.weekday()) % 7
    if days_ahead == 0:
        days_ahead = 7
    return today + timedelta(days=days_ahead)


def resolve_relative_date(phrase: Optional[str], now: DateLike) -> Optional[date]:
    """Resolve a spoken date phrase to an absolute date.

    Handles ISO dates, "today", "tomorrow", "day after tomorrow", weekday
    names (optionally prefixed with "this" or "next"), "next week",
    "next month", and month-day phrases like "October 20th".

    Returns:
        The resolved date, or None when the phrase is not a date
    """
    if not phrase:
        return None
    text = phrase.strip().lower().rstrip(".,")
    today = _as_date(now)

    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass

    if text == "today":
        return today
    if text == "tomorrow":
        return today + timedelta(days=1)
    if text in ("day after tomorrow", "the day after tomorrow"):
        return today + timedelta(days=2)
    if text == "next week":
        return today + timedelta(days=7)
    if text == "next month":
        return today + timedelta(days=30)

    match = re.fullmatch(r"(?:(this|next|on)\s+)?(" + WEEKDAY_PATTERN + r")", text)
    if match:
        return resolve_weekday(match.group(2), today)

    match = re.fullmatch(r"(" + "|".join(MONTHS) + r")\s+(\d{1,2})(?:st|nd|rd|th)?", text)
    if match:
        month = MONTHS.index(match.group(1)) + 1
        day = int(match.group(2))
        try:
            candidate = date(today.year, month, day)
        except ValueError:
            return None
        if candidate < today:
            candidate = date(today.year + 1, month, day)
        return candidate

    return None


def parse_time(text: Optional[str]) -> Optional[time]:
    """Parse "6 PM", "6:30pm", "6 p.m." or "18:00" into a ``time``."""
    if not text:
        return None
    match = TIME_PATTERN.match(text)
    if not match:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    meridiem = (match.group(3) or "").replace(".", "").replace(" ", "").lower()

    if meridiem:
        if not 1 <= hour <= 12:
            return None
        if meridiem == "pm" and hour != 12:
            hour += 12
        elif meridiem == "am" and hour == 12:
            hour = 0
    elif match.group(2) is None:
        # A bare number like "6" is not a time
        return None

    if hour > 23 or minute > 59:
        return None
    return time(hour, minute)


def normalize_time(text: Optional[str]) -> Optional[str]:
    """Normalize a time to "6:00 PM" form; unparseable text is returned as-is."""
    if not text:
        return None
    parsed = parse_time(text)
    if parsed is None:
        return text.strip()
    hour = parsed.hour % 12 or 12
    suffix = "PM" if parsed.hour >= 12 else "AM"
    return f"{hour}:{parsed.minute:02d} {suffix}"


def combine_date_time(day: Optional[str], time_text: Optional[str]) -> Optional[str]:
    """Combine an ISO date and a time phrase into an ISO datetime string.

    Returns None when either part cannot be resolved exactly.
    """
    if not day:
        return None
    try:
        resolved_day = date.fromisoformat(day[:10])
    except ValueError:
        return None
    parsed = parse_time(time_text)
    if parsed is None:
        return None
    return datetime.combine(resolved_day, parsed).isoformat()


def next_business_day(now: DateLike) -> date:
    """Return the next weekday after ``now``, skipping Saturday and Sunday."""
    day = _as_date(now) + timedelta(days=1)
    while day.weekday() >= 5:
        day += timedelta(days=1)
    return day
