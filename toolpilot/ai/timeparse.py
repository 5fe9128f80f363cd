"""
Relative date/time resolution.

Turns the date and clock expressions found in a request ("8pm today",
"the 25th at 3:30pm", "tomorrow at noon") into ISO timestamps relative to a
given ``now``. The selector injects the computed values into the prompt so
the model copies timestamps instead of doing 12h→24h arithmetic itself.

Everything here is pure: no wall clock, no I/O.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta

_CLOCK = re.compile(
    r"\b(1[0-2]|0?[1-9])(?::([0-5]\d))?\s*([ap])\.?\s?m\b\.?"
    r"|\b(noon|midday|midnight)\b",
    re.IGNORECASE,
)

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}
_MONTH_DATE = re.compile(
    r"\b(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?\s+(\d{1,2})(?:st|nd|rd|th)?"
    r"(?:,?\s+(\d{4}))?\b",
    re.IGNORECASE,
)
_NUMERIC_DATE = re.compile(r"\b(\d{1,2})/(\d{1,2})(?:/(\d{2}|\d{4}))?\b")
_ISO_DATE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_RELATIVE_DAY = re.compile(
    r"\b(day\s+after\s+tomorrow|today|tonight|tomorrow|yesterday)\b", re.IGNORECASE,
)
_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
_WEEKDAY = re.compile(
    r"\b(?:(next|this|on)\s+)?(" + "|".join(_WEEKDAYS) + r")\b", re.IGNORECASE,
)
_ORDINAL_DAY = re.compile(r"\b(?:the\s+)?(\d{1,2})(?:st|nd|rd|th)\b", re.IGNORECASE)

_RELATIVE_OFFSETS = {
    "today": 0, "tonight": 0, "tomorrow": 1, "yesterday": -1,
}


@dataclass(frozen=True)
class TimeHint:
    """A resolved expression from the request text."""

    expression: str
    start: str
    # Only set for clock times: start + 1 hour, the default meeting length
    default_end: str | None = None


def to_24_hour(hour: int, minute: int, meridiem: str) -> str:
    """``(8, 0, "pm") -> "20:00:00"``; 12am is midnight, 12pm is noon."""
    if not 1 <= hour <= 12 or not 0 <= minute <= 59:
        raise ValueError(f"Not a 12-hour clock time: {hour}:{minute:02d}")
    meridiem = meridiem.lower()[0]
    if meridiem not in ("a", "p"):
        raise ValueError(f"Unknown meridiem: {meridiem}")
    hour24 = hour % 12 + (12 if meridiem == "p" else 0)
    return f"{hour24:02d}:{minute:02d}:00"


def _clock_from_match(match: re.Match) -> str:
    word = match.group(4)
    if word:
        return "00:00:00" if word.lower() == "midnight" else "12:00:00"
    return to_24_hour(int(match.group(1)), int(match.group(2) or 0), match.group(3))


def parse_clock(text: str) -> str | None:
    """First clock expression in ``text`` as ``HH:MM:SS``, or None."""
    match = _CLOCK.search(text)
    return _clock_from_match(match) if match else None


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def resolve_date(text: str, today: date) -> tuple[str, date] | None:
    """
    Find a date expression and resolve it against ``today``.

    Returns ``(matched text, date)``. Month-name and numeric dates without a
    year use the current year; a bare ordinal ("the 25th") means that day of
    the current month.
    """
    match = _ISO_DATE.search(text)
    if match:
        resolved = _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        if resolved:
            return match.group(0), resolved

    match = _MONTH_DATE.search(text)
    if match:
        month = _MONTHS[match.group(1).lower()[:3]]
        year = int(match.group(3)) if match.group(3) else today.year
        resolved = _safe_date(year, month, int(match.group(2)))
        if resolved:
            return match.group(0), resolved

    match = _NUMERIC_DATE.search(text)
    if match:
        year = today.year
        if match.group(3):
            year = int(match.group(3))
            if year < 100:
                year += 2000
        resolved = _safe_date(year, int(match.group(1)), int(match.group(2)))
        if resolved:
            return match.group(0), resolved

    match = _RELATIVE_DAY.search(text)
    if match:
        word = match.group(1).lower()
        offset = 2 if word.startswith("day") else _RELATIVE_OFFSETS[word]
        return match.group(0), today + timedelta(days=offset)

    match = _WEEKDAY.search(text)
    if match:
        target = _WEEKDAYS.index(match.group(2).lower())
        offset = (target - today.weekday()) % 7
        if offset == 0 and (match.group(1) or "").lower() == "next":
            offset = 7
        return match.group(0), today + timedelta(days=offset)

    match = _ORDINAL_DAY.search(text)
    if match:
        resolved = _safe_date(today.year, today.month, int(match.group(1)))
        if resolved:
            return match.group(0), resolved

    return None


def resolve_expression(text: str, now: datetime) -> str | None:
    """
    Resolve one expression to ISO: ``YYYY-MM-DDTHH:MM:SS`` when it has a
    clock time (date defaults to today), ``YYYY-MM-DD`` when it only has a
    date, None when it has neither.
    """
    found = resolve_date(text, now.date())
    clock = parse_clock(text)
    if clock is None:
        return found[1].isoformat() if found else None
    day = found[1] if found else now.date()
    return f"{day.isoformat()}T{clock}"


def extract_time_hints(message: str, now: datetime) -> list[TimeHint]:
    """Every clock time in ``message`` combined with its date (or today)."""
    found = resolve_date(message, now.date())
    day = found[1] if found else now.date()
    hints: list[TimeHint] = []

    for match in _CLOCK.finditer(message):
        try:
            clock = _clock_from_match(match)
        except ValueError:
            continue
        start = datetime.fromisoformat(f"{day.isoformat()}T{clock}")
        expression = match.group(0).strip()
        if found:
            expression = f"{expression} ({found[0].strip()})"
        hints.append(TimeHint(
            expression=expression,
            start=start.isoformat(),
            default_end=(start + timedelta(hours=1)).isoformat(),
        ))

    if not hints and found:
        hints.append(TimeHint(expression=found[0].strip(), start=found[1].isoformat()))
    return hints
