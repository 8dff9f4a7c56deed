"""Trip date parsing and day-reference resolution."""

import re
from datetime import date, datetime, timedelta

MONTHS = {
    "january": 1, "jan": 1,
    "february": 2, "feb": 2,
    "march": 3, "mar": 3,
    "april": 4, "apr": 4,
    "may": 5,
    "june": 6, "jun": 6,
    "july": 7, "jul": 7,
    "august": 8, "aug": 8,
    "september": 9, "sep": 9, "sept": 9,
    "october": 10, "oct": 10,
    "november": 11, "nov": 11,
    "december": 12, "dec": 12,
}

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

ORDINAL_WORDS = {
    "first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5,
    "sixth": 6, "seventh": 7, "eighth": 8, "ninth": 9, "tenth": 10,
}

NUMBER_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
}

_MONTH_RE = "|".join(sorted(MONTHS, key=len, reverse=True))
_WEEKDAY_RE = "|".join(WEEKDAYS)
_ISO_RE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")
_SLASH_RE = re.compile(r"\b(\d{1,2})/(\d{1,2})(?:/(\d{2,4}))?\b")
_NTH_WEEKDAY_RE = re.compile(
    rf"\b(first|second|third|fourth|last|1st|2nd|3rd|4th)\s+({_WEEKDAY_RE})\s+(?:of|in)\s+({_MONTH_RE})\b"
)
_MONTH_DAY_RE = re.compile(rf"\b({_MONTH_RE})\.?\s+(\d{{1,2}})(?:st|nd|rd|th)?\b(?:,?\s*(\d{{4}}))?")
_DAY_MONTH_RE = re.compile(rf"\b(\d{{1,2}})(?:st|nd|rd|th)?\s+(?:of\s+)?({_MONTH_RE})\b(?:,?\s*(\d{{4}}))?")
_MONTH_ONLY_RE = re.compile(rf"\b({_MONTH_RE})\b(?:\s+(\d{{4}}))?")
_YEAR_RE = re.compile(r"\b(20\d{2})\b")


def to_date(value) -> date | None:
    """ISO string / date / datetime to ``date``; anything else None."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        match = _ISO_RE.search(value)
        if match:
            try:
                return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
            except ValueError:
                return None
    return None


def calculate_duration(start, end) -> int:
    """Inclusive day count. No dates: 3 (default long weekend); start only: 1."""
    start_date, end_date = to_date(start), to_date(end)
    if not start_date:
        return 3
    if not end_date:
        return 1
    return max(1, (end_date - start_date).days + 1)


def trip_day_date(start, index: int) -> date | None:
    start_date = to_date(start)
    return start_date + timedelta(days=index) if start_date else None


def weekday_of(start, index: int) -> str | None:
    """Lowercase weekday name of trip day ``index``."""
    day = trip_day_date(start, index)
    return WEEKDAYS[day.weekday()] if day else None


def day_label(start, index: int) -> str:
    day = trip_day_date(start, index)
    if not day:
        return f"Day {index + 1}"
    return f"Day {index + 1} ({day.strftime('%A, %B')} {day.day})"


def _nth_weekday(year: int, month: int, weekday: int, nth: int) -> date | None:
    if nth == -1:
        next_month = date(year + (month == 12), month % 12 + 1, 1)
        last = next_month - timedelta(days=1)
        return last - timedelta(days=(last.weekday() - weekday) % 7)
    first = date(year, month, 1)
    result = first + timedelta(days=(weekday - first.weekday()) % 7 + 7 * (nth - 1))
    return result if result.month == month else None


def _resolve_year(text: str, explicit: str | None, month: int, day: int, today: date) -> int:
    if explicit:
        year = int(explicit)
        return year + 2000 if year < 100 else year
    found = _YEAR_RE.search(text)
    if found:
        return int(found.group(1))
    if "next year" in text:
        return today.year + 1
    year = today.year
    try:
        if date(year, month, day) < today:
            year += 1
    except ValueError:
        pass
    return year


def parse_user_date(text, today: date | None = None) -> str | None:
    """Best-effort natural-language date to ``YYYY-MM-DD``.

    Handles ISO dates, M/D[/Y], "first Saturday of September", "September 5",
    "5th of September" and a bare month (first of that month). Years default
    to the next occurrence; "next year" and explicit years are honored.
    """
    if text is None:
        return None
    if isinstance(text, (date, datetime)):
        return to_date(text).isoformat()
    raw = str(text).strip().lower()
    if not raw:
        return None
    today = today or date.today()

    iso = to_date(raw)
    if iso:
        return iso.isoformat()

    try:
        match = _SLASH_RE.search(raw)
        if match:
            month, day = int(match.group(1)), int(match.group(2))
            year = _resolve_year(raw, match.group(3), month, day, today)
            return date(year, month, day).isoformat()

        match = _NTH_WEEKDAY_RE.search(raw)
        if match:
            ordinal = match.group(1)
            nth = -1 if ordinal == "last" else ORDINAL_WORDS.get(ordinal) or int(ordinal[0])
            weekday = WEEKDAYS.index(match.group(2))
            month = MONTHS[match.group(3)]
            year = _resolve_year(raw, None, month, 28, today)
            result = _nth_weekday(year, month, weekday, nth)
            return result.isoformat() if result else None

        match = _MONTH_DAY_RE.search(raw)
        if match:
            month, day = MONTHS[match.group(1)], int(match.group(2))
            year = _resolve_year(raw, match.group(3), month, day, today)
            return date(year, month, day).isoformat()

        match = _DAY_MONTH_RE.search(raw)
        if match:
            day, month = int(match.group(1)), MONTHS[match.group(2)]
            year = _resolve_year(raw, match.group(3), month, day, today)
            return date(year, month, day).isoformat()

        match = _MONTH_ONLY_RE.search(raw)
        # "may" is also a verb; only trust it after "in"/"of"
        if match and (match.group(1) != "may" or re.search(r"\b(?:in|of)\s+may\b", raw)):
            month = MONTHS[match.group(1)]
            year = _resolve_year(raw, match.group(2), month, 28, today)
            return date(year, month, 1).isoformat()
    except ValueError:
        return None
    return None


def _explicit_day_number(text: str, total_days: int, fallback: int) -> int | None:
    match = re.search(r"\bday\s+(\d{1,2})\b", text) or re.search(
        r"\b(\d{1,2})(?:st|nd|rd|th)\s+day\b", text
    )
    if match:
        return int(match.group(1)) - 1
    match = re.search(rf"\bday\s+({'|'.join(NUMBER_WORDS)})\b", text)
    if match:
        return NUMBER_WORDS[match.group(1)] - 1
    match = re.search(rf"\b({'|'.join(ORDINAL_WORDS)}|last|final)\s+day\b", text)
    if match:
        word = match.group(1)
        return total_days - 1 if word in ("last", "final") else ORDINAL_WORDS[word] - 1
    if re.search(r"\b(next|following)\s+day\b", text):
        return fallback + 1
    if re.search(r"\b(previous|prior)\s+day\b", text):
        return fallback - 1
    return None


def resolve_target_day_index(
    text: str,
    start_date,
    total_days: int,
    fallback: int,
    reducer_index: int | None = None,
) -> int:
    """Which trip day a message refers to.

    Order: the reducer's index when in range, "day N" / ordinal phrases,
    weekday names, explicit calendar dates. Anything out of range or
    unresolvable falls back to ``fallback`` (normally the current day).
    """
    total_days = max(1, total_days)

    def in_range(idx) -> bool:
        return isinstance(idx, int) and 0 <= idx < total_days

    if in_range(reducer_index):
        return reducer_index

    lowered = (text or "").lower()
    explicit = _explicit_day_number(lowered, total_days, fallback)
    if explicit is not None:
        return explicit if in_range(explicit) else fallback

    start = to_date(start_date)
    if start:
        for idx in range(total_days):
            name = WEEKDAYS[(start + timedelta(days=idx)).weekday()]
            if re.search(rf"\b{name}\b", lowered):
                return idx

        mentioned = None
        if _ISO_RE.search(lowered) or _SLASH_RE.search(lowered) or _MONTH_DAY_RE.search(lowered):
            mentioned = to_date(parse_user_date(lowered, today=start))
        if mentioned:
            idx = (mentioned - start).days
            if in_range(idx):
                return idx

    return fallback
