"""Pure string and date transforms used when normalizing submissions."""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Any, Union

from .errors import FormatError

__all__ = [
    "format_phone_number",
    "title_case",
    "strip_non_alpha",
    "next_business_day",
    "parse_timestamp",
    "format_timestamp",
    "format_badge_date",
    "ACTIVATION_HOUR",
    "SHEET_TIMESTAMP_FORMAT",
]

# Hour of day (local time) new accounts become active
ACTIVATION_HOUR = 13

# Sheet number format "YYYY-MM-DD hh:mm:ss"
SHEET_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Form exports use US month-first dates
_TIMESTAMP_FORMATS = (
    SHEET_TIMESTAMP_FORMAT,
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
)

_PHONE_PATTERN = re.compile(r"^(1)?(\d{3})(\d{3})(\d{4})$")
_NON_DIGIT = re.compile(r"\D")
_NON_ALPHA = re.compile(r"[^a-zA-Z]")


# ---------------------------------------------------------------------------
# Text
# ---------------------------------------------------------------------------


def format_phone_number(value: Union[str, int]) -> str:
    """Format a phone number as ``(XXX) XXX-XXXX``.

    Args:
        value: Phone number in any punctuation, as text or a number.

    Returns:
        The formatted number, prefixed with ``+1 `` when the input carried
        the leading country digit.

    Raises:
        FormatError: If the input does not hold 10 digits, or 11 with a
            leading ``1``.
    """
    digits = _NON_DIGIT.sub("", str(value))
    match = _PHONE_PATTERN.match(digits)
    if not match:
        raise FormatError(f"Invalid phone number '{value}' ({len(digits)} digits)", value)
    country, area, exchange, line = match.groups()
    prefix = "+1 " if country else ""
    return f"{prefix}({area}) {exchange}-{line}"


def title_case(value: str) -> str:
    """Capitalize the first letter of each space-separated word.

    Hyphenated and apostrophe'd names are not special-cased, so
    ``"o'brien"`` becomes ``"O'brien"``.
    """
    return " ".join(part[:1].upper() + part[1:].lower() for part in value.split(" "))


def strip_non_alpha(value: str) -> str:
    return _NON_ALPHA.sub("", value)


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def next_business_day(reference: Union[date, datetime]) -> datetime:
    """Return the next weekday after ``reference`` at 13:00 local time.

    Sunday through Thursday advance one day. Friday and Saturday skip to
    the following Monday.

    Args:
        reference: The submission date or timestamp.

    Returns:
        A naive datetime at ``ACTIVATION_HOUR``.
    """
    # Sunday-based week numbering: 0=Sunday ... 6=Saturday
    sunday_based_day = (reference.weekday() + 1) % 7
    days_left_in_week = 7 - sunday_based_day
    if days_left_in_week > 2:
        step = 1
    else:
        step = days_left_in_week + 1
    target = reference + timedelta(days=step)
    return datetime(target.year, target.month, target.day, ACTIVATION_HOUR, 0, 0)


def parse_timestamp(value: Any) -> datetime:
    """Parse a submission timestamp from the sheet.

    Args:
        value: A datetime, an ISO 8601 string, or a form export timestamp
            such as ``3/1/2024 10:00:00``.

    Returns:
        The parsed naive datetime.

    Raises:
        FormatError: If the value matches none of the accepted formats.
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    text = str(value).strip()
    if not text:
        raise FormatError("Missing timestamp", value)

    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass

    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    raise FormatError(f"Invalid timestamp '{text}'", value)


def format_timestamp(value: datetime) -> str:
    return value.strftime(SHEET_TIMESTAMP_FORMAT)


def format_badge_date(value: datetime) -> str:
    """Format the assignment date printed on badges (``YYYY-MM-DD``)."""
    return value.strftime("%Y-%m-%d")
