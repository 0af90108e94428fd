"""
Total field sanitizers for source deal documents.

Every function here accepts any JSON value and returns either a clean value
or None. None of them raise: the source API mixes encodings for the same
field across brokers and over time, and an odd literal must never fail a
whole deal.
"""

from datetime import date, datetime, timezone
from typing import Any

_BOOLEAN_LITERALS = frozenset({'true', 'false'})


def parse_numeric(value: Any) -> float | int | None:
    """
    Coerce a numeric field.

    Accepts numbers and numeric strings. Booleans and the literal strings
    "true"/"false" are discarded to None, never coerced to 1/0.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and value != value:  # NaN
            return None
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped or stripped.lower() in _BOOLEAN_LITERALS:
            return None
        try:
            number = float(stripped)
        except ValueError:
            return None
        if number != number or number in (float('inf'), float('-inf')):
            return None
        return int(number) if number.is_integer() and '.' not in stripped else number
    return None


def parse_integer(value: Any) -> int | None:
    """Coerce a code / count field; fractional values are rejected."""
    number = parse_numeric(value)
    if number is None:
        return None
    if isinstance(number, float):
        return int(number) if number.is_integer() else None
    return number


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse a timestamp field with full precision, normalised to aware UTC.

    Naive values are taken as UTC. Unparsable values become None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(('Z', 'z')):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_date_only(value: Any) -> date | None:
    """Parse a date-only field, truncating any time component."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    parsed = parse_timestamp(value)
    return parsed.date() if parsed else None


def parse_approval(value: Any) -> datetime | None:
    """
    Parse the mortgage-request approval marker.

    A non-empty string is the approval timestamp. Anything else (null,
    missing, empty string, a bare boolean) means not approved.
    """
    if isinstance(value, str) and value.strip():
        return parse_timestamp(value)
    if isinstance(value, datetime):
        return parse_timestamp(value)
    return None


def clean_text(value: Any) -> str | None:
    """Trim a free-text field; empty strings become None."""
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    stripped = value.strip()
    return stripped or None


def as_text(value: Any) -> str | None:
    """Pass-through text field (no trimming); non-strings are stringified."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return None
    return str(value)


def as_flag(value: Any, default: bool | None = None) -> bool | None:
    """Boolean field that also accepts the "true"/"false" string encoding."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in _BOOLEAN_LITERALS:
        return value.strip().lower() == 'true'
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    return default
