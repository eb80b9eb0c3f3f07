"""Date handling for filter values.

Supports:
- Literal dates: ``2024-01-15`` (UTC midnight)
- ISO 8601 timestamps on records: ``2024-01-15T09:30:00Z``
- Numeric epoch seconds on records
- Relative dates: ``now``, ``now+3d``, ``now-2M``

Relative dates are kept symbolic (``RelativeDate``) until evaluation so that
they resolve against evaluation-time "now", not parse time.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta

# Fixed-duration units
_FIXED_UNITS: dict[str, timedelta] = {
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}

# Calendar units
_CALENDAR_UNITS = frozenset(["M", "y"])

RELATIVE_DATE_UNITS = frozenset(_FIXED_UNITS) | _CALENDAR_UNITS

_RELATIVE_DATE_RE = re.compile(r"now(?:([+-])(\d{1,6})([smhdwMy]))?", re.ASCII)
_DATE_LITERAL_RE = re.compile(r"(\d{4})-(\d{2})-(\d{2})", re.ASCII)
_ISO_TIMESTAMP_RE = re.compile(
    r"\d{4}-\d{2}-\d{2}"
    r"(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d{1,9})?)?(?:Z|z|[+-]\d{2}(?::?\d{2})?)?)?",
    re.ASCII,
)

# Longest ISO timestamp we bother parsing
_MAX_TIMESTAMP_LENGTH = 40

MIN_LITERAL_YEAR = 1900
MAX_LITERAL_YEAR = 2100


@dataclass(frozen=True, slots=True)
class RelativeDate:
    """A date expressed relative to evaluation time (``now+3d``)."""

    offset: int = 0
    unit: str = "d"

    def resolve(self, now: datetime) -> datetime:
        """Resolve against a reference time."""
        if self.offset == 0:
            return now
        if self.unit in _FIXED_UNITS:
            return now + _FIXED_UNITS[self.unit] * self.offset
        if self.unit == "M":
            return now + relativedelta(months=self.offset)
        return now + relativedelta(years=self.offset)

    def __str__(self) -> str:
        if self.offset == 0:
            return "now"
        sign = "+" if self.offset > 0 else "-"
        return f"now{sign}{abs(self.offset)}{self.unit}"


def parse_relative_date(text: str) -> RelativeDate | None:
    """Parse ``now`` / ``now+<N><unit>`` / ``now-<N><unit>``.

    Returns None if ``text`` is not exactly a relative date token.
    """
    match = _RELATIVE_DATE_RE.fullmatch(text)
    if match is None:
        return None
    sign, amount, unit = match.groups()
    if sign is None:
        return RelativeDate()
    offset = int(amount)
    return RelativeDate(offset=-offset if sign == "-" else offset, unit=unit)


def parse_date_literal(text: str) -> datetime | None:
    """Parse ``YYYY-MM-DD`` into UTC midnight, bounded to 1900..2100."""
    match = _DATE_LITERAL_RE.fullmatch(text)
    if match is None:
        return None
    year, month, day = (int(part) for part in match.groups())
    if not MIN_LITERAL_YEAR <= year <= MAX_LITERAL_YEAR:
        return None
    try:
        return datetime(year, month, day, tzinfo=timezone.utc)
    except ValueError:
        return None


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_timestamp(value: Any) -> datetime | None:
    """Coerce a record value into an aware datetime.

    Accepts datetimes, ISO 8601 strings, and finite epoch seconds. Anything
    else (including booleans) yields None.
    """
    if isinstance(value, datetime):
        return ensure_aware(value)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if len(text) > _MAX_TIMESTAMP_LENGTH or not _ISO_TIMESTAMP_RE.fullmatch(text):
            return None
        try:
            return ensure_aware(isoparse(text))
        except (ValueError, OverflowError):
            return None
    return None


def parse_date_value(value: Any, now: datetime) -> datetime | None:
    """Resolve a filter-side date value.

    Handles ``RelativeDate`` instances, relative-date strings, datetimes and
    ISO strings. Returns None when ``value`` is not a date.
    """
    if isinstance(value, str):
        relative = parse_relative_date(value.strip())
        if relative is None:
            return parse_timestamp(value)
        value = relative
    if isinstance(value, RelativeDate):
        try:
            return value.resolve(now)
        except (OverflowError, ValueError):
            # Offset lands outside the representable datetime range
            return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    return None
