"""
Query Translator
================

Converts a caller-supplied range expression into a concrete TimeRange that
the persistence layer can filter a timestamp column by.

ACCEPTED EXPRESSIONS:
=====================
- TimeRange                      -> used as is
- (start, end) tuple             -> closed range [start, end]
- datetime                       -> single instant
- date                           -> that UTC calendar day
- "<date> to <date>"             -> [start-of-day, start-of-day) in a zone
- "<date>, <date>"               -> same
- "<date>"                       -> that day, start-of-day to next start-of-day

Textual dates are interpreted in a named zone: an abbreviation such as
"EDT", a fixed offset such as "-04:00", or an IANA name such as
"America/New_York". All bounds are returned in UTC.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Dict, List, Sequence, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import re

from .clock import ensure_utc, parse_iso_datetime
from .config import DEFAULT_TIMEZONE
from .errors import ErrorCode, ValueCoercionError


RangeExpression = Union["TimeRange", tuple, datetime, date, str, Sequence[str]]

# Fixed-offset abbreviations (hours from UTC)
TIMEZONE_ABBREVIATIONS: Dict[str, float] = {
    "UTC": 0, "GMT": 0, "Z": 0,
    "EST": -5, "EDT": -4,
    "CST": -6, "CDT": -5,
    "MST": -7, "MDT": -6,
    "PST": -8, "PDT": -7,
    "AKST": -9, "AKDT": -8,
    "HST": -10,
    "BST": 1, "CET": 1, "CEST": 2,
    "IST": 5.5, "JST": 9,
}

_SEPARATOR = re.compile(r"\s*(?:,|\bto\b)\s*", re.IGNORECASE)
_OFFSET = re.compile(r"^([+-])(\d{2}):?(\d{2})$")

ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class TimeRange:
    """
    Immutable UTC range for column filters.

    Half-open [start, end) unless inclusive_end is set.
    """
    start: datetime
    end: datetime
    inclusive_end: bool = False

    def __post_init__(self):
        object.__setattr__(self, "start", ensure_utc(self.start))
        object.__setattr__(self, "end", ensure_utc(self.end))
        if self.start > self.end:
            raise ValueCoercionError(
                f"TimeRange start {self.start.isoformat()} is after end {self.end.isoformat()}",
                ErrorCode.INVALID_TIME_RANGE,
            )

    def contains(self, value: datetime) -> bool:
        value = ensure_utc(value)
        if self.inclusive_end:
            return self.start <= value <= self.end
        return self.start <= value < self.end

    @classmethod
    def for_day(cls, day: date, zone: tzinfo = timezone.utc) -> TimeRange:
        start = datetime.combine(day, time.min, tzinfo=zone)
        return cls(start=start, end=start + ONE_DAY)


# =============================================================================
# TIMEZONES
# =============================================================================

def resolve_timezone(name: str) -> tzinfo:
    """
    Resolve a zone abbreviation, fixed offset or IANA name.

    Raises ValueCoercionError(UNKNOWN_TIMEZONE) when nothing matches.
    """
    key = name.strip()
    if key.upper() in TIMEZONE_ABBREVIATIONS:
        return timezone(timedelta(hours=TIMEZONE_ABBREVIATIONS[key.upper()]), key.upper())

    offset = _OFFSET.match(key)
    if offset:
        sign = -1 if offset.group(1) == "-" else 1
        delta = timedelta(hours=int(offset.group(2)), minutes=int(offset.group(3)))
        return timezone(sign * delta)

    try:
        return ZoneInfo(key)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueCoercionError(
            f"Unknown timezone {name!r}",
            ErrorCode.UNKNOWN_TIMEZONE,
        ) from exc


# =============================================================================
# TEXTUAL EXPRESSIONS
# =============================================================================

def split_dates(expression: Union[str, Sequence[str]]) -> List[str]:
    """Split "a to b" / "a, b" / ["a", "b"] into stripped date strings."""
    parts = [expression] if isinstance(expression, str) else list(expression)
    dates: List[str] = []
    for part in parts:
        dates.extend(piece.strip() for piece in _SEPARATOR.split(str(part)) if piece.strip())
    return dates


def parse_date_in_zone(text: str, zone: tzinfo) -> datetime:
    """Start of the given day in `zone`, or the given instant if a time is present."""
    try:
        return datetime.combine(date.fromisoformat(text), time.min, tzinfo=zone)
    except ValueError:
        pass

    try:
        parsed = parse_iso_datetime(text)
    except ValueError as exc:
        raise ValueCoercionError(
            f"Cannot parse {text!r} as a date",
            ErrorCode.INVALID_TIME_RANGE,
        ) from exc
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=zone)


def parse_range_text(
    expression: Union[str, Sequence[str]],
    timezone_name: str = DEFAULT_TIMEZONE,
) -> TimeRange:
    """
    Parse a textual range expression.

    A single date covers that whole day. With two or more dates the range
    runs from the first to the last, end exclusive.
    """
    dates = split_dates(expression)
    if not dates:
        raise ValueCoercionError(
            f"Empty range expression {expression!r}",
            ErrorCode.INVALID_TIME_RANGE,
        )

    zone = resolve_timezone(timezone_name)
    times = [parse_date_in_zone(d, zone) for d in dates]
    if len(times) == 1:
        times.append(times[0] + ONE_DAY)

    return TimeRange(start=times[0], end=times[-1])


# =============================================================================
# ENTRY POINT
# =============================================================================

def _as_datetime(value: Union[datetime, date]) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def to_time_range(
    expression: RangeExpression,
    timezone_name: str = DEFAULT_TIMEZONE,
) -> TimeRange:
    """
    Translate any accepted expression into a TimeRange.

    Native values pass straight through; strings (or sequences of strings)
    are parsed in `timezone_name`.
    """
    if isinstance(expression, TimeRange):
        return expression

    # datetime before date: datetime is a date subclass
    if isinstance(expression, datetime):
        point = ensure_utc(expression)
        return TimeRange(start=point, end=point, inclusive_end=True)

    if isinstance(expression, date):
        return TimeRange.for_day(expression)

    if isinstance(expression, tuple) and len(expression) == 2 and all(
        isinstance(bound, date) for bound in expression
    ):
        start, end = expression
        return TimeRange(start=_as_datetime(start), end=_as_datetime(end), inclusive_end=True)

    if isinstance(expression, str) or (
        isinstance(expression, (list, tuple)) and all(isinstance(p, str) for p in expression)
    ):
        return parse_range_text(expression, timezone_name)

    raise ValueCoercionError(
        f"Unsupported range expression {expression!r}",
        ErrorCode.INVALID_TIME_RANGE,
    )
