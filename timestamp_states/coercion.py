"""
Value Coercion
==============

Turns an arbitrary setter argument into the value stored in a timestamp
column: an aware UTC datetime, or None for "not set".
"""

from __future__ import annotations
from datetime import date, datetime, time, timezone
from typing import Any, Optional

from .clock import LogicalClock, ensure_utc, parse_iso_datetime
from .errors import ErrorCode, ValueCoercionError


TRUTHY_VALUES = (True, "true", 1, "1")
FALSY_VALUES = (False, "false", 0, "0", None, "", "null")


def is_present(value: Any) -> bool:
    """A column is set when it holds something other than None or ''."""
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


def coerce_timestamp(value: Any, clock: LogicalClock) -> Optional[datetime]:
    """
    Coerce a setter argument.

    true/"true"/1/"1"                        -> clock.now()
    false/"false"/0/"0"/None/""/"null"       -> None
    datetime                                 -> UTC datetime
    date                                     -> UTC midnight
    other string                             -> parsed ISO-8601 timestamp

    Raises ValueCoercionError for anything else.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)

    # bool is an int subclass, but float 1.0 must not count as true
    if isinstance(value, (bool, int, str)) or value is None:
        if value in TRUTHY_VALUES:
            return clock.now()
        if value in FALSY_VALUES:
            return None

    if isinstance(value, str):
        try:
            return ensure_utc(parse_iso_datetime(value))
        except ValueError as exc:
            raise ValueCoercionError(
                f"Cannot parse {value!r} as a timestamp",
                ErrorCode.UNPARSABLE_VALUE,
            ) from exc

    raise ValueCoercionError(
        f"Cannot coerce {type(value).__name__} value {value!r} to a timestamp",
        ErrorCode.UNPARSABLE_VALUE,
    )


def coerce_negated(value: Any, clock: LogicalClock) -> Optional[datetime]:
    """Coerce `value`, then invert presence: set becomes None, None becomes now."""
    return None if is_present(coerce_timestamp(value, clock)) else clock.now()
