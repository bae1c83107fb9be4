"""
Logical Clock
=============

Injectable source of "now" for touch operations and boolean coercion.

MODES:
- LIVE: reads UTC system time and records every tick
- REPLAY: returns a pre-recorded tick sequence, in order
- FROZEN: returns the same instant on every read

Model types pick their clock through `__clock__`; tests freeze or replay it
instead of patching datetime.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional


class ClockExhausted(Exception):
    """Raised when a replay clock runs out of ticks."""
    pass


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso_datetime(text: str) -> datetime:
    """datetime.fromisoformat that also accepts a trailing "Z" for UTC."""
    text = text.strip()
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


@dataclass
class LogicalClock:
    """
    Clock handing out UTC datetimes.

    GUARANTEES:
    ===========
    - Every value returned is timezone-aware UTC
    - A replay clock returns exactly the recorded ticks, then raises
    """
    _ticks: List[datetime] = field(default_factory=list)
    _current_index: int = 0
    _is_live: bool = True
    _frozen_at: Optional[datetime] = None
    _record_ticks: bool = True

    def now(self) -> datetime:
        """
        Get current logical time.

        In LIVE mode: reads system time and logs it
        In REPLAY mode: returns next tick from recorded sequence
        """
        if self._frozen_at is not None:
            self._current_index += 1
            return self._frozen_at

        if self._is_live:
            current = datetime.now(timezone.utc)
            self._current_index += 1
            if self._record_ticks:
                self._ticks.append(current)
            return current

        if self._current_index >= len(self._ticks):
            raise ClockExhausted(
                f"Replay clock exhausted at index {self._current_index}. "
                f"Recorded sequence had {len(self._ticks)} ticks."
            )
        tick = self._ticks[self._current_index]
        self._current_index += 1
        return tick

    def tick_count(self) -> int:
        """Number of ticks recorded/consumed."""
        return self._current_index

    def is_live(self) -> bool:
        return self._is_live and self._frozen_at is None

    @property
    def ticks(self) -> List[datetime]:
        return list(self._ticks)

    @classmethod
    def live(cls, record_ticks: bool = True) -> LogicalClock:
        """
        Create clock in LIVE mode (uses system time).

        Long-lived clocks shared by model types pass record_ticks=False so
        the tick log does not grow without bound.
        """
        return cls(_is_live=True, _record_ticks=record_ticks)

    @classmethod
    def replay(cls, ticks: Iterable[datetime]) -> LogicalClock:
        """Create clock in REPLAY mode from previously recorded ticks."""
        return cls(_ticks=[ensure_utc(t) for t in ticks], _is_live=False)

    @classmethod
    def frozen(cls, instant: datetime) -> LogicalClock:
        """Create a clock that always reports `instant`."""
        return cls(_is_live=False, _frozen_at=ensure_utc(instant))

    def __repr__(self) -> str:
        if self._frozen_at is not None:
            mode = "FROZEN"
        else:
            mode = "LIVE" if self._is_live else "REPLAY"
        return f"LogicalClock({mode}, ticks={len(self._ticks)}, index={self._current_index})"
