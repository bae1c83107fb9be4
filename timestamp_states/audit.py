"""
Transition Audit
================

Append-only record of state transitions observed during saves.

The sequencer writes one TransitionRecord per field that entered its set
state, after the save completed. Nothing here changes behavior; it only
records what happened.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional

from .query import TimeRange


@dataclass(frozen=True)
class TransitionRecord:
    """Immutable audit entry: `record_id` entered `state` at `timestamp`."""
    sequence: int
    record_type: str
    record_id: Any
    field: str
    state: str
    verb: str
    timestamp: datetime


class TransitionAuditLog:
    """
    Collector of transition records for one model type.

    Collectors are append-only - no modification of collected data.
    """

    def __init__(self, record_type: str):
        self._record_type = record_type
        self._entries: List[TransitionRecord] = []
        self._sequence: int = 0

    def collect(
        self,
        record_id: Any,
        field: str,
        state: str,
        verb: str,
        timestamp: datetime,
    ) -> TransitionRecord:
        """Append an entry and return it."""
        self._sequence += 1
        entry = TransitionRecord(
            sequence=self._sequence,
            record_type=self._record_type,
            record_id=record_id,
            field=field,
            state=state,
            verb=verb,
            timestamp=timestamp,
        )
        self._entries.append(entry)
        return entry

    def get_entries(
        self,
        time_range: Optional[TimeRange] = None,
        field: Optional[str] = None,
        record_id: Any = None,
    ) -> List[TransitionRecord]:
        """Get entries, optionally filtered."""
        entries = self._entries

        if time_range:
            entries = [e for e in entries if time_range.contains(e.timestamp)]

        if field:
            entries = [e for e in entries if e.field == field]

        if record_id is not None:
            entries = [e for e in entries if e.record_id == record_id]

        return list(entries)

    @property
    def record_type(self) -> str:
        return self._record_type

    @property
    def entry_count(self) -> int:
        return len(self._entries)
