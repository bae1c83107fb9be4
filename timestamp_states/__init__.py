"""
Timestamp States
================

Boolean lifecycle states encoded as nullable timestamp columns.

    installed_at set      -> "installed"
    installed_at empty    -> "not installed"

For each registered column a record type gains predicates (installed,
not_installed), mutators (install, uninstall, and their saving forms),
setters, range query scopes, and install/uninstall hooks that fire exactly
once when a save moves the column from empty to set.

Modules:
- vocabulary: word derivation (installed_at -> install / uninstall)
- registry: per-type registry of states, overrides and aliases
- dispatch: name -> primitive operation lookup
- sequencer: save-time hook nesting for entering states
- query: range expressions -> TimeRange
- hooks: before/around/after hook slots
- storage: reference Record base class and stores
- model: the TimestampStates mixin
"""

from .audit import TransitionAuditLog, TransitionRecord
from .clock import ClockExhausted, LogicalClock
from .config import TimestampStateSettings
from .dispatch import DispatchTable, OperationKind, Resolution
from .errors import (
    ConfigurationError,
    ErrorCode,
    PersistenceFailure,
    TimestampStateError,
    UnknownOperation,
    ValueCoercionError,
)
from .hooks import HookPhase, HookRegistry
from .model import TimestampStates
from .query import TimeRange, to_time_range
from .registry import StateRegistry, StateRegistryEntry
from .sequencer import TransitionSequencer, WrapStep
from .storage import InMemoryRecordStore, Record, RecordQuery, RecordStore, SQLiteRecordStore
from .vocabulary import FieldVocabulary, derive

__version__ = "0.1.0"

__all__ = [
    'ClockExhausted',
    'ConfigurationError',
    'DispatchTable',
    'ErrorCode',
    'FieldVocabulary',
    'HookPhase',
    'HookRegistry',
    'InMemoryRecordStore',
    'LogicalClock',
    'OperationKind',
    'PersistenceFailure',
    'Record',
    'RecordQuery',
    'RecordStore',
    'Resolution',
    'SQLiteRecordStore',
    'StateRegistry',
    'StateRegistryEntry',
    'TimeRange',
    'TimestampStateError',
    'TimestampStateSettings',
    'TimestampStates',
    'TransitionAuditLog',
    'TransitionRecord',
    'TransitionSequencer',
    'UnknownOperation',
    'ValueCoercionError',
    'WrapStep',
    'derive',
    'to_time_range',
]
