"""
Dynamic Dispatcher
==================

Resolves attribute names on a record to one of eight primitive state
operations, using a lookup table built from the state registry.

    installed, installed?            -> IS_SET
    not_installed, not_installed?    -> IS_UNSET
    install                          -> TOUCH
    install!                         -> TOUCH_AND_SAVE
    uninstall                        -> CLEAR
    uninstall!                       -> CLEAR_AND_SAVE
    installed=                       -> ASSIGN
    not_installed=                   -> ASSIGN_NEGATED

Names that resolve to nothing raise UnknownOperation (an AttributeError);
the dispatcher never hides errors from unrelated attributes.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, Optional, Tuple

from .errors import UnknownOperation
from .registry import StateRegistry, StateRegistryEntry


class OperationKind(Enum):
    IS_SET = "is_set"
    IS_UNSET = "is_unset"
    TOUCH = "touch"
    TOUCH_AND_SAVE = "touch_and_save"
    CLEAR = "clear"
    CLEAR_AND_SAVE = "clear_and_save"
    ASSIGN = "assign"
    ASSIGN_NEGATED = "assign_negated"

    @property
    def is_query(self) -> bool:
        return self in (OperationKind.IS_SET, OperationKind.IS_UNSET)

    @property
    def is_assignment(self) -> bool:
        return self in (OperationKind.ASSIGN, OperationKind.ASSIGN_NEGATED)

    @property
    def saves(self) -> bool:
        return self in (OperationKind.TOUCH_AND_SAVE, OperationKind.CLEAR_AND_SAVE)


@dataclass(frozen=True)
class Resolution:
    """A dispatched name: which entry, which operation."""
    name: str
    entry: StateRegistryEntry
    kind: OperationKind

    @property
    def column(self) -> str:
        return self.entry.column


def operation_names(entry: StateRegistryEntry) -> Iterator[Tuple[str, OperationKind]]:
    """Every name an entry answers to, with its operation."""
    words = entry.vocabulary
    yield words.past, OperationKind.IS_SET
    yield f"{words.past}?", OperationKind.IS_SET
    yield words.past_negated, OperationKind.IS_UNSET
    yield f"{words.past_negated}?", OperationKind.IS_UNSET
    yield words.action, OperationKind.TOUCH
    yield f"{words.action}!", OperationKind.TOUCH_AND_SAVE
    yield words.action_negated, OperationKind.CLEAR
    yield f"{words.action_negated}!", OperationKind.CLEAR_AND_SAVE
    yield f"{words.past}=", OperationKind.ASSIGN
    yield f"{words.past_negated}=", OperationKind.ASSIGN_NEGATED


class DispatchTable:
    """
    name -> Resolution, rebuilt whenever the registry version changes.

    The registry guarantees words are unique, so a name maps to at most one
    entry. Entries are scanned in registration order; the first claim wins.
    """

    def __init__(self, registry: StateRegistry):
        self._registry = registry
        self._table: Dict[str, Resolution] = {}
        self._built_version = -1

    def _current(self) -> Dict[str, Resolution]:
        if self._built_version != self._registry.version:
            table: Dict[str, Resolution] = {}
            for entry in self._registry.entries():
                for name, kind in operation_names(entry):
                    table.setdefault(name, Resolution(name=name, entry=entry, kind=kind))
            self._table = table
            self._built_version = self._registry.version
        return self._table

    def lookup(self, name: str) -> Optional[Resolution]:
        return self._current().get(name)

    def resolve(self, name: str, owner: str = "record") -> Resolution:
        """Like lookup(), but raises UnknownOperation for unmatched names."""
        resolution = self.lookup(name)
        if resolution is None:
            raise UnknownOperation(owner, name)
        return resolution

    def responds_to(self, name: str) -> bool:
        """Same matching rules as resolve(), without dispatching."""
        return self.lookup(name) is not None

    def names(self) -> Tuple[str, ...]:
        return tuple(self._current())
