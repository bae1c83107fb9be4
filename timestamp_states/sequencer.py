"""
Transition Sequencer
====================

Wraps a save so that every timestamp state entering its "set" state fires
its action hooks exactly once, on the transition edge.

TRANSITIONS (per field, per save attempt):
==========================================
    unset -> unset   no hook
    unset -> set     action hooks wrap the save
    set   -> set     no hook
    set   -> unset   no hook (only entering the set state is observed)

ORDER for transitioning fields A then B (registration order):

    before(A), before(B),
        around(A) { around(B) { save } },
    after(B), after(A)

FAILURE SEMANTICS:
- Exceptions from hooks or from the save propagate unmodified
- No cleanup or rollback happens here

The record must provide value_before_save(column) and plain attribute
access to the column.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, TypeVar
import logging

from .audit import TransitionAuditLog
from .coercion import is_present
from .hooks import HookRegistry
from .registry import StateRegistry, StateRegistryEntry


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class WrapStep:
    """Wrap the save in the hooks of `verb` because `field` enters `state`."""
    field: str
    column: str
    state: str
    verb: str

    @classmethod
    def for_entry(cls, entry: StateRegistryEntry) -> WrapStep:
        return cls(
            field=entry.field,
            column=entry.column,
            state=entry.vocabulary.past,
            verb=entry.vocabulary.action,
        )


class TransitionSequencer:
    """
    Builds and runs the hook plan for one save.

    The plan is computed before anything runs, so hooks that change other
    fields cannot add or remove layers mid-save.
    """

    def __init__(self, registry: StateRegistry, audit: Optional[TransitionAuditLog] = None):
        self._registry = registry
        self._audit = audit

    def is_transitioning(self, record: Any, entry: StateRegistryEntry) -> bool:
        """Unset immediately before this save, set now."""
        was_set = is_present(record.value_before_save(entry.column))
        return not was_set and is_present(getattr(record, entry.column))

    def plan(self, record: Any) -> List[WrapStep]:
        """Wrap steps for transitioning entries, outermost first."""
        return [
            WrapStep.for_entry(entry)
            for entry in self._registry.entries()
            if self.is_transitioning(record, entry)
        ]

    def run(self, record: Any, save: Callable[[], T], hooks: HookRegistry) -> T:
        """Run `save` inside the action hooks of every transitioning field."""
        steps = self.plan(record)
        if not steps:
            return save()

        logger.debug(
            "%s: save wrapped by %s",
            type(record).__name__, [step.verb for step in steps],
        )

        for step in steps:
            hooks.run_before(step.verb, record)

        result = self._descend(steps, 0, record, save, hooks)

        for step in reversed(steps):
            hooks.run_after(step.verb, record)

        return result

    def _descend(
        self,
        steps: Sequence[WrapStep],
        index: int,
        record: Any,
        save: Callable[[], T],
        hooks: HookRegistry,
    ) -> T:
        if index == len(steps):
            result = save()
            self._record(steps, record)
            return result

        step = steps[index]
        return hooks.run_around(
            step.verb,
            record,
            lambda: self._descend(steps, index + 1, record, save, hooks),
        )

    def _record(self, steps: Sequence[WrapStep], record: Any) -> None:
        if self._audit is None:
            return
        for step in steps:
            self._audit.collect(
                record_id=getattr(record, "id", None),
                field=step.field,
                state=step.state,
                verb=step.verb,
                timestamp=getattr(record, step.column),
            )
