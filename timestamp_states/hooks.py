"""
Hook Registry
=============

Named before/around/after hook slots, one slot set per verb.

RESPONSIBILITY: store hook callables and run them around a body
ALLOWED INPUTS: verbs defined via define(), callables
OUTPUTS: the body's return value

WHAT THIS MODULE MUST NOT DO:
=============================
- Decide WHEN a verb fires (the transition sequencer does that)
- Catch exceptions raised by hooks or by the body

HOOK SIGNATURES:
================
- before(record)
- around(record, proceed)   proceed() runs the next layer and returns its result
- after(record)

Registries chain: a subclass registry sees its parent's hooks, and a
per-instance registry sees its type's hooks. Inherited hooks run first.
"""

from __future__ import annotations
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set
import logging

from .errors import ConfigurationError, ErrorCode


logger = logging.getLogger(__name__)

Hook = Callable[..., Any]


class HookPhase(Enum):
    BEFORE = "before"
    AROUND = "around"
    AFTER = "after"


class HookRegistry:
    """
    Hooks for a set of verbs.

    Verbs must be defined before hooks can be attached to them, the same
    way a model only exposes hook slots for the states it declares.
    """

    def __init__(self, parent: Optional[HookRegistry] = None):
        self._parent = parent
        self._verbs: Set[str] = set()
        self._hooks: Dict[str, Dict[HookPhase, List[Hook]]] = {}

    # -------------------------------------------------------------------------
    # Definition
    # -------------------------------------------------------------------------

    def define(self, *verbs: str) -> None:
        """Open before/around/after slots for each verb (idempotent)."""
        for verb in verbs:
            if verb not in self._verbs:
                logger.debug("Defined hook slots for %r", verb)
            self._verbs.add(verb)

    def undefine(self, *verbs: str) -> None:
        """Close the slots of each verb, discarding hooks attached here."""
        for verb in verbs:
            dropped = self._hooks.pop(verb, {})
            if any(dropped.values()):
                logger.warning(
                    "Discarded %d hook(s) on retired verb %r",
                    sum(len(hooks) for hooks in dropped.values()), verb,
                )
            self._verbs.discard(verb)

    def is_defined(self, verb: str) -> bool:
        if verb in self._verbs:
            return True
        return self._parent is not None and self._parent.is_defined(verb)

    @property
    def verbs(self) -> Set[str]:
        inherited = self._parent.verbs if self._parent is not None else set()
        return inherited | self._verbs

    def child(self) -> HookRegistry:
        """A registry that runs this registry's hooks before its own."""
        return HookRegistry(parent=self)

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(self, phase: HookPhase, verb: str, hook: Hook) -> Hook:
        if not self.is_defined(verb):
            raise ConfigurationError(
                f"No hook slots defined for {verb!r}",
                ErrorCode.UNDEFINED_HOOK,
            )
        self._hooks.setdefault(verb, {}).setdefault(phase, []).append(hook)
        return hook

    def before(self, verb: str, hook: Optional[Hook] = None):
        """Attach a before hook; usable as a decorator."""
        if hook is None:
            return lambda fn: self.register(HookPhase.BEFORE, verb, fn)
        return self.register(HookPhase.BEFORE, verb, hook)

    def around(self, verb: str, hook: Optional[Hook] = None):
        """Attach an around hook; usable as a decorator."""
        if hook is None:
            return lambda fn: self.register(HookPhase.AROUND, verb, fn)
        return self.register(HookPhase.AROUND, verb, hook)

    def after(self, verb: str, hook: Optional[Hook] = None):
        """Attach an after hook; usable as a decorator."""
        if hook is None:
            return lambda fn: self.register(HookPhase.AFTER, verb, fn)
        return self.register(HookPhase.AFTER, verb, hook)

    def hooks_for(self, verb: str, phase: HookPhase) -> List[Hook]:
        """Inherited hooks first, then this registry's, in registration order."""
        inherited = self._parent.hooks_for(verb, phase) if self._parent is not None else []
        return inherited + list(self._hooks.get(verb, {}).get(phase, ()))

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def run_before(self, verb: str, record: Any) -> None:
        for hook in self.hooks_for(verb, HookPhase.BEFORE):
            hook(record)

    def run_around(self, verb: str, record: Any, body: Callable[[], Any]) -> Any:
        """
        Nest `body` inside every around hook for `verb`.

        The first registered hook is the outermost layer. An around hook that
        never calls proceed() skips everything inside it, and None is
        returned.
        """
        results: List[Any] = []

        def innermost():
            results.append(body())
            return results[-1]

        call = innermost
        for hook in reversed(self.hooks_for(verb, HookPhase.AROUND)):
            call = _bind_around(hook, record, call)
        call()
        return results[-1] if results else None

    def run_after(self, verb: str, record: Any) -> None:
        for hook in self.hooks_for(verb, HookPhase.AFTER):
            hook(record)

    def run(self, verb: str, record: Any, body: Callable[[], Any]) -> Any:
        """Run the full before/around/after chain of one verb around `body`."""
        self.run_before(verb, record)
        result = self.run_around(verb, record, body)
        self.run_after(verb, record)
        return result


def _bind_around(hook: Hook, record: Any, inner: Callable[[], Any]) -> Callable[[], Any]:
    def layer():
        return hook(record, inner)
    return layer
