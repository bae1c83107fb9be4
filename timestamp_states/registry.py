"""
State Registry
==============

Per-model-type record of every registered timestamp state.

RESPONSIBILITY: field -> vocabulary, scope flag, backing column, aliases
ALLOWED INPUTS: field registrations during type definition
OUTPUTS: ordered StateRegistryEntry sequence

INVARIANTS:
- Iteration order is registration order; the transition sequencer nests
  hooks in this order
- Every word is unique across all entries of one registry
- Entries are immutable; re-registration and aliasing replace an entry in
  place, keeping its position
- No mutation after freeze()
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple
import logging

from .errors import ConfigurationError, ErrorCode
from .hooks import HookRegistry
from .vocabulary import FieldVocabulary, derive, validate_overrides


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StateRegistryEntry:
    """
    One registered timestamp state.

    For an alias entry `column` names the aliased field's column and
    `field` is the alias name; otherwise both are the same.
    """
    field: str
    column: str
    vocabulary: FieldVocabulary
    define_scopes: bool = True
    overrides: Tuple[Tuple[str, str], ...] = ()
    aliases: Tuple[str, ...] = ()

    @property
    def is_alias(self) -> bool:
        return self.field != self.column

    @property
    def words(self) -> Tuple[str, str, str, str]:
        return self.vocabulary.words


ScopeSink = Callable[[StateRegistryEntry], None]
ReservedCheck = Callable[[str], bool]


class StateRegistry:
    """
    Ordered registry of timestamp states for one model type.

    Collaborators:
        hooks: receives define(action, action_negated) for every entry, and
            undefine() for verbs a re-registration stops using
        scope_sink: called with each entry registered with define_scopes
        scope_drop: called with the previous entry when re-registration or
            aliasing replaces its scoped words
        reserved: answers whether a word is already an attribute of the host
            type; such words are rejected
    """

    def __init__(
        self,
        owner: str,
        hooks: Optional[HookRegistry] = None,
        scope_sink: Optional[ScopeSink] = None,
        scope_drop: Optional[ScopeSink] = None,
        reserved: Optional[ReservedCheck] = None,
    ):
        self._owner = owner
        self._hooks = hooks
        self._scope_sink = scope_sink
        self._scope_drop = scope_drop
        self._reserved = reserved
        self._entries: Dict[str, StateRegistryEntry] = {}
        self._frozen = False
        self._version = 0

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def version(self) -> int:
        """Incremented on every change; lets lookup tables detect staleness."""
        return self._version

    @property
    def frozen(self) -> bool:
        return self._frozen

    def copy_for(
        self,
        owner: str,
        hooks: Optional[HookRegistry] = None,
        scope_sink: Optional[ScopeSink] = None,
        scope_drop: Optional[ScopeSink] = None,
        reserved: Optional[ReservedCheck] = None,
    ) -> StateRegistry:
        """Unfrozen copy with the same entries, for a subclass."""
        registry = StateRegistry(
            owner, hooks=hooks, scope_sink=scope_sink, scope_drop=scope_drop, reserved=reserved,
        )
        registry._entries = dict(self._entries)
        return registry

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def configure(
        self,
        field_name: str,
        words: Optional[Mapping[str, str]] = None,
        define_scopes: bool = True,
        aliases: Sequence[str] = (),
    ) -> StateRegistryEntry:
        """
        Register (or re-register) a timestamp field.

        Re-registration merges explicit overrides: later explicit words win,
        earlier explicit words not mentioned again are kept.
        """
        self._ensure_mutable()
        existing = self._entries.get(field_name)
        column = existing.column if existing is not None else field_name
        self._commit(self._build(field_name, column, words, define_scopes))

        for alias_name in ([aliases] if isinstance(aliases, str) else aliases):
            self.add_alias(field_name, alias_name, define_scopes=define_scopes)

        return self._entries[field_name]

    def add_alias(
        self,
        field_name: str,
        alias_name: str,
        define_scopes: bool = True,
    ) -> StateRegistryEntry:
        """
        Register `alias_name` as a second state backed by `field_name`'s column.

        The alias derives its own vocabulary and gets its own hook slots.
        Aliases are only ever appended.
        """
        self._ensure_mutable()
        target = self._entries.get(field_name)
        if target is None:
            raise ConfigurationError(
                f"Cannot alias unregistered field {field_name!r} on {self._owner}",
                ErrorCode.UNKNOWN_FIELD,
            )

        clash = self._entries.get(alias_name)
        if clash is not None and clash.column != target.column:
            raise ConfigurationError(
                f"{alias_name!r} is already registered on {self._owner} for column {clash.column!r}",
                ErrorCode.VOCABULARY_COLLISION,
            )

        # Build (and collision-check) the alias before touching the target.
        entry = self._build(alias_name, target.column, None, define_scopes)

        if alias_name not in target.aliases:
            self._entries[field_name] = replace(target, aliases=target.aliases + (alias_name,))
            self._version += 1

        return self._commit(entry)

    def freeze(self) -> None:
        """End the initialization phase."""
        self._frozen = True

    def _build(
        self,
        field_name: str,
        column: str,
        words: Optional[Mapping[str, str]],
        define_scopes: bool,
    ) -> StateRegistryEntry:
        """Validated entry for `field_name`; the registry is not changed."""
        existing = self._entries.get(field_name)
        overrides = dict(existing.overrides) if existing is not None else {}
        overrides.update(validate_overrides(field_name, words))

        vocabulary = derive(field_name, overrides)
        self._check_collisions(field_name, vocabulary)

        return StateRegistryEntry(
            field=field_name,
            column=column,
            vocabulary=vocabulary,
            define_scopes=define_scopes,
            overrides=tuple(sorted(overrides.items())),
            aliases=existing.aliases if existing is not None else (),
        )

    def _commit(self, entry: StateRegistryEntry) -> StateRegistryEntry:
        previous = self._entries.get(entry.field)
        self._entries[entry.field] = entry
        self._version += 1

        logger.debug(
            "%s: registered timestamp state %s (column=%s) words=%s",
            self._owner, entry.field, entry.column, entry.vocabulary.as_dict(),
        )

        if previous is not None and previous.vocabulary != entry.vocabulary:
            self._retire(previous, entry)

        if self._hooks is not None:
            self._hooks.define(entry.vocabulary.action, entry.vocabulary.action_negated)
        if entry.define_scopes and self._scope_sink is not None:
            self._scope_sink(entry)

        return entry

    def _retire(self, previous: StateRegistryEntry, entry: StateRegistryEntry) -> None:
        """Drop hook slots and scopes of words `entry` no longer uses."""
        stale = [word for word in previous.words if word not in entry.words]
        logger.warning(
            "%s: re-registration of %s replaced words %s",
            self._owner, entry.field, stale,
        )
        if self._hooks is not None:
            verbs = (previous.vocabulary.action, previous.vocabulary.action_negated)
            self._hooks.undefine(*[verb for verb in verbs if verb in stale])
        if previous.define_scopes and self._scope_drop is not None:
            self._scope_drop(previous)

    def _check_collisions(self, field_name: str, vocabulary: FieldVocabulary) -> None:
        words = vocabulary.words
        if len(set(words)) != len(words):
            raise ConfigurationError(
                f"Vocabulary for {field_name!r} on {self._owner} repeats a word: {words}",
                ErrorCode.VOCABULARY_COLLISION,
            )

        if self._reserved is not None:
            taken = [word for word in words if self._reserved(word)]
            if taken:
                raise ConfigurationError(
                    f"Vocabulary for {field_name!r} on {self._owner} shadows existing "
                    f"attributes: {', '.join(taken)}",
                    ErrorCode.VOCABULARY_COLLISION,
                )

        for other in self._entries.values():
            if other.field == field_name:
                continue
            shared = set(words) & set(other.words)
            if shared:
                raise ConfigurationError(
                    f"Vocabulary for {field_name!r} on {self._owner} collides with "
                    f"{other.field!r}: {', '.join(sorted(shared))}",
                    ErrorCode.VOCABULARY_COLLISION,
                )

    def _ensure_mutable(self) -> None:
        if self._frozen:
            raise ConfigurationError(
                f"Timestamp state registry for {self._owner} is frozen",
                ErrorCode.REGISTRY_FROZEN,
            )

    # =========================================================================
    # READ ACCESS
    # =========================================================================

    def get(self, field_name: str) -> Optional[StateRegistryEntry]:
        return self._entries.get(field_name)

    def entries(self) -> List[StateRegistryEntry]:
        """All entries in registration order."""
        return list(self._entries.values())

    def all_vocabularies(self) -> List[Tuple[str, FieldVocabulary]]:
        return [(entry.field, entry.vocabulary) for entry in self._entries.values()]

    def aliases_of(self, field_name: str) -> Tuple[str, ...]:
        entry = self._entries.get(field_name)
        return entry.aliases if entry is not None else ()

    def column_for_alias(self, name: str) -> Optional[str]:
        """Backing column when `name` is an alias entry, else None."""
        entry = self._entries.get(name)
        if entry is not None and entry.is_alias:
            return entry.column
        return None

    def __contains__(self, field_name: object) -> bool:
        return field_name in self._entries

    def __iter__(self) -> Iterator[StateRegistryEntry]:
        return iter(self.entries())

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"StateRegistry({self._owner}, fields={list(self._entries)})"
