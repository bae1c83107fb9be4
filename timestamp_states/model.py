"""
Timestamp States Mixin
======================

Adds timestamp states to a record type.

    class Device(TimestampStates, Record):
        __columns__ = {"name": str, "installed_at": datetime}

    Device.timestamp_state("installed_at")

    device = Device.create(name="sensor-1")
    device.installed            # False
    device.install(save=True)   # touch installed_at, save, fire install hooks
    device.not_installed        # False
    Device.query().installed()  # records with installed_at set

The mixin owns, per type: a StateRegistry, a DispatchTable over it, a
HookRegistry, a TransitionSequencer and a TransitionAuditLog. Subclasses
inherit copies; registering on a subclass never changes its parent.

The host base class supplies the persistence contract: column attributes,
value_before_save(column), save(), and optionally define_scope()/query().
"""

from __future__ import annotations
from datetime import datetime
from functools import partial
from typing import Any, List, Mapping, Optional, Sequence, Tuple
import logging

from .audit import TransitionAuditLog
from .clock import LogicalClock
from .coercion import coerce_negated, coerce_timestamp, is_present
from .config import TimestampStateSettings, default_settings
from .dispatch import DispatchTable, OperationKind, Resolution
from .errors import ConfigurationError, ErrorCode, UnknownOperation
from .hooks import HookRegistry
from .query import RangeExpression, parse_range_text, to_time_range
from .registry import StateRegistry, StateRegistryEntry
from .sequencer import TransitionSequencer
from .vocabulary import FieldVocabulary


logger = logging.getLogger(__name__)

SYSTEM_CLOCK = LogicalClock.live(record_ticks=False)


class TimestampStates:
    """
    Mixin giving a record type timestamp states.

    Must come before the persistence base class in the bases list so that
    its save() wraps the host's save().
    """

    __clock__: LogicalClock = SYSTEM_CLOCK
    __timestamp_settings__: Optional[TimestampStateSettings] = None

    _timestamp_registry: StateRegistry
    _timestamp_hooks: HookRegistry
    _timestamp_dispatch: DispatchTable
    _timestamp_sequencer: TransitionSequencer
    _timestamp_audit: TransitionAuditLog

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)

        parent_hooks = getattr(cls, "_timestamp_hooks", None)
        cls._timestamp_hooks = parent_hooks.child() if parent_hooks is not None else HookRegistry()

        collaborators = dict(
            hooks=cls._timestamp_hooks,
            scope_sink=cls._define_state_scopes,
            scope_drop=cls._drop_state_scopes,
            reserved=cls._is_real_attribute,
        )
        parent_registry = getattr(cls, "_timestamp_registry", None)
        if parent_registry is not None:
            cls._timestamp_registry = parent_registry.copy_for(cls.__name__, **collaborators)
        else:
            cls._timestamp_registry = StateRegistry(cls.__name__, **collaborators)

        cls._timestamp_dispatch = DispatchTable(cls._timestamp_registry)
        cls._timestamp_audit = TransitionAuditLog(cls.__name__)
        cls._timestamp_sequencer = TransitionSequencer(cls._timestamp_registry, cls._timestamp_audit)

        if hasattr(cls, "define_scope"):
            cls.define_scope("with_timestamp_state", cls._scope_with_timestamp_state)
            cls.define_scope("with_timestamp_state_within", cls._scope_with_timestamp_state_within)

    # =========================================================================
    # TYPE DEFINITION
    # =========================================================================

    @classmethod
    def timestamp_state(
        cls,
        field_name: str,
        words: Optional[Mapping[str, str]] = None,
        define_scopes: Optional[bool] = None,
        aliases: Sequence[str] = (),
    ) -> StateRegistryEntry:
        """
        Register a timestamp field.

        Args:
            field_name: Timestamp column, e.g. "published_at"
            words: Explicit past / past_negated / action / action_negated
            define_scopes: Register query scopes (default from settings)
            aliases: Extra names backed by the same column

        Raises:
            ConfigurationError: on vocabulary collisions or bad overrides
        """
        if define_scopes is None:
            define_scopes = cls.timestamp_settings().define_scopes
        if define_scopes:
            cls._require_scope_host(field_name)
        return cls._timestamp_registry.configure(
            field_name, words=words, define_scopes=define_scopes, aliases=aliases,
        )

    @classmethod
    def alias_timestamp_state(
        cls,
        field_name: str,
        alias_name: str,
        define_scopes: Optional[bool] = None,
    ) -> StateRegistryEntry:
        """Register `alias_name` as a view of `field_name` with its own vocabulary."""
        if define_scopes is None:
            define_scopes = cls.timestamp_settings().define_scopes
        if define_scopes:
            cls._require_scope_host(alias_name)
        return cls._timestamp_registry.add_alias(field_name, alias_name, define_scopes=define_scopes)

    @classmethod
    def freeze_timestamp_states(cls) -> None:
        cls._timestamp_registry.freeze()

    @classmethod
    def timestamp_state_vocabularies(cls) -> List[Tuple[str, FieldVocabulary]]:
        """(field, vocabulary) pairs in registration order."""
        return cls._timestamp_registry.all_vocabularies()

    @classmethod
    def timestamp_state_registry(cls) -> StateRegistry:
        return cls._timestamp_registry

    @classmethod
    def timestamp_hooks(cls) -> HookRegistry:
        return cls._timestamp_hooks

    @classmethod
    def transition_audit(cls) -> TransitionAuditLog:
        return cls._timestamp_audit

    @classmethod
    def timestamp_settings(cls) -> TimestampStateSettings:
        return cls.__timestamp_settings__ or default_settings()

    # =========================================================================
    # SCOPES
    # =========================================================================

    @classmethod
    def _require_scope_host(cls, field_name: str) -> None:
        if not hasattr(cls, "define_scope"):
            raise ConfigurationError(
                f"{cls.__name__} cannot define scopes for {field_name!r}; "
                "pass define_scopes=False",
                ErrorCode.SCOPES_UNSUPPORTED,
            )

    @classmethod
    def _define_state_scopes(cls, entry: StateRegistryEntry) -> None:
        cls._require_scope_host(entry.field)
        words = entry.vocabulary
        cls.define_scope(words.past, partial(_scope_set, entry.column))
        cls.define_scope(words.past_negated, partial(_scope_unset, entry.column))
        cls.define_scope(entry.field, partial(_scope_in_range, cls, entry.column))

    @classmethod
    def _drop_state_scopes(cls, entry: StateRegistryEntry) -> None:
        words = entry.vocabulary
        for name in (words.past, words.past_negated):
            cls.remove_scope(name)

    @classmethod
    def _scope_with_timestamp_state(cls, query, column: str, expression: RangeExpression,
                                    timezone: Optional[str] = None):
        zone = timezone or cls.timestamp_settings().default_timezone
        return query.where_in_range(column, to_time_range(expression, zone))

    @classmethod
    def _scope_with_timestamp_state_within(cls, query, column: str, dates,
                                           timezone: Optional[str] = None):
        zone = timezone or cls.timestamp_settings().default_timezone
        return query.where_in_range(column, parse_range_text(dates, zone))

    @classmethod
    def with_timestamp_state(cls, column: str, expression: RangeExpression,
                             timezone: Optional[str] = None):
        """Records whose `column` falls in `expression` (native range or text)."""
        return cls._scope_with_timestamp_state(cls.query(), column, expression, timezone)

    @classmethod
    def with_timestamp_state_within(cls, column: str, dates, timezone: Optional[str] = None):
        """Records whose `column` falls in a textual date range."""
        return cls._scope_with_timestamp_state_within(cls.query(), column, dates, timezone)

    # =========================================================================
    # INSTANCE DISPATCH
    # =========================================================================

    @property
    def hooks(self) -> HookRegistry:
        """Hooks for this instance only; the type's hooks run first."""
        registry = self.__dict__.get("_instance_hooks")
        if registry is None:
            registry = type(self)._timestamp_hooks.child()
            self.__dict__["_instance_hooks"] = registry
        return registry

    @classmethod
    def _is_real_attribute(cls, name: str) -> bool:
        """Defined on the type itself: methods, properties, class attributes."""
        return any(name in klass.__dict__ for klass in cls.__mro__)

    def __getattr__(self, name: str) -> Any:
        # Only called when normal lookup failed: real columns and methods win.
        if name.startswith("_"):
            raise AttributeError(name)

        cls = type(self)
        if cls._is_real_attribute(name):
            # A property raised AttributeError; let the original error out.
            return object.__getattribute__(self, name)

        column = cls._timestamp_registry.column_for_alias(name)
        if column is not None:
            return getattr(self, column)

        resolution = cls._timestamp_dispatch.lookup(name)
        if resolution is None:
            raise UnknownOperation(cls.__name__, name)
        if resolution.kind.is_query:
            return self._perform(resolution)
        return partial(self._perform, resolution)

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_") or name in self.__dict__ or type(self)._is_real_attribute(name):
            super().__setattr__(name, value)
            return

        cls = type(self)
        column = cls._timestamp_registry.column_for_alias(name)
        if column is not None:
            super().__setattr__(column, value)
            return

        resolution = cls._timestamp_dispatch.lookup(f"{name}=")
        if resolution is not None:
            self._perform(resolution, value)
            return

        super().__setattr__(name, value)

    def __dir__(self) -> List[str]:
        names = set(super().__dir__())
        names.update(n for n in type(self)._timestamp_dispatch.names() if n.isidentifier())
        names.update(entry.field for entry in type(self)._timestamp_registry if entry.is_alias)
        return sorted(names)

    def _accepts_attribute(self, name: str) -> bool:
        cls = type(self)
        return (
            super()._accepts_attribute(name)
            or cls._timestamp_registry.column_for_alias(name) is not None
            or cls._timestamp_dispatch.responds_to(f"{name}=")
        )

    def send(self, name: str, *args: Any, **kwargs: Any) -> Any:
        """
        Invoke `name` with the full operation grammar.

        Accepts predicate ("installed?"), bang ("install!") and setter
        ("installed=") forms besides plain method names. Real attributes and
        columns win over dispatch, as with plain attribute access.
        """
        if not self._has_real_attribute(name):
            resolution = type(self)._timestamp_dispatch.lookup(name)
            if resolution is not None:
                return self._perform(resolution, *args, **kwargs)

        attribute = getattr(self, name)
        if callable(attribute):
            return attribute(*args, **kwargs)
        if args or kwargs:
            raise TypeError(f"{type(self).__name__}.{name} is not callable")
        return attribute

    def _has_real_attribute(self, name: str) -> bool:
        return name in self.__dict__ or type(self)._is_real_attribute(name)

    def responds_to(self, name: str) -> bool:
        """True for any name send() or attribute access would resolve."""
        cls = type(self)
        return (
            cls._timestamp_dispatch.responds_to(name)
            or cls._timestamp_registry.column_for_alias(name) is not None
            or self._has_real_attribute(name)
        )

    def _perform(self, resolution: Resolution, *args: Any, save: bool = False) -> Any:
        kind = resolution.kind
        column = resolution.column
        clock = type(self).__clock__

        if kind.is_assignment:
            if len(args) != 1:
                raise TypeError(f"{resolution.name} takes exactly one value ({len(args)} given)")
            coerce = coerce_timestamp if kind is OperationKind.ASSIGN else coerce_negated
            setattr(self, column, coerce(args[0], clock))
            return getattr(self, column)

        if args:
            raise TypeError(f"{resolution.name} takes no positional arguments")

        if kind is OperationKind.IS_SET:
            return is_present(getattr(self, column))
        if kind is OperationKind.IS_UNSET:
            return not is_present(getattr(self, column))

        if kind in (OperationKind.TOUCH, OperationKind.TOUCH_AND_SAVE):
            setattr(self, column, clock.now())
        else:
            setattr(self, column, None)

        if kind.saves or save:
            self.save()
        return getattr(self, column)

    # =========================================================================
    # SAVE
    # =========================================================================

    def save(self):
        """Save through the host, wrapped in the hooks of entering states."""
        cls = type(self)
        return cls._timestamp_sequencer.run(self, super().save, self.hooks)

    def active_timestamp_states(self) -> List[str]:
        """`past` words of every state currently set, in registration order."""
        return [
            entry.vocabulary.past
            for entry in type(self)._timestamp_registry
            if is_present(getattr(self, entry.column))
        ]

    def timestamp_state_entered_at(self, field_name: str) -> Optional[datetime]:
        """Stored timestamp of a registered state (or alias)."""
        entry = type(self)._timestamp_registry.get(field_name)
        if entry is None:
            raise ConfigurationError(
                f"{type(self).__name__} has no timestamp state {field_name!r}",
                ErrorCode.UNKNOWN_FIELD,
            )
        return getattr(self, entry.column)


def _scope_set(column: str, query):
    return query.where_not_null(column)


def _scope_unset(column: str, query):
    return query.where_null(column)


def _scope_in_range(model, column: str, query, expression: RangeExpression,
                    timezone: Optional[str] = None):
    return model._scope_with_timestamp_state(query, column, expression, timezone)
