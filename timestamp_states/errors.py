"""
Error Contracts
===============

Explicit error codes and the exception hierarchy for timestamp states.

Every failure mode is enumerated. Nothing here is retried or swallowed:
errors surface synchronously to the immediate caller.

TAXONOMY:
=========
- ConfigurationError: raised while a model type is being defined
- UnknownOperation: a name that matches no registered vocabulary
- ValueCoercionError: an unparsable value or range expression
- PersistenceFailure: the save primitive (or a query) failed
"""

from __future__ import annotations
from enum import Enum, auto
from typing import Optional, Tuple


class ErrorCode(Enum):
    """
    Explicit error codes for deterministic error handling.
    No silent fallbacks - every error state is enumerated.
    """
    # Configuration errors (type-definition time)
    VOCABULARY_COLLISION = auto()
    INVALID_OVERRIDE = auto()
    UNDEFINED_HOOK = auto()
    REGISTRY_FROZEN = auto()
    UNKNOWN_FIELD = auto()
    SCOPES_UNSUPPORTED = auto()

    # Dispatch errors
    UNKNOWN_OPERATION = auto()

    # Coercion errors
    UNPARSABLE_VALUE = auto()
    INVALID_TIME_RANGE = auto()
    UNKNOWN_TIMEZONE = auto()

    # Persistence errors
    PERSISTENCE_FAILED = auto()
    RECORD_NOT_FOUND = auto()


class TimestampStateError(Exception):
    """Base class for every error raised by this package."""

    default_code: ErrorCode = ErrorCode.PERSISTENCE_FAILED

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        context: Tuple[Tuple[str, str], ...] = (),
    ):
        self.code = code or self.default_code
        self.message = message
        self.context = context
        super().__init__(f"[{self.code.name}] {message}")

    def with_context(self, key: str, value: str) -> TimestampStateError:
        """Attach extra context and return self for chaining."""
        self.context = self.context + ((key, value),)
        return self


class ConfigurationError(TimestampStateError):
    """Invalid field registration: vocabulary collision, bad override, frozen registry."""

    default_code = ErrorCode.VOCABULARY_COLLISION


class UnknownOperation(TimestampStateError, AttributeError):
    """
    A requested name matched no registered vocabulary.

    Subclasses AttributeError so that getattr() defaults, hasattr() and
    ordinary attribute-error handling observe it like any missing attribute.
    """

    default_code = ErrorCode.UNKNOWN_OPERATION

    def __init__(self, owner: str, name: str):
        super().__init__(f"'{owner}' object has no attribute '{name}'")
        # AttributeError.__init__ resets name, so assign afterwards
        self.owner = owner
        self.name = name


class ValueCoercionError(TimestampStateError, ValueError):
    """A value or range expression could not be parsed into a timestamp."""

    default_code = ErrorCode.UNPARSABLE_VALUE


class PersistenceFailure(TimestampStateError):
    """Opaque failure of the save primitive or of a store query."""

    default_code = ErrorCode.PERSISTENCE_FAILED
