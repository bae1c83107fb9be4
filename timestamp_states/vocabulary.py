"""
Word Deriver
============

Pure function derivation of the method vocabulary for one timestamp field.

    installed_at -> installed / not_installed / install / uninstall
    published_at -> published / not_published / publish / unpublish

INVARIANTS:
- derive(name, overrides) is a PURE FUNCTION
- Derivation never fails; a word nothing applies to is used verbatim
- An explicit override replaces derivation for that one word only
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Pattern, Tuple
import re

from .errors import ConfigurationError, ErrorCode


WORD_KEYS: Tuple[str, ...] = ("past", "past_negated", "action", "action_negated")

# Past forms whose action is the past minus "ed". The general rules turn
# these into "instal" and "faile".
IRREGULAR_PASTS: Tuple[str, ...] = ("installed", "failed")

# Each rule is applied in turn to the output of the previous one.
ACTION_RULES: Tuple[Tuple[Pattern[str], str], ...] = (
    (re.compile(r"d$"), ""),
    (re.compile(r"([^tvklur])e$"), r"\1"),
    (re.compile(r"lle$"), "l"),
    (re.compile(r"tte$"), "t"),
    (re.compile(r"pp$"), "p"),
)

_AT_SUFFIX = re.compile(r"_at$")


@dataclass(frozen=True)
class FieldVocabulary:
    """
    The four words generated for one timestamp field.

    past            -> "is set" predicate and the state name
    past_negated    -> "is not set" predicate
    action          -> sets the field to now
    action_negated  -> clears the field
    """
    past: str
    past_negated: str
    action: str
    action_negated: str

    @property
    def words(self) -> Tuple[str, str, str, str]:
        return (self.past, self.past_negated, self.action, self.action_negated)

    def as_dict(self) -> Dict[str, str]:
        return dict(zip(WORD_KEYS, self.words))


# =============================================================================
# DERIVATION RULES
# =============================================================================

def past_word(field_name: str) -> str:
    """Field name with a trailing `_at` removed."""
    return _AT_SUFFIX.sub("", field_name, count=1)


def action_word(past: str) -> str:
    """Turn a past-tense word into its verb: published -> publish."""
    if past in IRREGULAR_PASTS:
        return past[:-len("ed")]

    word = past
    for pattern, replacement in ACTION_RULES:
        word = pattern.sub(replacement, word, count=1)
    return word


def validate_overrides(field_name: str, overrides: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """
    Check explicit word overrides and return them as a plain dict.

    Raises ConfigurationError for unknown keys or words that are not
    usable attribute names.
    """
    if not overrides:
        return {}

    checked: Dict[str, str] = {}
    for key, word in overrides.items():
        if key not in WORD_KEYS:
            raise ConfigurationError(
                f"Unknown word override {key!r} for {field_name!r}; "
                f"expected one of {', '.join(WORD_KEYS)}",
                ErrorCode.INVALID_OVERRIDE,
            )
        if not isinstance(word, str) or not word.isidentifier():
            raise ConfigurationError(
                f"Override {key}={word!r} for {field_name!r} is not a valid name",
                ErrorCode.INVALID_OVERRIDE,
            )
        checked[key] = word
    return checked


def derive(field_name: str, overrides: Optional[Mapping[str, str]] = None) -> FieldVocabulary:
    """
    Derive the vocabulary for `field_name`.

    Args:
        field_name: Timestamp column name, e.g. "installed_at"
        overrides: Explicit words keyed by past / past_negated / action /
            action_negated. Derived words are built from overridden ones,
            so overriding `past` also moves the other defaults.

    Returns:
        FieldVocabulary
    """
    explicit = validate_overrides(field_name, overrides)

    past = explicit.get("past") or past_word(field_name)
    action = explicit.get("action") or action_word(past)

    return FieldVocabulary(
        past=past,
        past_negated=explicit.get("past_negated") or f"not_{past}",
        action=action,
        action_negated=explicit.get("action_negated") or f"un{action}",
    )
