"""
Settings
========

Process-level defaults for timestamp states.

Read once from the environment; a model type may override them by setting
`__timestamp_settings__` on the class.

ENVIRONMENT:
- TIMESTAMP_STATES_DEFAULT_TIMEZONE: zone used for textual range queries
- TIMESTAMP_STATES_DEFINE_SCOPES: "0"/"false" disables scopes by default
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Mapping, Optional
import os


ENV_PREFIX = "TIMESTAMP_STATES_"

DEFAULT_TIMEZONE = "EDT"

_FALSE_WORDS = ("0", "false", "no", "off")


@dataclass(frozen=True)
class TimestampStateSettings:
    default_timezone: str = DEFAULT_TIMEZONE
    define_scopes: bool = True

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> TimestampStateSettings:
        """Build settings from TIMESTAMP_STATES_* environment variables."""
        env = os.environ if environ is None else environ
        settings = cls()

        timezone_name = env.get(f"{ENV_PREFIX}DEFAULT_TIMEZONE")
        if timezone_name:
            settings = replace(settings, default_timezone=timezone_name.strip())

        scopes = env.get(f"{ENV_PREFIX}DEFINE_SCOPES")
        if scopes is not None:
            settings = replace(settings, define_scopes=scopes.strip().lower() not in _FALSE_WORDS)

        return settings


def default_settings() -> TimestampStateSettings:
    return TimestampStateSettings.from_env()
