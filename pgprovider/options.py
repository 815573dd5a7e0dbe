"""Typed accessors over the loosely-typed provider option entries."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Iterator, Sequence

from .errors import ConfigurationError

BUILDER_PREFIX = "builder:"

DEFAULT_SCHEMA = "default-schema"
COMMAND_TIMEOUT = "command-timeout"
ENABLE_RETRY_ON_FAILURE = "enable-retry-on-failure"
RETRY_COUNT = "retry-count"
RETRY_DELAY_SECONDS = "retry-delay-seconds"
ENABLE_SENSITIVE_DATA_LOGGING = "EnableSensitiveDataLogging"

_TRUE_VALUES = frozenset({"true", "1", "yes"})
_INTEGER = re.compile(r"^\s*[+-]?[0-9]+\s*$")
_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1


@dataclass(frozen=True, slots=True)
class OptionEntry:
    """One externally supplied configuration knob."""

    key: str
    value: str


def parse_bool(value: str) -> bool:
    """Permissive boolean: ``true``, ``1`` or ``yes`` in any case."""

    return value.lower() in _TRUE_VALUES


def parse_int(value: str, *, key: str | None = None, positive: bool = False) -> int:
    """Parse a culture-invariant 32-bit integer or raise ConfigurationError."""

    label = f"option '{key}'" if key else "value"
    if not _INTEGER.match(value):
        raise ConfigurationError(f"Invalid integer for {label}: {value!r}")
    number = int(value.strip())
    if not _INT32_MIN <= number <= _INT32_MAX:
        raise ConfigurationError(f"Integer out of range for {label}: {value!r}")
    if positive and number <= 0:
        raise ConfigurationError(f"Expected a positive integer for {label}: {value!r}")
    return number


class ProviderOptions:
    """Read-only view over option entries with case-insensitive lookup."""

    def __init__(self, entries: Iterable[OptionEntry | tuple[str, str]] | None = None) -> None:
        self._entries: tuple[OptionEntry, ...] = tuple(
            entry if isinstance(entry, OptionEntry) else OptionEntry(str(entry[0]), str(entry[1]))
            for entry in entries or ()
        )

    def __iter__(self) -> Iterator[OptionEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"ProviderOptions({list(self._entries)!r})"

    @property
    def entries(self) -> Sequence[OptionEntry]:
        return self._entries

    def get(self, key: str) -> str | None:
        """Return the first value whose key matches, ignoring case."""

        wanted = key.casefold()
        for entry in self._entries:
            if entry.key.casefold() == wanted:
                return entry.value
        return None

    def get_str(self, key: str, default: str | None = None) -> str | None:
        value = self.get(key)
        return default if value is None else value

    def get_int(self, key: str, default: int | None = None, *, positive: bool = False) -> int | None:
        value = self.get(key)
        if value is None:
            return default
        return parse_int(value, key=key, positive=positive)

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key)
        if value is None:
            return default
        return parse_bool(value)

    def with_prefix(self, prefix: str) -> list[tuple[str, str]]:
        """Entries whose key starts with ``prefix`` (any case), prefix stripped, in order."""

        folded = prefix.casefold()
        return [
            (entry.key[len(prefix):], entry.value)
            for entry in self._entries
            if entry.key.casefold().startswith(folded)
        ]


__all__ = [
    "BUILDER_PREFIX",
    "COMMAND_TIMEOUT",
    "DEFAULT_SCHEMA",
    "ENABLE_RETRY_ON_FAILURE",
    "ENABLE_SENSITIVE_DATA_LOGGING",
    "OptionEntry",
    "ProviderOptions",
    "RETRY_COUNT",
    "RETRY_DELAY_SECONDS",
    "parse_bool",
    "parse_int",
]
