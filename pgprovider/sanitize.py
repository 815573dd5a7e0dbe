"""Quoting helpers for identifiers interpolated into generated SQL."""

from __future__ import annotations

from .errors import ArgumentError


def quote_identifier(identifier: str | None) -> str:
    """Return ``identifier`` as a double-quoted PostgreSQL identifier."""

    if identifier is None or not identifier.strip():
        raise ArgumentError("Identifiers cannot be null or empty.")
    return '"' + identifier.replace('"', '""') + '"'


__all__ = ["quote_identifier"]
