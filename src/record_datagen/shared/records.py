"""Helpers for reading candidate records."""

from collections.abc import Mapping
from typing import Any

CandidateRecord = dict[str, Any]


def lookup_field(record: Mapping[str, Any] | None, path: str) -> Any:
    """
    Resolve a possibly dotted field path against a record.

    Each segment is matched exactly first, then case-insensitively, since the
    record store treats field names case-insensitively.

    Returns:
        The value, or None when any segment is missing
    """
    value: Any = record
    for part in path.split("."):
        if not isinstance(value, Mapping):
            return None
        if part in value:
            value = value[part]
            continue
        lowered = part.lower()
        for key, candidate in value.items():
            if isinstance(key, str) and key.lower() == lowered:
                value = candidate
                break
        else:
            return None
    return value


def is_blank(value: Any) -> bool:
    """True for None and for strings that are empty after trimming."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False
