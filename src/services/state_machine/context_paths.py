"""Dot-path access into session context data (e.g. ``okrData.objective``)."""

from typing import Any, Mapping, Optional


def get_nested_value(data: Optional[Mapping[str, Any]], path: str) -> Any:
    """Return the value at ``path`` or None when any segment is missing."""
    current: Any = data
    for key in path.split("."):
        if not isinstance(current, Mapping) or key not in current:
            return None
        current = current[key]
    return current


def has_data(data: Optional[Mapping[str, Any]], path: str) -> bool:
    """True if ``path`` resolves to a present, non-empty value.

    Empty strings (after stripping), empty collections and None all count
    as absent. Numbers and booleans count as present.
    """
    value = get_nested_value(data, path)
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) > 0
    return True
