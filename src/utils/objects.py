"""
Helpers for working with plain record dictionaries.

Records come back from DynamoDB as nested dicts/lists holding ``Decimal``
numbers; these helpers keep lookups and comparisons independent of that.
"""

import json
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Optional


def is_object(value: Any) -> bool:
    """True for mapping-shaped values (records, nested maps)."""
    return isinstance(value, Mapping)


def get_value_by_path(data: Any, path: Optional[str], default: Any = None) -> Any:
    """
    Read a dot-separated path out of nested mappings.

    Examples:
        >>> get_value_by_path({"author": {"id": "a1"}}, "author.id")
        'a1'
        >>> get_value_by_path({"author": None}, "author.id") is None
        True
    """
    if not path:
        return default

    current = data
    for segment in path.split("."):
        if not is_object(current) or segment not in current:
            return default
        current = current[segment]
    return current


def pick_keys(record: Mapping[str, Any], *keys: str) -> Dict[str, Any]:
    """Return a new dict holding only ``keys`` that exist on ``record``."""
    return {key: record[key] for key in keys if key in record}


def json_default(value: Any) -> Any:
    """``json.dumps`` fallback for DynamoDB-native values."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


def stable_json_key(value: Any) -> str:
    """Canonical serialization used to compare records structurally."""
    return json.dumps(value, sort_keys=True, default=json_default)


def unique_by_structure(values: Iterable[Any]) -> list:
    """Drop structural duplicates while keeping first-seen order."""
    seen: Dict[str, Any] = {}
    for value in values:
        seen.setdefault(stable_json_key(value), value)
    return list(seen.values())
