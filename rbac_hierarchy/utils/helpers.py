"""
Utility helper functions for the permission inheritance engine.

This module provides common utility functions used throughout the engine.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to timezone-aware UTC.

    Args:
        value: Datetime to normalize (naive values are assumed to be UTC)

    Returns:
        Aware datetime or None

    Examples:
        datetime(2024, 1, 1) -> datetime(2024, 1, 1, tzinfo=timezone.utc)
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def generate_id(prefix: str) -> str:
    """
    Generate a short unique identifier with a readable prefix.

    Args:
        prefix: Identifier prefix (e.g., "delegation", "hierarchy")

    Returns:
        Identifier string

    Examples:
        "delegation" -> "delegation-3f2a9c1b7d4e"
    """
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def conflict_id(conflict_type: str, role_id: str, permission_id: Optional[str]) -> str:
    """
    Build the deterministic identifier of a permission conflict.

    Conflicts are derived on every rebuild, so the identifier is a pure
    function of what the conflict is about rather than a random value.

    Examples:
        ("duplicate", "role-u", "perm-1") -> "duplicate:role-u:perm-1"
        ("circular", "role-x", None) -> "circular:role-x:*"
    """
    return f"{conflict_type}:{role_id}:{permission_id or '*'}"


def parse_conflict_id(value: str) -> Dict[str, Optional[str]]:
    """
    Split a conflict identifier into its parts.

    Role ids never contain a colon, so everything after the second colon
    belongs to the permission id (e.g. "crm:contacts:read").

    Args:
        value: Conflict identifier produced by conflict_id()

    Returns:
        Dictionary with conflict_type, role_id and permission_id keys

    Raises:
        ValueError: If the identifier is malformed
    """
    parts = value.split(":", 2)
    if len(parts) != 3 or not all(parts):
        raise ValueError(f"Malformed conflict id: {value}")

    conflict_type, role_id, permission_id = parts
    return {
        "conflict_type": conflict_type,
        "role_id": role_id,
        "permission_id": None if permission_id == "*" else permission_id,
    }


def conditions_exclusive(left: Dict[str, Any], right: Dict[str, Any]) -> bool:
    """
    Check whether two grant condition sets are mutually exclusive.

    Two condition sets exclude each other when they constrain the same key
    to different values. A missing key is unconstrained.

    Examples:
        ({"scope": "team"}, {"scope": "company"}) -> True
        ({"scope": "team"}, {}) -> False
        ({"scope": "team"}, {"region": "eu"}) -> False
    """
    for key in set(left) & set(right):
        if left[key] != right[key]:
            return True
    return False


def sorted_unique(values: Iterable[str]) -> List[str]:
    """Return the distinct values in sorted order."""
    return sorted(set(values))
