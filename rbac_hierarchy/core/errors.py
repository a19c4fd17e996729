"""
Typed errors raised by the permission inheritance engine.

Every mutation error is local and recoverable: the store stays at its last
committed snapshot and the caller receives one of the classes below. They
derive from ValueError so callers that only distinguish "bad request" from
"server failure" keep working.
"""

from typing import Optional


class HierarchyError(ValueError):
    """Base class for role hierarchy errors."""

    code = "hierarchy_error"
    status_code = 400

    def __init__(self, message: str, role_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.role_id = role_id

    def to_dict(self) -> dict:
        """Serialize the error for API responses."""
        return {"error": self.code, "message": self.message}


class CircularHierarchyError(HierarchyError):
    """Mutation would create a cycle in the parent-pointer graph."""

    code = "circular_hierarchy"
    status_code = 409


class InvalidLevelTransition(HierarchyError):
    """Role placed on, or inheriting from, a level the matrix does not permit."""

    code = "invalid_level_transition"
    status_code = 422


class DelegationDepthExceeded(HierarchyError):
    """Delegation chain would exceed its depth bound."""

    code = "delegation_depth_exceeded"
    status_code = 422


class DelegationNotPermitted(HierarchyError):
    """Delegator level may not delegate to the delegatee level."""

    code = "delegation_not_permitted"
    status_code = 403


class UnknownRoleOrPermission(HierarchyError):
    """Catalog lookup miss."""

    code = "unknown_role_or_permission"
    status_code = 404


class UnresolvedConflictBlocksCommit(HierarchyError):
    """A contradictory or circular conflict prevents a stable effective set."""

    code = "unresolved_conflict"
    status_code = 409


class HierarchyNotFoundError(HierarchyError):
    """No hierarchy exists for the tenant (or the id does not match)."""

    code = "hierarchy_not_found"
    status_code = 404


class DuplicateEntityError(HierarchyError):
    """Hierarchy, level or role already exists."""

    code = "duplicate_entity"
    status_code = 409


class ProtectedRoleError(HierarchyError):
    """System roles cannot be removed from the hierarchy."""

    code = "protected_role"
    status_code = 403


class DelegationNotRevocable(HierarchyError):
    """Delegation is not revocable or is already in a terminal state."""

    code = "delegation_not_revocable"
    status_code = 409


class UnknownConflictError(HierarchyError):
    """Conflict id does not match any conflict in the current state."""

    code = "unknown_conflict"
    status_code = 404


class UnknownDelegationError(HierarchyError):
    """Delegation id does not exist for the tenant."""

    code = "unknown_delegation"
    status_code = 404
