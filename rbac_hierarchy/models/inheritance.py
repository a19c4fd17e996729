"""
Inheritance models for the permission inheritance engine.

This module defines the derived structures (provenance records, inheritance
tree nodes, conflicts), the delegation and override records, and the
preview/validation results.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field, model_validator

from rbac_hierarchy.utils.helpers import utc_now


class GrantSource(str, Enum):
    """Where an effective permission comes from."""
    DIRECT = "direct"
    INHERITED = "inherited"
    DELEGATION = "delegation"


class ConflictType(str, Enum):
    """Permission conflict types."""
    DUPLICATE = "duplicate"
    CONTRADICTORY = "contradictory"
    CIRCULAR = "circular"
    ESCALATION = "escalation"


class ConflictResolution(str, Enum):
    """Resolutions an administrator may commit for a conflict."""
    ALLOW = "allow"
    DENY = "deny"
    HIGHEST_PRIORITY = "highest_priority"


class DelegationStatus(str, Enum):
    """Delegation lifecycle states."""
    ACTIVE = "active"
    REVOKED = "revoked"
    EXPIRED = "expired"


class ChangeType(str, Enum):
    """Hypothetical mutations accepted by the previewer."""
    ADD_PERMISSION = "add_permission"
    REMOVE_PERMISSION = "remove_permission"
    MOVE_ROLE = "move_role"
    ADD_DELEGATION = "add_delegation"
    REVOKE_DELEGATION = "revoke_delegation"


class EffectivePermission(BaseModel):
    """A permission grant together with its provenance."""
    permission_id: str = Field(..., description="Granted permission")
    source: GrantSource = Field(..., description="Grant source kind")
    source_role_id: str = Field(..., description="Role the grant originates from")
    source_role_name: str = Field(default="", description="Name of the source role")
    source_level: int = Field(..., description="Level of the source role")
    inheritance_path: List[str] = Field(default_factory=list, description="Ancestors walked to reach the source")
    delegation_id: Optional[str] = Field(default=None, description="Delegation carrying the grant")
    conditions: Dict[str, Any] = Field(default_factory=dict, description="Conditions attached to the grant")
    priority: int = Field(default=100, description="Display priority (direct 100, inherited 90 and below, delegated 80)")
    granted_at: datetime = Field(default_factory=utc_now, description="Grant timestamp used for tie-breaking")
    overridden_sources: List[str] = Field(default_factory=list, description="Sources discarded in favour of this one")
    override: Optional[ConflictResolution] = Field(default=None, description="Committed conflict resolution, if any")

    @property
    def source_key(self) -> str:
        """Identity of the grant source (delegation id or role id)."""
        return self.delegation_id or self.source_role_id


class InheritedPermission(BaseModel):
    """Inherited permission entry shown on a tree node."""
    permission_id: str
    source_role_id: str
    source_role_name: str
    inheritance_path: List[str] = Field(default_factory=list)
    priority: int = 90


class PermissionConflict(BaseModel):
    """Conflict detected in a role's computed permission set."""
    id: str = Field(..., description="Deterministic conflict identifier")
    role_id: str = Field(..., description="Role the conflict was found on")
    permission_id: Optional[str] = Field(default=None, description="Permission involved (none for circular)")
    conflict_type: ConflictType = Field(..., description="Conflict type")
    details: str = Field(default="", description="Human readable explanation")
    sources: List[str] = Field(default_factory=list, description="Source keys involved")
    blocking: bool = Field(default=False, description="Whether the conflict blocks a stable effective set")


class InheritanceTreeNode(BaseModel):
    """Node of the inheritance forest."""
    role_id: str
    role_name: str = ""
    level: int
    direct_permissions: Set[str] = Field(default_factory=set)
    inherited_permissions: List[InheritedPermission] = Field(default_factory=list)
    effective_permissions: Set[str] = Field(default_factory=set)
    conflicts: List[PermissionConflict] = Field(default_factory=list)
    children: List["InheritanceTreeNode"] = Field(default_factory=list)

    def walk(self):
        """Yield this node and all descendants depth-first."""
        yield self
        for child in self.children:
            yield from child.walk()


class ConflictOverride(BaseModel):
    """Committed conflict resolution keyed by (role_id, permission_id)."""
    role_id: str
    permission_id: str
    resolution: ConflictResolution
    conflict_type: ConflictType
    source_fingerprint: List[str] = Field(default_factory=list, description="Sorted source keys at resolution time")
    resolved_at: datetime = Field(default_factory=utc_now)
    resolved_by: Optional[str] = None
    notes: Optional[str] = None


class PermissionDelegation(BaseModel):
    """Time-bounded grant of permissions from a senior role to a junior one."""
    id: str = Field(..., description="Delegation identifier")
    delegator_role_id: str = Field(..., description="Granting role")
    delegatee_role_id: str = Field(..., description="Receiving role")
    delegated_permissions: Set[str] = Field(..., min_length=1, description="Delegated permission ids")
    conditions: Dict[str, Any] = Field(default_factory=dict, description="Grant conditions (e.g. scope)")
    max_delegation_depth: int = Field(default=1, ge=1, description="Longest chain this delegation may be part of")
    chain_depth: int = Field(default=1, ge=1, description="Position of this delegation in its chain")
    upstream_delegation_ids: List[str] = Field(default_factory=list, description="Delegations the delegator holds the permissions through")
    is_revocable: bool = Field(default=True)
    status: DelegationStatus = Field(default=DelegationStatus.ACTIVE, description="Stored status")
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[str] = None
    revoke_reason: Optional[str] = None

    def status_at(self, now: datetime) -> DelegationStatus:
        """Lazily evaluated status: past expiry reads as expired."""
        if self.status != DelegationStatus.ACTIVE:
            return self.status
        if self.expires_at is not None and now >= self.expires_at:
            return DelegationStatus.EXPIRED
        return DelegationStatus.ACTIVE

    def is_active(self, now: datetime) -> bool:
        """Check whether the delegation contributes grants at ``now``."""
        return self.status_at(now) == DelegationStatus.ACTIVE


class DelegationSpec(BaseModel):
    """Input for creating a delegation."""
    delegator_role_id: str
    delegatee_role_id: str
    permissions: Set[str] = Field(..., min_length=1)
    expires_at: Optional[datetime] = None
    max_depth: Optional[int] = Field(default=None, ge=1)
    conditions: Dict[str, Any] = Field(default_factory=dict)
    is_revocable: bool = True


class PermissionChange(BaseModel):
    """Hypothetical mutation to preview."""
    change_type: ChangeType
    role_id: Optional[str] = None
    permission_ids: Set[str] = Field(default_factory=set)
    new_parent_id: Optional[str] = None
    new_level: Optional[int] = None
    delegation: Optional[DelegationSpec] = None
    delegation_id: Optional[str] = None

    @model_validator(mode="after")
    def check_variant_fields(self):
        """Each change type requires its own fields."""
        kind = self.change_type
        if kind in (ChangeType.ADD_PERMISSION, ChangeType.REMOVE_PERMISSION):
            if not self.role_id or not self.permission_ids:
                raise ValueError(f"{kind.value} requires role_id and permission_ids")
        elif kind == ChangeType.MOVE_ROLE:
            if not self.role_id or self.new_level is None:
                raise ValueError("move_role requires role_id and new_level")
        elif kind == ChangeType.ADD_DELEGATION:
            if self.delegation is None:
                raise ValueError("add_delegation requires delegation")
        elif kind == ChangeType.REVOKE_DELEGATION:
            if not self.delegation_id:
                raise ValueError("revoke_delegation requires delegation_id")
        return self


class RolePermissionDiff(BaseModel):
    """Effect of a previewed change on one role."""
    role_id: str
    added: Set[str] = Field(default_factory=set)
    removed: Set[str] = Field(default_factory=set)
    new_conflicts: List[PermissionConflict] = Field(default_factory=list)
    resolved_conflicts: List[PermissionConflict] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.new_conflicts or self.resolved_conflicts)


class PermissionPreview(BaseModel):
    """Result of a dry-run mutation."""
    change: PermissionChange
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    roles: Dict[str, RolePermissionDiff] = Field(default_factory=dict)


class ValidationIssue(BaseModel):
    """Single validation failure with the error kind it maps to."""
    kind: str = Field(..., description="Error code of the matching HierarchyError subclass")
    message: str
    role_id: Optional[str] = None


class ValidationResult(BaseModel):
    """Outcome of validating a role's inheritance."""
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    issues: List[ValidationIssue] = Field(default_factory=list)

    @classmethod
    def from_issues(cls, issues: List[ValidationIssue]) -> "ValidationResult":
        return cls(
            is_valid=not issues,
            errors=[issue.message for issue in issues],
            issues=issues,
        )


InheritanceTreeNode.model_rebuild()
