"""
Per-tenant hierarchy snapshots and the draft mutations applied to them.

A committed TenantState is never mutated. Writers clone it, apply one of the
draft functions below to the clone, validate the clone and swap it in.
The previewer runs the same draft functions without committing.
"""

from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from rbac_hierarchy.core.errors import (
    CircularHierarchyError,
    DuplicateEntityError,
    InvalidLevelTransition,
    UnknownRoleOrPermission,
)
from rbac_hierarchy.models.hierarchy import HierarchyLevel, Permission, Role, RoleHierarchy
from rbac_hierarchy.models.inheritance import (
    ConflictOverride,
    DelegationStatus,
    PermissionDelegation,
)

OverrideKey = Tuple[str, str]


@dataclass
class TenantState:
    """Snapshot of one tenant's hierarchy, roles, delegations and overrides."""
    tenant_id: str
    hierarchy: RoleHierarchy
    roles: Dict[str, Role] = field(default_factory=dict)
    permissions: Dict[str, Permission] = field(default_factory=dict)
    delegations: Dict[str, PermissionDelegation] = field(default_factory=dict)
    overrides: Dict[OverrideKey, ConflictOverride] = field(default_factory=dict)
    version: int = 0
    committed: bool = False

    def clone(self) -> "TenantState":
        """Copy-on-write clone: maps are copied, records are shared until touched."""
        return replace(
            self,
            hierarchy=self.hierarchy.model_copy(deep=True),
            roles=dict(self.roles),
            permissions=dict(self.permissions),
            delegations=dict(self.delegations),
            overrides=dict(self.overrides),
            committed=False,
        )

    def touch_role(self, role_id: str) -> Role:
        """Replace a shared role record with a private copy and return it."""
        role = self.require_role(role_id)
        copy = role.model_copy(deep=True)
        self.roles[role_id] = copy
        return copy

    def require_role(self, role_id: str) -> Role:
        role = self.roles.get(role_id)
        if role is None:
            raise UnknownRoleOrPermission(f"Role '{role_id}' is not part of the hierarchy", role_id=role_id)
        return role

    def require_level(self, level: int) -> HierarchyLevel:
        level_def = self.hierarchy.get_level(level)
        if level_def is None:
            raise InvalidLevelTransition(f"Hierarchy level {level} is not defined")
        return level_def

    def direct_grants(self, role_id: str) -> Set[str]:
        """Direct permissions of a role plus the defaults of its level."""
        role = self.roles.get(role_id)
        if role is None:
            return set()
        grants = set(role.direct_permissions)
        level_def = self.hierarchy.get_level(role.level)
        if level_def is not None:
            grants |= level_def.default_permissions
        return grants

    def children_map(self) -> Dict[str, List[str]]:
        """Map of parent role id to child role ids, ordered by level then id."""
        children: Dict[str, List[str]] = defaultdict(list)
        for role in sorted(self.roles.values(), key=lambda r: (r.level, r.id)):
            if role.parent_role_id:
                children[role.parent_role_id].append(role.id)
        return children

    def descendants_of(self, role_id: str) -> List[str]:
        """All descendants of a role in breadth-first order (cycle safe)."""
        children = self.children_map()
        result: List[str] = []
        seen = {role_id}
        queue = list(children.get(role_id, []))
        while queue:
            current = queue.pop(0)
            if current in seen:
                continue
            seen.add(current)
            result.append(current)
            queue.extend(children.get(current, []))
        return result

    def may_delegate(self, delegator_role_id: str, delegatee_role_id: str) -> bool:
        """Whether the delegator's current level lists the delegatee's current level."""
        delegator = self.roles.get(delegator_role_id)
        delegatee = self.roles.get(delegatee_role_id)
        if delegator is None or delegatee is None:
            return False
        level_def = self.hierarchy.get_level(delegator.level)
        return level_def is not None and delegatee.level in level_def.can_delegate_to

    def active_delegations_to(self, role_id: str, now: datetime) -> List[PermissionDelegation]:
        """
        Active delegations received by a role, oldest first.

        Delegations whose level pair the matrix no longer allows are left out.
        """
        return sorted(
            (
                delegation for delegation in self.delegations.values()
                if delegation.delegatee_role_id == role_id
                and delegation.is_active(now)
                and self.may_delegate(delegation.delegator_role_id, role_id)
            ),
            key=lambda d: (d.chain_depth, d.created_at, d.id),
        )


def place_role(state: TenantState, role: Role, level: int) -> Role:
    """Add a role record to a draft on the given level."""
    if role.id in state.roles:
        raise DuplicateEntityError(f"Role '{role.id}' is already part of the hierarchy", role_id=role.id)
    if state.hierarchy.level_of_role(role.id) is not None:
        raise DuplicateEntityError(f"Role '{role.id}' is already listed on a level", role_id=role.id)

    level_def = state.require_level(level)
    placed = role.model_copy(deep=True, update={"level": level, "tenant_id": state.tenant_id})
    level_def.roles.add(placed.id)
    state.roles[placed.id] = placed
    return placed


def detach_role(state: TenantState, role_id: str, now: datetime) -> List[str]:
    """
    Remove a role from a draft.

    Children are re-parented to the removed role's parent, delegations that
    involve the role are revoked and its overrides are dropped.

    Returns:
        Ids of the re-parented children
    """
    role = state.require_role(role_id)
    level_def = state.hierarchy.level_of_role(role_id)
    if level_def is not None:
        level_def.roles.discard(role_id)
    del state.roles[role_id]

    reparented = []
    for child_id in sorted(r.id for r in state.roles.values() if r.parent_role_id == role_id):
        child = state.touch_role(child_id)
        child.parent_role_id = role.parent_role_id
        child.updated_at = now
        reparented.append(child_id)

    for delegation in list(state.delegations.values()):
        involved = role_id in (delegation.delegator_role_id, delegation.delegatee_role_id)
        if involved and delegation.status == DelegationStatus.ACTIVE:
            state.delegations[delegation.id] = delegation.model_copy(update={
                "status": DelegationStatus.REVOKED,
                "revoked_at": now,
                "revoke_reason": "role removed",
            })

    for key in [key for key in state.overrides if key[0] == role_id]:
        del state.overrides[key]

    return reparented


def relocate_role(
    state: TenantState,
    role_id: str,
    new_parent_id: Optional[str],
    new_level: int,
    now: datetime,
) -> Role:
    """Move a role to a new parent and level inside a draft."""
    state.require_role(role_id)
    if new_parent_id is not None:
        state.require_role(new_parent_id)
        if new_parent_id == role_id or new_parent_id in state.descendants_of(role_id):
            raise CircularHierarchyError(
                f"Moving '{role_id}' under '{new_parent_id}' would create a cycle",
                role_id=role_id,
            )

    target = state.require_level(new_level)
    current = state.hierarchy.level_of_role(role_id)
    if current is not None:
        current.roles.discard(role_id)
    target.roles.add(role_id)

    role = state.touch_role(role_id)
    role.parent_role_id = new_parent_id
    role.level = new_level
    role.updated_at = now
    return role


def set_direct_permissions(
    state: TenantState,
    role_id: str,
    add: Iterable[str] = (),
    remove: Iterable[str] = (),
    now: Optional[datetime] = None,
) -> Role:
    """Grant and revoke direct permissions on a draft role."""
    add = set(add)
    unknown = sorted(p for p in add if p not in state.permissions)
    if unknown:
        raise UnknownRoleOrPermission(f"Unknown permissions: {', '.join(unknown)}", role_id=role_id)

    role = state.touch_role(role_id)
    role.direct_permissions = (role.direct_permissions | add) - set(remove)
    if now is not None:
        role.updated_at = now
    return role


def mark_revoked(
    state: TenantState,
    delegation_id: str,
    now: datetime,
    reason: Optional[str] = None,
    revoked_by: Optional[str] = None,
) -> PermissionDelegation:
    """Rewrite a draft delegation as revoked."""
    delegation = state.delegations[delegation_id]
    revoked = delegation.model_copy(update={
        "status": DelegationStatus.REVOKED,
        "revoked_at": now,
        "revoked_by": revoked_by,
        "revoke_reason": reason,
    })
    state.delegations[delegation_id] = revoked
    return revoked
