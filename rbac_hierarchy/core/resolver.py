"""
Inheritance resolution.

Computes every role's effective permission set from its direct grants, the
grants of permitted ancestors and active delegations, and builds the
inheritance forest. Results are memoized per committed snapshot version
until the earliest active delegation expires.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, FrozenSet, List, Optional, Set, Tuple

from rbac_hierarchy.config import InheritanceConfig
from rbac_hierarchy.core.conflicts import SettledGrants, settle_grants
from rbac_hierarchy.core.errors import UnknownRoleOrPermission
from rbac_hierarchy.core.state import TenantState
from rbac_hierarchy.models.hierarchy import Role
from rbac_hierarchy.models.inheritance import (
    ConflictResolution,
    ConflictType,
    EffectivePermission,
    GrantSource,
    InheritanceTreeNode,
    InheritedPermission,
    PermissionConflict,
    PermissionDelegation,
)
from rbac_hierarchy.utils.helpers import conflict_id, utc_now

logger = logging.getLogger(__name__)

DIRECT_PRIORITY = 100
INHERITED_PRIORITY = 90
DELEGATED_PRIORITY = 80


@dataclass
class RoleResolution:
    """Everything computed for one role."""
    role_id: str
    chain: List[str] = field(default_factory=list)
    circular: Optional[str] = None
    grants: Dict[str, List[EffectivePermission]] = field(default_factory=dict)
    effective: Dict[str, EffectivePermission] = field(default_factory=dict)
    excluded: Dict[str, str] = field(default_factory=dict)
    contradictions: Dict[str, List[EffectivePermission]] = field(default_factory=dict)

    @property
    def permission_ids(self) -> Set[str]:
        return set(self.effective)


@dataclass
class _CacheEntry:
    version: int
    valid_until: Optional[datetime]
    roles: Dict[str, RoleResolution] = field(default_factory=dict)


class InheritanceResolver:
    """Resolves effective permissions and builds inheritance trees."""

    def __init__(self, config: Optional[InheritanceConfig] = None, clock: Callable[[], datetime] = utc_now):
        self.config = config or InheritanceConfig()
        self.clock = clock
        self._cache: Dict[str, _CacheEntry] = {}

    def invalidate(self, state: TenantState) -> None:
        """Drop memoized results of a tenant."""
        self._cache.pop(state.tenant_id, None)

    def _walk_chain(self, state: TenantState, role: Role) -> Tuple[List[Role], Optional[str]]:
        """
        Collect ancestors nearest first.

        Stops at a parent outside the tenant. When a role repeats, the walk
        stops and the cycle is described in the second element.
        """
        ancestors: List[Role] = []
        path = [role.id]
        current = role
        while current.parent_role_id:
            parent_id = current.parent_role_id
            if parent_id in path:
                cycle = " -> ".join(path[path.index(parent_id):] + [parent_id])
                return ancestors, f"Circular inheritance detected: {cycle}"
            parent = state.roles.get(parent_id)
            if parent is None:
                break
            ancestors.append(parent)
            path.append(parent_id)
            current = parent
        return ancestors, None

    def get_inheritance_chain(self, state: TenantState, role_id: str) -> List[Role]:
        """
        Ancestors of a role, nearest first.

        Raises:
            UnknownRoleOrPermission: If the role is not in the hierarchy
        """
        role = state.require_role(role_id)
        ancestors, _ = self._walk_chain(state, role)
        return ancestors

    def _inheritable(self, state: TenantState, role: Role) -> List[Tuple[int, Role]]:
        """Ancestors whose grants the role may inherit, with their distance."""
        if not role.inheritance_enabled:
            return []
        level_def = state.hierarchy.get_level(role.level)
        allowed = level_def.can_inherit_from if level_def else set()
        limit = min(self.config.max_inheritance_depth, len(state.hierarchy.levels))

        ancestors, _ = self._walk_chain(state, role)
        return [
            (distance, ancestor)
            for distance, ancestor in enumerate(ancestors[:limit], start=1)
            if ancestor.level in allowed
        ]

    def static_grants(self, state: TenantState, role_id: str) -> Set[str]:
        """Permissions a role holds without delegations."""
        role = state.roles.get(role_id)
        if role is None:
            return set()
        granted = state.direct_grants(role_id)
        for _, ancestor in self._inheritable(state, role):
            granted |= state.direct_grants(ancestor.id)
        return granted

    def holding_path(
        self,
        state: TenantState,
        role_id: str,
        permission_id: str,
        now: Optional[datetime] = None,
        visiting: FrozenSet[str] = frozenset(),
    ) -> Optional[List[PermissionDelegation]]:
        """
        How a role currently holds a permission.

        Returns:
            None if the role does not hold it, an empty list if it holds it
            directly or by inheritance, otherwise the delegation chain
            nearest first
        """
        now = now or self.clock()
        override = state.overrides.get((role_id, permission_id))
        if override is not None and override.resolution == ConflictResolution.DENY:
            return None
        if permission_id in self.static_grants(state, role_id):
            return []

        for delegation in state.active_delegations_to(role_id, now):
            if delegation.id in visiting or permission_id not in delegation.delegated_permissions:
                continue
            upstream = self.holding_path(
                state, delegation.delegator_role_id, permission_id, now, visiting | {delegation.id}
            )
            if upstream is not None:
                return [delegation] + upstream
        return None

    def _collect_grants(self, state: TenantState, role: Role, now: datetime) -> Dict[str, List[EffectivePermission]]:
        grants: Dict[str, List[EffectivePermission]] = {}

        def add(grant: EffectivePermission) -> None:
            grants.setdefault(grant.permission_id, []).append(grant)

        for permission_id in sorted(state.direct_grants(role.id)):
            add(EffectivePermission(
                permission_id=permission_id,
                source=GrantSource.DIRECT,
                source_role_id=role.id,
                source_role_name=role.name,
                source_level=role.level,
                priority=DIRECT_PRIORITY,
                granted_at=role.created_at,
            ))

        path: List[str] = []
        ancestors, _ = self._walk_chain(state, role)
        inheritable = {ancestor.id for _, ancestor in self._inheritable(state, role)}
        for distance, ancestor in enumerate(ancestors, start=1):
            path = path + [ancestor.id]
            if ancestor.id not in inheritable:
                continue
            for permission_id in sorted(state.direct_grants(ancestor.id)):
                add(EffectivePermission(
                    permission_id=permission_id,
                    source=GrantSource.INHERITED,
                    source_role_id=ancestor.id,
                    source_role_name=ancestor.name,
                    source_level=ancestor.level,
                    inheritance_path=list(path),
                    priority=max(INHERITED_PRIORITY - 10 * (distance - 1), DELEGATED_PRIORITY + 1),
                    granted_at=ancestor.created_at,
                ))

        for delegation in state.active_delegations_to(role.id, now):
            delegator = state.roles.get(delegation.delegator_role_id)
            if delegator is None:
                continue
            for permission_id in sorted(delegation.delegated_permissions):
                held = self.holding_path(
                    state, delegator.id, permission_id, now, frozenset({delegation.id})
                )
                if held is None:
                    continue
                add(EffectivePermission(
                    permission_id=permission_id,
                    source=GrantSource.DELEGATION,
                    source_role_id=delegator.id,
                    source_role_name=delegator.name,
                    source_level=delegator.level,
                    delegation_id=delegation.id,
                    conditions=dict(delegation.conditions),
                    priority=DELEGATED_PRIORITY,
                    granted_at=delegation.created_at,
                ))

        return grants

    def _resolve(self, state: TenantState, role_id: str, now: datetime) -> RoleResolution:
        role = state.require_role(role_id)
        ancestors, circular = self._walk_chain(state, role)
        grants = self._collect_grants(state, role, now)
        settled: SettledGrants = settle_grants(role_id, grants, state.overrides)
        return RoleResolution(
            role_id=role_id,
            chain=[ancestor.id for ancestor in ancestors],
            circular=circular,
            grants=grants,
            effective=settled.effective,
            excluded=settled.excluded,
            contradictions=settled.contradictions,
        )

    def _cache_for(self, state: TenantState, now: datetime) -> Optional[_CacheEntry]:
        if not state.committed:
            return None

        entry = self._cache.get(state.tenant_id)
        if entry is not None and entry.version == state.version:
            if entry.valid_until is None or now < entry.valid_until:
                return entry

        expiries = [
            delegation.expires_at for delegation in state.delegations.values()
            if delegation.is_active(now) and delegation.expires_at is not None
        ]
        entry = _CacheEntry(version=state.version, valid_until=min(expiries) if expiries else None)
        self._cache[state.tenant_id] = entry
        return entry

    def resolve_role(self, state: TenantState, role_id: str, now: Optional[datetime] = None) -> RoleResolution:
        """
        Resolve one role, using the memo for committed snapshots.

        Raises:
            UnknownRoleOrPermission: If the role is not in the hierarchy
        """
        now = now or self.clock()
        entry = self._cache_for(state, now)
        if entry is not None and role_id in entry.roles:
            return entry.roles[role_id]

        resolution = self._resolve(state, role_id, now)
        if entry is not None:
            entry.roles[role_id] = resolution
        return resolution

    def resolve_all(self, state: TenantState, now: Optional[datetime] = None) -> Dict[str, RoleResolution]:
        """Resolve every role of a snapshot."""
        now = now or self.clock()
        return {role_id: self.resolve_role(state, role_id, now) for role_id in sorted(state.roles)}

    def calculate_effective_permissions(self, state: TenantState, role_id: str) -> Set[str]:
        """Effective permission ids of a role."""
        if role_id not in state.roles:
            raise UnknownRoleOrPermission(f"Role '{role_id}' is not part of the hierarchy", role_id=role_id)
        return self.resolve_role(state, role_id).permission_ids

    def explain_effective_permissions(self, state: TenantState, role_id: str) -> List[EffectivePermission]:
        """Effective permissions of a role with their winning provenance."""
        resolution = self.resolve_role(state, role_id)
        return [resolution.effective[permission_id] for permission_id in sorted(resolution.effective)]

    def build_inheritance_tree(
        self,
        state: TenantState,
        now: Optional[datetime] = None,
    ) -> Tuple[List[InheritanceTreeNode], Dict[str, RoleResolution]]:
        """
        Build the inheritance forest of a snapshot.

        Roots are roles without a parent inside the tenant. Roles that are
        only reachable through a cycle are started from their most senior
        member. A child already on the current path is not descended into;
        a circular conflict is recorded on the node instead.

        Returns:
            Forest of root nodes and the resolutions used to fill it
        """
        now = now or self.clock()
        resolutions = self.resolve_all(state, now)
        children = state.children_map()
        visited: Set[str] = set()

        def order(role_id: str):
            role = state.roles[role_id]
            return role.level, role.id

        def build(role_id: str, path: List[str]) -> InheritanceTreeNode:
            visited.add(role_id)
            role = state.roles[role_id]
            resolution = resolutions[role_id]
            node = InheritanceTreeNode(
                role_id=role.id,
                role_name=role.name,
                level=role.level,
                direct_permissions=state.direct_grants(role_id),
                inherited_permissions=[
                    InheritedPermission(
                        permission_id=grant.permission_id,
                        source_role_id=grant.source_role_id,
                        source_role_name=grant.source_role_name,
                        inheritance_path=grant.inheritance_path,
                        priority=grant.priority,
                    )
                    for permission_id in sorted(resolution.grants)
                    for grant in resolution.grants[permission_id]
                    if grant.source == GrantSource.INHERITED
                ],
                effective_permissions=resolution.permission_ids,
            )

            branch = path + [role_id]
            for child_id in children.get(role_id, []):
                if child_id in branch:
                    cycle = " -> ".join(branch[branch.index(child_id):] + [child_id])
                    node.conflicts.append(PermissionConflict(
                        id=conflict_id(ConflictType.CIRCULAR.value, role_id, None),
                        role_id=role_id,
                        conflict_type=ConflictType.CIRCULAR,
                        details=f"Circular inheritance detected: {cycle}",
                        sources=[child_id],
                        blocking=True,
                    ))
                    logger.warning(f"Circular inheritance in tenant {state.tenant_id}: {cycle}")
                    continue
                node.children.append(build(child_id, branch))
            return node

        roots = sorted(
            (role.id for role in state.roles.values()
             if not role.parent_role_id or role.parent_role_id not in state.roles),
            key=order,
        )
        forest = [build(root_id, []) for root_id in roots]

        remaining = sorted(set(state.roles) - visited, key=order)
        while remaining:
            forest.append(build(remaining[0], []))
            remaining = [role_id for role_id in remaining if role_id not in visited]

        return forest, resolutions
