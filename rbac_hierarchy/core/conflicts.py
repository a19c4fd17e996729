"""
Permission conflict detection and resolution.

Grants for the same permission are ranked and collapsed into one winner per
permission; the detector then reports what the collapse hid: duplicate
sources, delegations with mutually exclusive conditions, cycles found while
building the tree and critical permission counts above a level's ceiling.
"""

import logging
from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, List, Optional, Set, Tuple

from rbac_hierarchy.config import EscalationConfig
from rbac_hierarchy.core.errors import UnknownConflictError, UnresolvedConflictBlocksCommit
from rbac_hierarchy.core.state import OverrideKey, TenantState
from rbac_hierarchy.models.hierarchy import PermissionLevel
from rbac_hierarchy.models.inheritance import (
    ConflictOverride,
    ConflictResolution,
    ConflictType,
    EffectivePermission,
    GrantSource,
    InheritanceTreeNode,
    PermissionConflict,
)
from rbac_hierarchy.utils.helpers import (
    conditions_exclusive,
    conflict_id,
    parse_conflict_id,
    sorted_unique,
    utc_now,
)

logger = logging.getLogger(__name__)

SOURCE_ORDER = {
    GrantSource.DIRECT: 0,
    GrantSource.INHERITED: 1,
    GrantSource.DELEGATION: 2,
}


def grant_rank(grant: EffectivePermission) -> Tuple:
    """Sort key: most senior source, then oldest grant, then source kind."""
    return (
        grant.source_level,
        grant.granted_at,
        SOURCE_ORDER[grant.source],
        len(grant.inheritance_path),
        grant.source_key,
    )


def source_fingerprint(grants: List[EffectivePermission]) -> List[str]:
    """Sorted distinct source keys of a permission's grants."""
    return sorted_unique(grant.source_key for grant in grants)


def contradicting_grants(grants: List[EffectivePermission]) -> List[EffectivePermission]:
    """Delegated grants whose conditions exclude another delegated grant."""
    delegated = [grant for grant in grants if grant.source == GrantSource.DELEGATION]
    involved: Dict[str, EffectivePermission] = {}
    for left, right in combinations(delegated, 2):
        if conditions_exclusive(left.conditions, right.conditions):
            involved[left.source_key] = left
            involved[right.source_key] = right
    return sorted(involved.values(), key=grant_rank)


@dataclass
class SettledGrants:
    """Outcome of collapsing a role's candidate grants."""
    effective: Dict[str, EffectivePermission] = field(default_factory=dict)
    excluded: Dict[str, str] = field(default_factory=dict)
    contradictions: Dict[str, List[EffectivePermission]] = field(default_factory=dict)


def settle_grants(
    role_id: str,
    grants: Dict[str, List[EffectivePermission]],
    overrides: Dict[OverrideKey, ConflictOverride],
) -> SettledGrants:
    """
    Collapse candidate grants into one effective grant per permission.

    A deny override removes the permission. Contradictory delegations keep
    the permission out until an allow or highest_priority override exists.
    Otherwise the best ranked grant wins and the others are recorded as
    overridden sources.
    """
    settled = SettledGrants()

    for permission_id in sorted(grants):
        candidates = sorted(grants[permission_id], key=grant_rank)
        override = overrides.get((role_id, permission_id))
        contradicting = contradicting_grants(candidates)
        if contradicting:
            settled.contradictions[permission_id] = contradicting

        if override and override.resolution == ConflictResolution.DENY:
            settled.excluded[permission_id] = "denied by override"
            continue
        if contradicting and override is None:
            settled.excluded[permission_id] = "contradictory grant conditions"
            continue

        winner = candidates[0]
        update = {
            "overridden_sources": [grant.source_key for grant in candidates[1:]],
            "override": override.resolution if override else None,
        }
        if contradicting and override.resolution == ConflictResolution.ALLOW:
            update["conditions"] = {}
        settled.effective[permission_id] = winner.model_copy(update=update)

    return settled


class ConflictDetector:
    """Derives permission conflicts from resolved roles."""

    def __init__(self, config: Optional[EscalationConfig] = None):
        self.config = config or EscalationConfig()

    def _suppressed(
        self,
        state: TenantState,
        role_id: str,
        permission_id: str,
        grants: List[EffectivePermission],
    ) -> bool:
        override = state.overrides.get((role_id, permission_id))
        if override is None:
            return False
        if override.resolution == ConflictResolution.DENY:
            return True
        return override.source_fingerprint == source_fingerprint(grants)

    def conflicts_for_role(self, state: TenantState, resolution, include_circular: bool = False) -> List[PermissionConflict]:
        """
        Report the conflicts of one resolved role.

        Args:
            state: Snapshot the role was resolved against
            resolution: RoleResolution from the resolver
            include_circular: Whether to report a cycle in the role's own chain

        Returns:
            Conflicts ordered by type then permission
        """
        role_id = resolution.role_id
        conflicts: List[PermissionConflict] = []

        if include_circular and resolution.circular:
            conflicts.append(PermissionConflict(
                id=conflict_id(ConflictType.CIRCULAR.value, role_id, None),
                role_id=role_id,
                conflict_type=ConflictType.CIRCULAR,
                details=resolution.circular,
                blocking=True,
            ))

        for permission_id in sorted(resolution.grants):
            grants = resolution.grants[permission_id]
            if self._suppressed(state, role_id, permission_id, grants):
                continue

            contradicting = resolution.contradictions.get(permission_id)
            if contradicting:
                conflicts.append(PermissionConflict(
                    id=conflict_id(ConflictType.CONTRADICTORY.value, role_id, permission_id),
                    role_id=role_id,
                    permission_id=permission_id,
                    conflict_type=ConflictType.CONTRADICTORY,
                    details="Delegated with mutually exclusive conditions: " + "; ".join(
                        f"{grant.source_key} {grant.conditions}" for grant in contradicting
                    ),
                    sources=source_fingerprint(contradicting),
                    blocking=True,
                ))
                continue

            sources = source_fingerprint(grants)
            if len(sources) > 1:
                conflicts.append(PermissionConflict(
                    id=conflict_id(ConflictType.DUPLICATE.value, role_id, permission_id),
                    role_id=role_id,
                    permission_id=permission_id,
                    conflict_type=ConflictType.DUPLICATE,
                    details=f"Permission granted by {len(sources)} sources: {', '.join(sources)}",
                    sources=sources,
                ))

        conflicts.extend(self._escalations(state, resolution))
        return conflicts

    def critical_ceiling(self, state: TenantState, role_id: str) -> Optional[int]:
        """
        Maximum number of critical permissions a role may hold.

        A level's ``max_critical_permissions`` wins; otherwise the ceiling is
        the number of distinct critical permissions held directly by roles
        on the nearest more senior levels. Top level roles have no ceiling.
        """
        if not self.config.enabled:
            return None
        role = state.roles.get(role_id)
        if role is None:
            return None

        level_def = state.hierarchy.get_level(role.level)
        if level_def is not None and level_def.max_critical_permissions is not None:
            return level_def.max_critical_permissions

        held = self._senior_critical(state, role.level)
        return None if held is None else len(held)

    def _senior_critical(self, state: TenantState, level: int) -> Optional[Set[str]]:
        seniors = [number for number in state.hierarchy.level_numbers() if number < level]
        if not seniors:
            return None

        held: Set[str] = set()
        for number in sorted(seniors, reverse=True)[:self.config.senior_window]:
            for role_id in state.hierarchy.get_level(number).roles:
                held |= {p for p in state.direct_grants(role_id) if self._is_critical(state, p)}
        return held

    @staticmethod
    def _is_critical(state: TenantState, permission_id: str) -> bool:
        permission = state.permissions.get(permission_id)
        return permission is not None and permission.level == PermissionLevel.CRITICAL

    def _escalations(self, state: TenantState, resolution) -> List[PermissionConflict]:
        role_id = resolution.role_id
        ceiling = self.critical_ceiling(state, role_id)
        if ceiling is None:
            return []

        critical = [p for p in resolution.effective if self._is_critical(state, p)]
        excess = len(critical) - ceiling
        if excess <= 0:
            return []

        role = state.roles[role_id]
        senior = self._senior_critical(state, role.level) or set()
        # Permissions the senior levels do not hold are the escalation.
        ordered = sorted(critical, key=lambda p: (p in senior, p))

        conflicts = []
        for permission_id in ordered[:excess]:
            grants = resolution.grants[permission_id]
            if self._suppressed(state, role_id, permission_id, grants):
                continue
            conflicts.append(PermissionConflict(
                id=conflict_id(ConflictType.ESCALATION.value, role_id, permission_id),
                role_id=role_id,
                permission_id=permission_id,
                conflict_type=ConflictType.ESCALATION,
                details=(
                    f"Role holds {len(critical)} critical permissions, "
                    f"above the ceiling of {ceiling} for level {role.level}"
                ),
                sources=source_fingerprint(grants),
            ))
        return conflicts

    def annotate(self, state: TenantState, forest: List[InheritanceTreeNode], resolutions: Dict) -> List[InheritanceTreeNode]:
        """Attach conflicts to every node of a tree built by the resolver."""
        for root in forest:
            for node in root.walk():
                resolution = resolutions.get(node.role_id)
                if resolution is not None:
                    node.conflicts.extend(self.conflicts_for_role(state, resolution))
        return forest

    def detect_permission_conflicts(self, forest: List[InheritanceTreeNode]) -> List[PermissionConflict]:
        """Flatten the conflicts of an annotated tree, in tree order."""
        conflicts: List[PermissionConflict] = []
        seen: Set[str] = set()
        for root in forest:
            for node in root.walk():
                for conflict in node.conflicts:
                    if conflict.id not in seen:
                        seen.add(conflict.id)
                        conflicts.append(conflict)
        return conflicts

    def build_override(
        self,
        state: TenantState,
        resolution,
        conflict_ref: str,
        choice: ConflictResolution,
        resolved_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ConflictOverride:
        """
        Turn a resolution choice into an override record.

        Args:
            state: Draft the override will be committed to
            resolution: RoleResolution of the conflict's role on that draft
                (None when the role does not exist)
            conflict_ref: Conflict identifier
            choice: Resolution strategy
            resolved_by: Administrator committing the resolution
            notes: Free text notes

        Raises:
            UnresolvedConflictBlocksCommit: For circular conflicts
            UnknownConflictError: If the conflict is not present
        """
        try:
            parsed = parse_conflict_id(conflict_ref)
        except ValueError as e:
            raise UnknownConflictError(str(e))

        if parsed["conflict_type"] == ConflictType.CIRCULAR.value:
            raise UnresolvedConflictBlocksCommit(
                "Circular conflicts are fixed by moving roles, not by overrides",
                role_id=parsed["role_id"],
            )

        if resolution is None:
            raise UnknownConflictError(f"Conflict '{conflict_ref}' not found", role_id=parsed["role_id"])

        current = {conflict.id: conflict for conflict in self.conflicts_for_role(state, resolution)}
        conflict = current.get(conflict_ref)
        if conflict is None:
            raise UnknownConflictError(f"Conflict '{conflict_ref}' not found", role_id=parsed["role_id"])

        return ConflictOverride(
            role_id=conflict.role_id,
            permission_id=conflict.permission_id,
            resolution=choice,
            conflict_type=conflict.conflict_type,
            source_fingerprint=source_fingerprint(resolution.grants[conflict.permission_id]),
            resolved_at=utc_now(),
            resolved_by=resolved_by,
            notes=notes,
        )
