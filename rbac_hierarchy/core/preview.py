"""
Dry-run previews of hierarchy changes.

A change is applied to a clone of the committed snapshot with the same draft
functions the store uses; the resolver and conflict detector then run on
the clone and the result is diffed against the committed state. Nothing is
ever committed from here.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from rbac_hierarchy.core.conflicts import ConflictDetector
from rbac_hierarchy.core.delegation import DelegationManager
from rbac_hierarchy.core.errors import HierarchyError
from rbac_hierarchy.core.resolver import InheritanceResolver
from rbac_hierarchy.core.state import TenantState, mark_revoked, relocate_role, set_direct_permissions
from rbac_hierarchy.core.validator import HierarchyValidator
from rbac_hierarchy.models.hierarchy import Permission
from rbac_hierarchy.models.inheritance import (
    ChangeType,
    PermissionChange,
    PermissionConflict,
    PermissionPreview,
    RolePermissionDiff,
)

logger = logging.getLogger(__name__)


class PermissionPreviewer:
    """Computes the effect of a hypothetical change without committing it."""

    def __init__(
        self,
        validator: HierarchyValidator,
        resolver: InheritanceResolver,
        detector: ConflictDetector,
        delegations: DelegationManager,
    ):
        self.validator = validator
        self.resolver = resolver
        self.detector = detector
        self.delegations = delegations

    def _apply(self, draft: TenantState, change: PermissionChange, now: datetime) -> List[str]:
        """Apply a change to a draft and return the roles it starts from."""
        kind = change.change_type

        if kind == ChangeType.ADD_PERMISSION:
            set_direct_permissions(draft, change.role_id, add=change.permission_ids, now=now)
            return [change.role_id]

        if kind == ChangeType.REMOVE_PERMISSION:
            set_direct_permissions(draft, change.role_id, remove=change.permission_ids, now=now)
            return [change.role_id]

        if kind == ChangeType.MOVE_ROLE:
            relocate_role(draft, change.role_id, change.new_parent_id, change.new_level, now)
            return [change.role_id]

        if kind == ChangeType.ADD_DELEGATION:
            delegation = self.delegations.build_delegation(draft, change.delegation, now)
            draft.delegations[delegation.id] = delegation
            return [delegation.delegatee_role_id]

        delegation = self.delegations.check_revocable(draft, change.delegation_id, now)
        mark_revoked(draft, delegation.id, now, reason="preview")
        downstream = [
            other.delegatee_role_id for other in draft.delegations.values()
            if delegation.id in other.upstream_delegation_ids
        ]
        return [delegation.delegatee_role_id] + downstream

    def _conflicts(self, state: TenantState, role_id: str) -> Dict[str, PermissionConflict]:
        resolution = self.resolver.resolve_role(state, role_id)
        conflicts = self.detector.conflicts_for_role(state, resolution, include_circular=True)
        return {conflict.id: conflict for conflict in conflicts}

    def preview(
        self,
        state: TenantState,
        change: PermissionChange,
        now: Optional[datetime] = None,
        fetched: Optional[Dict[str, Permission]] = None,
    ) -> PermissionPreview:
        """
        Preview a change against a committed snapshot.

        Validation failures are reported in the result rather than raised.

        Args:
            state: Committed snapshot
            change: Hypothetical mutation
            now: Evaluation time
            fetched: Catalog permissions missing from the snapshot, looked up
                the same way the committing operation looks them up

        Returns:
            Validity, errors and per-role diffs for the affected roles and
            their descendants
        """
        now = now or self.resolver.clock()
        draft = state.clone()
        if fetched:
            draft.permissions.update(fetched)

        try:
            if change.role_id is not None:
                state.require_role(change.role_id)
            starts = self._apply(draft, change, now)
        except HierarchyError as e:
            logger.debug(f"Preview of {change.change_type.value} rejected: {e.message}")
            return PermissionPreview(change=change, is_valid=False, errors=[e.message])

        affected: List[str] = []
        for role_id in starts:
            for candidate in [role_id] + draft.descendants_of(role_id):
                if candidate not in affected:
                    affected.append(candidate)

        issues = self.validator.check_roles(draft, affected)
        if issues:
            return PermissionPreview(
                change=change,
                is_valid=False,
                errors=[issue.message for issue in issues],
            )

        roles: Dict[str, RolePermissionDiff] = {}
        for role_id in affected:
            before = self.resolver.resolve_role(state, role_id, now).permission_ids
            after = self.resolver.resolve_role(draft, role_id, now).permission_ids
            conflicts_before = self._conflicts(state, role_id)
            conflicts_after = self._conflicts(draft, role_id)

            roles[role_id] = RolePermissionDiff(
                role_id=role_id,
                added=after - before,
                removed=before - after,
                new_conflicts=[
                    conflicts_after[conflict_id] for conflict_id in sorted(conflicts_after)
                    if conflict_id not in conflicts_before
                ],
                resolved_conflicts=[
                    conflicts_before[conflict_id] for conflict_id in sorted(conflicts_before)
                    if conflict_id not in conflicts_after
                ],
            )

        return PermissionPreview(change=change, is_valid=True, roles=roles)
