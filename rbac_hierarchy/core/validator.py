"""
Structural validation of role hierarchies.

The store runs these checks on every draft before it commits, and the
previewer runs them on drafts it never commits. Checks collect
ValidationIssue records instead of raising so both callers can decide what
to do with them.
"""

import logging
from typing import Dict, Iterable, List, Optional, Type

from rbac_hierarchy.config import InheritanceConfig
from rbac_hierarchy.core.errors import (
    CircularHierarchyError,
    HierarchyError,
    InvalidLevelTransition,
    UnknownRoleOrPermission,
    UnresolvedConflictBlocksCommit,
)
from rbac_hierarchy.core.state import TenantState
from rbac_hierarchy.models.inheritance import PermissionConflict, ValidationIssue, ValidationResult

logger = logging.getLogger(__name__)

# Most severe first; the store raises the first issue in this order.
ISSUE_ERRORS: Dict[str, Type[HierarchyError]] = {
    CircularHierarchyError.code: CircularHierarchyError,
    UnknownRoleOrPermission.code: UnknownRoleOrPermission,
    InvalidLevelTransition.code: InvalidLevelTransition,
    UnresolvedConflictBlocksCommit.code: UnresolvedConflictBlocksCommit,
}
_SEVERITY = {code: rank for rank, code in enumerate(ISSUE_ERRORS)}


def raise_for_issues(issues: List[ValidationIssue]) -> None:
    """Raise the most severe issue as its HierarchyError subclass."""
    if not issues:
        return
    issue = min(issues, key=lambda item: _SEVERITY.get(item.kind, len(_SEVERITY)))
    error_class = ISSUE_ERRORS.get(issue.kind, HierarchyError)
    raise error_class(issue.message, role_id=issue.role_id)


class HierarchyValidator:
    """Checks hierarchy placement, parent edges and chain depth."""

    def __init__(self, config: Optional[InheritanceConfig] = None):
        self.config = config or InheritanceConfig()

    def check_role(self, state: TenantState, role_id: str) -> List[ValidationIssue]:
        """
        Check one role against the hierarchy invariants.

        Args:
            state: Snapshot or draft to check
            role_id: Role to check

        Returns:
            List of issues (empty when the role is valid)
        """
        issues: List[ValidationIssue] = []
        role = state.roles.get(role_id)
        if role is None:
            return [ValidationIssue(
                kind=UnknownRoleOrPermission.code,
                message=f"Role '{role_id}' is not part of the hierarchy",
                role_id=role_id,
            )]

        level_def = state.hierarchy.get_level(role.level)
        if level_def is None:
            issues.append(ValidationIssue(
                kind=InvalidLevelTransition.code,
                message=f"Role '{role_id}' is on undefined level {role.level}",
                role_id=role_id,
            ))
        elif role_id not in level_def.roles:
            issues.append(ValidationIssue(
                kind=InvalidLevelTransition.code,
                message=f"Role '{role_id}' is not listed on level {role.level}",
                role_id=role_id,
            ))

        unknown = sorted(p for p in role.direct_permissions if p not in state.permissions)
        if unknown:
            issues.append(ValidationIssue(
                kind=UnknownRoleOrPermission.code,
                message=f"Role '{role_id}' references unknown permissions: {', '.join(unknown)}",
                role_id=role_id,
            ))

        issues.extend(self._check_chain(state, role_id))
        return issues

    def _check_chain(self, state: TenantState, role_id: str) -> List[ValidationIssue]:
        """Walk parent pointers checking every edge and the chain length."""
        path = [role_id]
        current = state.roles[role_id]

        while current.parent_role_id:
            parent_id = current.parent_role_id
            if parent_id in path:
                cycle = " -> ".join(path[path.index(parent_id):] + [parent_id])
                return [ValidationIssue(
                    kind=CircularHierarchyError.code,
                    message=f"Circular inheritance detected: {cycle}",
                    role_id=role_id,
                )]

            parent = state.roles.get(parent_id)
            if parent is None:
                return [ValidationIssue(
                    kind=UnknownRoleOrPermission.code,
                    message=f"Parent role '{parent_id}' of '{current.id}' is not part of the hierarchy",
                    role_id=role_id,
                )]

            level_def = state.hierarchy.get_level(current.level)
            allowed = level_def.can_inherit_from if level_def else set()
            if parent.level not in allowed:
                return [ValidationIssue(
                    kind=InvalidLevelTransition.code,
                    message=(
                        f"Role '{current.id}' (level {current.level}) cannot inherit from "
                        f"'{parent.id}' (level {parent.level})"
                    ),
                    role_id=role_id,
                )]

            path.append(parent_id)
            current = parent

        depth = len(path) - 1
        limit = min(self.config.max_inheritance_depth, len(state.hierarchy.levels))
        if depth > limit:
            return [ValidationIssue(
                kind=InvalidLevelTransition.code,
                message=f"Inheritance chain of '{role_id}' is {depth} levels deep (max {limit})",
                role_id=role_id,
            )]
        return []

    def check_roles(self, state: TenantState, role_ids: Iterable[str]) -> List[ValidationIssue]:
        """Check several roles, skipping duplicates."""
        issues: List[ValidationIssue] = []
        for role_id in dict.fromkeys(role_ids):
            issues.extend(self.check_role(state, role_id))
        return issues

    def check_state(self, state: TenantState) -> List[ValidationIssue]:
        """Check every role of a snapshot."""
        return self.check_roles(state, sorted(state.roles))

    def validate_permission_inheritance(
        self,
        state: TenantState,
        role_id: str,
        conflicts: Iterable[PermissionConflict] = (),
    ) -> ValidationResult:
        """
        Validate a role's placement and its blocking conflicts.

        Args:
            state: Snapshot to validate against
            role_id: Role to validate
            conflicts: Current conflicts of the role

        Returns:
            Validation result listing every problem found
        """
        issues = self.check_role(state, role_id)
        blocking = [conflict for conflict in conflicts if conflict.blocking]
        if blocking:
            issues.append(ValidationIssue(
                kind=UnresolvedConflictBlocksCommit.code,
                message=f"{len(blocking)} unresolved permission conflict(s): "
                        + ", ".join(conflict.id for conflict in blocking),
                role_id=role_id,
            ))

        if issues:
            logger.debug(f"Role {role_id} failed validation with {len(issues)} issue(s)")
        return ValidationResult.from_issues(issues)
