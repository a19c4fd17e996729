"""
Permission inheritance engine.

This module wires the hierarchy store, inheritance resolver, conflict
detector, delegation manager, validator and previewer into a single facade
with one method per operation offered to the presentation layer:

- Hierarchy and role administration (validated, serialized per tenant)
- Inheritance tree and effective permission computation
- Conflict detection and resolution overrides
- Time-bounded permission delegation
- Validation and dry-run previews of changes

Mutations are coroutines because they may await the catalog and take the
tenant lock; reads are plain methods over the last committed snapshot.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Set, Union

from rbac_hierarchy.config import EngineConfig
from rbac_hierarchy.config.logging import engine_logger
from rbac_hierarchy.core.conflicts import ConflictDetector
from rbac_hierarchy.core.delegation import DelegationManager
from rbac_hierarchy.core.errors import UnknownConflictError, UnresolvedConflictBlocksCommit
from rbac_hierarchy.core.preview import PermissionPreviewer
from rbac_hierarchy.core.resolver import InheritanceResolver
from rbac_hierarchy.core.state import TenantState
from rbac_hierarchy.core.store import HierarchyStore
from rbac_hierarchy.core.validator import HierarchyValidator
from rbac_hierarchy.models.hierarchy import (
    HierarchyLevel,
    HierarchyPatch,
    HierarchySpec,
    Role,
    RoleHierarchy,
)
from rbac_hierarchy.models.inheritance import (
    ChangeType,
    ConflictResolution,
    DelegationSpec,
    DelegationStatus,
    EffectivePermission,
    InheritanceTreeNode,
    PermissionChange,
    PermissionConflict,
    PermissionDelegation,
    PermissionPreview,
    ValidationResult,
)
from rbac_hierarchy.services.catalog import CatalogAccessor, InMemoryCatalog
from rbac_hierarchy.utils.helpers import parse_conflict_id, utc_now

logger = logging.getLogger(__name__)


class PermissionInheritanceEngine:
    """Main engine combining hierarchy, inheritance, conflicts and delegation."""

    def __init__(
        self,
        catalog: CatalogAccessor,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or EngineConfig()
        self.catalog = catalog
        self.clock = clock

        self.validator = HierarchyValidator(self.config.inheritance)
        self.resolver = InheritanceResolver(self.config.inheritance, clock)
        self.conflict_detector = ConflictDetector(self.config.escalation)
        self.store = HierarchyStore(catalog, self.validator, clock, on_commit=self.resolver.invalidate)
        self.delegation_manager = DelegationManager(self.store, self.resolver, self.config.delegation, clock)
        self.previewer = PermissionPreviewer(
            self.validator, self.resolver, self.conflict_detector, self.delegation_manager
        )

    def snapshot(self, tenant_id: str) -> TenantState:
        """Last committed state of a tenant."""
        return self.store.snapshot(tenant_id)

    # Hierarchy administration

    async def create_role_hierarchy(self, spec: HierarchySpec) -> RoleHierarchy:
        return await self.store.create_role_hierarchy(spec)

    async def update_role_hierarchy(self, tenant_id: str, hierarchy_id: str, patch: HierarchyPatch) -> RoleHierarchy:
        return await self.store.update_role_hierarchy(tenant_id, hierarchy_id, patch)

    def get_role_hierarchy(self, tenant_id: str) -> RoleHierarchy:
        return self.store.snapshot(tenant_id).hierarchy

    async def add_hierarchy_level(self, tenant_id: str, level: HierarchyLevel) -> RoleHierarchy:
        return await self.store.add_hierarchy_level(tenant_id, level)

    async def remove_hierarchy_level(self, tenant_id: str, level_number: int) -> RoleHierarchy:
        return await self.store.remove_hierarchy_level(tenant_id, level_number)

    async def add_role_to_hierarchy(
        self,
        tenant_id: str,
        role: Union[Role, str],
        level: int,
        parent_role_id: Optional[str] = None,
    ) -> Role:
        return await self.store.add_role_to_hierarchy(tenant_id, role, level, parent_role_id)

    async def remove_role_from_hierarchy(self, tenant_id: str, role_id: str) -> Role:
        return await self.store.remove_role_from_hierarchy(tenant_id, role_id)

    async def move_role_in_hierarchy(
        self,
        tenant_id: str,
        role_id: str,
        new_parent_id: Optional[str],
        new_level: int,
    ) -> Role:
        return await self.store.move_role_in_hierarchy(tenant_id, role_id, new_parent_id, new_level)

    async def update_role_permissions(self, tenant_id: str, role_id: str, add=(), remove=()) -> Role:
        return await self.store.update_role_permissions(tenant_id, role_id, add, remove)

    async def refresh_catalog(self, tenant_id: str) -> int:
        return await self.store.refresh_catalog(tenant_id)

    def get_role(self, tenant_id: str, role_id: str) -> Role:
        return self.store.snapshot(tenant_id).require_role(role_id)

    def list_roles(self, tenant_id: str) -> List[Role]:
        state = self.store.snapshot(tenant_id)
        return sorted(state.roles.values(), key=lambda role: (role.level, role.id))

    # Inheritance

    def build_inheritance_tree(self, tenant_id: str) -> List[InheritanceTreeNode]:
        """
        Build the annotated inheritance forest of a tenant.

        Never fails on cycles: offending subtrees are truncated and reported
        as circular conflicts on the node where the cycle was found.
        """
        state = self.store.snapshot(tenant_id)
        forest, resolutions = self.resolver.build_inheritance_tree(state, self.clock())
        return self.conflict_detector.annotate(state, forest, resolutions)

    def calculate_effective_permissions(self, tenant_id: str, role_id: str, strict: bool = False) -> Set[str]:
        """
        Effective permission ids of a role.

        Args:
            tenant_id: Owning tenant
            role_id: Role to resolve
            strict: Raise instead of silently excluding contradictory grants

        Raises:
            UnknownRoleOrPermission: If the role is not in the hierarchy
            UnresolvedConflictBlocksCommit: In strict mode, if the role has
                unresolved contradictory or circular conflicts
        """
        state = self.store.snapshot(tenant_id)
        permissions = self.resolver.calculate_effective_permissions(state, role_id)
        if strict:
            resolution = self.resolver.resolve_role(state, role_id)
            blocking = [
                conflict for conflict in
                self.conflict_detector.conflicts_for_role(state, resolution, include_circular=True)
                if conflict.blocking
            ]
            if blocking:
                raise UnresolvedConflictBlocksCommit(
                    f"Role '{role_id}' has unresolved conflicts: " + ", ".join(c.id for c in blocking),
                    role_id=role_id,
                )
        return permissions

    def explain_effective_permissions(self, tenant_id: str, role_id: str) -> List[EffectivePermission]:
        state = self.store.snapshot(tenant_id)
        state.require_role(role_id)
        return self.resolver.explain_effective_permissions(state, role_id)

    def get_inheritance_chain(self, tenant_id: str, role_id: str) -> List[Role]:
        return self.resolver.get_inheritance_chain(self.store.snapshot(tenant_id), role_id)

    # Conflicts

    def detect_permission_conflicts(self, tenant_id: str, role_id: Optional[str] = None) -> List[PermissionConflict]:
        """Conflicts of a tenant's current tree, optionally for one role."""
        conflicts = self.conflict_detector.detect_permission_conflicts(self.build_inheritance_tree(tenant_id))
        if role_id is not None:
            conflicts = [conflict for conflict in conflicts if conflict.role_id == role_id]
        return conflicts

    async def resolve_conflict(
        self,
        tenant_id: str,
        conflict_id: str,
        resolution: ConflictResolution,
        resolved_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> None:
        """
        Commit an override for a conflict.

        The override is keyed by (role, permission), so later rebuilds reach
        the same decision as long as the conflicting sources are unchanged.
        """
        resolution = ConflictResolution(resolution)
        try:
            role_id = parse_conflict_id(conflict_id)["role_id"]
        except ValueError as e:
            raise UnknownConflictError(str(e))

        def mutate(draft: TenantState):
            role_resolution = None
            if role_id in draft.roles:
                role_resolution = self.resolver.resolve_role(draft, role_id)
            override = self.conflict_detector.build_override(
                draft, role_resolution, conflict_id, resolution, resolved_by, notes
            )
            draft.overrides[(override.role_id, override.permission_id)] = override
            return override

        await self.store.commit(tenant_id, "resolve_conflict", mutate)
        engine_logger.log_conflict_resolution(tenant_id, conflict_id, resolution.value, resolved_by=resolved_by)

    # Delegation

    async def create_delegation(self, tenant_id: str, spec: DelegationSpec) -> PermissionDelegation:
        return await self.delegation_manager.create_delegation(tenant_id, spec)

    async def revoke_delegation(
        self,
        tenant_id: str,
        delegation_id: str,
        reason: Optional[str] = None,
        revoked_by: Optional[str] = None,
    ) -> PermissionDelegation:
        return await self.delegation_manager.revoke_delegation(tenant_id, delegation_id, reason, revoked_by)

    def list_delegations(
        self,
        tenant_id: str,
        role_id: Optional[str] = None,
        status: Optional[DelegationStatus] = None,
    ) -> List[PermissionDelegation]:
        return self.delegation_manager.list_delegations(tenant_id, role_id, status)

    async def sweep_expired_delegations(self, tenant_id: str) -> int:
        return await self.delegation_manager.sweep_expired_delegations(tenant_id)

    # Validation and preview

    def validate_permission_inheritance(self, tenant_id: str, role_id: str) -> ValidationResult:
        """Validate a role's chain and report its blocking conflicts."""
        state = self.store.snapshot(tenant_id)
        conflicts: List[PermissionConflict] = []
        if role_id in state.roles:
            resolution = self.resolver.resolve_role(state, role_id)
            conflicts = self.conflict_detector.conflicts_for_role(state, resolution, include_circular=True)
        return self.validator.validate_permission_inheritance(state, role_id, conflicts)

    async def preview_permission_changes(self, tenant_id: str, change: PermissionChange) -> PermissionPreview:
        """
        Dry-run a change against the committed snapshot.

        Permissions granted by the change are looked up in the catalog first,
        as update_role_permissions does before committing.
        """
        state = self.store.snapshot(tenant_id)
        fetched = {}
        if change.change_type == ChangeType.ADD_PERMISSION:
            fetched = await self.store.fetch_permissions(state, change.permission_ids)
        return self.previewer.preview(state, change, self.clock(), fetched=fetched)


# Global engine instance
inheritance_engine = PermissionInheritanceEngine(catalog=InMemoryCatalog())
