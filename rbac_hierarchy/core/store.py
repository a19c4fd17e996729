"""
Hierarchy store: per-tenant snapshots with serialized, validated commits.

Reads return the last committed TenantState without locking. Mutations take
the tenant's asyncio lock, apply a draft function to a clone, validate the
clone and swap it in with an incremented version. A failed mutation leaves
the committed snapshot untouched.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Union

from rbac_hierarchy.config.logging import engine_logger
from rbac_hierarchy.core.errors import (
    DuplicateEntityError,
    HierarchyError,
    HierarchyNotFoundError,
    InvalidLevelTransition,
    ProtectedRoleError,
    UnknownRoleOrPermission,
)
from rbac_hierarchy.core.state import (
    TenantState,
    detach_role,
    place_role,
    relocate_role,
    set_direct_permissions,
)
from rbac_hierarchy.core.validator import HierarchyValidator, raise_for_issues
from rbac_hierarchy.models.hierarchy import (
    HierarchyLevel,
    HierarchyPatch,
    HierarchySpec,
    Permission,
    Role,
    RoleHierarchy,
    default_hierarchy_levels,
)
from rbac_hierarchy.services.catalog import CatalogAccessor
from rbac_hierarchy.utils.helpers import generate_id, utc_now

logger = logging.getLogger(__name__)

Mutator = Callable[[TenantState], Any]


class HierarchyStore:
    """Owns the committed snapshot of every tenant."""

    def __init__(
        self,
        catalog: CatalogAccessor,
        validator: HierarchyValidator,
        clock: Callable[[], datetime] = utc_now,
        on_commit: Optional[Callable[[TenantState], None]] = None,
    ):
        self.catalog = catalog
        self.validator = validator
        self.clock = clock
        self.on_commit = on_commit
        self._states: Dict[str, TenantState] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def has_tenant(self, tenant_id: str) -> bool:
        return tenant_id in self._states

    def tenants(self) -> List[str]:
        return sorted(self._states)

    def snapshot(self, tenant_id: str) -> TenantState:
        """
        Get the last committed snapshot of a tenant.

        Raises:
            HierarchyNotFoundError: If the tenant has no hierarchy
        """
        state = self._states.get(tenant_id)
        if state is None:
            raise HierarchyNotFoundError(f"No role hierarchy exists for tenant '{tenant_id}'")
        return state

    async def commit(self, tenant_id: str, operation: str, mutator: Mutator) -> Any:
        """
        Apply a mutation to a clone of the tenant snapshot and commit it.

        The mutator receives the draft and is responsible for validating it;
        any HierarchyError it raises discards the draft.

        Args:
            tenant_id: Tenant to mutate
            operation: Operation name used in logs
            mutator: Function applying the change to the draft

        Returns:
            Whatever the mutator returns
        """
        async with self._locks[tenant_id]:
            current = self.snapshot(tenant_id)
            draft = current.clone()
            try:
                result = mutator(draft)
            except HierarchyError as e:
                engine_logger.log_mutation(tenant_id, operation, False, error=e.code)
                raise

            self._install(draft, current.version + 1)
            engine_logger.log_mutation(tenant_id, operation, True, version=draft.version)
            return result

    def _install(self, draft: TenantState, version: int) -> None:
        draft.version = version
        draft.committed = True
        self._states[draft.tenant_id] = draft
        if self.on_commit:
            self.on_commit(draft)

    def gate(self, draft: TenantState, role_ids: Iterable[str]) -> None:
        """Validate the given roles of a draft, raising on the first problem."""
        raise_for_issues(self.validator.check_roles(draft, role_ids))

    async def fetch_permissions(self, state: TenantState, permission_ids: Iterable[str]) -> Dict[str, Permission]:
        """
        Look up permissions missing from a snapshot in the catalog.

        Returns:
            Permissions found in the catalog, keyed by id (misses are omitted)
        """
        found: Dict[str, Permission] = {}
        for permission_id in sorted(set(permission_ids) - set(state.permissions)):
            permission = await self.catalog.get_permission(permission_id)
            if permission is not None:
                found[permission_id] = permission
        return found

    async def create_role_hierarchy(self, spec: HierarchySpec) -> RoleHierarchy:
        """
        Create the hierarchy of a tenant.

        Catalog roles and ``spec.roles`` are placed on the level that lists
        them, or on their own ``level`` when no level lists them. Levels
        default to the five level template.

        Raises:
            DuplicateEntityError: If the tenant already has a hierarchy
        """
        tenant_id = spec.tenant_id
        if self.has_tenant(tenant_id):
            raise DuplicateEntityError(f"Tenant '{tenant_id}' already has a role hierarchy")

        catalog_roles = await self.catalog.list_roles_for_tenant(tenant_id)
        catalog_permissions = await self.catalog.list_permissions_for_tenant(tenant_id)

        async with self._locks[tenant_id]:
            if self.has_tenant(tenant_id):
                raise DuplicateEntityError(f"Tenant '{tenant_id}' already has a role hierarchy")

            now = self.clock()
            levels = [level.model_copy(deep=True) for level in spec.levels] or default_hierarchy_levels()
            numbers = [level.level for level in levels]
            if len(numbers) != len(set(numbers)):
                raise DuplicateEntityError("Hierarchy levels must have distinct numbers")

            listed: Dict[str, int] = {}
            for level in levels:
                for role_id in level.roles:
                    if role_id in listed:
                        raise DuplicateEntityError(f"Role '{role_id}' is listed on more than one level", role_id=role_id)
                    listed[role_id] = level.level
                level.roles = set()

            hierarchy = RoleHierarchy(
                id=generate_id("hierarchy"),
                tenant_id=tenant_id,
                name=spec.name,
                description=spec.description,
                levels=sorted(levels, key=lambda level: level.level),
                is_active=spec.is_active,
                created_at=now,
                updated_at=now,
            )
            draft = TenantState(
                tenant_id=tenant_id,
                hierarchy=hierarchy,
                permissions={permission.id: permission for permission in catalog_permissions},
            )

            records: Dict[str, Role] = {role.id: role for role in catalog_roles}
            records.update({role.id: role for role in spec.roles})

            missing = sorted(set(listed) - set(records))
            if missing:
                error = UnknownRoleOrPermission(f"Unknown roles listed on levels: {', '.join(missing)}")
                engine_logger.log_mutation(tenant_id, "create_hierarchy", False, error=error.code)
                raise error

            try:
                for role_id in sorted(records):
                    role = records[role_id]
                    level = listed.get(role_id, role.level)
                    if role_id in listed and role.level != level:
                        raise InvalidLevelTransition(
                            f"Role '{role_id}' has level {role.level} but is listed on level {level}",
                            role_id=role_id,
                        )
                    place_role(draft, role, level)
                self.gate(draft, sorted(draft.roles))
            except HierarchyError as e:
                engine_logger.log_mutation(tenant_id, "create_hierarchy", False, error=e.code)
                raise

            self._install(draft, 1)

        engine_logger.log_mutation(
            tenant_id, "create_hierarchy", True, version=1, roles=len(draft.roles)
        )
        return draft.hierarchy

    async def update_role_hierarchy(self, tenant_id: str, hierarchy_id: str, patch: HierarchyPatch) -> RoleHierarchy:
        """
        Update hierarchy metadata and, optionally, the level definitions.

        Role placement is kept: every placed role must still find its level
        number in the new definitions, and every parent edge must still be
        permitted by the new inheritance matrix.
        """
        def mutate(draft: TenantState) -> RoleHierarchy:
            hierarchy = draft.hierarchy
            if hierarchy.id != hierarchy_id:
                raise HierarchyNotFoundError(f"Hierarchy '{hierarchy_id}' not found for tenant '{tenant_id}'")

            if patch.name is not None:
                hierarchy.name = patch.name
            if patch.description is not None:
                hierarchy.description = patch.description
            if patch.is_active is not None:
                hierarchy.is_active = patch.is_active

            if patch.levels is not None:
                levels = {level.level: level.model_copy(deep=True) for level in patch.levels}
                if len(levels) != len(patch.levels):
                    raise DuplicateEntityError("Hierarchy levels must have distinct numbers")
                for level in levels.values():
                    level.roles = set()
                for role in draft.roles.values():
                    if role.level not in levels:
                        raise InvalidLevelTransition(
                            f"Level {role.level} is still used by role '{role.id}'",
                            role_id=role.id,
                        )
                    levels[role.level].roles.add(role.id)
                hierarchy.levels = [levels[number] for number in sorted(levels)]
                self.gate(draft, sorted(draft.roles))

            hierarchy.updated_at = self.clock()
            return hierarchy

        return await self.commit(tenant_id, "update_hierarchy", mutate)

    async def add_hierarchy_level(self, tenant_id: str, level: HierarchyLevel) -> RoleHierarchy:
        """Add an empty level definition to the hierarchy."""
        def mutate(draft: TenantState) -> RoleHierarchy:
            if draft.hierarchy.get_level(level.level) is not None:
                raise DuplicateEntityError(f"Hierarchy level {level.level} already exists")
            if level.roles:
                raise InvalidLevelTransition("Roles are placed with add_role_to_hierarchy, not with a new level")

            draft.hierarchy.levels = sorted(
                draft.hierarchy.levels + [level.model_copy(deep=True)],
                key=lambda item: item.level,
            )
            draft.hierarchy.updated_at = self.clock()
            return draft.hierarchy

        return await self.commit(tenant_id, "add_level", mutate)

    async def remove_hierarchy_level(self, tenant_id: str, level_number: int) -> RoleHierarchy:
        """Remove an empty level and every reference to it."""
        def mutate(draft: TenantState) -> RoleHierarchy:
            level = draft.require_level(level_number)
            if level.roles:
                raise InvalidLevelTransition(
                    f"Hierarchy level {level_number} still has roles: {', '.join(sorted(level.roles))}"
                )

            remaining = [item for item in draft.hierarchy.levels if item.level != level_number]
            for item in remaining:
                item.can_inherit_from.discard(level_number)
                item.can_delegate_to.discard(level_number)
            draft.hierarchy.levels = remaining
            draft.hierarchy.updated_at = self.clock()
            return draft.hierarchy

        return await self.commit(tenant_id, "remove_level", mutate)

    async def add_role_to_hierarchy(
        self,
        tenant_id: str,
        role: Union[Role, str],
        level: int,
        parent_role_id: Optional[str] = None,
    ) -> Role:
        """
        Place a role on a level.

        Args:
            tenant_id: Owning tenant
            role: Role record, or a role id looked up in the catalog
            level: Level number to place the role on
            parent_role_id: Parent to attach to (defaults to the record's parent)

        Returns:
            The placed role
        """
        current = self.snapshot(tenant_id)
        if isinstance(role, str):
            record = await self.catalog.get_role(role)
            if record is None:
                raise UnknownRoleOrPermission(f"Role '{role}' not found in catalog", role_id=role)
            role = record

        fetched = await self.fetch_permissions(current, role.direct_permissions)

        def mutate(draft: TenantState) -> Role:
            draft.permissions.update(fetched)
            record = role
            if parent_role_id is not None:
                record = role.model_copy(update={"parent_role_id": parent_role_id})
            placed = place_role(draft, record, level)
            self.gate(draft, [placed.id])
            return placed

        return await self.commit(tenant_id, "add_role", mutate)

    async def remove_role_from_hierarchy(self, tenant_id: str, role_id: str) -> Role:
        """
        Remove a non-system role.

        Children move up to the removed role's parent and must satisfy the
        inheritance matrix there. Delegations involving the role are revoked.
        """
        def mutate(draft: TenantState) -> Role:
            role = draft.require_role(role_id)
            if role.is_system:
                raise ProtectedRoleError(f"System role '{role_id}' cannot be removed", role_id=role_id)

            reparented = detach_role(draft, role_id, self.clock())
            affected: List[str] = []
            for child_id in reparented:
                affected.append(child_id)
                affected.extend(draft.descendants_of(child_id))
            self.gate(draft, affected)
            return role

        return await self.commit(tenant_id, "remove_role", mutate)

    async def move_role_in_hierarchy(
        self,
        tenant_id: str,
        role_id: str,
        new_parent_id: Optional[str],
        new_level: int,
    ) -> Role:
        """
        Re-parent a role and place it on a new level.

        The cycle check runs before any level check, so a move under one's
        own descendant always reports CircularHierarchyError.
        """
        def mutate(draft: TenantState) -> Role:
            role = relocate_role(draft, role_id, new_parent_id, new_level, self.clock())
            self.gate(draft, [role_id] + draft.descendants_of(role_id))
            return role

        return await self.commit(tenant_id, "move_role", mutate)

    async def update_role_permissions(
        self,
        tenant_id: str,
        role_id: str,
        add: Iterable[str] = (),
        remove: Iterable[str] = (),
    ) -> Role:
        """Grant and revoke direct permissions of a role."""
        add = set(add)
        remove = set(remove)
        fetched = await self.fetch_permissions(self.snapshot(tenant_id), add)

        def mutate(draft: TenantState) -> Role:
            draft.permissions.update(fetched)
            return set_direct_permissions(draft, role_id, add, remove, now=self.clock())

        return await self.commit(tenant_id, "update_role_permissions", mutate)

    async def refresh_catalog(self, tenant_id: str) -> int:
        """
        Re-read the tenant's permission list from the catalog.

        Permissions still referenced by roles are kept even when the catalog
        no longer lists them.

        Returns:
            Number of permissions in the new snapshot
        """
        self.snapshot(tenant_id)
        listed = await self.catalog.list_permissions_for_tenant(tenant_id)

        def mutate(draft: TenantState) -> int:
            referenced: Set[str] = set()
            for role in draft.roles.values():
                referenced |= role.direct_permissions
            for level in draft.hierarchy.levels:
                referenced |= level.default_permissions

            permissions = {permission.id: permission for permission in listed}
            for permission_id in referenced - set(permissions):
                if permission_id in draft.permissions:
                    permissions[permission_id] = draft.permissions[permission_id]
            draft.permissions = permissions
            return len(permissions)

        count = await self.commit(tenant_id, "refresh_catalog", mutate)
        logger.info(f"Refreshed catalog for tenant {tenant_id}: {count} permissions")
        return count
