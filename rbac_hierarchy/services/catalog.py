"""
Role and permission catalog access.

The engine never owns persistence. It reads Role and Permission records
through a CatalogAccessor injected at construction time; the in-memory
implementation below is seeded from configuration or by tests.
"""

import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

from rbac_hierarchy.models.hierarchy import Permission, Role

logger = logging.getLogger(__name__)


class CatalogAccessor:
    """Abstract base class for read-only role/permission catalogs."""

    async def get_role(self, role_id: str) -> Optional[Role]:
        """
        Fetch a role record.

        Args:
            role_id: Role identifier

        Returns:
            Role or None if the catalog has no such role
        """
        raise NotImplementedError

    async def list_roles_for_tenant(self, tenant_id: str) -> List[Role]:
        """
        List the role records of a tenant.

        Args:
            tenant_id: Tenant identifier

        Returns:
            List of roles
        """
        raise NotImplementedError

    async def get_permission(self, permission_id: str) -> Optional[Permission]:
        """
        Fetch a permission record.

        Args:
            permission_id: Permission identifier

        Returns:
            Permission or None if the catalog has no such permission
        """
        raise NotImplementedError

    async def list_permissions_for_tenant(self, tenant_id: str) -> List[Permission]:
        """
        List the permission records available to a tenant.

        Args:
            tenant_id: Tenant identifier

        Returns:
            List of permissions
        """
        raise NotImplementedError


class InMemoryCatalog(CatalogAccessor):
    """Catalog backed by in-process dictionaries."""

    def __init__(self):
        self._roles: Dict[str, Role] = {}
        self._permissions: Dict[str, Permission] = {}
        self._tenant_roles: Dict[str, List[str]] = defaultdict(list)
        self._tenant_permissions: Dict[str, List[str]] = defaultdict(list)
        self._shared_permissions: List[str] = []

    def add_permission(self, permission: Permission, tenant_id: Optional[str] = None) -> None:
        """
        Add a permission to the catalog.

        Args:
            permission: Permission record
            tenant_id: Tenant the permission is scoped to; None shares it with all tenants
        """
        self._permissions[permission.id] = permission
        target = self._tenant_permissions[tenant_id] if tenant_id else self._shared_permissions
        if permission.id not in target:
            target.append(permission.id)

    def add_role(self, role: Role) -> None:
        """Add a role to the catalog under its tenant."""
        if not role.tenant_id:
            raise ValueError(f"Role '{role.id}' has no tenant_id")
        self._roles[role.id] = role
        if role.id not in self._tenant_roles[role.tenant_id]:
            self._tenant_roles[role.tenant_id].append(role.id)

    async def get_role(self, role_id: str) -> Optional[Role]:
        role = self._roles.get(role_id)
        return role.model_copy(deep=True) if role else None

    async def list_roles_for_tenant(self, tenant_id: str) -> List[Role]:
        return [self._roles[role_id].model_copy(deep=True) for role_id in self._tenant_roles.get(tenant_id, [])]

    async def get_permission(self, permission_id: str) -> Optional[Permission]:
        return self._permissions.get(permission_id)

    async def list_permissions_for_tenant(self, tenant_id: str) -> List[Permission]:
        permission_ids = self._shared_permissions + self._tenant_permissions.get(tenant_id, [])
        return [self._permissions[permission_id] for permission_id in permission_ids]

    @classmethod
    def from_config(cls, data: Dict[str, Any]) -> "InMemoryCatalog":
        """
        Build a catalog from catalog.yaml data.

        Expected shape::

            permissions: [{id, module, resource, action, ...}]
            tenants:
              acme:
                permissions: [...]
                roles: [{id, name, level, parent_role_id, direct_permissions}]

        Args:
            data: Parsed catalog configuration

        Returns:
            Seeded catalog
        """
        catalog = cls()

        for permission_data in data.get("permissions", []) or []:
            catalog.add_permission(Permission(**permission_data))

        for tenant_id, tenant_data in (data.get("tenants") or {}).items():
            tenant_data = tenant_data or {}
            for permission_data in tenant_data.get("permissions", []) or []:
                catalog.add_permission(Permission(**permission_data), tenant_id=tenant_id)
            for role_data in tenant_data.get("roles", []) or []:
                catalog.add_role(Role(**{**role_data, "tenant_id": tenant_id}))

        logger.info(
            f"Catalog loaded with {len(catalog._permissions)} permissions "
            f"and {len(catalog._roles)} roles"
        )
        return catalog
