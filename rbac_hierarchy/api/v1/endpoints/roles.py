"""
Role API Endpoints.

This module provides REST API endpoints for roles inside a tenant hierarchy:
- Adding, removing and moving roles
- Direct permission updates
- Effective permissions and their provenance
- Inheritance chains and validation
"""

from typing import List, Optional, Set

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, model_validator

from rbac_hierarchy.api.v1.deps import domain_error, get_engine, internal_error
from rbac_hierarchy.core.engine import PermissionInheritanceEngine
from rbac_hierarchy.core.errors import HierarchyError
from rbac_hierarchy.models.hierarchy import Role
from rbac_hierarchy.models.inheritance import EffectivePermission, ValidationResult

router = APIRouter(prefix="/tenants/{tenant_id}/roles", tags=["Roles"])


class AddRoleRequest(BaseModel):
    """Request model for placing a role; either a record or a catalog id."""
    role: Optional[Role] = Field(None, description="Role record to place")
    role_id: Optional[str] = Field(None, description="Catalog role to place")
    level: int = Field(..., ge=1, description="Level to place the role on")
    parent_role_id: Optional[str] = Field(None, description="Parent role")

    @model_validator(mode="after")
    def check_role_source(self):
        """Exactly one of role and role_id must be given."""
        if (self.role is None) == (self.role_id is None):
            raise ValueError("Provide exactly one of role or role_id")
        return self


class MoveRoleRequest(BaseModel):
    """Request model for moving a role."""
    new_parent_id: Optional[str] = Field(None, description="New parent; null makes the role a root")
    new_level: int = Field(..., ge=1, description="New level")


class UpdatePermissionsRequest(BaseModel):
    """Request model for changing direct permissions."""
    add: Set[str] = Field(default_factory=set)
    remove: Set[str] = Field(default_factory=set)


class EffectivePermissionsResponse(BaseModel):
    """Response model for a role's effective permissions."""
    role_id: str
    permissions: List[str]


@router.get("", response_model=List[Role])
async def list_roles(tenant_id: str, engine: PermissionInheritanceEngine = Depends(get_engine)):
    """List the roles of a tenant hierarchy."""
    try:
        return engine.list_roles(tenant_id)
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("list roles", e)


@router.post("", response_model=Role, status_code=status.HTTP_201_CREATED)
async def add_role(
    tenant_id: str,
    request: AddRoleRequest,
    engine: PermissionInheritanceEngine = Depends(get_engine)
):
    """Place a role on a hierarchy level."""
    try:
        return await engine.add_role_to_hierarchy(
            tenant_id,
            request.role or request.role_id,
            request.level,
            request.parent_role_id
        )
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("add role", e)


@router.get("/{role_id}", response_model=Role)
async def get_role(tenant_id: str, role_id: str, engine: PermissionInheritanceEngine = Depends(get_engine)):
    """Get a role of the hierarchy."""
    try:
        return engine.get_role(tenant_id, role_id)
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("get role", e)


@router.delete("/{role_id}")
async def remove_role(tenant_id: str, role_id: str, engine: PermissionInheritanceEngine = Depends(get_engine)):
    """Remove a role; its children move up to its parent."""
    try:
        await engine.remove_role_from_hierarchy(tenant_id, role_id)
        return {"message": f"Role '{role_id}' removed successfully"}
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("remove role", e)


@router.post("/{role_id}/move", response_model=Role)
async def move_role(
    tenant_id: str,
    role_id: str,
    request: MoveRoleRequest,
    engine: PermissionInheritanceEngine = Depends(get_engine)
):
    """Re-parent a role and move it to a new level."""
    try:
        return await engine.move_role_in_hierarchy(tenant_id, role_id, request.new_parent_id, request.new_level)
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("move role", e)


@router.patch("/{role_id}/permissions", response_model=Role)
async def update_permissions(
    tenant_id: str,
    role_id: str,
    request: UpdatePermissionsRequest,
    engine: PermissionInheritanceEngine = Depends(get_engine)
):
    """Grant and revoke direct permissions of a role."""
    if not request.add and not request.remove:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Nothing to add or remove"
        )
    try:
        return await engine.update_role_permissions(tenant_id, role_id, request.add, request.remove)
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("update role permissions", e)


@router.get("/{role_id}/effective-permissions", response_model=EffectivePermissionsResponse)
async def get_effective_permissions(
    tenant_id: str,
    role_id: str,
    strict: bool = False,
    engine: PermissionInheritanceEngine = Depends(get_engine)
):
    """Effective permission ids of a role."""
    try:
        permissions = engine.calculate_effective_permissions(tenant_id, role_id, strict=strict)
        return EffectivePermissionsResponse(role_id=role_id, permissions=sorted(permissions))
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("calculate effective permissions", e)


@router.get("/{role_id}/effective-permissions/explain", response_model=List[EffectivePermission])
async def explain_effective_permissions(
    tenant_id: str,
    role_id: str,
    engine: PermissionInheritanceEngine = Depends(get_engine)
):
    """Effective permissions of a role with their provenance."""
    try:
        return engine.explain_effective_permissions(tenant_id, role_id)
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("explain effective permissions", e)


@router.get("/{role_id}/chain", response_model=List[Role])
async def get_inheritance_chain(
    tenant_id: str,
    role_id: str,
    engine: PermissionInheritanceEngine = Depends(get_engine)
):
    """Ancestors of a role from its parent up to the root."""
    try:
        return engine.get_inheritance_chain(tenant_id, role_id)
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("get inheritance chain", e)


@router.get("/{role_id}/validate", response_model=ValidationResult)
async def validate_role(
    tenant_id: str,
    role_id: str,
    engine: PermissionInheritanceEngine = Depends(get_engine)
):
    """Validate a role's inheritance chain and conflicts."""
    try:
        return engine.validate_permission_inheritance(tenant_id, role_id)
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("validate role", e)
