"""
Role Hierarchy API Endpoints.

This module provides REST API endpoints for administering a tenant's role
hierarchy:
- Hierarchy creation and updates
- Level management
- Inheritance tree
- Catalog refresh
"""

from typing import List

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from rbac_hierarchy.api.v1.deps import domain_error, get_engine, internal_error
from rbac_hierarchy.core.engine import PermissionInheritanceEngine
from rbac_hierarchy.core.errors import HierarchyError
from rbac_hierarchy.models.hierarchy import (
    HierarchyLevel,
    HierarchyPatch,
    HierarchySpec,
    Role,
    RoleHierarchy,
)
from rbac_hierarchy.models.inheritance import InheritanceTreeNode

router = APIRouter(prefix="/tenants/{tenant_id}", tags=["Role Hierarchy"])


class CreateHierarchyRequest(BaseModel):
    """Request model for creating a tenant hierarchy."""
    name: str = Field(..., min_length=1, description="Hierarchy name")
    description: str = Field(default="", description="Hierarchy description")
    levels: List[HierarchyLevel] = Field(default_factory=list, description="Levels; empty uses the default template")
    roles: List[Role] = Field(default_factory=list, description="Roles in addition to the catalog ones")
    is_active: bool = True


class CatalogRefreshResponse(BaseModel):
    """Response model for a catalog refresh."""
    tenant_id: str
    permissions: int


@router.post("/hierarchy", response_model=RoleHierarchy, status_code=status.HTTP_201_CREATED)
async def create_hierarchy(
    tenant_id: str,
    request: CreateHierarchyRequest,
    engine: PermissionInheritanceEngine = Depends(get_engine)
):
    """Create the role hierarchy of a tenant."""
    try:
        spec = HierarchySpec(tenant_id=tenant_id, **request.model_dump())
        return await engine.create_role_hierarchy(spec)
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("create hierarchy", e)


@router.get("/hierarchy", response_model=RoleHierarchy)
async def get_hierarchy(tenant_id: str, engine: PermissionInheritanceEngine = Depends(get_engine)):
    """Get the role hierarchy of a tenant."""
    try:
        return engine.get_role_hierarchy(tenant_id)
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("get hierarchy", e)


@router.patch("/hierarchy/{hierarchy_id}", response_model=RoleHierarchy)
async def update_hierarchy(
    tenant_id: str,
    hierarchy_id: str,
    patch: HierarchyPatch,
    engine: PermissionInheritanceEngine = Depends(get_engine)
):
    """Update hierarchy metadata or level definitions."""
    try:
        return await engine.update_role_hierarchy(tenant_id, hierarchy_id, patch)
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("update hierarchy", e)


@router.post("/hierarchy/levels", response_model=RoleHierarchy, status_code=status.HTTP_201_CREATED)
async def add_level(
    tenant_id: str,
    level: HierarchyLevel,
    engine: PermissionInheritanceEngine = Depends(get_engine)
):
    """Add an empty level to the hierarchy."""
    try:
        return await engine.add_hierarchy_level(tenant_id, level)
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("add level", e)


@router.delete("/hierarchy/levels/{level_number}", response_model=RoleHierarchy)
async def remove_level(
    tenant_id: str,
    level_number: int,
    engine: PermissionInheritanceEngine = Depends(get_engine)
):
    """Remove an empty level from the hierarchy."""
    try:
        return await engine.remove_hierarchy_level(tenant_id, level_number)
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("remove level", e)


@router.get("/tree", response_model=List[InheritanceTreeNode])
async def get_inheritance_tree(tenant_id: str, engine: PermissionInheritanceEngine = Depends(get_engine)):
    """Build the inheritance forest with conflicts attached to each node."""
    try:
        return engine.build_inheritance_tree(tenant_id)
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("build inheritance tree", e)


@router.post("/catalog/refresh", response_model=CatalogRefreshResponse)
async def refresh_catalog(tenant_id: str, engine: PermissionInheritanceEngine = Depends(get_engine)):
    """Re-read the tenant's permissions from the catalog."""
    try:
        count = await engine.refresh_catalog(tenant_id)
        return CatalogRefreshResponse(tenant_id=tenant_id, permissions=count)
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("refresh catalog", e)
