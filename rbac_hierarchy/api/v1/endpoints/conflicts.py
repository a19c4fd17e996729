"""
Permission Conflict API Endpoints.

Conflicts are derived from the current hierarchy on every request; resolving
one stores an override that later rebuilds honour.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from rbac_hierarchy.api.v1.deps import domain_error, get_engine, internal_error
from rbac_hierarchy.core.engine import PermissionInheritanceEngine
from rbac_hierarchy.core.errors import HierarchyError
from rbac_hierarchy.models.inheritance import ConflictResolution, PermissionConflict

router = APIRouter(prefix="/tenants/{tenant_id}/conflicts", tags=["Conflicts"])


class ResolveConflictRequest(BaseModel):
    """Request model for resolving a conflict."""
    resolution: ConflictResolution = Field(..., description="allow, deny or highest_priority")
    resolved_by: Optional[str] = Field(None, description="Administrator resolving the conflict")
    notes: Optional[str] = Field(None, max_length=500)


@router.get("", response_model=List[PermissionConflict])
async def list_conflicts(
    tenant_id: str,
    role_id: Optional[str] = None,
    engine: PermissionInheritanceEngine = Depends(get_engine)
):
    """Detect the permission conflicts of a tenant."""
    try:
        return engine.detect_permission_conflicts(tenant_id, role_id)
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("detect conflicts", e)


@router.post("/{conflict_id}/resolve")
async def resolve_conflict(
    tenant_id: str,
    conflict_id: str,
    request: ResolveConflictRequest,
    engine: PermissionInheritanceEngine = Depends(get_engine)
):
    """Commit a resolution for a conflict."""
    try:
        await engine.resolve_conflict(
            tenant_id,
            conflict_id,
            request.resolution,
            resolved_by=request.resolved_by,
            notes=request.notes
        )
        return {"message": f"Conflict '{conflict_id}' resolved with {request.resolution.value}"}
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("resolve conflict", e)
