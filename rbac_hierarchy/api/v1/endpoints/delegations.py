"""
Permission Delegation API Endpoints.

This module provides REST API endpoints for time-bounded delegations:
- Creating delegations between levels
- Revoking active delegations
- Listing delegations with their current status
- Sweeping expired delegations
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from rbac_hierarchy.api.v1.deps import domain_error, get_engine, internal_error
from rbac_hierarchy.core.engine import PermissionInheritanceEngine
from rbac_hierarchy.core.errors import HierarchyError
from rbac_hierarchy.models.inheritance import DelegationSpec, DelegationStatus, PermissionDelegation

router = APIRouter(prefix="/tenants/{tenant_id}/delegations", tags=["Delegations"])


class RevokeDelegationRequest(BaseModel):
    """Request model for revoking a delegation."""
    reason: Optional[str] = Field(None, max_length=500)
    revoked_by: Optional[str] = None


class SweepResponse(BaseModel):
    """Response model for an expiry sweep."""
    tenant_id: str
    expired: int


@router.get("", response_model=List[PermissionDelegation])
async def list_delegations(
    tenant_id: str,
    role_id: Optional[str] = None,
    delegation_status: Optional[DelegationStatus] = None,
    engine: PermissionInheritanceEngine = Depends(get_engine)
):
    """List delegations, optionally for one role or status."""
    try:
        return engine.list_delegations(tenant_id, role_id, delegation_status)
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("list delegations", e)


@router.post("", response_model=PermissionDelegation, status_code=status.HTTP_201_CREATED)
async def create_delegation(
    tenant_id: str,
    spec: DelegationSpec,
    engine: PermissionInheritanceEngine = Depends(get_engine)
):
    """Delegate permissions from one role to another."""
    try:
        return await engine.create_delegation(tenant_id, spec)
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("create delegation", e)


@router.post("/sweep", response_model=SweepResponse)
async def sweep_delegations(tenant_id: str, engine: PermissionInheritanceEngine = Depends(get_engine)):
    """Mark delegations past their expiry as expired."""
    try:
        expired = await engine.sweep_expired_delegations(tenant_id)
        return SweepResponse(tenant_id=tenant_id, expired=expired)
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("sweep delegations", e)


@router.post("/{delegation_id}/revoke", response_model=PermissionDelegation)
async def revoke_delegation(
    tenant_id: str,
    delegation_id: str,
    request: RevokeDelegationRequest,
    engine: PermissionInheritanceEngine = Depends(get_engine)
):
    """Revoke an active delegation."""
    try:
        return await engine.revoke_delegation(
            tenant_id,
            delegation_id,
            reason=request.reason,
            revoked_by=request.revoked_by
        )
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("revoke delegation", e)
