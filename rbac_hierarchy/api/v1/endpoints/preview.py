"""
Change Preview API Endpoint.
"""

from fastapi import APIRouter, Depends

from rbac_hierarchy.api.v1.deps import domain_error, get_engine, internal_error
from rbac_hierarchy.core.engine import PermissionInheritanceEngine
from rbac_hierarchy.core.errors import HierarchyError
from rbac_hierarchy.models.inheritance import PermissionChange, PermissionPreview

router = APIRouter(prefix="/tenants/{tenant_id}/preview", tags=["Preview"])


@router.post("", response_model=PermissionPreview)
async def preview_change(
    tenant_id: str,
    change: PermissionChange,
    engine: PermissionInheritanceEngine = Depends(get_engine)
):
    """
    Dry-run a change and report its effect on the affected roles.

    Invalid changes are reported with is_valid false rather than an error
    status; nothing is committed either way.
    """
    try:
        return await engine.preview_permission_changes(tenant_id, change)
    except HierarchyError as e:
        raise domain_error(e)
    except Exception as e:
        raise internal_error("preview change", e)
