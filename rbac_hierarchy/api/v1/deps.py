"""
Shared dependencies for the v1 endpoints.
"""

import logging

from fastapi import HTTPException, Request, status

from rbac_hierarchy.core.engine import PermissionInheritanceEngine, inheritance_engine
from rbac_hierarchy.core.errors import HierarchyError

logger = logging.getLogger(__name__)


def get_engine(request: Request) -> PermissionInheritanceEngine:
    """Engine configured by the application lifespan, or the global one."""
    return getattr(request.app.state, "engine", None) or inheritance_engine


def domain_error(error: HierarchyError) -> HTTPException:
    """Translate an engine error into an HTTP error with a typed detail."""
    return HTTPException(status_code=error.status_code, detail=error.to_dict())


def internal_error(action: str, error: Exception) -> HTTPException:
    logger.exception(f"Failed to {action}: {error}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}: {str(error)}"
    )
