"""
API v1 Router Configuration.

This module configures and organizes all API v1 endpoints including:
- Role hierarchy administration
- Roles, effective permissions and validation
- Conflict detection and resolution
- Delegations
- Change previews
- Health checks
"""

from fastapi import APIRouter

from rbac_hierarchy.api.v1.endpoints import (
    hierarchy,
    roles,
    conflicts,
    delegations,
    preview,
    health
)

# Create main v1 router
api_router = APIRouter(prefix="/api/v1")

# Include all endpoint routers
api_router.include_router(
    hierarchy.router,
    tags=["Role Hierarchy"]
)

api_router.include_router(
    roles.router,
    tags=["Roles"]
)

api_router.include_router(
    conflicts.router,
    tags=["Conflicts"]
)

api_router.include_router(
    delegations.router,
    tags=["Delegations"]
)

api_router.include_router(
    preview.router,
    tags=["Preview"]
)

api_router.include_router(
    health.router,
    tags=["Health"]
)
