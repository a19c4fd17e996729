"""
Health check endpoint for the permission inheritance engine.

This module provides health check functionality to monitor the status
of the engine service.
"""

import os
import time
from datetime import datetime, timezone
from typing import Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from rbac_hierarchy.api.v1.deps import get_engine
from rbac_hierarchy.core.engine import PermissionInheritanceEngine


class HealthStatus(BaseModel):
    """Health status response model."""
    status: str
    timestamp: datetime
    version: str
    uptime_seconds: float
    environment: str
    tenants: int


# Track service start time for uptime calculation
_start_time = time.time()

# Router for health endpoints
router = APIRouter(prefix="/health", tags=["health"])


@router.get(
    "/",
    response_model=HealthStatus,
    summary="Basic health check",
    description="Returns basic health status of the engine service"
)
async def health_check(engine: PermissionInheritanceEngine = Depends(get_engine)) -> HealthStatus:
    """
    Basic health check endpoint.

    Returns:
        HealthStatus: Status, timestamp, uptime and number of loaded tenants.
    """
    return HealthStatus(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version="0.1.0",
        uptime_seconds=time.time() - _start_time,
        environment=os.getenv("ENVIRONMENT", "development"),
        tenants=len(engine.store.tenants())
    )


@router.get(
    "/live",
    summary="Liveness check",
    description="Returns 200 if service is alive"
)
async def liveness_check() -> Dict[str, str]:
    """
    Liveness check endpoint for Kubernetes liveness probes.

    Returns:
        Dict: Simple alive status.
    """
    return {"status": "alive"}
