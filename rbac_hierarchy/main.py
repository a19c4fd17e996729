"""
Main FastAPI application entry point.

This module initializes the permission inheritance engine service with
configuration, logging, the catalog seed and routing.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from rbac_hierarchy.api.v1.router import api_router
from rbac_hierarchy.config import ConfigLoader, get_catalog_config
from rbac_hierarchy.config.logging import setup_logging
from rbac_hierarchy.core.engine import PermissionInheritanceEngine
from rbac_hierarchy.core.middleware import TimingMiddleware
from rbac_hierarchy.services.catalog import InMemoryCatalog

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    config_loader = ConfigLoader()
    config = config_loader.load_config()
    app.state.config = config

    setup_logging(
        log_level=config.server.log_level.upper(),
        log_format=config.logging.format,
        log_file=config.logging.file,
        enable_access_log=config.server.access_log
    )

    try:
        catalog = InMemoryCatalog.from_config(get_catalog_config())
    except (TypeError, ValueError) as e:
        logger.error(f"Failed to load catalog seed, starting with an empty catalog: {e}")
        catalog = InMemoryCatalog()

    app.state.engine = PermissionInheritanceEngine(catalog=catalog, config=config)
    logger.info(
        "Permission inheritance engine initialized "
        f"(max inheritance depth {config.inheritance.max_inheritance_depth}, "
        f"max delegation chain {config.delegation.max_chain_depth})"
    )

    yield

    logger.info("Permission inheritance engine shutting down")


app = FastAPI(
    title="Role Hierarchy Engine",
    description="Role hierarchy and permission inheritance engine for multi-tenant platforms",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Add timing middleware
app.add_middleware(TimingMiddleware)

# Include all API endpoints via main router
app.include_router(api_router)


@app.get("/")
async def read_root():
    return {"message": "Role hierarchy engine"}
