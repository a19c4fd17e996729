"""Test fixtures for the role hierarchy engine tests."""

import pytest
from datetime import datetime, timedelta, timezone
from typing import List

from fastapi.testclient import TestClient

from rbac_hierarchy.api.v1.deps import get_engine
from rbac_hierarchy.config import EngineConfig
from rbac_hierarchy.core.engine import PermissionInheritanceEngine
from rbac_hierarchy.main import app
from rbac_hierarchy.models.hierarchy import (
    HierarchyLevel,
    HierarchySpec,
    Permission,
    PermissionLevel,
    RiskLevel,
    Role,
)
from rbac_hierarchy.services.catalog import InMemoryCatalog

TENANT = "acme"
BASE_TIME = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable clock passed to the engine."""

    def __init__(self, now: datetime = BASE_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_permission(permission_id: str, critical: bool = False) -> Permission:
    """Build a catalog permission from a dotted id."""
    module, resource, action = permission_id.split(".")
    return Permission(
        id=permission_id,
        module=module,
        resource=resource,
        action=action,
        name=permission_id,
        risk_level=RiskLevel.HIGH if critical else RiskLevel.LOW,
        level=PermissionLevel.CRITICAL if critical else PermissionLevel.BASIC,
    )


# Basic permissions
P1 = "crm.contacts.read"
P2 = "crm.contacts.export"
P3 = "crm.deals.read"
P4 = "crm.deals.write"

# Critical permissions
C1 = "accounts.ledger.close"
C2 = "admin.users.manage"
C3 = "billing.refunds.issue"


def three_levels() -> List[HierarchyLevel]:
    """Admin, Manager and User levels; each inherits from every senior level."""
    return [
        HierarchyLevel(level=1, name="Admin", can_inherit_from=set(), can_delegate_to={2, 3}),
        HierarchyLevel(level=2, name="Manager", can_inherit_from={1}, can_delegate_to={3}),
        HierarchyLevel(level=3, name="User", can_inherit_from={1, 2}, can_delegate_to=set()),
    ]


def acme_roles() -> List[Role]:
    """
    Roles of the acme tenant.

    admin (1) is a root of its own; manager (2) is a root with user and
    analyst (3) below it.
    """
    return [
        Role(id="admin", name="Admin", level=1, direct_permissions={P2, C1}, is_system=True),
        Role(id="manager", name="Manager", level=2, direct_permissions={P1}),
        Role(id="user", name="User", level=3, parent_role_id="manager"),
        Role(id="analyst", name="Analyst", level=3, parent_role_id="manager", direct_permissions={P3}),
    ]


@pytest.fixture
def clock():
    """Provide a controllable clock."""
    return FakeClock()


@pytest.fixture
def catalog():
    """Provide a catalog with the test permissions shared by all tenants."""
    catalog = InMemoryCatalog()
    for permission_id in (P1, P2, P3, P4):
        catalog.add_permission(make_permission(permission_id))
    for permission_id in (C1, C2, C3):
        catalog.add_permission(make_permission(permission_id, critical=True))
    return catalog


@pytest.fixture
def engine_config():
    """Provide the default engine configuration."""
    return EngineConfig()


@pytest.fixture
def engine(catalog, engine_config, clock):
    """Provide an engine without any tenant."""
    return PermissionInheritanceEngine(catalog=catalog, config=engine_config, clock=clock)


@pytest.fixture
async def acme(engine):
    """Provide an engine with the acme hierarchy created."""
    await engine.create_role_hierarchy(HierarchySpec(
        tenant_id=TENANT,
        name="Acme hierarchy",
        levels=three_levels(),
        roles=acme_roles(),
    ))
    return engine


@pytest.fixture
def test_client(engine):
    """Create a test client whose endpoints use the test engine."""
    app.dependency_overrides[get_engine] = lambda: engine
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
