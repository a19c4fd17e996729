"""Unit tests for hierarchy and inheritance models."""

import pytest
from datetime import timedelta
from pydantic import ValidationError

from rbac_hierarchy.models.hierarchy import (
    HierarchyLevel,
    Permission,
    PermissionLevel,
    Role,
    RoleHierarchy,
    default_hierarchy_levels,
)
from rbac_hierarchy.models.inheritance import (
    ChangeType,
    DelegationSpec,
    DelegationStatus,
    EffectivePermission,
    GrantSource,
    InheritanceTreeNode,
    PermissionChange,
    PermissionDelegation,
    ValidationIssue,
    ValidationResult,
)
from tests.fixtures import BASE_TIME


class TestPermission:
    """Test cases for Permission model."""

    def test_permission_key(self):
        """Test the module:resource:action key."""
        permission = Permission(id="p1", module="crm", resource="contacts", action="read")

        assert permission.key == "crm:contacts:read"
        assert permission.level == PermissionLevel.BASIC

    def test_permission_is_frozen(self):
        """Test that catalog permissions are immutable."""
        permission = Permission(id="p1", module="crm", resource="contacts", action="read")

        with pytest.raises(ValidationError):
            permission.action = "write"


class TestRole:
    """Test cases for Role model."""

    def test_role_defaults(self):
        """Test role with default values."""
        role = Role(id="user", name="User", level=3)

        assert role.parent_role_id is None
        assert role.direct_permissions == set()
        assert role.inheritance_enabled is True
        assert role.is_system is False

    def test_role_cannot_parent_itself(self):
        """Test that self-parenting is rejected."""
        with pytest.raises(ValidationError):
            Role(id="user", name="User", level=3, parent_role_id="user")

    def test_role_id_cannot_contain_colon(self):
        """Test that role ids stay separable inside conflict ids."""
        with pytest.raises(ValidationError):
            Role(id="crm:user", name="User", level=3)

    def test_role_level_must_be_positive(self):
        """Test that level numbers start at one."""
        with pytest.raises(ValidationError):
            Role(id="user", name="User", level=0)


class TestRoleHierarchy:
    """Test cases for RoleHierarchy and level helpers."""

    def test_level_lookups(self):
        """Test level and role lookups."""
        hierarchy = RoleHierarchy(
            id="h1",
            tenant_id="acme",
            name="Acme",
            levels=[
                HierarchyLevel(level=2, name="Manager", roles={"manager"}),
                HierarchyLevel(level=1, name="Admin", roles={"admin"}),
            ],
        )

        assert hierarchy.get_level(1).name == "Admin"
        assert hierarchy.get_level(7) is None
        assert hierarchy.level_of_role("manager").level == 2
        assert hierarchy.level_of_role("nobody") is None
        assert hierarchy.level_numbers() == [1, 2]

    def test_default_template(self):
        """Test the default five level template."""
        levels = default_hierarchy_levels()

        assert [level.name for level in levels] == ["Super Admin", "Admin", "Manager", "User", "Viewer"]
        assert levels[0].can_inherit_from == set()
        assert levels[0].can_delegate_to == {2, 3, 4, 5}
        assert levels[3].can_inherit_from == {1, 2, 3}
        assert levels[3].can_delegate_to == {5}
        assert levels[4].can_delegate_to == set()


class TestPermissionDelegation:
    """Test cases for delegation status evaluation."""

    def make_delegation(self, **kwargs):
        data = {
            "id": "d1",
            "delegator_role_id": "admin",
            "delegatee_role_id": "user",
            "delegated_permissions": {"p1"},
            "created_at": BASE_TIME,
        }
        data.update(kwargs)
        return PermissionDelegation(**data)

    def test_delegation_requires_permissions(self):
        """Test that an empty delegation is rejected."""
        with pytest.raises(ValidationError):
            self.make_delegation(delegated_permissions=set())

    def test_delegation_without_expiry_stays_active(self):
        """Test delegation with no expiry."""
        delegation = self.make_delegation()

        assert delegation.is_active(BASE_TIME + timedelta(days=3650))

    def test_delegation_expiry_is_lazy(self):
        """Test that stored active status reads as expired past expiry."""
        delegation = self.make_delegation(expires_at=BASE_TIME + timedelta(hours=1))

        assert delegation.status == DelegationStatus.ACTIVE
        assert delegation.status_at(BASE_TIME) == DelegationStatus.ACTIVE
        assert delegation.status_at(BASE_TIME + timedelta(hours=2)) == DelegationStatus.EXPIRED

    def test_delegation_expired_at_exact_expiry(self):
        """Test that the expiry instant itself reads as expired."""
        delegation = self.make_delegation(expires_at=BASE_TIME)

        assert delegation.status_at(BASE_TIME) == DelegationStatus.EXPIRED
        assert not delegation.is_active(BASE_TIME)

    def test_revoked_delegation_stays_revoked(self):
        """Test that terminal states are not re-evaluated."""
        delegation = self.make_delegation(
            status=DelegationStatus.REVOKED,
            expires_at=BASE_TIME + timedelta(days=1),
        )

        assert delegation.status_at(BASE_TIME) == DelegationStatus.REVOKED


class TestPermissionChange:
    """Test cases for preview change validation."""

    def test_add_permission_requires_role_and_permissions(self):
        """Test required fields for add_permission."""
        with pytest.raises(ValidationError):
            PermissionChange(change_type=ChangeType.ADD_PERMISSION, role_id="user")

    def test_move_role_requires_level(self):
        """Test required fields for move_role."""
        with pytest.raises(ValidationError):
            PermissionChange(change_type=ChangeType.MOVE_ROLE, role_id="user")

    def test_add_delegation_requires_spec(self):
        """Test required fields for add_delegation."""
        with pytest.raises(ValidationError):
            PermissionChange(change_type=ChangeType.ADD_DELEGATION)

        change = PermissionChange(
            change_type=ChangeType.ADD_DELEGATION,
            delegation=DelegationSpec(delegator_role_id="admin", delegatee_role_id="user", permissions={"p1"}),
        )
        assert change.delegation.max_depth is None

    def test_revoke_delegation_requires_id(self):
        """Test required fields for revoke_delegation."""
        with pytest.raises(ValidationError):
            PermissionChange(change_type="revoke_delegation")


class TestDerivedModels:
    """Test cases for provenance, tree and validation models."""

    def test_effective_permission_source_key(self):
        """Test that delegated grants are keyed by delegation id."""
        direct = EffectivePermission(
            permission_id="p1", source=GrantSource.DIRECT, source_role_id="user", source_level=3
        )
        delegated = EffectivePermission(
            permission_id="p1",
            source=GrantSource.DELEGATION,
            source_role_id="admin",
            source_level=1,
            delegation_id="d1",
        )

        assert direct.source_key == "user"
        assert delegated.source_key == "d1"

    def test_tree_walk_is_depth_first(self):
        """Test tree node traversal order."""
        tree = InheritanceTreeNode(
            role_id="a",
            level=1,
            children=[
                InheritanceTreeNode(role_id="b", level=2, children=[InheritanceTreeNode(role_id="c", level=3)]),
                InheritanceTreeNode(role_id="d", level=2),
            ],
        )

        assert [node.role_id for node in tree.walk()] == ["a", "b", "c", "d"]

    def test_validation_result_from_issues(self):
        """Test building a validation result."""
        assert ValidationResult.from_issues([]).is_valid is True

        result = ValidationResult.from_issues([
            ValidationIssue(kind="circular_hierarchy", message="cycle", role_id="a"),
        ])
        assert result.is_valid is False
        assert result.errors == ["cycle"]
