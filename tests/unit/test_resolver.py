"""Unit tests for inheritance resolution and the inheritance tree."""

import pytest

from rbac_hierarchy.core.errors import (
    CircularHierarchyError,
    InvalidLevelTransition,
    UnknownRoleOrPermission,
)
from rbac_hierarchy.core.resolver import DIRECT_PRIORITY, INHERITED_PRIORITY
from rbac_hierarchy.core.validator import raise_for_issues
from rbac_hierarchy.models.hierarchy import HierarchyLevel, HierarchySpec, Role
from rbac_hierarchy.models.inheritance import ConflictType, GrantSource
from tests.fixtures import C1, P1, P2, P3, P4, TENANT, three_levels


def cyclic_state(engine):
    """Uncommitted clone of acme where manager and user point at each other."""
    state = engine.snapshot(TENANT).clone()
    state.touch_role("manager").parent_role_id = "user"
    return state


class TestEffectivePermissions:
    """Test cases for effective permission computation."""

    @pytest.mark.asyncio
    async def test_user_inherits_from_parent(self, acme):
        """Test that a user with no direct grants gets its manager's permissions."""
        assert acme.calculate_effective_permissions(TENANT, "user") == {P1}

        explained = acme.explain_effective_permissions(TENANT, "user")
        assert len(explained) == 1
        grant = explained[0]
        assert grant.permission_id == P1
        assert grant.source == GrantSource.INHERITED
        assert grant.source_role_id == "manager"
        assert grant.inheritance_path == ["manager"]
        assert grant.priority == INHERITED_PRIORITY

    @pytest.mark.asyncio
    async def test_direct_grants(self, acme):
        """Test direct permissions of a root role."""
        assert acme.calculate_effective_permissions(TENANT, "admin") == {P2, C1}
        assert all(
            grant.source == GrantSource.DIRECT and grant.priority == DIRECT_PRIORITY
            for grant in acme.explain_effective_permissions(TENANT, "admin")
        )

    @pytest.mark.asyncio
    async def test_direct_and_inherited_combined(self, acme):
        """Test a role with both direct and inherited grants."""
        assert acme.calculate_effective_permissions(TENANT, "analyst") == {P1, P3}

    @pytest.mark.asyncio
    async def test_resolution_is_idempotent(self, acme):
        """Test that repeated reads of one snapshot agree."""
        first = acme.calculate_effective_permissions(TENANT, "analyst")
        acme.resolver.invalidate(acme.snapshot(TENANT))
        second = acme.calculate_effective_permissions(TENANT, "analyst")

        assert first == second
        assert acme.build_inheritance_tree(TENANT) == acme.build_inheritance_tree(TENANT)

    @pytest.mark.asyncio
    async def test_inheritance_disabled(self, engine):
        """Test that a role with inheritance disabled keeps only its own grants."""
        await engine.create_role_hierarchy(HierarchySpec(
            tenant_id=TENANT,
            name="Acme",
            levels=three_levels(),
            roles=[
                Role(id="manager", name="Manager", level=2, direct_permissions={P1}),
                Role(id="contractor", name="Contractor", level=3, parent_role_id="manager",
                     direct_permissions={P4}, inheritance_enabled=False),
            ],
        ))

        assert engine.calculate_effective_permissions(TENANT, "contractor") == {P4}

    @pytest.mark.asyncio
    async def test_level_matrix_filters_ancestors(self, engine):
        """Test that only ancestors on permitted levels contribute."""
        levels = three_levels()
        levels[2].can_inherit_from = {2}
        await engine.create_role_hierarchy(HierarchySpec(
            tenant_id=TENANT,
            name="Acme",
            levels=levels,
            roles=[
                Role(id="admin", name="Admin", level=1, direct_permissions={P2}),
                Role(id="manager", name="Manager", level=2, parent_role_id="admin", direct_permissions={P1}),
                Role(id="user", name="User", level=3, parent_role_id="manager"),
            ],
        ))

        assert engine.calculate_effective_permissions(TENANT, "manager") == {P1, P2}
        assert engine.calculate_effective_permissions(TENANT, "user") == {P1}

    @pytest.mark.asyncio
    async def test_level_default_permissions(self, engine):
        """Test that level defaults count as direct grants."""
        levels = three_levels()
        levels[1].default_permissions = {P3}
        await engine.create_role_hierarchy(HierarchySpec(
            tenant_id=TENANT,
            name="Acme",
            levels=levels,
            roles=[
                Role(id="manager", name="Manager", level=2),
                Role(id="user", name="User", level=3, parent_role_id="manager"),
            ],
        ))

        assert engine.calculate_effective_permissions(TENANT, "manager") == {P3}
        assert engine.calculate_effective_permissions(TENANT, "user") == {P3}

    @pytest.mark.asyncio
    async def test_inheritance_depth_is_capped(self, engine, engine_config):
        """Test that chains deeper than the configured depth are rejected."""
        engine_config.inheritance.max_inheritance_depth = 1
        roles = [
            Role(id="admin", name="Admin", level=1, direct_permissions={P2}),
            Role(id="manager", name="Manager", level=2, parent_role_id="admin", direct_permissions={P1}),
        ]
        await engine.create_role_hierarchy(HierarchySpec(
            tenant_id=TENANT, name="Acme", levels=three_levels(), roles=roles
        ))
        assert engine.calculate_effective_permissions(TENANT, "manager") == {P1, P2}

        with pytest.raises(InvalidLevelTransition):
            await engine.add_role_to_hierarchy(
                TENANT, Role(id="user", name="User", level=3), 3, parent_role_id="manager"
            )

    @pytest.mark.asyncio
    async def test_unknown_role(self, acme):
        """Test resolving a role outside the hierarchy."""
        with pytest.raises(UnknownRoleOrPermission):
            acme.calculate_effective_permissions(TENANT, "ghost")

        with pytest.raises(UnknownRoleOrPermission):
            acme.explain_effective_permissions(TENANT, "ghost")

    @pytest.mark.asyncio
    async def test_memo_follows_new_versions(self, acme):
        """Test that a commit invalidates memoized results."""
        assert acme.calculate_effective_permissions(TENANT, "user") == {P1}

        await acme.update_role_permissions(TENANT, "manager", add={P4})

        assert acme.calculate_effective_permissions(TENANT, "user") == {P1, P4}


class TestInheritanceChain:
    """Test cases for inheritance chains."""

    @pytest.mark.asyncio
    async def test_chain_nearest_first(self, acme):
        """Test ancestor order."""
        await acme.move_role_in_hierarchy(TENANT, "manager", "admin", 2)

        chain = acme.get_inheritance_chain(TENANT, "user")

        assert [role.id for role in chain] == ["manager", "admin"]

    @pytest.mark.asyncio
    async def test_chain_of_root_is_empty(self, acme):
        """Test that roots have no ancestors."""
        assert acme.get_inheritance_chain(TENANT, "admin") == []

    @pytest.mark.asyncio
    async def test_chain_of_unknown_role(self, acme):
        """Test chain of a role outside the hierarchy."""
        with pytest.raises(UnknownRoleOrPermission):
            acme.get_inheritance_chain(TENANT, "ghost")


class TestInheritanceTree:
    """Test cases for the inheritance forest."""

    @pytest.mark.asyncio
    async def test_forest_roots_and_children(self, acme):
        """Test root ordering and child placement."""
        forest = acme.build_inheritance_tree(TENANT)

        assert [root.role_id for root in forest] == ["admin", "manager"]
        manager = forest[1]
        assert [child.role_id for child in manager.children] == ["analyst", "user"]
        user = manager.children[1]
        assert user.direct_permissions == set()
        assert user.effective_permissions == {P1}
        assert [entry.source_role_id for entry in user.inherited_permissions] == ["manager"]

    @pytest.mark.asyncio
    async def test_every_role_appears_once(self, acme):
        """Test that the forest covers each role exactly once."""
        forest = acme.build_inheritance_tree(TENANT)

        seen = [node.role_id for root in forest for node in root.walk()]
        assert sorted(seen) == ["admin", "analyst", "manager", "user"]

    @pytest.mark.asyncio
    async def test_cycle_is_truncated_and_reported(self, acme):
        """Test that a cycle never loops and is reported on the node where it closes."""
        state = cyclic_state(acme)

        forest, resolutions = acme.resolver.build_inheritance_tree(state)

        assert [root.role_id for root in forest] == ["admin", "manager"]
        nodes = {node.role_id: node for root in forest for node in root.walk()}
        assert sorted(nodes) == ["admin", "analyst", "manager", "user"]
        user = nodes["user"]
        assert user.children == []
        assert [conflict.conflict_type for conflict in user.conflicts] == [ConflictType.CIRCULAR]
        assert user.conflicts[0].id == "circular:user:*"
        assert user.conflicts[0].blocking is True
        assert resolutions["user"].circular is not None

    @pytest.mark.asyncio
    async def test_cyclic_resolution_terminates(self, acme):
        """Test that resolving a role on a cycle still produces a result."""
        state = cyclic_state(acme)

        resolution = acme.resolver.resolve_role(state, "user")

        assert resolution.chain == ["manager"]
        assert "Circular inheritance detected" in resolution.circular
        assert resolution.permission_ids == {P1}

    @pytest.mark.asyncio
    async def test_validator_reports_cycle(self, acme):
        """Test that a cycle fails validation as CircularHierarchyError."""
        state = cyclic_state(acme)

        issues = acme.validator.check_role(state, "user")

        assert issues[0].kind == "circular_hierarchy"
        with pytest.raises(CircularHierarchyError):
            raise_for_issues(issues)

    @pytest.mark.asyncio
    async def test_uncommitted_state_is_not_memoized(self, acme):
        """Test that drafts never populate the memo."""
        acme.resolver.invalidate(acme.snapshot(TENANT))
        acme.resolver.resolve_role(cyclic_state(acme), "user")

        assert TENANT not in acme.resolver._cache

    @pytest.mark.asyncio
    async def test_tree_with_extra_level(self, acme):
        """Test that roles on new levels appear in the forest."""
        await acme.add_hierarchy_level(TENANT, HierarchyLevel(level=4, name="Viewer", can_inherit_from={3}))
        await acme.add_role_to_hierarchy(TENANT, Role(id="viewer", name="Viewer", level=4), 4, parent_role_id="user")

        forest = acme.build_inheritance_tree(TENANT)
        nodes = {node.role_id: node for root in forest for node in root.walk()}

        assert nodes["viewer"].level == 4
        assert nodes["viewer"].effective_permissions == set()
