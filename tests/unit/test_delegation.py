"""Unit tests for the delegation lifecycle."""

import pytest
from datetime import timedelta

from rbac_hierarchy.core.errors import (
    DelegationDepthExceeded,
    DelegationNotPermitted,
    DelegationNotRevocable,
    UnknownDelegationError,
    UnknownRoleOrPermission,
)
from rbac_hierarchy.models.hierarchy import HierarchyPatch
from rbac_hierarchy.models.inheritance import DelegationSpec, DelegationStatus, GrantSource
from tests.fixtures import C1, P1, P2, P3, TENANT, three_levels


def spec(delegator="admin", delegatee="user", permissions=(P2,), **kwargs):
    return DelegationSpec(
        delegator_role_id=delegator,
        delegatee_role_id=delegatee,
        permissions=set(permissions),
        **kwargs
    )


class TestCreateDelegation:
    """Test cases for delegation creation."""

    @pytest.mark.asyncio
    async def test_delegation_grants_permission(self, acme, clock):
        """Test that an active delegation adds the permission with provenance."""
        delegation = await acme.create_delegation(TENANT, spec())

        assert delegation.status == DelegationStatus.ACTIVE
        assert delegation.chain_depth == 1
        assert delegation.created_at == clock.now
        assert acme.calculate_effective_permissions(TENANT, "user") == {P1, P2}

        explained = {grant.permission_id: grant for grant in acme.explain_effective_permissions(TENANT, "user")}
        assert explained[P2].source == GrantSource.DELEGATION
        assert explained[P2].source_role_id == "admin"
        assert explained[P2].delegation_id == delegation.id

    @pytest.mark.asyncio
    async def test_default_ttl(self, acme, clock):
        """Test that delegations without expiry get the configured TTL."""
        delegation = await acme.create_delegation(TENANT, spec())

        assert delegation.expires_at == clock.now + timedelta(days=30)

    @pytest.mark.asyncio
    async def test_no_default_ttl(self, acme, engine_config):
        """Test that the TTL default can be disabled."""
        engine_config.delegation.default_ttl_days = None

        delegation = await acme.create_delegation(TENANT, spec())

        assert delegation.expires_at is None

    @pytest.mark.asyncio
    async def test_expired_on_creation(self, acme, clock):
        """Test that a delegation expiring now is read as expired immediately."""
        delegation = await acme.create_delegation(TENANT, spec(expires_at=clock.now))

        assert P2 not in acme.calculate_effective_permissions(TENANT, "user")
        assert acme.list_delegations(TENANT)[0].status == DelegationStatus.EXPIRED
        assert acme.snapshot(TENANT).delegations[delegation.id].status == DelegationStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_delegation_expires_lazily(self, acme, clock):
        """Test that no grant survives past its expiry, even without a sweep."""
        await acme.create_delegation(TENANT, spec(expires_at=clock.now + timedelta(hours=1)))
        assert P2 in acme.calculate_effective_permissions(TENANT, "user")

        clock.advance(minutes=59)
        assert P2 in acme.calculate_effective_permissions(TENANT, "user")

        clock.advance(minutes=1)
        assert P2 not in acme.calculate_effective_permissions(TENANT, "user")

    @pytest.mark.asyncio
    async def test_level_matrix_forbids_delegation(self, acme):
        """Test that a level may only delegate to listed levels."""
        with pytest.raises(DelegationNotPermitted):
            await acme.create_delegation(TENANT, spec(delegator="analyst", delegatee="user", permissions={P3}))

        assert acme.snapshot(TENANT).version == 1

    @pytest.mark.asyncio
    async def test_upward_delegation_forbidden(self, acme):
        """Test that a junior level cannot delegate to a senior one."""
        with pytest.raises(DelegationNotPermitted):
            await acme.create_delegation(TENANT, spec(delegator="manager", delegatee="admin", permissions={P1}))

    @pytest.mark.asyncio
    async def test_self_delegation_forbidden(self, acme):
        """Test that a role cannot delegate to itself."""
        with pytest.raises(DelegationNotPermitted):
            await acme.create_delegation(TENANT, spec(delegator="admin", delegatee="admin"))

    @pytest.mark.asyncio
    async def test_delegator_must_hold_permission(self, acme):
        """Test delegating a permission the delegator does not hold."""
        with pytest.raises(DelegationNotPermitted):
            await acme.create_delegation(TENANT, spec(delegator="manager", permissions={C1}))

    @pytest.mark.asyncio
    async def test_unknown_role_or_permission(self, acme):
        """Test delegations naming unknown roles or permissions."""
        with pytest.raises(UnknownRoleOrPermission):
            await acme.create_delegation(TENANT, spec(delegatee="ghost"))

        with pytest.raises(UnknownRoleOrPermission):
            await acme.create_delegation(TENANT, spec(permissions={"x.y.z"}))

    @pytest.mark.asyncio
    async def test_max_depth_above_limit(self, acme):
        """Test that the requested depth is bounded by configuration."""
        with pytest.raises(DelegationDepthExceeded):
            await acme.create_delegation(TENANT, spec(max_depth=4))


class TestDelegationChains:
    """Test cases for re-delegation chains."""

    @pytest.mark.asyncio
    async def test_redelegation_within_depth(self, acme):
        """Test a two link chain."""
        upstream = await acme.create_delegation(TENANT, spec(delegatee="manager", max_depth=2))
        downstream = await acme.create_delegation(TENANT, spec(delegator="manager", max_depth=2))

        assert downstream.chain_depth == 2
        assert downstream.upstream_delegation_ids == [upstream.id]
        assert P2 in acme.calculate_effective_permissions(TENANT, "user")

    @pytest.mark.asyncio
    async def test_redelegation_beyond_upstream_depth(self, acme):
        """Test that an upstream delegation limits the chain."""
        await acme.create_delegation(TENANT, spec(delegatee="manager"))

        with pytest.raises(DelegationDepthExceeded):
            await acme.create_delegation(TENANT, spec(delegator="manager", max_depth=2))

    @pytest.mark.asyncio
    async def test_redelegation_beyond_own_depth(self, acme):
        """Test that the new delegation's own depth limits the chain."""
        await acme.create_delegation(TENANT, spec(delegatee="manager", max_depth=2))

        with pytest.raises(DelegationDepthExceeded):
            await acme.create_delegation(TENANT, spec(delegator="manager"))

    @pytest.mark.asyncio
    async def test_revoking_upstream_stops_downstream(self, acme):
        """Test that a chain loses its grant when an upstream link is revoked."""
        upstream = await acme.create_delegation(TENANT, spec(delegatee="manager", max_depth=2))
        downstream = await acme.create_delegation(TENANT, spec(delegator="manager", max_depth=2))

        await acme.revoke_delegation(TENANT, upstream.id, reason="rotation")

        assert P2 not in acme.calculate_effective_permissions(TENANT, "manager")
        assert P2 not in acme.calculate_effective_permissions(TENANT, "user")
        assert acme.list_delegations(TENANT, role_id="user")[0].id == downstream.id

    @pytest.mark.asyncio
    async def test_expiring_upstream_stops_downstream(self, acme, clock):
        """Test that an expired upstream link stops the chain."""
        await acme.create_delegation(TENANT, spec(
            delegatee="manager", max_depth=2, expires_at=clock.now + timedelta(hours=1)
        ))
        await acme.create_delegation(TENANT, spec(delegator="manager", max_depth=2))

        clock.advance(hours=2)

        assert P2 not in acme.calculate_effective_permissions(TENANT, "user")


class TestRevokeDelegation:
    """Test cases for revocation."""

    @pytest.mark.asyncio
    async def test_revoke_delegation(self, acme, clock):
        """Test revoking an active delegation."""
        delegation = await acme.create_delegation(TENANT, spec())

        revoked = await acme.revoke_delegation(TENANT, delegation.id, reason="no longer needed", revoked_by="alice")

        assert revoked.status == DelegationStatus.REVOKED
        assert revoked.revoked_at == clock.now
        assert revoked.revoked_by == "alice"
        assert revoked.revoke_reason == "no longer needed"
        assert P2 not in acme.calculate_effective_permissions(TENANT, "user")

    @pytest.mark.asyncio
    async def test_revoke_twice(self, acme):
        """Test that revoked delegations cannot be revoked again."""
        delegation = await acme.create_delegation(TENANT, spec())
        await acme.revoke_delegation(TENANT, delegation.id)

        with pytest.raises(DelegationNotRevocable):
            await acme.revoke_delegation(TENANT, delegation.id)

    @pytest.mark.asyncio
    async def test_revoke_expired(self, acme, clock):
        """Test that expired delegations cannot be revoked."""
        delegation = await acme.create_delegation(TENANT, spec(expires_at=clock.now + timedelta(hours=1)))
        clock.advance(hours=1)

        with pytest.raises(DelegationNotRevocable):
            await acme.revoke_delegation(TENANT, delegation.id)

    @pytest.mark.asyncio
    async def test_revoke_irrevocable(self, acme):
        """Test delegations created as not revocable."""
        delegation = await acme.create_delegation(TENANT, spec(is_revocable=False))

        with pytest.raises(DelegationNotRevocable):
            await acme.revoke_delegation(TENANT, delegation.id)

    @pytest.mark.asyncio
    async def test_revoke_unknown(self, acme):
        """Test revoking an id that does not exist."""
        with pytest.raises(UnknownDelegationError):
            await acme.revoke_delegation(TENANT, "delegation-missing")


class TestListAndSweep:
    """Test cases for listing and expiring delegations."""

    @pytest.mark.asyncio
    async def test_list_delegations_filters(self, acme, clock):
        """Test filtering by role and current status."""
        to_user = await acme.create_delegation(TENANT, spec(expires_at=clock.now + timedelta(hours=1)))
        clock.advance(minutes=5)
        to_manager = await acme.create_delegation(TENANT, spec(delegatee="manager"))
        clock.advance(hours=1)

        assert [d.id for d in acme.list_delegations(TENANT)] == [to_user.id, to_manager.id]
        assert [d.id for d in acme.list_delegations(TENANT, role_id="manager")] == [to_manager.id]
        assert [d.id for d in acme.list_delegations(TENANT, status=DelegationStatus.EXPIRED)] == [to_user.id]
        assert [d.id for d in acme.list_delegations(TENANT, status=DelegationStatus.ACTIVE)] == [to_manager.id]
        assert len(acme.list_delegations(TENANT, role_id="admin")) == 2

    @pytest.mark.asyncio
    async def test_sweep_expired_delegations(self, acme, clock):
        """Test that a sweep rewrites stored status."""
        expiring = await acme.create_delegation(TENANT, spec(expires_at=clock.now + timedelta(hours=1)))
        lasting = await acme.create_delegation(TENANT, spec(delegatee="manager"))
        clock.advance(hours=2)

        assert await acme.sweep_expired_delegations(TENANT) == 1

        delegations = acme.snapshot(TENANT).delegations
        assert delegations[expiring.id].status == DelegationStatus.EXPIRED
        assert delegations[lasting.id].status == DelegationStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_sweep_without_expired(self, acme):
        """Test that a sweep with nothing to do does not commit."""
        await acme.create_delegation(TENANT, spec())
        version = acme.snapshot(TENANT).version

        assert await acme.sweep_expired_delegations(TENANT) == 0
        assert acme.snapshot(TENANT).version == version


class TestDelegationMatrixChanges:
    """Test cases for delegations after the level matrix or placement changes."""

    @pytest.mark.asyncio
    async def test_matrix_patch_stops_delegation(self, acme):
        """Test that removing the level pair from can_delegate_to stops the grant."""
        delegation = await acme.create_delegation(TENANT, spec())
        levels = three_levels()
        levels[0].can_delegate_to = set()

        await acme.update_role_hierarchy(TENANT, acme.get_role_hierarchy(TENANT).id, HierarchyPatch(levels=levels))

        assert acme.calculate_effective_permissions(TENANT, "user") == {P1}
        assert acme.snapshot(TENANT).delegations[delegation.id].status == DelegationStatus.ACTIVE

        await acme.update_role_hierarchy(TENANT, acme.get_role_hierarchy(TENANT).id, HierarchyPatch(levels=three_levels()))

        assert P2 in acme.calculate_effective_permissions(TENANT, "user")

    @pytest.mark.asyncio
    async def test_move_out_of_delegation_range(self, acme):
        """Test that moving the delegatee to a level its delegator cannot reach stops the grant."""
        await acme.create_delegation(TENANT, spec(delegatee="manager"))
        assert P2 in acme.calculate_effective_permissions(TENANT, "manager")

        await acme.move_role_in_hierarchy(TENANT, "manager", None, 1)

        assert acme.calculate_effective_permissions(TENANT, "manager") == {P1}

    @pytest.mark.asyncio
    async def test_redelegation_stops_with_upstream_matrix(self, acme):
        """Test that a chain loses its grant when an upstream pair is no longer allowed."""
        await acme.create_delegation(TENANT, spec(delegatee="manager", max_depth=2))
        await acme.create_delegation(TENANT, spec(delegator="manager", max_depth=2))
        levels = three_levels()
        levels[0].can_delegate_to = {3}

        await acme.update_role_hierarchy(TENANT, acme.get_role_hierarchy(TENANT).id, HierarchyPatch(levels=levels))

        assert P2 not in acme.calculate_effective_permissions(TENANT, "manager")
        assert P2 not in acme.calculate_effective_permissions(TENANT, "user")
