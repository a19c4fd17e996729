"""
Delegation lifecycle management.

Delegations are validated against the level delegation matrix and the
chain depth bounds, committed through the hierarchy store and revoked or
expired explicitly. Expiry is also evaluated lazily on every read, so a
delegation past its expiry never contributes grants even before a sweep
rewrites its stored status.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from rbac_hierarchy.config import DelegationConfig
from rbac_hierarchy.config.logging import engine_logger
from rbac_hierarchy.core.errors import (
    DelegationDepthExceeded,
    DelegationNotPermitted,
    DelegationNotRevocable,
    UnknownDelegationError,
    UnknownRoleOrPermission,
)
from rbac_hierarchy.core.resolver import InheritanceResolver
from rbac_hierarchy.core.state import TenantState, mark_revoked
from rbac_hierarchy.core.store import HierarchyStore
from rbac_hierarchy.models.inheritance import DelegationSpec, DelegationStatus, PermissionDelegation
from rbac_hierarchy.utils.helpers import ensure_aware, generate_id, utc_now

logger = logging.getLogger(__name__)


class DelegationManager:
    """Creates, revokes and expires permission delegations."""

    def __init__(
        self,
        store: HierarchyStore,
        resolver: InheritanceResolver,
        config: Optional[DelegationConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.resolver = resolver
        self.config = config or DelegationConfig()
        self.clock = clock

    def build_delegation(self, state: TenantState, spec: DelegationSpec, now: datetime) -> PermissionDelegation:
        """
        Validate a delegation request against a snapshot.

        Args:
            state: Snapshot or draft the delegation would be added to
            spec: Delegation request
            now: Creation time

        Returns:
            The delegation record (not yet added to the state)

        Raises:
            UnknownRoleOrPermission: If a role or permission is unknown
            DelegationNotPermitted: If the levels or holdings do not allow it
            DelegationDepthExceeded: If the chain would be too deep
        """
        delegator = state.require_role(spec.delegator_role_id)
        delegatee = state.require_role(spec.delegatee_role_id)

        unknown = sorted(p for p in spec.permissions if p not in state.permissions)
        if unknown:
            raise UnknownRoleOrPermission(f"Unknown permissions: {', '.join(unknown)}", role_id=delegator.id)

        if delegator.id == delegatee.id:
            raise DelegationNotPermitted("A role cannot delegate to itself", role_id=delegator.id)

        if not state.may_delegate(delegator.id, delegatee.id):
            raise DelegationNotPermitted(
                f"Level {delegator.level} cannot delegate to level {delegatee.level}",
                role_id=delegator.id,
            )

        max_depth = spec.max_depth or self.config.default_max_depth
        if max_depth > self.config.max_chain_depth:
            raise DelegationDepthExceeded(
                f"Maximum delegation depth {max_depth} exceeds the limit of {self.config.max_chain_depth}",
                role_id=delegator.id,
            )

        upstream: Dict[str, PermissionDelegation] = {}
        chain_depth = 1
        for permission_id in sorted(spec.permissions):
            path = self.resolver.holding_path(state, delegator.id, permission_id, now)
            if path is None:
                raise DelegationNotPermitted(
                    f"Role '{delegator.id}' does not hold permission '{permission_id}'",
                    role_id=delegator.id,
                )
            for delegation in path:
                upstream[delegation.id] = delegation
            if path:
                chain_depth = max(chain_depth, path[0].chain_depth + 1)

        limit = min([max_depth, self.config.max_chain_depth] + [d.max_delegation_depth for d in upstream.values()])
        if chain_depth > limit:
            raise DelegationDepthExceeded(
                f"Delegation would be link {chain_depth} of a chain limited to {limit}",
                role_id=delegator.id,
            )

        expires_at = ensure_aware(spec.expires_at)
        if expires_at is None and self.config.default_ttl_days:
            expires_at = now + timedelta(days=self.config.default_ttl_days)

        return PermissionDelegation(
            id=generate_id("delegation"),
            delegator_role_id=delegator.id,
            delegatee_role_id=delegatee.id,
            delegated_permissions=set(spec.permissions),
            conditions=dict(spec.conditions),
            max_delegation_depth=max_depth,
            chain_depth=chain_depth,
            upstream_delegation_ids=sorted(upstream),
            is_revocable=spec.is_revocable,
            created_at=now,
            expires_at=expires_at,
        )

    def check_revocable(self, state: TenantState, delegation_id: str, now: datetime) -> PermissionDelegation:
        """
        Get a delegation that may be revoked.

        Raises:
            UnknownDelegationError: If the delegation does not exist
            DelegationNotRevocable: If it is not revocable or no longer active
        """
        delegation = state.delegations.get(delegation_id)
        if delegation is None:
            raise UnknownDelegationError(f"Delegation '{delegation_id}' not found")
        if not delegation.is_revocable:
            raise DelegationNotRevocable(f"Delegation '{delegation_id}' is not revocable")
        status = delegation.status_at(now)
        if status != DelegationStatus.ACTIVE:
            raise DelegationNotRevocable(f"Delegation '{delegation_id}' is already {status.value}")
        return delegation

    async def create_delegation(self, tenant_id: str, spec: DelegationSpec) -> PermissionDelegation:
        """Validate and commit a new delegation."""
        fetched = await self.store.fetch_permissions(self.store.snapshot(tenant_id), spec.permissions)

        def mutate(draft: TenantState) -> PermissionDelegation:
            draft.permissions.update(fetched)
            delegation = self.build_delegation(draft, spec, self.clock())
            draft.delegations[delegation.id] = delegation
            return delegation

        delegation = await self.store.commit(tenant_id, "create_delegation", mutate)
        engine_logger.log_delegation_event(
            tenant_id,
            delegation.id,
            "created",
            delegator_role_id=delegation.delegator_role_id,
            delegatee_role_id=delegation.delegatee_role_id,
            chain_depth=delegation.chain_depth,
        )
        return delegation

    async def revoke_delegation(
        self,
        tenant_id: str,
        delegation_id: str,
        reason: Optional[str] = None,
        revoked_by: Optional[str] = None,
    ) -> PermissionDelegation:
        """
        Revoke an active delegation.

        Downstream re-delegations stop contributing on the next read because
        their delegator no longer holds the permission.
        """
        def mutate(draft: TenantState) -> PermissionDelegation:
            now = self.clock()
            self.check_revocable(draft, delegation_id, now)
            return mark_revoked(draft, delegation_id, now, reason=reason, revoked_by=revoked_by)

        delegation = await self.store.commit(tenant_id, "revoke_delegation", mutate)
        engine_logger.log_delegation_event(tenant_id, delegation_id, "revoked", reason=reason)
        return delegation

    def list_delegations(
        self,
        tenant_id: str,
        role_id: Optional[str] = None,
        status: Optional[DelegationStatus] = None,
    ) -> List[PermissionDelegation]:
        """
        List delegations with their lazily evaluated status.

        Args:
            tenant_id: Owning tenant
            role_id: Only delegations given or received by this role
            status: Only delegations currently in this status
        """
        state = self.store.snapshot(tenant_id)
        now = self.clock()
        result = []
        for delegation in sorted(state.delegations.values(), key=lambda d: (d.created_at, d.id)):
            if role_id and role_id not in (delegation.delegator_role_id, delegation.delegatee_role_id):
                continue
            current = delegation.status_at(now)
            if status and current != status:
                continue
            result.append(delegation.model_copy(update={"status": current}))
        return result

    async def sweep_expired_delegations(self, tenant_id: str) -> int:
        """
        Rewrite the stored status of delegations past their expiry.

        Returns:
            Number of delegations marked expired
        """
        now = self.clock()
        state = self.store.snapshot(tenant_id)
        if not any(d.status_at(now) == DelegationStatus.EXPIRED and d.status == DelegationStatus.ACTIVE
                   for d in state.delegations.values()):
            return 0

        def mutate(draft: TenantState) -> List[str]:
            expired = []
            for delegation in list(draft.delegations.values()):
                if delegation.status == DelegationStatus.ACTIVE and delegation.status_at(now) == DelegationStatus.EXPIRED:
                    draft.delegations[delegation.id] = delegation.model_copy(update={"status": DelegationStatus.EXPIRED})
                    expired.append(delegation.id)
            return expired

        expired = await self.store.commit(tenant_id, "sweep_delegations", mutate)
        for delegation_id in expired:
            engine_logger.log_delegation_event(tenant_id, delegation_id, "expired")
        logger.info(f"Expired {len(expired)} delegations for tenant {tenant_id}")
        return len(expired)
