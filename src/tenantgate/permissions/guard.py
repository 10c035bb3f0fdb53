from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, Collection, Iterable, Literal

from tenantgate.auth.models import ALL_STORES
from tenantgate.configs.logging_config import get_logger
from tenantgate.domain.entities.permission import (
    AuditRecord,
    AuthorizationDecision,
    EffectivePermission,
    PermissionRequirement,
)
from tenantgate.errors import AuthorizationDenied
from tenantgate.permissions.merge import permits
from tenantgate.permissions.resolver import PermissionResolver
from tenantgate.services.audit_service import AuditSink, LoggingAuditSink
from tenantgate.utils.time_utils import utc_now

log = get_logger(__name__)

ALLOWED = "allowed"
NOT_GRANTED = "not_granted"
STORE_NOT_MEMBER = "store_not_member"
INVALID_REQUEST = "invalid_request"
NO_REQUIREMENTS = "no_requirements"


class AuthorizationGuard:
    """
    Allow/deny for (user, store, resource, action), fail-closed.

    Every decision is audited with its precise reason; callers only ever see
    the generic AuthorizationDenied. An audit write that fails or outlasts
    audit_timeout_s is logged and dropped.
    """

    def __init__(
        self,
        resolver: PermissionResolver,
        audit: AuditSink | None = None,
        *,
        tenant_id: str | None = None,
        audit_timeout_s: float = 1.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._resolver = resolver
        self._audit = audit or LoggingAuditSink()
        self._tenant_id = tenant_id
        self._audit_timeout_s = audit_timeout_s
        self._clock = clock

    async def authorize(
        self,
        user_id: str,
        store_id: str | None,
        resource: str,
        action: str,
        *,
        resource_id: str | None = None,
        store_memberships: Collection[str] | None = None,
    ) -> AuthorizationDecision:
        return await self._evaluate(
            user_id,
            store_id,
            [PermissionRequirement(resource, action)],
            mode="all",
            resource_id=resource_id,
            store_memberships=store_memberships,
        )

    async def authorize_all(
        self,
        user_id: str,
        store_id: str | None,
        requirements: Iterable[PermissionRequirement],
        *,
        resource_id: str | None = None,
        store_memberships: Collection[str] | None = None,
    ) -> AuthorizationDecision:
        return await self._evaluate(
            user_id, store_id, list(requirements), mode="all",
            resource_id=resource_id, store_memberships=store_memberships,
        )

    async def authorize_any(
        self,
        user_id: str,
        store_id: str | None,
        requirements: Iterable[PermissionRequirement],
        *,
        resource_id: str | None = None,
        store_memberships: Collection[str] | None = None,
    ) -> AuthorizationDecision:
        return await self._evaluate(
            user_id, store_id, list(requirements), mode="any",
            resource_id=resource_id, store_memberships=store_memberships,
        )

    async def enforce(
        self,
        user_id: str,
        store_id: str | None,
        resource: str,
        action: str,
        *,
        resource_id: str | None = None,
        store_memberships: Collection[str] | None = None,
    ) -> None:
        decision = await self.authorize(
            user_id,
            store_id,
            resource,
            action,
            resource_id=resource_id,
            store_memberships=store_memberships,
        )
        if not decision.allowed:
            raise AuthorizationDenied()

    async def _evaluate(
        self,
        user_id: str,
        store_id: str | None,
        requirements: list[PermissionRequirement],
        *,
        mode: Literal["all", "any"],
        resource_id: str | None,
        store_memberships: Collection[str] | None,
    ) -> AuthorizationDecision:
        if not requirements:
            return AuthorizationDecision(False, NO_REQUIREMENTS)

        decision = await self._decide(
            user_id, store_id, requirements, mode, resource_id, store_memberships
        )
        for req in requirements:
            await self._record(user_id, store_id, req, resource_id, decision)
        return decision

    async def _decide(
        self,
        user_id: str,
        store_id: str | None,
        requirements: list[PermissionRequirement],
        mode: str,
        resource_id: str | None,
        store_memberships: Collection[str] | None,
    ) -> AuthorizationDecision:
        if not user_id:
            return AuthorizationDecision(False, INVALID_REQUEST)

        if (
            store_id is not None
            and store_memberships is not None
            and ALL_STORES not in store_memberships
            and store_id not in store_memberships
        ):
            return AuthorizationDecision(False, STORE_NOT_MEMBER)

        try:
            effective: frozenset[EffectivePermission] = (
                await self._resolver.resolve_effective_permissions(user_id, store_id)
            )
        except Exception as e:
            # fail closed; the cause goes to the log and the audit record only
            log.error(
                "authz.resolver_error tenant_id=%s user_id=%s store_id=%s error=%s: %s",
                self._tenant_id,
                user_id,
                store_id,
                type(e).__name__,
                e,
                exc_info=True,
            )
            return AuthorizationDecision(False, f"resolver_error:{type(e).__name__}")

        checks = [permits(effective, r.resource, r.action, resource_id) for r in requirements]
        allowed = all(checks) if mode == "all" else any(checks)
        if not allowed:
            missing = [f"{r.resource}.{r.action}" for r, ok in zip(requirements, checks) if not ok]
            log.info(
                "authz.deny tenant_id=%s user_id=%s store_id=%s missing=%s",
                self._tenant_id,
                user_id,
                store_id,
                missing,
            )
            return AuthorizationDecision(False, NOT_GRANTED)
        return AuthorizationDecision(True, ALLOWED)

    async def _record(
        self,
        user_id: str,
        store_id: str | None,
        req: PermissionRequirement,
        resource_id: str | None,
        decision: AuthorizationDecision,
    ) -> None:
        record = AuditRecord(
            tenant_id=self._tenant_id,
            user_id=user_id or "",
            store_id=store_id,
            resource=req.resource,
            action=req.action,
            resource_id=resource_id,
            outcome="allow" if decision.allowed else "deny",
            reason=decision.reason,
            at=self._clock(),
        )
        try:
            await asyncio.wait_for(self._audit.emit(record), timeout=self._audit_timeout_s)
        except asyncio.TimeoutError:
            log.error(
                "authz.audit_timeout tenant_id=%s user_id=%s outcome=%s timeout_s=%s",
                self._tenant_id,
                user_id,
                record.outcome,
                self._audit_timeout_s,
            )
        except Exception as e:
            # reported, never allowed to change the decision
            log.error(
                "authz.audit_failed tenant_id=%s user_id=%s outcome=%s error=%s: %s",
                self._tenant_id,
                user_id,
                record.outcome,
                type(e).__name__,
                e,
            )
