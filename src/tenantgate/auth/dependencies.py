from __future__ import annotations

from typing import Any, Callable, Iterable, Literal

from fastapi import Depends, Header, Request

from tenantgate.auth.jwt import decode_token
from tenantgate.auth.models import Principal
from tenantgate.configs.logging_config import get_logger
from tenantgate.configs.settings import get_settings
from tenantgate.domain.entities.permission import PermissionRequirement
from tenantgate.errors import AuthError, AuthorizationDenied
from tenantgate.permissions.guard import AuthorizationGuard
from tenantgate.permissions.resolver import PermissionResolver
from tenantgate.tenancy.handle import TenantHandle

log = get_logger(__name__)


def _bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise AuthError("missing authorization header")
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise AuthError("invalid authorization header")
    return parts[1].strip()


def _store_claim(value: Any) -> tuple[str, ...] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list):
        return tuple(str(v) for v in value)
    log.info("auth.invalid_stores_claim type=%s", type(value).__name__)
    raise AuthError("invalid stores claim")


async def get_principal(authorization: str | None = Header(default=None)) -> Principal:
    """
    Authenticated caller from the bearer token.

    `sub` and `tenantId` are required; `role` and `stores` are optional.
    """
    token = _bearer_token(authorization)
    claims = decode_token(token, get_settings())

    user_id = claims.get("sub")
    tenant_id = claims.get("tenantId")
    role = claims.get("role")

    if not tenant_id or not user_id:
        log.info(
            "auth.token_missing_claims has_tenant=%s has_sub=%s",
            bool(tenant_id),
            bool(user_id),
        )
        raise AuthError("token missing required claims")

    principal = Principal(
        user_id=str(user_id),
        tenant_id=str(tenant_id),
        role=str(role) if role else None,
        store_ids=_store_claim(claims.get("stores")),
    )
    log.info("auth.principal tenant_id=%s user_id=%s role=%s", principal.tenant_id, principal.user_id, principal.role)
    return principal


async def get_tenant_handle(
    request: Request, principal: Principal = Depends(get_principal)
) -> TenantHandle:
    return await request.app.state.tenant_resolver.resolve_for(principal)


def store_id_from(request: Request) -> str | None:
    """Path `store_id`, then query `store_id`/`storeId`, then header `x-store-id`."""
    return (
        request.path_params.get("store_id")
        or request.query_params.get("store_id")
        or request.query_params.get("storeId")
        or request.headers.get("x-store-id")
        or None
    )


def build_guard(request: Request, handle: TenantHandle) -> AuthorizationGuard:
    settings = request.app.state.settings
    return AuthorizationGuard(
        PermissionResolver.for_handle(handle, settings),
        request.app.state.audit_sink,
        tenant_id=handle.tenant_id,
        audit_timeout_s=settings.audit_timeout_s,
    )


def _value(v: Any) -> str:
    return str(getattr(v, "value", v))


def _requirement(req: PermissionRequirement | tuple[Any, Any]) -> PermissionRequirement:
    if isinstance(req, PermissionRequirement):
        return req
    resource, action = req
    return PermissionRequirement(_value(resource), _value(action))


def require_permission(resource: Any, action: Any) -> Callable[..., Any]:
    """Dependency that lets the request through only if the caller holds (resource, action)."""
    resource, action = _value(resource), _value(action)

    async def _dep(
        request: Request,
        principal: Principal = Depends(get_principal),
        handle: TenantHandle = Depends(get_tenant_handle),
    ) -> Principal:
        await build_guard(request, handle).enforce(
            principal.user_id,
            store_id_from(request),
            resource,
            action,
            store_memberships=principal.store_ids,
        )
        return principal

    return _dep


def require_permissions(
    *requirements: PermissionRequirement | tuple[Any, Any],
    mode: Literal["all", "any"] = "all",
) -> Callable[..., Any]:
    reqs: Iterable[PermissionRequirement] = [_requirement(r) for r in requirements]

    async def _dep(
        request: Request,
        principal: Principal = Depends(get_principal),
        handle: TenantHandle = Depends(get_tenant_handle),
    ) -> Principal:
        guard = build_guard(request, handle)
        check = guard.authorize_all if mode == "all" else guard.authorize_any
        decision = await check(
            principal.user_id,
            store_id_from(request),
            reqs,
            store_memberships=principal.store_ids,
        )
        if not decision.allowed:
            raise AuthorizationDenied()
        return principal

    return _dep
