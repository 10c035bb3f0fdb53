from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from tenantgate.auth.dependencies import build_guard, get_principal, get_tenant_handle, require_permission
from tenantgate.auth.models import Principal
from tenantgate.configs.logging_config import get_logger
from tenantgate.domain.entities.permission import (
    BulkGrantRequest,
    GrantRequest,
    PermissionCheckRequest,
    RoleTemplateCreateRequest,
    RoleTemplateUpdateRequest,
)
from tenantgate.errors import AuthorizationDenied
from tenantgate.permissions.resolver import PermissionResolver
from tenantgate.services.permission_admin_service import PermissionAdminService
from tenantgate.tenancy.handle import TenantHandle
from tenantgate.utils.response import success

log = get_logger(__name__)

router = APIRouter(prefix="/permissions", tags=["permissions"])

# administrative routes need user.manage_permissions
_manage = require_permission("user", "manage_permissions")


def _admin(request: Request, handle: TenantHandle) -> PermissionAdminService:
    return PermissionAdminService.for_handle(handle, request.app.state.settings)


@router.get("/me")
async def my_permissions(
    request: Request,
    store_id: str | None = Query(default=None),
    principal: Principal = Depends(get_principal),
    handle: TenantHandle = Depends(get_tenant_handle),
) -> dict:
    if store_id is not None and not principal.is_member_of(store_id):
        log.info("permissions.me.store_not_member user_id=%s store_id=%s", principal.user_id, store_id)
        raise AuthorizationDenied()
    resolver = PermissionResolver.for_handle(handle, request.app.state.settings)
    data = await resolver.describe(principal.user_id, store_id)
    return success(data)


@router.post("/check")
async def check_permission(
    request: Request,
    body: PermissionCheckRequest,
    principal: Principal = Depends(get_principal),
    handle: TenantHandle = Depends(get_tenant_handle),
) -> dict:
    decision = await build_guard(request, handle).authorize(
        principal.user_id,
        body.store_id,
        body.resource,
        body.action,
        resource_id=body.resource_id,
        store_memberships=principal.store_ids,
    )
    # the reason stays in the audit trail
    return success({"allowed": decision.allowed})


@router.get("/templates")
async def list_templates(
    request: Request,
    principal: Principal = Depends(_manage),
    handle: TenantHandle = Depends(get_tenant_handle),
) -> dict:
    templates = await _admin(request, handle).list_role_templates()
    return success([t.model_dump(mode="json") for t in templates])


@router.post("/templates")
async def create_template(
    request: Request,
    body: RoleTemplateCreateRequest,
    principal: Principal = Depends(_manage),
    handle: TenantHandle = Depends(get_tenant_handle),
) -> dict:
    template = await _admin(request, handle).create_role_template(body, principal.user_id)
    return success(template.model_dump(mode="json"), message="role template created")


@router.put("/templates/{template_id}")
async def update_template(
    request: Request,
    template_id: str,
    body: RoleTemplateUpdateRequest,
    principal: Principal = Depends(_manage),
    handle: TenantHandle = Depends(get_tenant_handle),
) -> dict:
    template = await _admin(request, handle).update_role_template(template_id, body, principal.user_id)
    return success(template.model_dump(mode="json"), message="role template updated")


@router.delete("/templates/{template_id}")
async def deactivate_template(
    request: Request,
    template_id: str,
    principal: Principal = Depends(_manage),
    handle: TenantHandle = Depends(get_tenant_handle),
) -> dict:
    await _admin(request, handle).deactivate_role_template(template_id, principal.user_id)
    return success({"id": template_id}, message="role template deactivated")


@router.post("/templates/{template_id}/assign/{user_id}")
async def assign_template(
    request: Request,
    template_id: str,
    user_id: str,
    principal: Principal = Depends(_manage),
    handle: TenantHandle = Depends(get_tenant_handle),
) -> dict:
    assignment = await _admin(request, handle).assign_role_template(
        user_id, template_id, principal.user_id
    )
    return success(assignment.model_dump(mode="json"), message="role template assigned")


@router.post("/grants")
async def grant(
    request: Request,
    body: GrantRequest,
    principal: Principal = Depends(_manage),
    handle: TenantHandle = Depends(get_tenant_handle),
) -> dict:
    saved = await _admin(request, handle).grant_permission(body, principal.user_id)
    return success(saved.model_dump(mode="json"), message="permission granted")


@router.post("/revocations")
async def revoke(
    request: Request,
    body: GrantRequest,
    principal: Principal = Depends(_manage),
    handle: TenantHandle = Depends(get_tenant_handle),
) -> dict:
    saved = await _admin(request, handle).revoke_permission(body, principal.user_id)
    return success(saved.model_dump(mode="json"), message="permission revoked")


@router.delete("/grants/{user_id}/{resource}")
async def remove_grant(
    request: Request,
    user_id: str,
    resource: str,
    store_id: str | None = Query(default=None),
    resource_id: str | None = Query(default=None),
    principal: Principal = Depends(_manage),
    handle: TenantHandle = Depends(get_tenant_handle),
) -> dict:
    removed = await _admin(request, handle).remove_grant(
        user_id, resource, store_id=store_id, resource_id=resource_id
    )
    return success({"removed": removed})


@router.post("/grants/bulk")
async def bulk_grant(
    request: Request,
    body: BulkGrantRequest,
    principal: Principal = Depends(_manage),
    handle: TenantHandle = Depends(get_tenant_handle),
) -> dict:
    report = await _admin(request, handle).bulk_grant(body, principal.user_id)
    return success(report.model_dump(), message="bulk grant processed")


@router.post("/templates/seed")
async def seed_templates(
    request: Request,
    principal: Principal = Depends(_manage),
    handle: TenantHandle = Depends(get_tenant_handle),
) -> dict:
    created = await _admin(request, handle).seed_default_templates(principal.user_id)
    return success({"created": created})
