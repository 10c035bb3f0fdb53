from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

WILDCARD = "*"


class Resource(str, Enum):
    STORE = "store"
    INVENTORY = "inventory"
    PRODUCT = "product"
    SUPPLIER = "supplier"
    CUSTOMER = "customer"
    ORDER = "order"
    USER = "user"
    REPORT = "report"
    SETTING = "setting"
    TRANSACTION = "transaction"
    CATEGORY = "category"
    BRAND = "brand"
    DASHBOARD = "dashboard"
    ANALYTICS = "analytics"
    BACKUP = "backup"
    AUDIT = "audit"
    INVITATION = "invitation"
    PERMISSION = "permission"
    TENANT = "tenant"


class Action(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"

    EXPORT = "export"
    IMPORT = "import"
    APPROVE = "approve"
    REJECT = "reject"
    ASSIGN = "assign"
    TRANSFER = "transfer"
    ADJUST_STOCK = "adjust_stock"
    TRANSFER_STOCK = "transfer_stock"
    FULFILL_ORDER = "fulfill_order"
    CANCEL_ORDER = "cancel_order"
    REFUND_ORDER = "refund_order"
    INVITE = "invite"
    DEACTIVATE = "deactivate"
    RESET_PASSWORD = "reset_password"
    MANAGE_PERMISSIONS = "manage_permissions"
    VIEW_REPORTS = "view_reports"
    GENERATE_REPORTS = "generate_reports"
    CONFIGURE = "configure"
    BACKUP_RESTORE = "backup_restore"
    VIEW_AUDIT = "view_audit"


# `*` expands to exactly these, never to the extended actions.
CRUD_ACTIONS: tuple[str, ...] = (
    Action.CREATE.value,
    Action.READ.value,
    Action.UPDATE.value,
    Action.DELETE.value,
)

ALL_RESOURCES: tuple[str, ...] = tuple(r.value for r in Resource)

_CRUD = list(CRUD_ACTIONS)

# Resources missing here accept any known action.
RESOURCE_ACTIONS: dict[str, list[str]] = {
    Resource.USER.value: _CRUD + ["invite", "deactivate", "reset_password", "manage_permissions"],
    Resource.STORE.value: _CRUD + ["configure"],
    Resource.PRODUCT.value: _CRUD + ["import", "export"],
    Resource.INVENTORY.value: _CRUD + ["adjust_stock", "transfer_stock", "import", "export"],
    Resource.ORDER.value: _CRUD + ["fulfill_order", "cancel_order", "refund_order", "export"],
    Resource.CUSTOMER.value: _CRUD + ["export"],
    Resource.SUPPLIER.value: _CRUD + ["export"],
    Resource.TRANSACTION.value: _CRUD + ["export"],
    Resource.REPORT.value: ["read", "view_reports", "generate_reports", "export"],
    Resource.AUDIT.value: ["read", "view_audit", "export"],
    Resource.DASHBOARD.value: ["read"],
    Resource.ANALYTICS.value: ["read", "view_reports"],
}


class PermissionEntry(BaseModel):
    """One (resource, action, store scope) line of a role template."""

    model_config = ConfigDict(frozen=True)

    resource: str
    action: str
    store_id: str | None = None


class RoleTemplate(BaseModel):
    id: str | None = None
    name: str
    description: str | None = None
    entries: list[PermissionEntry] = Field(default_factory=list)
    parent_id: str | None = None
    is_active: bool = True
    is_default: bool = False
    priority: int = 0
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class UserRoleAssignment(BaseModel):
    id: str | None = None
    user_id: str
    role_template_id: str
    assigned_by: str
    assigned_at: datetime
    is_active: bool = True


class PermissionGrant(BaseModel):
    """
    Explicit per-user permission.

    `granted=False` turns the grant into a revocation that overrides any
    template entry with the same key. Unique on (user_id, store_id, resource,
    resource_id).
    """

    id: str | None = None
    user_id: str
    resource: str
    actions: list[str]
    store_id: str | None = None
    resource_id: str | None = None
    granted: bool = True
    granted_by: str | None = None
    granted_at: datetime | None = None
    expires_at: datetime | None = None
    conditions: dict[str, Any] | None = None

    def key(self) -> tuple[str, str | None, str, str | None]:
        return (self.user_id, self.store_id, self.resource, self.resource_id)


@dataclass(frozen=True)
class EffectivePermission:
    resource: str
    action: str
    store_id: str | None = None
    resource_id: str | None = None
    source: str = field(default="", compare=False)

    @property
    def key(self) -> tuple[str, str, str | None, str | None]:
        return (self.resource, self.action, self.store_id, self.resource_id)


@dataclass(frozen=True)
class PermissionRequirement:
    resource: str
    action: str


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed


class AuditRecord(BaseModel):
    tenant_id: str | None = None
    user_id: str
    store_id: str | None = None
    resource: str
    action: str
    resource_id: str | None = None
    outcome: str  # allow or deny
    reason: str
    at: datetime


class PermissionCheckRequest(BaseModel):
    resource: str
    action: str
    store_id: str | None = None
    resource_id: str | None = None


class RoleTemplateCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    entries: list[PermissionEntry] = Field(default_factory=list)
    parent_id: str | None = None
    priority: int = 0
    is_default: bool = False


class RoleTemplateUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    entries: list[PermissionEntry] | None = None
    parent_id: str | None = None
    priority: int | None = None
    is_default: bool | None = None


class GrantRequest(BaseModel):
    user_id: str
    resource: str
    actions: list[str] = Field(min_length=1)
    store_id: str | None = None
    resource_id: str | None = None
    expires_at: datetime | None = None
    conditions: dict[str, Any] | None = None


class GrantSpec(BaseModel):
    resource: str
    actions: list[str] = Field(min_length=1)


class BulkGrantRequest(BaseModel):
    """Every user gets every permission in every store (global when store_ids is empty)."""

    user_ids: list[str] = Field(min_length=1)
    store_ids: list[str] = Field(default_factory=list)
    permissions: list[GrantSpec] = Field(min_length=1)
    expires_at: datetime | None = None


class BulkGrantReport(BaseModel):
    applied: int = 0
    skipped_users: list[str] = Field(default_factory=list)
    skipped_stores: list[str] = Field(default_factory=list)
