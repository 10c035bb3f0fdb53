"""
Built-in role templates seeded into every new tenant database.

Each template lists only what it adds on top of its parent; inheritance
supplies the rest.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from tenantgate.domain.entities.permission import (
    ALL_RESOURCES,
    CRUD_ACTIONS,
    RESOURCE_ACTIONS,
    WILDCARD,
    PermissionEntry,
)


def _e(resource: str, *actions: str) -> list[PermissionEntry]:
    return [PermissionEntry(resource=resource, action=a) for a in actions]


def _every_action() -> list[PermissionEntry]:
    # the wildcard action covers CRUD only, so extended actions are spelled out
    return [
        entry
        for resource in ALL_RESOURCES
        for entry in _e(resource, *RESOURCE_ACTIONS.get(resource, CRUD_ACTIONS))
    ]


@dataclass(frozen=True)
class DefaultTemplate:
    name: str
    description: str
    priority: int
    entries: list[PermissionEntry] = field(default_factory=list)
    parent: str | None = None
    is_default: bool = False


READ_ONLY = "Read Only User"
INVENTORY_CLERK = "Inventory Clerk"
SALES_PERSON = "Sales Person"
STORE_MANAGER = "Store Manager"
STORE_OWNER = "Store Owner"
SUPER_ADMIN = "Super Admin"

# parents before children
DEFAULT_TEMPLATES: tuple[DefaultTemplate, ...] = (
    DefaultTemplate(
        name=READ_ONLY,
        description="View access to store data",
        priority=10,
        is_default=True,
        entries=[
            *_e("inventory", "read"),
            *_e("product", "read"),
            *_e("customer", "read"),
            *_e("order", "read"),
            *_e("dashboard", "read"),
        ],
    ),
    DefaultTemplate(
        name=SALES_PERSON,
        description="Customer and order handling",
        priority=40,
        parent=READ_ONLY,
        entries=[
            *_e("customer", "create", "update"),
            *_e("order", "create", "update"),
            *_e("transaction", "create", "read"),
        ],
    ),
    DefaultTemplate(
        name=INVENTORY_CLERK,
        description="Stock management",
        priority=50,
        parent=READ_ONLY,
        entries=[
            *_e("inventory", "create", "update", "adjust_stock"),
            *_e("product", "update"),
            *_e("supplier", "read"),
        ],
    ),
    DefaultTemplate(
        name=STORE_MANAGER,
        description="Operational management of store",
        priority=70,
        parent=INVENTORY_CLERK,
        entries=[
            *_e("store", "read"),
            *_e("order", WILDCARD),
            *_e("customer", WILDCARD),
            *_e("report", "view_reports"),
        ],
    ),
    DefaultTemplate(
        name=STORE_OWNER,
        description="Full access to owned stores",
        priority=90,
        parent=STORE_MANAGER,
        entries=[
            *_e("store", "update"),
            *_e("inventory", WILDCARD),
            *_e("product", WILDCARD),
            *_e("supplier", WILDCARD),
            *_e("transaction", WILDCARD),
            *_e("category", WILDCARD),
            *_e("brand", WILDCARD),
            *_e("user", "manage_permissions"),
        ],
    ),
    DefaultTemplate(
        name=SUPER_ADMIN,
        description="Full system access across all stores",
        priority=100,
        entries=_every_action(),
    ),
)
