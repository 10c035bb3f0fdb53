"""
Pure permission algebra: wildcard expansion, template inheritance, explicit
override, expiry and store scoping. No I/O happens here.
"""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, Mapping, Optional, Sequence

from tenantgate.domain.entities.permission import (
    ALL_RESOURCES,
    CRUD_ACTIONS,
    WILDCARD,
    EffectivePermission,
    PermissionEntry,
    PermissionGrant,
    RoleTemplate,
)
from tenantgate.utils.time_utils import is_expired

PermissionKey = tuple[str, str, Optional[str], Optional[str]]


def expand_actions(action: str) -> tuple[str, ...]:
    return CRUD_ACTIONS if action == WILDCARD else (action,)


def expand_resources(resource: str) -> tuple[str, ...]:
    return ALL_RESOURCES if resource == WILDCARD else (resource,)


def expand_entry(entry: PermissionEntry, source: str) -> list[EffectivePermission]:
    return [
        EffectivePermission(resource, action, entry.store_id, None, source)
        for resource in expand_resources(entry.resource)
        for action in expand_actions(entry.action)
    ]


def expand_grant(grant: PermissionGrant) -> list[EffectivePermission]:
    source = f"grant:{grant.id}" if grant.id else "grant"
    return [
        EffectivePermission(resource, action, grant.store_id, grant.resource_id, source)
        for resource in expand_resources(grant.resource)
        for raw in grant.actions
        for action in expand_actions(raw)
    ]


def template_permissions(chain: Sequence[RoleTemplate]) -> dict[PermissionKey, EffectivePermission]:
    """
    Flatten a chain (closest template first) into keyed permissions.

    Ancestors are applied first so a descendant's entry replaces the
    ancestor's entry for the same key. Inactive templates add nothing.
    """
    merged: dict[PermissionKey, EffectivePermission] = {}
    for template in reversed(chain):
        if not template.is_active:
            continue
        for entry in template.entries:
            for perm in expand_entry(entry, f"template:{template.name}"):
                merged[perm.key] = perm
    return merged


def live_grants(grants: Iterable[PermissionGrant], now: datetime) -> list[PermissionGrant]:
    """Unexpired grants in a stable order."""
    kept = [g for g in grants if not is_expired(g.expires_at, now)]
    return sorted(kept, key=lambda g: (g.resource, g.store_id or "", g.resource_id or ""))


def merge_permissions(
    template_entries: Mapping[PermissionKey, EffectivePermission] | Iterable[EffectivePermission],
    grants: Iterable[PermissionGrant],
    *,
    now: datetime,
) -> frozenset[EffectivePermission]:
    """
    Combine template-derived permissions with explicit grants.

    - expired grants are ignored, whether they grant or revoke
    - a granted key replaces the template permission with the same key
    - a revoked key (granted=False) removes it
    - explicit keys with no template counterpart are added
    """
    if isinstance(template_entries, Mapping):
        merged = dict(template_entries)
    else:
        merged = {p.key: p for p in template_entries}

    for grant in live_grants(grants, now):
        for perm in expand_grant(grant):
            if grant.granted:
                merged[perm.key] = perm
            else:
                merged.pop(perm.key, None)

    return frozenset(merged.values())


def scope_to_store(
    permissions: Iterable[EffectivePermission], store_id: str | None
) -> frozenset[EffectivePermission]:
    if store_id is None:
        return frozenset(permissions)
    return frozenset(p for p in permissions if p.store_id is None or p.store_id == store_id)


def permits(
    permissions: Iterable[EffectivePermission],
    resource: str,
    action: str,
    resource_id: str | None = None,
) -> bool:
    for p in permissions:
        if p.resource != resource or p.action != action:
            continue
        if p.resource_id is None or p.resource_id == resource_id:
            return True
    return False


def group_permissions(permissions: Iterable[EffectivePermission]) -> list[dict]:
    """Group by (resource, store_id, resource_id) with sorted actions, for display."""
    groups: dict[tuple, set[str]] = {}
    for p in permissions:
        groups.setdefault((p.resource, p.store_id, p.resource_id), set()).add(p.action)
    return [
        {"resource": r, "store_id": s, "resource_id": rid, "actions": sorted(actions)}
        for (r, s, rid), actions in sorted(groups.items(), key=lambda kv: (kv[0][0], kv[0][1] or "", kv[0][2] or ""))
    ]
