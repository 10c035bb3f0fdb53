from __future__ import annotations

import itertools
from datetime import datetime, timezone
from typing import Any

import pytest
from pymongo.errors import DuplicateKeyError

from tenantgate.domain.entities.permission import (
    AuditRecord,
    PermissionEntry,
    PermissionGrant,
    RoleTemplate,
    UserRoleAssignment,
)
from tenantgate.permissions.guard import AuthorizationGuard
from tenantgate.permissions.resolver import PermissionResolver
from tenantgate.services.audit_service import AuditSink
from tenantgate.services.permission_admin_service import PermissionAdminService

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeTemplates:
    def __init__(self) -> None:
        self.docs: dict[str, RoleTemplate] = {}
        self._ids = itertools.count(1)

    async def ensure_indexes(self) -> None:
        pass

    async def get(self, template_id: str) -> RoleTemplate | None:
        return self.docs.get(template_id)

    async def get_by_name(self, name: str) -> RoleTemplate | None:
        return next((t for t in self.docs.values() if t.name == name), None)

    async def list_active(self) -> list[RoleTemplate]:
        active = [t for t in self.docs.values() if t.is_active]
        return sorted(active, key=lambda t: (-t.priority, t.name))

    async def insert(self, template: RoleTemplate) -> RoleTemplate:
        saved = template.model_copy(update={"id": template.id or f"t{next(self._ids)}"})
        self.docs[saved.id] = saved
        return saved

    async def update(self, template_id: str, updates: dict[str, Any]) -> RoleTemplate | None:
        current = self.docs.get(template_id)
        if current is None:
            return None
        merged = {**current.model_dump(), **updates}
        self.docs[template_id] = RoleTemplate(**merged)
        return self.docs[template_id]

    def add(
        self,
        template_id: str,
        name: str,
        entries: list[tuple[str, str] | tuple[str, str, str]],
        *,
        parent_id: str | None = None,
        priority: int = 0,
        is_active: bool = True,
    ) -> RoleTemplate:
        template = RoleTemplate(
            id=template_id,
            name=name,
            entries=[
                PermissionEntry(resource=e[0], action=e[1], store_id=e[2] if len(e) > 2 else None)
                for e in entries
            ],
            parent_id=parent_id,
            priority=priority,
            is_active=is_active,
        )
        self.docs[template_id] = template
        return template


class FakeAssignments:
    def __init__(self) -> None:
        self.rows: list[UserRoleAssignment] = []

    async def ensure_indexes(self) -> None:
        pass

    async def active_for_user(self, user_id: str) -> list[UserRoleAssignment]:
        return [a for a in self.rows if a.user_id == user_id and a.is_active]

    async def insert(self, assignment: UserRoleAssignment) -> UserRoleAssignment:
        if await self.active_for_user(assignment.user_id):
            raise DuplicateKeyError("one_active_role_per_user")
        saved = assignment.model_copy(update={"id": f"a{len(self.rows) + 1}"})
        self.rows.append(saved)
        return saved

    async def replace_for_user(self, assignment: UserRoleAssignment) -> tuple[UserRoleAssignment, int]:
        replaced = await self.deactivate_for_user(assignment.user_id)
        return await self.insert(assignment), replaced

    async def deactivate_for_user(self, user_id: str) -> int:
        count = 0
        for i, a in enumerate(self.rows):
            if a.user_id == user_id and a.is_active:
                self.rows[i] = a.model_copy(update={"is_active": False})
                count += 1
        return count

    async def count_active_for_template(self, template_id: str) -> int:
        return sum(1 for a in self.rows if a.role_template_id == template_id and a.is_active)

    def assign(self, user_id: str, template_id: str) -> None:
        self.rows.append(
            UserRoleAssignment(
                id=f"a{len(self.rows) + 1}",
                user_id=user_id,
                role_template_id=template_id,
                assigned_by="admin",
                assigned_at=NOW,
            )
        )


class FakeGrants:
    def __init__(self) -> None:
        self.docs: dict[tuple, PermissionGrant] = {}

    async def ensure_indexes(self) -> None:
        pass

    async def for_user(self, user_id: str) -> list[PermissionGrant]:
        return [g for g in self.docs.values() if g.user_id == user_id]

    async def upsert(self, grant: PermissionGrant) -> PermissionGrant:
        saved = grant.model_copy(update={"id": f"g{len(self.docs) + 1}"})
        self.docs[grant.key()] = saved
        return saved

    async def delete(
        self, user_id: str, resource: str, store_id: str | None = None, resource_id: str | None = None
    ) -> bool:
        return self.docs.pop((user_id, store_id, resource, resource_id), None) is not None


class FakeStores:
    def __init__(self, users: set[str], stores: set[str]) -> None:
        self.users = users
        self.stores = stores
        self.memberships: set[tuple[str, str]] = set()

    async def existing_store_ids(self, store_ids: list[str]) -> set[str]:
        return {s for s in store_ids if s in self.stores}

    async def existing_user_ids(self, user_ids: list[str]) -> set[str]:
        return {u for u in user_ids if u in self.users}

    async def add_user_to_store(self, user_id: str, store_id: str) -> None:
        self.memberships.add((user_id, store_id))


class RecordingAuditSink(AuditSink):
    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    async def emit(self, record: AuditRecord) -> None:
        self.records.append(record)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def templates() -> FakeTemplates:
    return FakeTemplates()


@pytest.fixture
def assignments() -> FakeAssignments:
    return FakeAssignments()


@pytest.fixture
def grants() -> FakeGrants:
    return FakeGrants()


@pytest.fixture
def stores() -> FakeStores:
    return FakeStores(users={"u1", "u2", "u3"}, stores={"store-1", "store-2"})


@pytest.fixture
def resolver(templates, assignments, grants) -> PermissionResolver:
    return PermissionResolver(templates, assignments, grants, clock=lambda: NOW)


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def guard(resolver, audit_sink) -> AuthorizationGuard:
    return AuthorizationGuard(resolver, audit_sink, tenant_id="acme", clock=lambda: NOW)


@pytest.fixture
def admin(templates, assignments, grants, stores) -> PermissionAdminService:
    return PermissionAdminService(templates, assignments, grants, stores, clock=lambda: NOW)


@pytest.fixture
def make_grant():
    def _make(user_id: str, resource: str, actions: list[str], **kwargs: Any) -> PermissionGrant:
        return PermissionGrant(user_id=user_id, resource=resource, actions=actions, **kwargs)

    return _make
