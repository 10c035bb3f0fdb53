from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

from tenantgate.configs.settings import Settings
from tenantgate.configs.logging_config import get_logger
from tenantgate.domain.entities.permission import (
    ALL_RESOURCES,
    RESOURCE_ACTIONS,
    WILDCARD,
    Action,
    BulkGrantReport,
    BulkGrantRequest,
    GrantRequest,
    PermissionEntry,
    PermissionGrant,
    RoleTemplate,
    RoleTemplateCreateRequest,
    RoleTemplateUpdateRequest,
    UserRoleAssignment,
)
from tenantgate.errors import InvalidRoleTemplate, NotFoundError, ValidationError
from tenantgate.permissions.defaults import DEFAULT_TEMPLATES
from tenantgate.permissions.templates import walk_template_chain
from tenantgate.repositories.permission_repository import PermissionGrantRepository
from tenantgate.repositories.role_assignment_repository import RoleAssignmentRepository
from tenantgate.repositories.role_template_repository import RoleTemplateRepository
from tenantgate.repositories.store_repository import StoreRepository
from tenantgate.tenancy.handle import TenantHandle
from tenantgate.utils.time_utils import as_utc, utc_now

log = get_logger(__name__)

_KNOWN_ACTIONS = {a.value for a in Action}


def validate_permission(resource: str, action: str) -> None:
    if resource != WILDCARD and resource not in ALL_RESOURCES:
        raise ValidationError(f"unknown resource: {resource}")
    if action == WILDCARD:
        return
    if action not in _KNOWN_ACTIONS:
        raise ValidationError(f"unknown action: {action}")
    allowed = RESOURCE_ACTIONS.get(resource)
    if allowed is not None and action not in allowed:
        raise ValidationError(f"action {action} is not valid for resource {resource}")


def validate_entries(entries: list[PermissionEntry]) -> None:
    for entry in entries:
        validate_permission(entry.resource, entry.action)


class PermissionAdminService:
    """
    Administrative writes against one tenant's permission store.

    Writes refuse to create states the resolver would reject: dangling or
    cyclic template parents, and more than one active assignment per user.
    """

    def __init__(
        self,
        templates: RoleTemplateRepository,
        assignments: RoleAssignmentRepository,
        grants: PermissionGrantRepository,
        stores: StoreRepository,
        *,
        max_depth: int = 32,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._templates = templates
        self._assignments = assignments
        self._grants = grants
        self._stores = stores
        self._max_depth = max_depth
        self._clock = clock

    @classmethod
    def for_handle(cls, handle: TenantHandle, settings: Settings) -> "PermissionAdminService":
        return cls(
            RoleTemplateRepository(handle.db),
            RoleAssignmentRepository(handle.db),
            PermissionGrantRepository(handle.db),
            StoreRepository(handle.db),
            max_depth=settings.max_template_depth,
        )

    # ------------------------------------------------------------------
    # Role templates
    # ------------------------------------------------------------------

    async def _require_template(self, template_id: str) -> RoleTemplate:
        template = await self._templates.get(template_id)
        if template is None:
            raise NotFoundError("role template not found")
        return template

    async def _check_parent(self, parent_id: str, child_id: str | None = None) -> None:
        if child_id is not None and parent_id == child_id:
            raise ValidationError("role template cannot be its own parent")
        try:
            chain = await walk_template_chain(
                self._templates.get, parent_id, max_depth=self._max_depth - 1
            )
        except InvalidRoleTemplate as e:
            raise ValidationError(e.message) from e
        if child_id is not None and any(t.id == child_id for t in chain):
            path = " -> ".join(t.name for t in chain)
            log.warning("admin.template.cycle_rejected template_id=%s parent_chain=%s", child_id, path)
            raise ValidationError("role template parent would create a cycle")

    async def create_role_template(
        self, req: RoleTemplateCreateRequest, created_by: str
    ) -> RoleTemplate:
        validate_entries(req.entries)
        if await self._templates.get_by_name(req.name) is not None:
            raise ValidationError(f"role template already exists: {req.name}")
        if req.parent_id is not None:
            await self._check_parent(req.parent_id)

        template = RoleTemplate(**req.model_dump(), created_by=created_by)
        created = await self._templates.insert(template)
        log.info(
            "admin.template.created id=%s name=%s parent_id=%s by=%s",
            created.id,
            created.name,
            created.parent_id,
            created_by,
        )
        return created

    async def update_role_template(
        self, template_id: str, req: RoleTemplateUpdateRequest, updated_by: str
    ) -> RoleTemplate:
        existing = await self._require_template(template_id)
        updates: dict[str, Any] = req.model_dump(exclude_unset=True)
        if not updates:
            return existing

        if "entries" in updates:
            validate_entries(req.entries or [])
            updates["entries"] = [e.model_dump() for e in req.entries or []]
        if "name" in updates and updates["name"] != existing.name:
            if await self._templates.get_by_name(updates["name"]) is not None:
                raise ValidationError(f"role template already exists: {updates['name']}")
        if updates.get("parent_id") is not None:
            await self._check_parent(updates["parent_id"], child_id=template_id)

        updated = await self._templates.update(template_id, updates)
        if updated is None:
            raise NotFoundError("role template not found")
        log.info(
            "admin.template.updated id=%s keys=%s by=%s", template_id, sorted(updates), updated_by
        )
        return updated

    async def deactivate_role_template(self, template_id: str, deactivated_by: str) -> RoleTemplate:
        template = await self._require_template(template_id)
        in_use = await self._assignments.count_active_for_template(template_id)
        if in_use > 0:
            raise ValidationError(
                f"role template '{template.name}' is assigned to {in_use} users"
            )
        updated = await self._templates.update(template_id, {"is_active": False})
        log.info("admin.template.deactivated id=%s name=%s by=%s", template_id, template.name, deactivated_by)
        return updated or template

    async def ensure_indexes(self) -> None:
        await self._templates.ensure_indexes()
        await self._assignments.ensure_indexes()
        await self._grants.ensure_indexes()

    async def list_role_templates(self) -> list[RoleTemplate]:
        return await self._templates.list_active()

    async def seed_default_templates(self, created_by: str = "system") -> list[str]:
        """Insert the built-in templates that are missing. Returns the names created."""
        await self.ensure_indexes()
        ids: dict[str, str | None] = {}
        created: list[str] = []
        for default in DEFAULT_TEMPLATES:
            existing = await self._templates.get_by_name(default.name)
            if existing is not None:
                ids[default.name] = existing.id
                continue
            template = await self._templates.insert(
                RoleTemplate(
                    name=default.name,
                    description=default.description,
                    entries=list(default.entries),
                    parent_id=ids.get(default.parent) if default.parent else None,
                    priority=default.priority,
                    is_default=default.is_default,
                    created_by=created_by,
                )
            )
            ids[default.name] = template.id
            created.append(default.name)
        log.info("admin.template.seeded created=%s", created)
        return created

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    async def _require_user(self, user_id: str) -> None:
        if user_id not in await self._stores.existing_user_ids([user_id]):
            raise NotFoundError("user not found")

    async def assign_role_template(
        self,
        user_id: str,
        template_id: str,
        assigned_by: str,
    ) -> UserRoleAssignment:
        """Assign a template to a user, replacing any previous assignment."""
        template = await self._require_template(template_id)
        if not template.is_active:
            raise ValidationError("role template is inactive")
        await self._require_user(user_id)
        try:
            await walk_template_chain(self._templates.get, template_id, max_depth=self._max_depth)
        except InvalidRoleTemplate as e:
            raise ValidationError(e.message) from e

        assignment, replaced = await self._assignments.replace_for_user(
            UserRoleAssignment(
                user_id=user_id,
                role_template_id=template_id,
                assigned_by=assigned_by,
                assigned_at=self._clock(),
            )
        )
        log.info(
            "admin.assignment.created user_id=%s template=%s replaced=%s by=%s",
            user_id,
            template.name,
            replaced,
            assigned_by,
        )
        return assignment

    # ------------------------------------------------------------------
    # Explicit grants
    # ------------------------------------------------------------------

    def _check_expiry(self, expires_at: datetime | None) -> None:
        if expires_at is not None and as_utc(expires_at) <= as_utc(self._clock()):
            raise ValidationError("expires_at must be in the future")

    async def _write_grant(
        self,
        req: GrantRequest,
        *,
        granted: bool,
        actor: str,
    ) -> PermissionGrant:
        for action in req.actions:
            validate_permission(req.resource, action)
        self._check_expiry(req.expires_at)
        await self._require_user(req.user_id)
        if req.store_id is not None:
            if req.store_id not in await self._stores.existing_store_ids([req.store_id]):
                raise NotFoundError("store not found")
            await self._stores.add_user_to_store(req.user_id, req.store_id)

        grant = PermissionGrant(
            user_id=req.user_id,
            resource=req.resource,
            actions=sorted(set(req.actions)),
            store_id=req.store_id,
            resource_id=req.resource_id,
            granted=granted,
            granted_by=actor,
            granted_at=self._clock(),
            expires_at=req.expires_at,
            conditions=req.conditions,
        )
        return await self._grants.upsert(grant)

    async def grant_permission(self, req: GrantRequest, granted_by: str) -> PermissionGrant:
        """Write an explicit grant. A later grant for the same key supersedes the earlier one."""
        grant = await self._write_grant(req, granted=True, actor=granted_by)
        log.info(
            "admin.grant user_id=%s resource=%s actions=%s store_id=%s by=%s",
            req.user_id,
            req.resource,
            grant.actions,
            req.store_id,
            granted_by,
        )
        return grant

    async def revoke_permission(self, req: GrantRequest, revoked_by: str) -> PermissionGrant:
        """Write an explicit revocation that masks matching template entries."""
        grant = await self._write_grant(req, granted=False, actor=revoked_by)
        log.info(
            "admin.revoke user_id=%s resource=%s actions=%s store_id=%s by=%s",
            req.user_id,
            req.resource,
            grant.actions,
            req.store_id,
            revoked_by,
        )
        return grant

    async def remove_grant(
        self,
        user_id: str,
        resource: str,
        *,
        store_id: str | None = None,
        resource_id: str | None = None,
    ) -> bool:
        """Drop the explicit override so the template decides again."""
        return await self._grants.delete(user_id, resource, store_id=store_id, resource_id=resource_id)

    async def bulk_grant(self, req: BulkGrantRequest, granted_by: str) -> BulkGrantReport:
        """
        Grant every permission to every user in every store.

        Unknown users and stores are skipped and reported; the rest are applied.
        """
        for spec in req.permissions:
            for action in spec.actions:
                validate_permission(spec.resource, action)
        self._check_expiry(req.expires_at)

        user_ids = list(dict.fromkeys(req.user_ids))
        store_ids = list(dict.fromkeys(req.store_ids))
        known_users = await self._stores.existing_user_ids(user_ids)
        known_stores = await self._stores.existing_store_ids(store_ids)

        report = BulkGrantReport(
            skipped_users=[u for u in user_ids if u not in known_users],
            skipped_stores=[s for s in store_ids if s not in known_stores],
        )
        if report.skipped_users or report.skipped_stores:
            log.warning(
                "admin.bulk_grant.skipped users=%s stores=%s",
                report.skipped_users,
                report.skipped_stores,
            )

        targets: list[str | None] = [s for s in store_ids if s in known_stores]
        if not store_ids:
            targets = [None]

        for user_id in (u for u in user_ids if u in known_users):
            for store_id in targets:
                if store_id is not None:
                    await self._stores.add_user_to_store(user_id, store_id)
                for spec in req.permissions:
                    await self._grants.upsert(
                        PermissionGrant(
                            user_id=user_id,
                            resource=spec.resource,
                            actions=sorted(set(spec.actions)),
                            store_id=store_id,
                            granted=True,
                            granted_by=granted_by,
                            granted_at=self._clock(),
                            expires_at=req.expires_at,
                        )
                    )
                    report.applied += 1

        log.info("admin.bulk_grant applied=%s by=%s", report.applied, granted_by)
        return report
