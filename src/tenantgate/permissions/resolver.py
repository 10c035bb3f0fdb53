from __future__ import annotations

from datetime import datetime
from typing import Any, Awaitable, Callable

from pymongo.errors import AutoReconnect, NetworkTimeout

from tenantgate.configs.settings import Settings
from tenantgate.configs.logging_config import get_logger
from tenantgate.domain.entities.permission import EffectivePermission, RoleTemplate
from tenantgate.errors import InvalidRoleAssignment, TenantConnectionError
from tenantgate.permissions.merge import (
    group_permissions,
    merge_permissions,
    permits,
    scope_to_store,
    template_permissions,
)
from tenantgate.permissions.templates import walk_template_chain
from tenantgate.repositories.permission_repository import PermissionGrantRepository
from tenantgate.repositories.role_assignment_repository import RoleAssignmentRepository
from tenantgate.repositories.role_template_repository import RoleTemplateRepository
from tenantgate.tenancy.handle import TenantHandle
from tenantgate.tenancy.retry import RetryExhaustedError, retry_with_backoff
from tenantgate.utils.time_utils import utc_now

log = get_logger(__name__)

TRANSIENT_READ_ERRORS: tuple[type[BaseException], ...] = (AutoReconnect, NetworkTimeout)


class PermissionResolver:
    """
    Computes a user's effective permissions inside one tenant database.

    Nothing is cached: every call reads the current assignment, template
    chain and grants, so administrative writes take effect on the next check.
    """

    def __init__(
        self,
        templates: RoleTemplateRepository,
        assignments: RoleAssignmentRepository,
        grants: PermissionGrantRepository,
        *,
        max_depth: int = 32,
        read_attempts: int = 2,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._templates = templates
        self._assignments = assignments
        self._grants = grants
        self._max_depth = max_depth
        self._read_attempts = read_attempts
        self._clock = clock

    @classmethod
    def for_handle(cls, handle: TenantHandle, settings: Settings) -> "PermissionResolver":
        return cls(
            RoleTemplateRepository(handle.db),
            RoleAssignmentRepository(handle.db),
            PermissionGrantRepository(handle.db),
            max_depth=settings.max_template_depth,
            read_attempts=settings.store_read_attempts,
        )

    async def _read(self, func: Callable[..., Awaitable[Any]], *args: Any, label: str) -> Any:
        try:
            return await retry_with_backoff(
                func,
                *args,
                attempts=self._read_attempts,
                initial_delay=0.05,
                max_delay=0.5,
                retry_on=TRANSIENT_READ_ERRORS,
                label=label,
            )
        except RetryExhaustedError as e:
            raise TenantConnectionError(message="permission store unavailable") from e

    async def _fetch_template(self, template_id: str) -> RoleTemplate | None:
        return await self._read(self._templates.get, template_id, label="permissions.template")

    async def assigned_template_id(self, user_id: str) -> str | None:
        """
        The template driving this user's permissions, if any.

        With several active assignments the highest template priority wins;
        a tie at the top cannot be resolved and is reported as an error.
        """
        assignments = await self._read(
            self._assignments.active_for_user, user_id, label="permissions.assignments"
        )
        if not assignments:
            return None
        if len(assignments) == 1:
            return assignments[0].role_template_id

        ranked: list[tuple[int, str]] = []
        for assignment in assignments:
            template = await self._fetch_template(assignment.role_template_id)
            priority = template.priority if template is not None else 0
            ranked.append((priority, assignment.role_template_id))
        ranked.sort(key=lambda item: item[0], reverse=True)

        if ranked[0][0] == ranked[1][0]:
            log.error(
                "permissions.assignment_tie user_id=%s priority=%s templates=%s",
                user_id,
                ranked[0][0],
                [t for p, t in ranked if p == ranked[0][0]],
            )
            raise InvalidRoleAssignment("ambiguous role assignment", user_id=user_id)

        log.warning(
            "permissions.multiple_assignments user_id=%s chosen=%s count=%s",
            user_id,
            ranked[0][1],
            len(ranked),
        )
        return ranked[0][1]

    async def template_chain(self, user_id: str) -> list[RoleTemplate]:
        template_id = await self.assigned_template_id(user_id)
        if template_id is None:
            return []
        return await walk_template_chain(self._fetch_template, template_id, max_depth=self._max_depth)

    async def resolve_effective_permissions(
        self, user_id: str, store_id: str | None = None
    ) -> frozenset[EffectivePermission]:
        chain = await self.template_chain(user_id)
        grants = await self._read(self._grants.for_user, user_id, label="permissions.grants")

        merged = merge_permissions(template_permissions(chain), grants, now=self._clock())
        effective = scope_to_store(merged, store_id)
        log.debug(
            "permissions.resolved user_id=%s store_id=%s templates=%s grants=%s effective=%s",
            user_id,
            store_id,
            [t.name for t in chain],
            len(grants),
            len(effective),
        )
        return effective

    async def has_permission(
        self,
        user_id: str,
        resource: str,
        action: str,
        store_id: str | None = None,
        resource_id: str | None = None,
    ) -> bool:
        effective = await self.resolve_effective_permissions(user_id, store_id)
        return permits(effective, resource, action, resource_id)

    async def describe(self, user_id: str, store_id: str | None = None) -> dict[str, Any]:
        chain = await self.template_chain(user_id)
        effective = await self.resolve_effective_permissions(user_id, store_id)
        return {
            "user_id": user_id,
            "store_id": store_id,
            "role_templates": [t.name for t in chain],
            "permissions": group_permissions(effective),
        }
