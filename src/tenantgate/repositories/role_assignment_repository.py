from __future__ import annotations

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from tenantgate.configs.logging_config import get_logger
from tenantgate.domain.entities.permission import UserRoleAssignment
from tenantgate.errors import ConflictError
from tenantgate.repositories.mongo import oid_to_str
from tenantgate.utils.time_utils import utc_now

log = get_logger(__name__)


class RoleAssignmentRepository:
    def __init__(self, db: AsyncIOMotorDatabase):
        self._col = db["user_roles"]

    async def ensure_indexes(self) -> None:
        await self._col.create_index([("user_id", 1), ("is_active", 1)])
        # at most one active assignment per user
        await self._col.create_index(
            [("user_id", 1)],
            name="one_active_role_per_user",
            unique=True,
            partialFilterExpression={"is_active": True},
        )
        await self._col.create_index([("role_template_id", 1), ("is_active", 1)])

    async def active_for_user(self, user_id: str) -> list[UserRoleAssignment]:
        cursor = self._col.find({"user_id": user_id, "is_active": True})
        return [UserRoleAssignment(**oid_to_str(d)) for d in await cursor.to_list(length=None)]

    async def insert(self, assignment: UserRoleAssignment) -> UserRoleAssignment:
        log.info(
            "repo.user_role.insert user_id=%s template_id=%s",
            assignment.user_id,
            assignment.role_template_id,
        )
        res = await self._col.insert_one(assignment.model_dump(exclude={"id"}))
        return assignment.model_copy(update={"id": str(res.inserted_id)})

    async def deactivate_for_user(self, user_id: str) -> int:
        res = await self._col.update_many(
            {"user_id": user_id, "is_active": True},
            {"$set": {"is_active": False, "deactivated_at": utc_now()}},
        )
        log.info("repo.user_role.deactivate user_id=%s count=%s", user_id, res.modified_count)
        return res.modified_count

    async def count_active_for_template(self, template_id: str) -> int:
        return await self._col.count_documents({"role_template_id": template_id, "is_active": True})

    async def replace_for_user(self, assignment: UserRoleAssignment) -> tuple[UserRoleAssignment, int]:
        """Deactivate the user's active assignment and insert the new one."""
        replaced = await self.deactivate_for_user(assignment.user_id)
        try:
            saved = await self.insert(assignment)
        except DuplicateKeyError as e:
            log.warning("repo.user_role.concurrent_assign user_id=%s", assignment.user_id)
            raise ConflictError("role assignment changed concurrently") from e
        return saved, replaced
