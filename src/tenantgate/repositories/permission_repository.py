from __future__ import annotations

from motor.motor_asyncio import AsyncIOMotorDatabase

from tenantgate.configs.logging_config import get_logger
from tenantgate.domain.entities.permission import PermissionGrant
from tenantgate.repositories.mongo import oid_to_str

log = get_logger(__name__)


def _key_filter(user_id: str, store_id: str | None, resource: str, resource_id: str | None) -> dict:
    return {"user_id": user_id, "store_id": store_id, "resource": resource, "resource_id": resource_id}


class PermissionGrantRepository:
    """Explicit grants, one document per (user, store, resource, resource_id)."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self._col = db["permissions"]

    async def ensure_indexes(self) -> None:
        await self._col.create_index(
            [("user_id", 1), ("store_id", 1), ("resource", 1), ("resource_id", 1)],
            unique=True,
            name="uq_user_store_resource",
        )

    async def for_user(self, user_id: str) -> list[PermissionGrant]:
        cursor = self._col.find({"user_id": user_id})
        return [PermissionGrant(**oid_to_str(d)) for d in await cursor.to_list(length=None)]

    async def upsert(self, grant: PermissionGrant) -> PermissionGrant:
        # replace, not merge: the later grant supersedes the earlier one
        log.info(
            "repo.permission.upsert user_id=%s resource=%s store_id=%s granted=%s actions=%s",
            grant.user_id,
            grant.resource,
            grant.store_id,
            grant.granted,
            grant.actions,
        )
        doc = await self._col.find_one_and_replace(
            _key_filter(*grant.key()),
            grant.model_dump(exclude={"id"}),
            upsert=True,
            return_document=True,
        )
        return PermissionGrant(**oid_to_str(doc))

    async def delete(
        self, user_id: str, resource: str, store_id: str | None = None, resource_id: str | None = None
    ) -> bool:
        res = await self._col.delete_one(_key_filter(user_id, store_id, resource, resource_id))
        log.info(
            "repo.permission.delete user_id=%s resource=%s store_id=%s deleted=%s",
            user_id,
            resource,
            store_id,
            res.deleted_count,
        )
        return res.deleted_count > 0
