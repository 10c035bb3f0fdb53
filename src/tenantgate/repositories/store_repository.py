from __future__ import annotations

from motor.motor_asyncio import AsyncIOMotorDatabase

from tenantgate.configs.logging_config import get_logger
from tenantgate.repositories.mongo import as_object_id
from tenantgate.utils.time_utils import utc_now

log = get_logger(__name__)


class StoreRepository:
    """Store and user lookups needed to validate administrative writes."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self._stores = db["stores"]
        self._users = db["users"]
        self._memberships = db["user_store_map"]

    async def existing_store_ids(self, store_ids: list[str]) -> set[str]:
        if not store_ids:
            return set()
        cursor = self._stores.find(
            {"_id": {"$in": [as_object_id(s) for s in store_ids]}}, projection={"_id": 1}
        )
        return {str(d["_id"]) for d in await cursor.to_list(length=None)}

    async def existing_user_ids(self, user_ids: list[str]) -> set[str]:
        if not user_ids:
            return set()
        cursor = self._users.find(
            {"_id": {"$in": [as_object_id(u) for u in user_ids]}}, projection={"_id": 1}
        )
        return {str(d["_id"]) for d in await cursor.to_list(length=None)}

    async def add_user_to_store(self, user_id: str, store_id: str) -> None:
        log.info("repo.store.add_member user_id=%s store_id=%s", user_id, store_id)
        await self._memberships.update_one(
            {"user_id": user_id, "store_id": store_id},
            {"$setOnInsert": {"created_at": utc_now()}},
            upsert=True,
        )
