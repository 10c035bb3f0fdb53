from __future__ import annotations

from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase

from tenantgate.configs.logging_config import get_logger
from tenantgate.domain.entities.permission import RoleTemplate
from tenantgate.repositories.mongo import as_object_id, oid_to_str
from tenantgate.utils.time_utils import utc_now

log = get_logger(__name__)


class RoleTemplateRepository:
    def __init__(self, db: AsyncIOMotorDatabase):
        self._col = db["role_templates"]

    async def ensure_indexes(self) -> None:
        await self._col.create_index([("name", 1)], unique=True)
        await self._col.create_index([("is_active", 1), ("priority", -1)])

    async def get(self, template_id: str) -> RoleTemplate | None:
        doc = await self._col.find_one({"_id": as_object_id(template_id)})
        return RoleTemplate(**oid_to_str(doc)) if doc else None

    async def get_by_name(self, name: str) -> RoleTemplate | None:
        doc = await self._col.find_one({"name": name})
        return RoleTemplate(**oid_to_str(doc)) if doc else None

    async def list_active(self) -> list[RoleTemplate]:
        cursor = self._col.find({"is_active": True}).sort([("priority", -1), ("name", 1)])
        return [RoleTemplate(**oid_to_str(d)) for d in await cursor.to_list(length=None)]

    async def insert(self, template: RoleTemplate) -> RoleTemplate:
        now = utc_now()
        doc = template.model_dump(exclude={"id"})
        doc["created_at"] = now
        doc["updated_at"] = now
        log.info("repo.role_template.insert name=%s parent_id=%s", template.name, template.parent_id)
        res = await self._col.insert_one(doc)
        return template.model_copy(update={"id": str(res.inserted_id), "created_at": now, "updated_at": now})

    async def update(self, template_id: str, updates: dict[str, Any]) -> RoleTemplate | None:
        log.info("repo.role_template.update id=%s keys=%s", template_id, sorted(updates.keys()))
        doc = await self._col.find_one_and_update(
            {"_id": as_object_id(template_id)},
            {"$set": {**updates, "updated_at": utc_now()}},
            return_document=True,
        )
        return RoleTemplate(**oid_to_str(doc)) if doc else None
