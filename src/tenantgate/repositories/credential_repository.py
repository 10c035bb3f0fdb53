from __future__ import annotations

from motor.motor_asyncio import AsyncIOMotorDatabase

from tenantgate.configs.logging_config import get_logger
from tenantgate.domain.entities.tenant import TenantCredentials
from tenantgate.utils.time_utils import utc_now

log = get_logger(__name__)


class CredentialRepository:
    """`tenant_credentials` in the master database."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self._col = db["tenant_credentials"]

    async def ensure_indexes(self) -> None:
        await self._col.create_index([("tenant_id", 1)], unique=True)

    async def get(self, tenant_id: str) -> TenantCredentials | None:
        doc = await self._col.find_one({"tenant_id": tenant_id}, projection={"_id": 0})
        if not doc:
            log.info("repo.credentials.get not_found tenant_id=%s", tenant_id)
            return None
        return TenantCredentials(**doc)

    async def upsert(self, credentials: TenantCredentials) -> TenantCredentials:
        now = utc_now()
        doc = credentials.model_dump(exclude={"created_at", "updated_at"})
        doc["updated_at"] = now
        log.info(
            "repo.credentials.upsert tenant_id=%s db=%s status=%s",
            credentials.tenant_id,
            credentials.database_name,
            credentials.status,
        )
        await self._col.update_one(
            {"tenant_id": credentials.tenant_id},
            {"$set": doc, "$setOnInsert": {"created_at": now}},
            upsert=True,
        )
        return credentials.model_copy(update={"updated_at": now})

    async def set_status(self, tenant_id: str, status: str) -> bool:
        log.info("repo.credentials.set_status tenant_id=%s status=%s", tenant_id, status)
        res = await self._col.update_one(
            {"tenant_id": tenant_id},
            {"$set": {"status": status, "updated_at": utc_now()}},
        )
        return res.matched_count > 0
