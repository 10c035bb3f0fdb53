from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from tenantgate.configs.settings import Settings
from tenantgate.configs.logging_config import get_logger
from tenantgate.domain.entities.tenant import TenantCredentials
from tenantgate.repositories.mongo import get_tenant_mongo_client

log = get_logger(__name__)


@dataclass
class TenantHandle:
    """An open connection to exactly one tenant's database."""

    tenant_id: str
    database_name: str
    client: AsyncIOMotorClient | Any
    db: AsyncIOMotorDatabase | Any

    def close(self) -> None:
        log.info("tenant.handle.close tenant_id=%s", self.tenant_id)
        self.client.close()


async def open_mongo_handle(credentials: TenantCredentials, settings: Settings) -> TenantHandle:
    client = get_tenant_mongo_client(credentials, settings)
    db = client[credentials.database_name]
    opened = False
    try:
        # motor connects lazily; ping forces auth + server selection now
        await db.command("ping")
        opened = True
    finally:
        if not opened:
            client.close()
    log.info("tenant.handle.open tenant_id=%s db=%s", credentials.tenant_id, credentials.database_name)
    return TenantHandle(
        tenant_id=credentials.tenant_id,
        database_name=credentials.database_name,
        client=client,
        db=db,
    )
