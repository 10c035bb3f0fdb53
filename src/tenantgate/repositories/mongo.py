from __future__ import annotations

from typing import Any

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from tenantgate.configs.settings import Settings
from tenantgate.configs.logging_config import get_logger
from tenantgate.domain.entities.tenant import TenantCredentials

log = get_logger(__name__)


def get_mongo_client(settings: Settings) -> AsyncIOMotorClient:
    log.info("mongo.client.create master")
    return AsyncIOMotorClient(settings.mongo_uri)


def get_mongo_db(client: AsyncIOMotorClient, settings: Settings) -> AsyncIOMotorDatabase:
    log.info("mongo.db.select db=%s", settings.mongo_db)
    return client[settings.mongo_db]


def get_tenant_mongo_client(credentials: TenantCredentials, settings: Settings) -> AsyncIOMotorClient:
    """Client bound to one tenant's credentials. No I/O happens until first use."""
    host = credentials.host or settings.tenant_mongo_host
    log.info(
        "mongo.client.create tenant_id=%s host=%s db=%s",
        credentials.tenant_id,
        host,
        credentials.database_name,
    )
    return AsyncIOMotorClient(
        f"mongodb://{host}",
        username=credentials.username,
        password=credentials.password,
        authSource=credentials.database_name,
        serverSelectionTimeoutMS=settings.tenant_connect_timeout_ms,
        connectTimeoutMS=settings.tenant_connect_timeout_ms,
    )


def as_object_id(value: str) -> Any:
    return ObjectId(value) if ObjectId.is_valid(value) else value


def oid_to_str(doc: dict[str, Any]) -> dict[str, Any]:
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    return doc
