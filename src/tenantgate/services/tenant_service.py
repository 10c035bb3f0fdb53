from __future__ import annotations

from tenantgate.configs.logging_config import get_logger
from tenantgate.domain.entities.tenant import TENANT_ACTIVE, TENANT_INACTIVE, TenantCredentials
from tenantgate.errors import NotFoundError, ValidationError
from tenantgate.repositories.credential_repository import CredentialRepository
from tenantgate.tenancy.resolver import TenantResolver

log = get_logger(__name__)


class TenantService:
    """
    Provisioning-side writes to the master credential store.

    Any change that makes a cached handle stale evicts it, so the next request
    for that tenant reopens with the current record.
    """

    def __init__(self, credentials: CredentialRepository, resolver: TenantResolver):
        self._credentials = credentials
        self._resolver = resolver

    async def register_tenant(self, credentials: TenantCredentials) -> TenantCredentials:
        if await self._credentials.get(credentials.tenant_id) is not None:
            raise ValidationError(f"tenant already registered: {credentials.tenant_id}")
        saved = await self._credentials.upsert(credentials)
        log.info("tenant.registered tenant_id=%s db=%s", saved.tenant_id, saved.database_name)
        return saved

    async def rotate_credentials(
        self, tenant_id: str, *, username: str, password: str
    ) -> TenantCredentials:
        current = await self._credentials.get(tenant_id)
        if current is None:
            raise NotFoundError("tenant not found")
        saved = await self._credentials.upsert(
            current.model_copy(update={"username": username, "password": password})
        )
        evicted = await self._resolver.invalidate(tenant_id)
        log.info("tenant.credentials_rotated tenant_id=%s evicted=%s", tenant_id, evicted)
        return saved

    async def deactivate_tenant(self, tenant_id: str) -> None:
        if not await self._credentials.set_status(tenant_id, TENANT_INACTIVE):
            raise NotFoundError("tenant not found")
        evicted = await self._resolver.invalidate(tenant_id)
        log.info("tenant.deactivated tenant_id=%s evicted=%s", tenant_id, evicted)

    async def activate_tenant(self, tenant_id: str) -> None:
        if not await self._credentials.set_status(tenant_id, TENANT_ACTIVE):
            raise NotFoundError("tenant not found")
        log.info("tenant.activated tenant_id=%s", tenant_id)
