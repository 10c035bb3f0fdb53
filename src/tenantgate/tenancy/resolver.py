from __future__ import annotations

from tenantgate.auth.models import Principal
from tenantgate.configs.logging_config import get_logger
from tenantgate.errors import TenantConnectionError, TenantNotFound
from tenantgate.tenancy.connection_cache import TenantConnectionCache
from tenantgate.tenancy.handle import TenantHandle

log = get_logger(__name__)


class TenantResolver:
    """The one entry point downstream code uses to reach a tenant's database."""

    def __init__(self, cache: TenantConnectionCache):
        self._cache = cache

    async def resolve(self, tenant_id: str) -> TenantHandle:
        if not tenant_id:
            raise TenantNotFound(tenant_id)

        handle = await self._cache.get(tenant_id)
        if handle.tenant_id != tenant_id:
            # never hand one tenant another tenant's database
            log.error(
                "tenant.resolve.isolation_violation requested=%s got=%s",
                tenant_id,
                handle.tenant_id,
            )
            await self._cache.evict(tenant_id)
            raise TenantConnectionError(tenant_id)
        return handle

    async def resolve_for(self, principal: Principal) -> TenantHandle:
        return await self.resolve(principal.tenant_id)

    async def invalidate(self, tenant_id: str) -> bool:
        return await self._cache.evict(tenant_id)
