from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional

from pymongo.errors import PyMongoError

from tenantgate.configs.logging_config import get_logger
from tenantgate.domain.entities.tenant import TenantCredentials
from tenantgate.errors import TenantConnectionError, TenantNotFound
from tenantgate.tenancy.handle import TenantHandle
from tenantgate.tenancy.retry import RetryExhaustedError, retry_with_backoff

log = get_logger(__name__)

CredentialLookup = Callable[[str], Awaitable[Optional[TenantCredentials]]]
HandleOpener = Callable[[TenantCredentials], Awaitable[TenantHandle]]

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (PyMongoError, OSError)


class TenantConnectionCache:
    """
    tenant_id -> open TenantHandle, populated lazily.

    Every insert and evict for a tenant runs under that tenant's own
    asyncio.Lock, so concurrent first requests for one tenant open a single
    connection while other tenants proceed without waiting. Nothing is
    inserted unless the open succeeded; a failed or cancelled open leaves the
    key empty and its lock released. A lock lives only while some task holds
    or waits on it.
    """

    def __init__(
        self,
        lookup: CredentialLookup,
        opener: HandleOpener,
        *,
        attempts: int = 3,
        backoff_s: float = 0.2,
        backoff_max_s: float = 2.0,
        retry_on: tuple[type[BaseException], ...] = TRANSIENT_ERRORS,
    ):
        self._lookup = lookup
        self._opener = opener
        self._attempts = attempts
        self._backoff_s = backoff_s
        self._backoff_max_s = backoff_max_s
        self._retry_on = retry_on
        self._handles: dict[str, TenantHandle] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._closed = False

    def __contains__(self, tenant_id: str) -> bool:
        return tenant_id in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    @asynccontextmanager
    async def _locked(self, tenant_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(tenant_id, asyncio.Lock())
        self._lock_users[tenant_id] = self._lock_users.get(tenant_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            users = self._lock_users[tenant_id] - 1
            if users:
                self._lock_users[tenant_id] = users
            else:
                del self._lock_users[tenant_id]
                del self._locks[tenant_id]

    async def get(self, tenant_id: str) -> TenantHandle:
        if self._closed:
            raise TenantConnectionError(tenant_id, "connection cache closed")

        handle = self._handles.get(tenant_id)
        if handle is not None:
            return handle

        async with self._locked(tenant_id):
            # double-check inside lock
            handle = self._handles.get(tenant_id)
            if handle is not None:
                log.debug("tenant.cache.hit_after_wait tenant_id=%s", tenant_id)
                return handle

            credentials = await self._load_credentials(tenant_id)
            handle = await self._open(credentials)
            if self._closed:
                handle.close()
                raise TenantConnectionError(tenant_id, "connection cache closed")
            self._handles[tenant_id] = handle
            log.info("tenant.cache.insert tenant_id=%s size=%s", tenant_id, len(self._handles))
            return handle

    async def _load_credentials(self, tenant_id: str) -> TenantCredentials:
        try:
            credentials = await retry_with_backoff(
                self._lookup,
                tenant_id,
                attempts=self._attempts,
                initial_delay=self._backoff_s,
                max_delay=self._backoff_max_s,
                retry_on=self._retry_on,
                label="tenant.credentials",
            )
        except RetryExhaustedError as e:
            raise TenantConnectionError(tenant_id) from e
        except Exception as e:
            # malformed record or lookup bug; not retried
            log.error(
                "tenant.cache.lookup_failed tenant_id=%s error=%s: %s",
                tenant_id,
                type(e).__name__,
                e,
                exc_info=True,
            )
            raise TenantConnectionError(tenant_id) from e

        if credentials is None:
            log.warning("tenant.cache.unknown_tenant tenant_id=%s", tenant_id)
            raise TenantNotFound(tenant_id)
        if not credentials.is_active:
            log.warning("tenant.cache.inactive_tenant tenant_id=%s", tenant_id)
            raise TenantNotFound(tenant_id)
        return credentials

    async def _open(self, credentials: TenantCredentials) -> TenantHandle:
        try:
            return await retry_with_backoff(
                self._opener,
                credentials,
                attempts=self._attempts,
                initial_delay=self._backoff_s,
                max_delay=self._backoff_max_s,
                retry_on=self._retry_on,
                label="tenant.open",
            )
        except RetryExhaustedError as e:
            log.error("tenant.cache.open_failed tenant_id=%s", credentials.tenant_id)
            raise TenantConnectionError(credentials.tenant_id) from e
        except Exception as e:
            log.error(
                "tenant.cache.open_failed tenant_id=%s error=%s: %s",
                credentials.tenant_id,
                type(e).__name__,
                e,
                exc_info=True,
            )
            raise TenantConnectionError(credentials.tenant_id) from e

    async def evict(self, tenant_id: str) -> bool:
        """Close and drop one tenant's handle. Waits for an in-flight open of that tenant."""
        async with self._locked(tenant_id):
            handle = self._handles.pop(tenant_id, None)
        if handle is None:
            return False
        handle.close()
        log.info("tenant.cache.evict tenant_id=%s size=%s", tenant_id, len(self._handles))
        return True

    async def close_all(self) -> None:
        self._closed = True
        for tenant_id in list(self._handles):
            await self.evict(tenant_id)
        log.info("tenant.cache.closed")
