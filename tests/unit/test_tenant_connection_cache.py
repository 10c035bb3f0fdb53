from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest
from pymongo.errors import ConnectionFailure

from tenantgate.auth.models import Principal
from tenantgate.domain.entities.tenant import TenantCredentials
from tenantgate.errors import TenantConnectionError, TenantNotFound
from tenantgate.tenancy.connection_cache import TenantConnectionCache
from tenantgate.tenancy.handle import TenantHandle
from tenantgate.tenancy.resolver import TenantResolver


def _creds(tenant_id: str, status: str = "active") -> TenantCredentials:
    return TenantCredentials(
        tenant_id=tenant_id,
        database_name=f"db_{tenant_id}",
        username=f"user_{tenant_id}",
        password="secret",
        status=status,
    )


class FakeMaster:
    def __init__(self, *tenants: TenantCredentials) -> None:
        self.records = {c.tenant_id: c for c in tenants}
        self.lookups = 0

    async def get(self, tenant_id: str) -> TenantCredentials | None:
        self.lookups += 1
        return self.records.get(tenant_id)


class FakeOpener:
    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls: list[str] = []
        self.failures: list[BaseException] = []
        self.gates: dict[str, asyncio.Event] = {}
        self.started = asyncio.Event()
        self.wrong_tenant: str | None = None

    async def __call__(self, credentials: TenantCredentials) -> TenantHandle:
        self.calls.append(credentials.tenant_id)
        self.started.set()
        gate = self.gates.get(credentials.tenant_id)
        if gate is not None:
            await gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)
        tenant_id = self.wrong_tenant or credentials.tenant_id
        return TenantHandle(tenant_id, credentials.database_name, MagicMock(), MagicMock())


def _cache(master: FakeMaster, opener: FakeOpener, attempts: int = 3) -> TenantConnectionCache:
    return TenantConnectionCache(master.get, opener, attempts=attempts, backoff_s=0, backoff_max_s=0)


@pytest.mark.asyncio
async def test_concurrent_requests_never_cross_tenants() -> None:
    tenants = ["t1", "t2", "t3"]
    opener = FakeOpener(delay=0.01)
    cache = _cache(FakeMaster(*[_creds(t) for t in tenants]), opener)

    requested = [t for t in tenants for _ in range(20)]
    handles = await asyncio.gather(*(cache.get(t) for t in requested))

    assert all(h.tenant_id == t for h, t in zip(handles, requested))
    assert sorted(opener.calls) == tenants


@pytest.mark.asyncio
async def test_concurrent_first_requests_open_once() -> None:
    opener = FakeOpener(delay=0.01)
    cache = _cache(FakeMaster(_creds("t1")), opener)

    handles = await asyncio.gather(*(cache.get("t1") for _ in range(50)))

    assert opener.calls == ["t1"]
    assert len({id(h) for h in handles}) == 1


@pytest.mark.asyncio
async def test_slow_tenant_does_not_block_other_tenants() -> None:
    opener = FakeOpener()
    opener.gates["slow"] = asyncio.Event()
    cache = _cache(FakeMaster(_creds("slow"), _creds("fast")), opener)

    slow = asyncio.create_task(cache.get("slow"))
    await opener.started.wait()

    fast = await asyncio.wait_for(cache.get("fast"), timeout=1)
    assert fast.tenant_id == "fast"
    assert not slow.done()

    opener.gates["slow"].set()
    assert (await slow).tenant_id == "slow"


@pytest.mark.asyncio
async def test_unknown_tenant_is_not_found_and_not_cached() -> None:
    cache = _cache(FakeMaster(_creds("t1")), FakeOpener())

    with pytest.raises(TenantNotFound) as exc:
        await cache.get("acme")

    assert exc.value.http_status == 403
    assert "acme" not in cache


@pytest.mark.asyncio
async def test_inactive_tenant_is_not_found() -> None:
    opener = FakeOpener()
    cache = _cache(FakeMaster(_creds("t1", status="inactive")), opener)

    with pytest.raises(TenantNotFound):
        await cache.get("t1")
    assert opener.calls == []


@pytest.mark.asyncio
async def test_transient_open_failure_is_retried() -> None:
    opener = FakeOpener()
    opener.failures = [ConnectionFailure("refused")]
    cache = _cache(FakeMaster(_creds("t1")), opener)

    handle = await cache.get("t1")

    assert handle.tenant_id == "t1"
    assert opener.calls == ["t1", "t1"]


@pytest.mark.asyncio
async def test_retry_is_bounded_and_leaves_no_entry() -> None:
    opener = FakeOpener()
    opener.failures = [ConnectionFailure("refused")] * 3
    cache = _cache(FakeMaster(_creds("t1")), opener, attempts=3)

    with pytest.raises(TenantConnectionError) as exc:
        await cache.get("t1")

    assert exc.value.http_status == 503
    assert len(opener.calls) == 3
    assert "t1" not in cache

    # the next request tries again from scratch
    assert (await cache.get("t1")).tenant_id == "t1"


@pytest.mark.asyncio
async def test_non_transient_failure_is_not_retried_and_reported_as_unavailable() -> None:
    opener = FakeOpener()
    opener.failures = [ValueError("bad uri")]
    cache = _cache(FakeMaster(_creds("t1")), opener)

    with pytest.raises(TenantConnectionError) as exc:
        await cache.get("t1")

    assert isinstance(exc.value.__cause__, ValueError)
    assert opener.calls == ["t1"]
    assert "t1" not in cache


@pytest.mark.asyncio
async def test_malformed_credentials_are_reported_as_unavailable() -> None:
    async def lookup(tenant_id: str) -> TenantCredentials:
        return TenantCredentials(tenant_id=tenant_id)

    opener = FakeOpener()
    cache = TenantConnectionCache(lookup, opener, attempts=3, backoff_s=0, backoff_max_s=0)

    with pytest.raises(TenantConnectionError):
        await cache.get("t1")
    assert opener.calls == []


@pytest.mark.asyncio
async def test_locks_are_dropped_once_idle() -> None:
    cache = _cache(FakeMaster(_creds("t1"), _creds("t2")), FakeOpener())

    await cache.get("t1")
    await cache.evict("t1")
    with pytest.raises(TenantNotFound):
        await cache.get("ghost")

    assert cache._locks == {}


@pytest.mark.asyncio
async def test_cancelled_open_leaves_no_entry_and_releases_lock() -> None:
    opener = FakeOpener()
    opener.gates["t1"] = asyncio.Event()
    cache = _cache(FakeMaster(_creds("t1")), opener)

    pending = asyncio.create_task(cache.get("t1"))
    await opener.started.wait()
    pending.cancel()
    with pytest.raises(asyncio.CancelledError):
        await pending

    assert "t1" not in cache
    opener.gates.clear()
    handle = await asyncio.wait_for(cache.get("t1"), timeout=1)
    assert handle.tenant_id == "t1"


@pytest.mark.asyncio
async def test_evict_closes_handle_and_next_get_reopens() -> None:
    opener = FakeOpener()
    cache = _cache(FakeMaster(_creds("t1")), opener)
    first = await cache.get("t1")

    assert await cache.evict("t1") is True
    first.client.close.assert_called_once()
    assert await cache.evict("t1") is False

    second = await cache.get("t1")
    assert second is not first
    assert opener.calls == ["t1", "t1"]


@pytest.mark.asyncio
async def test_close_all_closes_every_handle_and_refuses_new_gets() -> None:
    cache = _cache(FakeMaster(_creds("t1"), _creds("t2")), FakeOpener())
    h1 = await cache.get("t1")
    h2 = await cache.get("t2")

    await cache.close_all()

    h1.client.close.assert_called_once()
    h2.client.close.assert_called_once()
    assert len(cache) == 0
    with pytest.raises(TenantConnectionError):
        await cache.get("t1")


@pytest.mark.asyncio
async def test_resolver_rejects_empty_tenant() -> None:
    resolver = TenantResolver(_cache(FakeMaster(), FakeOpener()))
    with pytest.raises(TenantNotFound):
        await resolver.resolve("")


@pytest.mark.asyncio
async def test_resolver_refuses_handle_for_another_tenant() -> None:
    opener = FakeOpener()
    opener.wrong_tenant = "t2"
    cache = _cache(FakeMaster(_creds("t1")), opener)
    resolver = TenantResolver(cache)

    with pytest.raises(TenantConnectionError):
        await resolver.resolve("t1")
    assert "t1" not in cache

    opener.wrong_tenant = None
    assert (await resolver.resolve("t1")).tenant_id == "t1"


@pytest.mark.asyncio
async def test_resolve_for_principal_and_invalidate() -> None:
    cache = _cache(FakeMaster(_creds("t1")), FakeOpener())
    resolver = TenantResolver(cache)

    handle = await resolver.resolve_for(Principal(user_id="u1", tenant_id="t1"))

    assert handle.database_name == "db_t1"
    assert await resolver.invalidate("t1") is True
    assert "t1" not in cache
