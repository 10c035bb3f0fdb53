from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from pymongo.errors import AutoReconnect

from tenantgate.errors import InvalidRoleAssignment, InvalidRoleTemplate, TenantConnectionError
from tenantgate.permissions.resolver import PermissionResolver
from tenantgate.permissions.templates import walk_template_chain


@pytest.mark.asyncio
async def test_basic_employee_reads_but_cannot_delete(templates, assignments, resolver) -> None:
    templates.add("basic", "Basic Employee", [("inventory", "read"), ("product", "read")])
    assignments.assign("u1", "basic")

    assert await resolver.has_permission("u1", "inventory", "read", store_id="store-1")
    assert not await resolver.has_permission("u1", "inventory", "delete", store_id="store-1")


@pytest.mark.asyncio
async def test_three_level_chain_with_child_override(templates, assignments, resolver) -> None:
    templates.add("C", "Viewer", [("store", "read")])
    templates.add("B", "Clerk", [("inventory", "update", "store-1")], parent_id="C")
    templates.add("A", "Lead", [("inventory", "update")], parent_id="B")
    assignments.assign("u1", "A")

    effective = await resolver.resolve_effective_permissions("u1")
    keys = {(p.resource, p.action, p.store_id) for p in effective}

    assert ("store", "read", None) in keys
    assert ("inventory", "update", None) in keys
    # ancestor's store-scoped entry has a different key and is kept
    assert ("inventory", "update", "store-1") in keys
    assert await resolver.has_permission("u1", "inventory", "update", store_id="store-2")


@pytest.mark.asyncio
async def test_user_without_assignment_has_only_explicit_grants(grants, resolver, make_grant) -> None:
    await grants.upsert(make_grant("u2", "report", ["export"]))

    effective = await resolver.resolve_effective_permissions("u2")

    assert {(p.resource, p.action) for p in effective} == {("report", "export")}


@pytest.mark.asyncio
async def test_revoked_template_permission_is_denied(templates, assignments, grants, resolver, make_grant) -> None:
    templates.add("mgr", "Manager", [("order", "*")])
    assignments.assign("u1", "mgr")
    await grants.upsert(make_grant("u1", "order", ["delete"], granted=False))

    assert await resolver.has_permission("u1", "order", "update")
    assert not await resolver.has_permission("u1", "order", "delete")


@pytest.mark.asyncio
async def test_expired_grant_contributes_nothing(grants, resolver, make_grant, now) -> None:
    await grants.upsert(make_grant("u1", "report", ["export"], expires_at=now - timedelta(minutes=1)))
    assert await resolver.resolve_effective_permissions("u1") == frozenset()


@pytest.mark.asyncio
async def test_store_scoped_grant_applies_only_in_that_store(grants, resolver, make_grant) -> None:
    await grants.upsert(make_grant("u1", "inventory", ["adjust_stock"], store_id="store-1"))

    assert await resolver.has_permission("u1", "inventory", "adjust_stock", store_id="store-1")
    assert not await resolver.has_permission("u1", "inventory", "adjust_stock", store_id="store-2")
    # no store requested means no scope filter
    assert await resolver.has_permission("u1", "inventory", "adjust_stock")


@pytest.mark.asyncio
async def test_cycle_is_reported_not_truncated(templates, assignments, resolver) -> None:
    templates.add("X", "X", [("store", "read")], parent_id="Y")
    templates.add("Y", "Y", [("order", "read")], parent_id="X")
    assignments.assign("u1", "X")

    with pytest.raises(InvalidRoleTemplate) as exc:
        await resolver.resolve_effective_permissions("u1")
    assert "cycle" in exc.value.message


@pytest.mark.asyncio
async def test_missing_parent_is_reported(templates, assignments, resolver) -> None:
    templates.add("A", "A", [("store", "read")], parent_id="gone")
    assignments.assign("u1", "A")

    with pytest.raises(InvalidRoleTemplate):
        await resolver.resolve_effective_permissions("u1")


@pytest.mark.asyncio
async def test_chain_longer_than_max_depth_is_rejected(templates) -> None:
    for i in range(5):
        templates.add(f"t{i}", f"T{i}", [], parent_id=f"t{i + 1}" if i < 4 else None)

    chain = await walk_template_chain(templates.get, "t0", max_depth=5)
    assert [t.id for t in chain] == ["t0", "t1", "t2", "t3", "t4"]

    with pytest.raises(InvalidRoleTemplate):
        await walk_template_chain(templates.get, "t0", max_depth=4)


@pytest.mark.asyncio
async def test_highest_priority_assignment_wins(templates, assignments, resolver) -> None:
    templates.add("low", "Low", [("store", "read")], priority=10)
    templates.add("high", "High", [("order", "read")], priority=50)
    assignments.assign("u1", "low")
    assignments.assign("u1", "high")

    assert await resolver.assigned_template_id("u1") == "high"


@pytest.mark.asyncio
async def test_equal_priority_assignments_are_ambiguous(templates, assignments, resolver) -> None:
    templates.add("a", "A", [("store", "read")], priority=10)
    templates.add("b", "B", [("order", "read")], priority=10)
    assignments.assign("u1", "a")
    assignments.assign("u1", "b")

    with pytest.raises(InvalidRoleAssignment):
        await resolver.resolve_effective_permissions("u1")


@pytest.mark.asyncio
async def test_transient_read_failure_is_retried(templates, assignments, grants) -> None:
    flaky = AsyncMock(side_effect=[AutoReconnect("blip"), []])
    grants.for_user = flaky
    resolver = PermissionResolver(templates, assignments, grants, read_attempts=2)

    assert await resolver.resolve_effective_permissions("u1") == frozenset()
    assert flaky.await_count == 2


@pytest.mark.asyncio
async def test_persistent_read_failure_becomes_connection_error(templates, assignments, grants) -> None:
    grants.for_user = AsyncMock(side_effect=AutoReconnect("down"))
    resolver = PermissionResolver(templates, assignments, grants, read_attempts=2)

    with pytest.raises(TenantConnectionError):
        await resolver.resolve_effective_permissions("u1")


@pytest.mark.asyncio
async def test_describe_groups_permissions_and_names_chain(templates, assignments, resolver) -> None:
    templates.add("base", "Read Only User", [("order", "read")])
    templates.add("sales", "Sales Person", [("order", "create")], parent_id="base")
    assignments.assign("u1", "sales")

    data = await resolver.describe("u1")

    assert data["role_templates"] == ["Sales Person", "Read Only User"]
    assert data["permissions"] == [
        {"resource": "order", "store_id": None, "resource_id": None, "actions": ["create", "read"]}
    ]
