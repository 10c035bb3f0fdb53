from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from tenantgate.auth.jwt import encode_token
from tenantgate.configs.settings import get_settings
from tenantgate.errors import TenantNotFound
from tenantgate.main import create_app
from tenantgate.permissions.resolver import PermissionResolver
from tenantgate.services.permission_admin_service import PermissionAdminService
from tenantgate.tenancy.handle import TenantHandle


def _auth(sub: str = "u1", tenant: str = "acme", **extra) -> dict[str, str]:
    token = encode_token({"sub": sub, "tenantId": tenant, **extra}, get_settings())
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(monkeypatch, templates, assignments, resolver, admin, audit_sink) -> TestClient:
    templates.add("clerk", "Clerk", [("inventory", "read"), ("order", "read", "store-1")])
    templates.add("owner", "Owner", [("user", "manage_permissions")], parent_id="clerk")
    assignments.assign("u1", "clerk")
    assignments.assign("boss", "owner")

    monkeypatch.setattr(PermissionResolver, "for_handle", classmethod(lambda cls, handle, settings: resolver))
    monkeypatch.setattr(PermissionAdminService, "for_handle", classmethod(lambda cls, handle, settings: admin))

    async def resolve_for(principal):
        if principal.tenant_id != "acme":
            raise TenantNotFound(principal.tenant_id)
        return TenantHandle("acme", "db_acme", MagicMock(), MagicMock())

    app = create_app()
    app.state.settings = get_settings()
    app.state.tenant_resolver = AsyncMock()
    app.state.tenant_resolver.resolve_for.side_effect = resolve_for
    app.state.audit_sink = audit_sink
    return TestClient(app)


def test_health(client) -> None:
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["data"]["ok"] is True


def test_missing_token_is_unauthorized(client) -> None:
    res = client.get("/permissions/me")
    assert res.status_code == 401
    assert res.json()["status"] == "failure"


def test_me_returns_grouped_permissions(client) -> None:
    res = client.get("/permissions/me", params={"store_id": "store-1"}, headers=_auth())

    assert res.status_code == 200
    data = res.json()["data"]
    assert data["role_templates"] == ["Clerk"]
    assert {p["resource"] for p in data["permissions"]} == {"inventory", "order"}


def test_me_outside_store_membership_is_forbidden(client) -> None:
    res = client.get("/permissions/me", params={"store_id": "store-2"}, headers=_auth(stores=["store-1"]))
    assert res.status_code == 403
    assert res.json()["message"] == "forbidden"


def test_unknown_tenant_is_forbidden_with_generic_message(client) -> None:
    res = client.get("/permissions/me", headers=_auth(tenant="globex"))
    assert res.status_code == 403
    assert res.json()["message"] == "tenant unavailable"


def test_check_reports_allowed_and_denied(client, audit_sink) -> None:
    allowed = client.post(
        "/permissions/check", json={"resource": "order", "action": "read", "store_id": "store-1"}, headers=_auth()
    )
    denied = client.post(
        "/permissions/check", json={"resource": "order", "action": "read", "store_id": "store-2"}, headers=_auth()
    )

    assert allowed.json()["data"] == {"allowed": True}
    assert denied.json()["data"] == {"allowed": False}
    assert [r.outcome for r in audit_sink.records] == ["allow", "deny"]


def test_admin_route_requires_manage_permissions(client) -> None:
    body = {"user_id": "u2", "resource": "report", "actions": ["export"]}

    denied = client.post("/permissions/grants", json=body, headers=_auth("u1"))
    granted = client.post("/permissions/grants", json=body, headers=_auth("boss"))

    assert denied.status_code == 403
    assert denied.json()["message"] == "forbidden"
    assert granted.status_code == 200
    assert granted.json()["data"]["granted"] is True


def test_admin_validation_error_is_bad_request(client) -> None:
    res = client.post(
        "/permissions/grants",
        json={"user_id": "u2", "resource": "dashboard", "actions": ["delete"]},
        headers=_auth("boss"),
    )
    assert res.status_code == 400


def test_bulk_grant_reports_skips(client) -> None:
    res = client.post(
        "/permissions/grants/bulk",
        json={
            "user_ids": ["u2", "ghost"],
            "store_ids": ["store-1"],
            "permissions": [{"resource": "order", "actions": ["read"]}],
        },
        headers=_auth("boss"),
    )

    assert res.status_code == 200
    assert res.json()["data"] == {"applied": 1, "skipped_users": ["ghost"], "skipped_stores": []}
