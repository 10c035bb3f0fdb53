from __future__ import annotations

from fastapi import APIRouter, Request

from tenantgate.utils.response import success

router = APIRouter()


@router.get("/health")
async def health(request: Request) -> dict:
    cache = getattr(request.app.state, "tenant_cache", None)
    return success(
        {"ok": True, "open_tenants": len(cache) if cache is not None else 0},
        message="healthy",
    )
