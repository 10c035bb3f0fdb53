from __future__ import annotations

import time
from functools import partial

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tenantgate.configs.logging_config import get_logger, setup_logging
from tenantgate.configs.settings import Settings, get_settings
from tenantgate.errors import AppError
from tenantgate.repositories.credential_repository import CredentialRepository
from tenantgate.repositories.mongo import get_mongo_client, get_mongo_db
from tenantgate.repositories.redis_client import redis_client
from tenantgate.routers.health_router import router as health_router
from tenantgate.routers.permission_router import router as permission_router
from tenantgate.services.audit_service import build_audit_sink
from tenantgate.services.tenant_service import TenantService
from tenantgate.tenancy.connection_cache import TenantConnectionCache
from tenantgate.tenancy.handle import open_mongo_handle
from tenantgate.tenancy.resolver import TenantResolver
from tenantgate.utils.response import failure

log = get_logger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title="tenantgate", version="0.1.0")
    settings: Settings = get_settings()
    # .env may provide a comma-separated string
    raw_origins = settings.CORS_ORIGINS
    if isinstance(raw_origins, str):
        origins = [o.strip() for o in raw_origins.split(",") if o.strip()]
    elif isinstance(raw_origins, (list, tuple, set)):
        origins = list(raw_origins)
    else:
        origins = []
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        start = time.perf_counter()
        method = request.method
        path = request.url.path
        request_id = request.headers.get("x-request-id") or request.headers.get("x-correlation-id")

        log.info("request.start method=%s path=%s request_id=%s", method, path, request_id)
        status_code: int | str = "unknown"
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            elapsed_ms = int((time.perf_counter() - start) * 1000)
            log.info(
                "request.end method=%s path=%s status=%s request_id=%s elapsed_ms=%s",
                method,
                path,
                status_code,
                request_id,
                elapsed_ms,
            )
        return response

    app.include_router(health_router)
    app.include_router(permission_router)

    @app.exception_handler(AppError)
    async def app_error_handler(_: Request, exc: AppError) -> JSONResponse:
        if exc.http_status >= 500:
            log.error("request.error type=%s status=%s message=%s", type(exc).__name__, exc.http_status, exc.message)
        else:
            log.info("request.error type=%s status=%s message=%s", type(exc).__name__, exc.http_status, exc.message)
        return JSONResponse(status_code=exc.http_status, content=failure(exc.message))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(_: Request, exc: Exception) -> JSONResponse:
        log.exception("request.unhandled_error %s", str(exc))
        return JSONResponse(status_code=500, content=failure("internal server error"))

    @app.on_event("startup")
    async def startup() -> None:
        setup_logging()
        settings: Settings = get_settings()

        mongo_client = get_mongo_client(settings)
        mongo_db = get_mongo_db(mongo_client, settings)
        credentials = CredentialRepository(mongo_db)
        log.info("startup.ensure_indexes begin")
        await credentials.ensure_indexes()

        cache = TenantConnectionCache(
            credentials.get,
            partial(open_mongo_handle, settings=settings),
            attempts=settings.tenant_connect_attempts,
            backoff_s=settings.tenant_connect_backoff_s,
            backoff_max_s=settings.tenant_connect_backoff_max_s,
        )
        resolver = TenantResolver(cache)

        if settings.audit_sink == "redis":
            await redis_client.connect()

        app.state.settings = settings
        app.state.mongo_client = mongo_client
        app.state.mongo_db = mongo_db
        app.state.credential_repo = credentials
        app.state.tenant_cache = cache
        app.state.tenant_resolver = resolver
        app.state.tenant_service = TenantService(credentials, resolver)
        app.state.audit_sink = build_audit_sink(settings, redis_client.client)
        log.info("startup.done service=%s env=%s", settings.SERVICE_NAME, settings.ENVIRONMENT)

    @app.on_event("shutdown")
    async def shutdown() -> None:
        log.info("shutdown.begin")
        cache = getattr(app.state, "tenant_cache", None)
        if cache is not None:
            await cache.close_all()
        await redis_client.close()
        mongo_client = getattr(app.state, "mongo_client", None)
        if mongo_client is not None:
            mongo_client.close()
        log.info("shutdown.done")

    return app


app = create_app()
