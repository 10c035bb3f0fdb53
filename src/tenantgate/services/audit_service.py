from __future__ import annotations

from abc import ABC, abstractmethod

import redis.asyncio as redis

from tenantgate.configs.settings import Settings
from tenantgate.configs.logging_config import get_logger
from tenantgate.domain.entities.permission import AuditRecord

log = get_logger(__name__)

AUDIT_STREAM_MAXLEN = 100_000


class AuditSink(ABC):
    """Destination for authorization decisions."""

    @abstractmethod
    async def emit(self, record: AuditRecord) -> None:
        pass


class LoggingAuditSink(AuditSink):
    def __init__(self, logger_name: str = "tenantgate.audit"):
        self._log = get_logger(logger_name)

    async def emit(self, record: AuditRecord) -> None:
        self._log.info(
            "authz.audit tenant_id=%s user_id=%s store_id=%s resource=%s action=%s outcome=%s reason=%s",
            record.tenant_id,
            record.user_id,
            record.store_id,
            record.resource,
            record.action,
            record.outcome,
            record.reason,
        )


class RedisStreamAuditSink(AuditSink):
    """Appends each decision to a capped Redis stream for operators."""

    def __init__(self, client: redis.Redis, stream: str, *, maxlen: int = AUDIT_STREAM_MAXLEN):
        self._client = client
        self._stream = stream
        self._maxlen = maxlen

    async def emit(self, record: AuditRecord) -> None:
        fields = {
            k: ("" if v is None else str(v))
            for k, v in record.model_dump(mode="json").items()
        }
        await self._client.xadd(self._stream, fields, maxlen=self._maxlen, approximate=True)


def build_audit_sink(settings: Settings, client: redis.Redis | None) -> AuditSink:
    if settings.audit_sink == "redis":
        if client is None:
            raise RuntimeError("audit_sink=redis requires a connected redis client")
        log.info("audit.sink redis stream=%s", settings.redis_stream_audit)
        return RedisStreamAuditSink(client, settings.redis_stream_audit)
    log.info("audit.sink log")
    return LoggingAuditSink()
