import redis.asyncio as redis

from tenantgate.configs.settings import get_settings
from tenantgate.configs.logging_config import get_logger

log = get_logger(__name__)


class RedisClient:
    """
    Process-wide Redis connection; carries the authorization audit stream.
    """

    client: redis.Redis = None

    async def connect(self) -> None:
        settings = get_settings()
        try:
            log.info("redis.connect stream=%s", settings.redis_stream_audit)
            self.client = redis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_timeout=settings.redis_socket_timeout_s,
                socket_connect_timeout=settings.redis_socket_timeout_s,
            )
            await self.client.ping()
            log.info("redis.connected")
        except Exception as e:
            log.error("redis.connect_failed error=%s", e)
            raise

    async def close(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None


redis_client = RedisClient()
