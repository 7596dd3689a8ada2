# listening_history/infrastructure/redis_client.py
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from listening_history.config import settings
from listening_history.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class RedisUnavailableError(Exception):
    """Raised by strict reads when Redis cannot be reached."""


class FastRedisClient:
    """Pooled async Redis client used for the pending-work queue"""

    def __init__(self, url: str | None = None):
        self.pool = None
        self.client = None
        self._url = url
        self._initialized = False

    async def initialize(self):
        """Initialize connection pool"""
        if self._initialized:
            return

        redis_url = self._url or settings.REDIS_URL
        if not redis_url:
            raise RuntimeError("REDIS_URL is not configured")

        try:
            logger.info("Attempting Redis connection", url_preview=redis_url[:30] + "...")

            self.pool = ConnectionPool.from_url(
                redis_url,
                max_connections=settings.REDIS_MAX_CONNECTIONS,
                retry_on_timeout=True,
                socket_connect_timeout=10,
                socket_timeout=10,
                health_check_interval=30,
                decode_responses=True,
            )

            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info(
                "Fast Redis client initialized successfully",
                max_connections=settings.REDIS_MAX_CONNECTIONS,
            )

        except Exception as e:
            logger.error("Failed to initialize fast Redis client", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    async def close(self):
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            self._initialized = False
            logger.info("Fast Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    async def _ensure_initialized(self):
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()

    async def get(self, key: str, *, strict: bool = False) -> str | None:
        """
        Get value, None when missing.

        An unreachable server also reads as None unless strict is set, in
        which case RedisUnavailableError is raised.
        """
        try:
            await self._ensure_initialized()
            result = await self.client.get(key)
            return result if result else None
        except Exception as e:
            logger.error("Redis GET failed", key=key[:30], error=str(e))
            if strict:
                raise RedisUnavailableError(f"Redis GET failed: {e}") from e
            return None

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        """Set value with optional TTL"""
        try:
            await self._ensure_initialized()

            if ttl_s:
                result = await self.client.setex(key, ttl_s, value)
            else:
                result = await self.client.set(key, value)
            return bool(result)
        except Exception as e:
            logger.error("Redis SET failed", key=key[:30], error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        """Delete key"""
        try:
            await self._ensure_initialized()
            return bool(await self.client.delete(key))
        except Exception as e:
            logger.error("Redis DELETE failed", key=key[:30], error=str(e))
            return False


# Global instance
redis_client = FastRedisClient()
