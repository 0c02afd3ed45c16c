# app/services/redis_client.py
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class RedisClientError(Exception):
    """Raised when a store operation cannot be completed."""

    def __init__(self, message: str, operation: str = "unknown"):
        super().__init__(message)
        self.operation = operation


class FastRedisClient:
    """Pooled Redis client backing the list, registry and complaint stores."""

    def __init__(self):
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        try:
            logger.info("Attempting Redis connection", url_preview=settings.REDIS_URL[:24] + "...")

            self.pool = ConnectionPool.from_url(
                settings.REDIS_URL,
                max_connections=settings.REDIS_MAX_CONNECTIONS,
                retry_on_timeout=True,
                socket_connect_timeout=10,
                socket_timeout=10,
                health_check_interval=30,
                decode_responses=True,
            )

            self.client = redis.Redis(connection_pool=self.pool)

            # Test connection
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
        """Ensure Redis is initialized, fallback if not"""
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()
            if not self._initialized:
                raise ConnectionError("Redis client not available")

    async def ping(self) -> bool:
        """Test Redis connection"""
        try:
            await self._ensure_initialized()
            result = await self.client.ping()
            return bool(result)
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    # Store operations raise instead of returning a fallback value: a
    # silent False would be reported to the user as "already done".

    async def set_if_absent(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        """SET NX; True if the key was created by this call."""
        try:
            await self._ensure_initialized()
            result = await self.client.set(key, value, nx=True, ex=ttl_s)
            return bool(result)
        except Exception as e:
            logger.error("Redis SET NX failed", key=key[:40], error=str(e))
            raise RedisClientError(f"SET NX failed: {e}", operation="set_if_absent") from e

    async def delete(self, key: str) -> bool:
        try:
            await self._ensure_initialized()
            result = await self.client.delete(key)
            return result > 0
        except Exception as e:
            logger.error("Redis DELETE failed", key=key[:40], error=str(e))
            raise RedisClientError(f"DELETE failed: {e}", operation="delete") from e

    async def exists(self, key: str) -> bool:
        try:
            await self._ensure_initialized()
            result = await self.client.exists(key)
            return result > 0
        except Exception as e:
            logger.error("Redis EXISTS failed", key=key[:40], error=str(e))
            raise RedisClientError(f"EXISTS failed: {e}", operation="exists") from e

    async def sadd(self, key: str, member: str) -> bool:
        """Add member to a set; True if it was not present."""
        try:
            await self._ensure_initialized()
            result = await self.client.sadd(key, member)
            return result > 0
        except Exception as e:
            logger.error("Redis SADD failed", key=key[:40], error=str(e))
            raise RedisClientError(f"SADD failed: {e}", operation="sadd") from e

    async def srem(self, key: str, member: str) -> bool:
        try:
            await self._ensure_initialized()
            result = await self.client.srem(key, member)
            return result > 0
        except Exception as e:
            logger.error("Redis SREM failed", key=key[:40], error=str(e))
            raise RedisClientError(f"SREM failed: {e}", operation="srem") from e

    async def sismember(self, key: str, member: str) -> bool:
        try:
            await self._ensure_initialized()
            result = await self.client.sismember(key, member)
            return bool(result)
        except Exception as e:
            logger.error("Redis SISMEMBER failed", key=key[:40], error=str(e))
            raise RedisClientError(f"SISMEMBER failed: {e}", operation="sismember") from e


# Global instance
fast_redis = FastRedisClient()
