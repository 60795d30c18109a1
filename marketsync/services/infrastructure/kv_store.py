# marketsync/services/infrastructure/kv_store.py
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from marketsync.config import Settings, settings
from marketsync.exceptions import StoreError
from marketsync.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class InMemoryKeyValueStore:
    """
    Process-local string store.

    Used when persistence is disabled and in tests. An optional byte quota
    mimics browser storage limits: writes beyond it raise StoreError.
    """

    def __init__(self, quota_bytes: int | None = None, enabled: bool = True):
        self.data: dict[str, str] = {}
        self.quota_bytes = quota_bytes
        self.enabled = enabled

    def _check_enabled(self, operation: str, key: str):
        if not self.enabled:
            raise StoreError(f"Storage disabled ({operation} {key})")

    def _used_bytes(self, exclude_key: str | None = None) -> int:
        return sum(
            len(k.encode()) + len(v.encode()) for k, v in self.data.items() if k != exclude_key
        )

    async def get(self, key: str) -> str | None:
        self._check_enabled("get", key)
        return self.data.get(key)

    async def set(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        self._check_enabled("set", key)
        if self.quota_bytes is not None:
            needed = self._used_bytes(exclude_key=key) + len(key.encode()) + len(value.encode())
            if needed > self.quota_bytes:
                raise StoreError(f"Quota exceeded writing {key}")
        self.data[key] = value
        return True

    async def delete(self, key: str) -> bool:
        self._check_enabled("delete", key)
        return self.data.pop(key, None) is not None

    async def ping(self) -> bool:
        return self.enabled

    async def close(self):
        return None


class RedisKeyValueStore:
    """Redis-backed string store with connection pooling and lazy initialization."""

    def __init__(self, url: str, max_connections: int = 10):
        self.url = url
        self.max_connections = max_connections
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """Initialize connection pool"""
        if self._initialized:
            return

        try:
            logger.info("Attempting Redis connection", url_preview=self.url[:30] + "...")

            self.pool = ConnectionPool.from_url(
                self.url,
                max_connections=self.max_connections,
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
            logger.info("Redis store initialized", max_connections=self.max_connections)

        except Exception as e:
            logger.error("Failed to initialize Redis store", error=str(e))
            self._initialized = False
            raise StoreError("Redis initialization failed") from e

    async def close(self):
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            self._initialized = False
            logger.info("Redis store closed")
        except Exception as e:
            logger.error("Error closing Redis store", error=str(e))

    async def _ensure_initialized(self):
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()

    async def ping(self) -> bool:
        """Test Redis connection"""
        try:
            await self._ensure_initialized()
            return bool(await self.client.ping())
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def get(self, key: str) -> str | None:
        try:
            await self._ensure_initialized()
            result = await self.client.get(key)
            return result if result else None
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Redis GET failed for {key[:30]}") from e

    async def set(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        try:
            await self._ensure_initialized()
            if ttl_s:
                result = await self.client.setex(key, ttl_s, value)
            else:
                result = await self.client.set(key, value)
            return bool(result)
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Redis SET failed for {key[:30]}") from e

    async def delete(self, key: str) -> bool:
        try:
            await self._ensure_initialized()
            result = await self.client.delete(key)
            return result > 0
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Redis DELETE failed for {key[:30]}") from e


def build_store(config: Settings = settings) -> InMemoryKeyValueStore | RedisKeyValueStore:
    """Pick the store backend from configuration."""
    backend = config.STORE_BACKEND.strip().lower()
    if backend == "redis":
        if not config.REDIS_URL:
            raise ValueError("STORE_BACKEND=redis requires REDIS_URL")
        return RedisKeyValueStore(config.REDIS_URL, max_connections=config.REDIS_MAX_CONNECTIONS)
    if backend == "memory":
        return InMemoryKeyValueStore()
    raise ValueError(f"Unknown store backend '{backend}'. Available backends: memory, redis")
