"""
Shared cache helper
Small JSON-over-Redis cache for read-mostly checkout data
"""

import json
import logging
from typing import Optional, Any
import redis.asyncio as redis

from academy.core.config import settings

logger = logging.getLogger(__name__)


class SimpleCache:
    """Simple prefixed cache. Every failure is logged and treated as a miss."""

    def __init__(self, redis_client: Optional[redis.Redis] = None, key_prefix: str = ""):
        self.redis_client = redis_client
        self.key_prefix = key_prefix

    async def init_redis(self, redis_url: Optional[str] = None) -> None:
        """Connect to Redis"""
        if not self.redis_client:
            self.redis_client = redis.from_url(
                redis_url or settings.redis_url_computed,
                encoding='utf-8',
                decode_responses=True,
                socket_timeout=30,
                socket_connect_timeout=30,
                retry_on_timeout=True,
                max_connections=20
            )

        try:
            await self.redis_client.ping()
            logger.info(f"Cache '{self.key_prefix}' connected to Redis")
        except Exception as e:
            logger.error(f"Redis connection failed: {e}")
            raise

    async def close_redis(self) -> None:
        if self.redis_client:
            await self.redis_client.close()
            self.redis_client = None

    async def ping(self) -> bool:
        if not self.redis_client:
            return False
        try:
            return bool(await self.redis_client.ping())
        except Exception as e:
            logger.error(f"Redis ping failed: {e}")
            return False

    def _get_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}" if self.key_prefix else key

    async def get(self, key: str) -> Optional[Any]:
        if not self.redis_client:
            return None
        try:
            data = await self.redis_client.get(self._get_key(key))
            if data:
                return json.loads(data)
            return None

        except Exception as e:
            logger.error(f"Cache get failed {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        if not self.redis_client:
            return False
        try:
            data = json.dumps(value, default=str, ensure_ascii=False)
            await self.redis_client.setex(self._get_key(key), ttl, data)
            return True

        except Exception as e:
            logger.error(f"Cache set failed {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        if not self.redis_client:
            return False
        try:
            result = await self.redis_client.delete(self._get_key(key))
            return result > 0

        except Exception as e:
            logger.error(f"Cache delete failed {key}: {e}")
            return False


# per-module cache instances
bank_account_cache = SimpleCache(key_prefix="bank:")
order_cache = SimpleCache(key_prefix="order:")
