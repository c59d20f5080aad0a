"""Redis connection and the Redis-backed key-value store."""

from typing import Optional

import redis.asyncio as redis
import structlog

from eventauth.config import get_settings
from eventauth.errors import InternalError

logger = structlog.get_logger(__name__)

# Atomic compare-and-delete; returns the number of keys removed
DELETE_IF_EQUALS_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
  return redis.call("DEL", KEYS[1])
else
  return 0
end
"""

# Global Redis client
_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create the Redis client.

    Returns:
        Redis client or None if connection fails
    """
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    settings = get_settings()

    try:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        await _redis_client.ping()
        logger.info("redis_connected", url=settings.redis_url.split("@")[-1])
        return _redis_client
    except Exception as e:
        logger.warning("redis_connection_failed", error=str(e))
        _redis_client = None
        return None


async def close_redis() -> None:
    """Close the Redis connection."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("redis_connection_closed")


class RedisKeyValueStore:
    """Key-value store shared by every API instance.

    Keys are namespaced with ``prefix``. ``delete`` relies on ``DEL`` returning
    the number of removed keys, so exactly one concurrent caller wins;
    ``delete_if`` does the same check-and-remove in a Lua script.
    """

    def __init__(self, prefix: str = "otp"):
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def _client(self) -> redis.Redis:
        client = await get_redis()
        if client is None:
            raise InternalError("Verification store unavailable")
        return client

    async def get(self, key: str) -> Optional[str]:
        client = await self._client()
        return await client.get(self._key(key))

    async def set(self, key: str, value: str, ttl: int) -> None:
        client = await self._client()
        await client.set(self._key(key), value, ex=ttl)

    async def delete(self, key: str) -> bool:
        client = await self._client()
        removed = await client.delete(self._key(key))
        return removed == 1

    async def delete_if(self, key: str, expected: str) -> bool:
        client = await self._client()
        removed = await client.eval(DELETE_IF_EQUALS_SCRIPT, 1, self._key(key), expected)
        return removed == 1
