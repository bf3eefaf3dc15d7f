import logging
from typing import Optional
import redis.asyncio as redis

from ..models.redis_models import UserCacheRedis

logger = logging.getLogger(__name__)

class RedisClient:
    """
    Redis client for the short-lived user profile cache used by authentication.
    """

    def __init__(self, pool: redis.ConnectionPool):
        self._redis = redis.Redis(connection_pool=pool, decode_responses=True)

    # ===== User Cache =====

    async def save_user_cache(self, user: UserCacheRedis, ttl: int):
        """Stores a user profile with a TTL in seconds."""
        key = f"users:{user.user_data.id}"
        await self._redis.set(key, user.model_dump_json(), ex=ttl)

    async def get_user_cache(self, user_id: int) -> Optional[UserCacheRedis]:
        key = f"users:{user_id}"
        user_json = await self._redis.get(key)
        return UserCacheRedis.model_validate_json(user_json) if user_json else None
