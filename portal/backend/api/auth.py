import logging
from datetime import datetime, timezone
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
import jwt
import redis.asyncio as redis
import asyncpg
from pydantic import ValidationError

from .schemas.user import TokenData
from ..models.db_models import User
from ..models.redis_models import UserCacheRedis
from ..db.redis_client import RedisClient
from ..db.db_client import AsyncPostgresClient
from ..config.config import settings
from .dependencies import get_redis_pool, get_postgres_pool

logger = logging.getLogger(__name__)

# Tokens are issued by the portal's identity service; this backend only verifies them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")


async def _load_cached_user(redis_client: RedisClient, user_id: int):
    try:
        cached = await redis_client.get_user_cache(user_id)
        return cached.user_data if cached else None
    except redis.RedisError as e:
        logger.warning(f"User cache read failed for user {user_id}, falling back to the database: {e}")
        return None


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    redis_pool: redis.ConnectionPool = Depends(get_redis_pool),
    postgres_pool: asyncpg.Pool = Depends(get_postgres_pool)
) -> User:
    """
    Decodes the bearer token, validates its payload with Pydantic and returns
    the user it names, from the Redis cache when possible.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        token_data = TokenData.model_validate(payload)
    except (jwt.PyJWTError, ValidationError) as e:
        logger.warning(f"Token validation error: {e}")
        raise credentials_exception

    if token_data.user_id is None:
        logger.warning("Token is valid but missing 'user_id'.")
        raise credentials_exception

    redis_client = RedisClient(pool=redis_pool)
    user = await _load_cached_user(redis_client, token_data.user_id)
    if user:
        return user

    user = await AsyncPostgresClient(pool=postgres_pool).get_user(token_data.user_id)
    if user is None:
        logger.warning(f"Token names user {token_data.user_id} who does not exist. Denying access.")
        raise credentials_exception

    try:
        await redis_client.save_user_cache(
            UserCacheRedis(user_data=user, cached_at=datetime.now(timezone.utc)),
            ttl=settings.USER_CACHE_TTL_SECONDS
        )
    except redis.RedisError as e:
        logger.warning(f"Could not cache user {user.id}: {e}")
    return user
