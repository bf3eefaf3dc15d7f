# portal/backend/api/utilities/limiter.py

from fastapi import Request
import jwt

from slowapi import Limiter
from slowapi.util import get_remote_address

from ...config.config import settings

def get_limiter_key(request: Request) -> str:
    """
    Returns the rate limit key for a request.
    Requests carrying a readable JWT are limited per user id, everything
    else per client IP. A whole class scanning from one school network
    therefore does not share a single bucket.
    """
    auth_header = request.headers.get("authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        token = auth_header.split(" ", 1)[1]
        try:
            # Expiry is checked by get_current_user, only the identity matters here.
            payload = jwt.decode(
                token,
                settings.SECRET_KEY,
                algorithms=[settings.ALGORITHM],
                options={"verify_exp": False}
            )
            user_id = payload.get("user_id")
            if user_id is not None:
                return f"user:{user_id}"
        except jwt.PyJWTError:
            pass

    return get_remote_address(request)

limiter = Limiter(key_func=get_limiter_key, storage_uri=settings.RATE_LIMITER_REDIS_URL)
