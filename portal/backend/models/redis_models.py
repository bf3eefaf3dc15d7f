from pydantic import BaseModel, Field
from datetime import datetime
from .db_models import User


class UserCacheRedis(BaseModel):
    """
    A user profile cached in Redis after a successful token check, so
    authenticated requests do not hit PostgreSQL every time.
    """
    user_data: User = Field(..., description="The core user data from the database.")
    cached_at: datetime = Field(..., description="When the profile was loaded from the database.")
