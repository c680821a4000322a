# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""Pydantic request / response models for the user endpoints."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr


# -- Requests --------------------------------------------------------------


class UpdateMeRequest(BaseModel):
    email: EmailStr


# -- Responses -------------------------------------------------------------


class UserPublic(BaseModel):
    """A user as clients see it – never the password hash or 2FA secret."""

    id: int
    username: str
    email: str
    role: str
    avatar_url: Optional[str] = None
    last_login: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserListResponse(BaseModel):
    users: List[UserPublic]
    total: int
