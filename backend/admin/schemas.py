# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""Pydantic request / response models for the admin endpoints."""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr


# -- Requests --------------------------------------------------------------


class ChangeRoleRequest(BaseModel):
    role: Literal["admin", "user"]


class UpdateUserRequest(BaseModel):
    """Any subset of the fields; omitted ones are left alone."""

    email: Optional[EmailStr] = None
    password: Optional[str] = None
    role: Optional[Literal["admin", "user"]] = None


# -- Audit log responses ---------------------------------------------------


class AuditLogRow(BaseModel):
    id: int
    actor_id: Optional[int] = None
    actor_username: Optional[str] = None    # resolved from actor_id join
    target_user_id: Optional[int] = None
    target_username: Optional[str] = None   # resolved from target_user_id join
    action: str
    detail: Optional[str] = None
    request_ip: Optional[str] = None
    created_at: datetime


class AuditLogListResponse(BaseModel):
    logs: List[AuditLogRow]
