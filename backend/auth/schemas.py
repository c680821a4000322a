# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""Pydantic request / response models for the auth endpoints."""

from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from users.schemas import UserPublic


# -- Requests --------------------------------------------------------------


class RegisterRequest(BaseModel):
    username: str = Field(min_length=4, max_length=16, pattern=r"^[A-Za-z0-9_.-]+$")
    email: EmailStr
    password: str


class LoginRequest(BaseModel):
    # username or email
    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1)


class VerifyCodeRequest(BaseModel):
    code: str = Field(pattern=r"^\d{6}$")


class ForgotPasswordRequest(BaseModel):
    # username or email
    email: str = Field(min_length=1, max_length=255)


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1, max_length=256)
    password: str


# -- Responses -------------------------------------------------------------


class MessageResponse(BaseModel):
    message: str


class RegisterResponse(BaseModel):
    message: str
    user: UserPublic


class LoginResponse(BaseModel):
    message: str
    requires_2fa: bool = Field(alias="requires2FA")
    method: Optional[str] = None
    # Omitted while 2FA is pending
    user: Optional[UserPublic] = None
    # EXPOSE_DEV_SECRETS only
    token: Optional[str] = None

    model_config = {"populate_by_name": True}


class VerifyLoginResponse(BaseModel):
    message: str
    user: UserPublic
    token: Optional[str] = None


class ForgotPasswordResponse(BaseModel):
    message: str
    dev_token: Optional[str] = Field(default=None, alias="devToken")

    model_config = {"populate_by_name": True}
