# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""Pydantic request / response models for the 2FA endpoints."""

from typing import Literal, Optional

from pydantic import BaseModel, Field


# -- Requests --------------------------------------------------------------


class SetupRequest(BaseModel):
    method: Literal["email", "totp"]
    password: str = Field(min_length=1)


class ConfirmRequest(BaseModel):
    code: str = Field(pattern=r"^\d{6}$")


class DisableRequest(BaseModel):
    password: str = Field(min_length=1)


# -- Responses -------------------------------------------------------------


class SetupResponse(BaseModel):
    method: str
    message: str
    # totp
    secret: Optional[str] = None
    provisioning_uri: Optional[str] = Field(default=None, alias="provisioningUri")
    qr_code: Optional[str] = Field(default=None, alias="qrCode")   # data:image/png;base64,...
    # email
    expires_in: Optional[str] = Field(default=None, alias="expiresIn")
    dev_code: Optional[str] = Field(default=None, alias="devCode")

    model_config = {"populate_by_name": True}


class StatusResponse(BaseModel):
    configured: bool
    enabled: bool
    method: Optional[str] = None
