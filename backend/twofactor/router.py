# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
2FA management endpoints – setup, confirmation, teardown and status.

All routes need a full session.  The login-time code check lives in
``/auth/login/verify``.
"""

from fastapi import APIRouter, Depends, Request

from auth.schemas import MessageResponse
from core.ratelimit import rate_limit
from core.security import get_client_ip, get_current_user
from models.user import User
from store import CredentialStore, get_store
from twofactor.engine import SecondFactorEngine
from twofactor.schemas import (
    ConfirmRequest,
    DisableRequest,
    SetupRequest,
    SetupResponse,
    StatusResponse,
)

router = APIRouter(prefix="/2fa", tags=["2fa"])

_strict = [Depends(rate_limit("strict"))]
_default = [Depends(rate_limit("default"))]


def get_engine(request: Request, store: CredentialStore = Depends(get_store)) -> SecondFactorEngine:
    state = request.app.state
    return SecondFactorEngine(store, state.mailer, state.settings)


# ---------------------------------------------------------------------------
# POST /2fa/setup
# ---------------------------------------------------------------------------


@router.post(
    "/setup",
    response_model=SetupResponse,
    response_model_exclude_none=True,
    dependencies=_strict,
)
def setup(
    body: SetupRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    engine: SecondFactorEngine = Depends(get_engine),
):
    """
    Begin enrollment.  TOTP returns the secret and a QR code to scan; email
    sends the first code right away.  Either way ``/2fa/confirm`` finishes it.
    """
    enrollment = engine.begin_enrollment(
        current_user, body.method, body.password, ip=get_client_ip(request)
    )
    if enrollment.method == "totp":
        return SetupResponse(
            method="totp",
            message="Scan the QR code with your authenticator app, then confirm with a code",
            secret=enrollment.secret,
            provisioning_uri=enrollment.provisioning_uri,
            qr_code=enrollment.qr_code,
        )
    return SetupResponse(
        method="email",
        message="Verification code sent to your email",
        expires_in=f"{enrollment.expires_in_minutes} minutes",
        dev_code=enrollment.code if engine.settings.expose_dev_secrets else None,
    )


# ---------------------------------------------------------------------------
# POST /2fa/confirm
# ---------------------------------------------------------------------------


@router.post("/confirm", response_model=MessageResponse, dependencies=_strict)
def confirm(
    body: ConfirmRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    engine: SecondFactorEngine = Depends(get_engine),
):
    engine.confirm_enrollment(current_user, body.code, ip=get_client_ip(request))
    return MessageResponse(message="2FA enabled successfully")


# ---------------------------------------------------------------------------
# DELETE /2fa/setup
# ---------------------------------------------------------------------------


@router.delete("/setup", response_model=MessageResponse, dependencies=_strict)
def disable(
    body: DisableRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    engine: SecondFactorEngine = Depends(get_engine),
):
    """Turn 2FA off.  Requires the account password."""
    engine.disable(current_user, body.password, ip=get_client_ip(request))
    return MessageResponse(message="2FA disabled successfully")


# ---------------------------------------------------------------------------
# GET /2fa/status
# ---------------------------------------------------------------------------


@router.get("/status", response_model=StatusResponse, response_model_exclude_none=True, dependencies=_default)
def two_factor_status(
    current_user: User = Depends(get_current_user),
    store: CredentialStore = Depends(get_store),
):
    config = store.find_two_factor_config(current_user.id)
    if config is None:
        return StatusResponse(configured=False, enabled=False)
    return StatusResponse(configured=True, enabled=config.enabled, method=config.method)
