# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Auth endpoints – register, login (+ 2FA step), logout, password reset and
GitHub login.

The session token travels only in the ``authToken`` cookie.  JSON bodies
carry it (``token``) only when EXPOSE_DEV_SECRETS is on.
"""

import secrets

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import RedirectResponse

from auth.schemas import (
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    VerifyCodeRequest,
    VerifyLoginResponse,
)
from auth.service import AuthService
from core.exceptions import InvalidInputError
from core.ratelimit import rate_limit
from core.security import (
    SessionClaims,
    clear_session_cookie,
    get_client_ip,
    require_partial_session,
    set_session_cookie,
)
from store import CredentialStore, get_store
from users.schemas import UserPublic

router = APIRouter(prefix="/auth", tags=["auth"])

_strict = [Depends(rate_limit("strict"))]
_default = [Depends(rate_limit("default"))]

# Anti-CSRF value for the GitHub round trip
_OAUTH_STATE_COOKIE = "oauthState"
_OAUTH_STATE_MAX_AGE = 600

# Same text whether or not the account exists
_RESET_ACK = "If an account with that email exists, a password reset link has been sent"


def get_auth_service(request: Request, store: CredentialStore = Depends(get_store)) -> AuthService:
    state = request.app.state
    return AuthService(
        store,
        state.token_codec,
        state.mailer,
        state.settings,
        github=state.github,
    )


# ---------------------------------------------------------------------------
# POST /auth/register
# ---------------------------------------------------------------------------


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=_strict,
)
def register(
    body: RegisterRequest,
    request: Request,
    service: AuthService = Depends(get_auth_service),
):
    """Create a password account.  Does not log the user in."""
    user = service.register(body.username, body.email, body.password, ip=get_client_ip(request))
    return RegisterResponse(message="User registered successfully", user=UserPublic.model_validate(user))


# ---------------------------------------------------------------------------
# POST /auth/login
# ---------------------------------------------------------------------------


@router.post(
    "/login",
    response_model=LoginResponse,
    response_model_exclude_none=True,
    dependencies=_strict,
)
def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    service: AuthService = Depends(get_auth_service),
):
    """
    Check credentials and set the session cookie.

    With 2FA enabled the cookie holds a partial token and the body carries
    no user; the client continues at ``/auth/login/verify``.
    """
    result = service.login(body.username, body.password, ip=get_client_ip(request))
    set_session_cookie(response, result.token, service.settings)

    dev_token = result.token if service.settings.expose_dev_secrets else None
    if result.requires_2fa:
        return LoginResponse(
            message="2FA verification required",
            requires_2fa=True,
            method=result.method,
            token=dev_token,
        )
    return LoginResponse(
        message="Login successful",
        requires_2fa=False,
        user=UserPublic.model_validate(result.user),
        token=dev_token,
    )


# ---------------------------------------------------------------------------
# POST /auth/login/verify
# ---------------------------------------------------------------------------


@router.post(
    "/login/verify",
    response_model=VerifyLoginResponse,
    response_model_exclude_none=True,
    dependencies=_strict,
)
def verify_login(
    body: VerifyCodeRequest,
    request: Request,
    response: Response,
    claims: SessionClaims = Depends(require_partial_session),
    service: AuthService = Depends(get_auth_service),
):
    """Exchange a partial session plus a valid 2FA code for a full session."""
    user, token = service.verify_login(claims, body.code, ip=get_client_ip(request))
    set_session_cookie(response, token, service.settings)
    return VerifyLoginResponse(
        message="2FA verification successful",
        user=UserPublic.model_validate(user),
        token=token if service.settings.expose_dev_secrets else None,
    )


# ---------------------------------------------------------------------------
# POST /auth/logout
# ---------------------------------------------------------------------------


@router.post("/logout", response_model=MessageResponse, dependencies=_default)
def logout(request: Request, response: Response):
    """Clear the session cookie.  Tokens are stateless, so nothing else to revoke."""
    clear_session_cookie(response, request.app.state.settings)
    return MessageResponse(message="Logged out successfully")


# ---------------------------------------------------------------------------
# POST /auth/forgot-password
# ---------------------------------------------------------------------------


@router.post(
    "/forgot-password",
    response_model=ForgotPasswordResponse,
    response_model_exclude_none=True,
    dependencies=_strict,
)
def forgot_password(
    body: ForgotPasswordRequest,
    request: Request,
    service: AuthService = Depends(get_auth_service),
):
    token = service.request_password_reset(body.email, ip=get_client_ip(request))
    return ForgotPasswordResponse(
        message=_RESET_ACK,
        dev_token=token if service.settings.expose_dev_secrets else None,
    )


# ---------------------------------------------------------------------------
# POST /auth/reset-password
# ---------------------------------------------------------------------------


@router.post("/reset-password", response_model=MessageResponse, dependencies=_strict)
def reset_password(
    body: ResetPasswordRequest,
    request: Request,
    service: AuthService = Depends(get_auth_service),
):
    service.reset_password(body.token, body.password, ip=get_client_ip(request))
    return MessageResponse(message="Password has been reset successfully")


# ---------------------------------------------------------------------------
# GET /auth/github  +  GET /auth/github/callback
# ---------------------------------------------------------------------------


@router.get("/github", dependencies=_default)
def github_login(request: Request):
    """Redirect the browser to GitHub's consent page."""
    settings = request.app.state.settings
    state = secrets.token_urlsafe(16)
    url = request.app.state.github.authorize_url(state)

    response = RedirectResponse(url=url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
    response.set_cookie(
        key=_OAUTH_STATE_COOKIE,
        value=state,
        max_age=_OAUTH_STATE_MAX_AGE,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/auth/github",
    )
    return response


@router.get("/github/callback", dependencies=_default)
def github_callback(
    request: Request,
    code: str = Query(..., min_length=1),
    state: str = Query(..., min_length=1),
    service: AuthService = Depends(get_auth_service),
):
    """
    Complete GitHub login and send the browser back to the frontend:
    ``/profile`` for a full session, ``/verify-2fa`` when 2FA is pending.
    """
    expected = request.cookies.get(_OAUTH_STATE_COOKIE)
    if not expected or not secrets.compare_digest(expected, state):
        raise InvalidInputError("Invalid OAuth state")

    result, _created = service.github_login(code, ip=get_client_ip(request))

    frontend = service.settings.frontend_url.rstrip("/")
    target = f"{frontend}/verify-2fa" if result.requires_2fa else f"{frontend}/profile"
    response = RedirectResponse(url=target, status_code=status.HTTP_303_SEE_OTHER)
    set_session_cookie(response, result.token, service.settings)
    response.delete_cookie(_OAUTH_STATE_COOKIE, path="/auth/github")
    return response
