# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Central security module.  All cryptographic primitives and auth guards live
here.  No other module should touch raw crypto directly.

Responsibilities
----------------
1. Password hashing / verification          (passlib pbkdf2_sha256)
2. Secret-at-rest encryption / decryption   (AES-256-GCM, TOTP secrets)
3. Session token codec                      (PyJWT / HS256)
4. FastAPI access gates                     (full session, partial session,
                                             role, current user)
"""

import base64
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt as _jwt        # PyJWT
from passlib.hash import pbkdf2_sha256 as _pbkdf2  # pure Python, no binary deps
from passlib.exc import PasswordSizeError
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from fastapi import Depends, Request, Response

from core.exceptions import (
    ForbiddenError,
    NotPendingError,
    StepUpRequiredError,
    UnauthenticatedError,
)
from store import CredentialStore, get_store

# Name of the cookie that carries the session token
SESSION_COOKIE = "authToken"

# ---------------------------------------------------------------------------
# 1.  pbkdf2_sha256 – password hashing  (pure Python, no glibc constraint)
# ---------------------------------------------------------------------------
# Default iteration count is 600 000 (passlib 2024 default); the test-suite
# lowers it through PASSWORD_HASH_ROUNDS.
# ---------------------------------------------------------------------------

DEFAULT_HASH_ROUNDS = 600_000


def hash_password(plain: str, rounds: int = DEFAULT_HASH_ROUNDS) -> str:
    """
    Hash a plaintext password with PBKDF2-SHA256.

    Returns the full passlib hash string e.g. "$pbkdf2-sha256$...".  The salt
    is embedded inside the hash string (passlib convention).
    """
    return _pbkdf2.using(rounds=rounds).hash(plain)


def verify_password(plain: str, stored_hash: Optional[str]) -> bool:
    """
    Constant-time verification of a plaintext password against a
    pbkdf2_sha256 hash produced by :func:`hash_password`.

    Accounts created through OAuth have no hash and never verify.  Input
    longer than passlib accepts is a mismatch like any other.
    """
    if not stored_hash:
        return False
    try:
        return _pbkdf2.verify(plain, stored_hash)
    except PasswordSizeError:
        return False


# ---------------------------------------------------------------------------
# 2.  AES-256-GCM – secrets at rest
# ---------------------------------------------------------------------------


def _decode_master_key(master_key_b64: str) -> bytes:
    """
    Decode the base64-encoded MASTER_ENCRYPTION_KEY.  Must be exactly 32
    bytes after decoding.
    """
    key = base64.b64decode(master_key_b64)
    if len(key) != 32:
        raise RuntimeError("MASTER_ENCRYPTION_KEY must decode to exactly 32 bytes")
    return key


def encrypt_value(plaintext: str, master_key_b64: str) -> tuple[str, str]:
    """
    Encrypt *plaintext* with AES-256-GCM.

    Each call generates a fresh 12-byte (96-bit) random nonce – nonce reuse
    with the same key would be catastrophic for GCM, so we never reuse.

    Returns
    -------
    encrypted_b64 : str   base64( ciphertext || 16-byte GCM tag )
    iv_b64        : str   base64( 12-byte nonce )
    """
    aesgcm = AESGCM(_decode_master_key(master_key_b64))
    iv = secrets.token_bytes(12)          # 96-bit nonce per NIST SP 800-38D
    ct_and_tag = aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
    return (
        base64.b64encode(ct_and_tag).decode("ascii"),
        base64.b64encode(iv).decode("ascii"),
    )


def decrypt_value(encrypted_b64: str, iv_b64: str, master_key_b64: str) -> str:
    """
    Decrypt a value produced by :func:`encrypt_value`.

    Raises ``ValueError`` if the GCM authentication tag does not match
    (i.e. the data has been tampered with or the key is wrong).
    """
    aesgcm = AESGCM(_decode_master_key(master_key_b64))
    iv = base64.b64decode(iv_b64)
    ct_and_tag = base64.b64decode(encrypted_b64)
    try:
        plaintext_bytes = aesgcm.decrypt(iv, ct_and_tag, None)
    except InvalidTag as exc:
        raise ValueError("Decryption failed – data may be tampered") from exc
    return plaintext_bytes.decode("utf-8")


# ---------------------------------------------------------------------------
# 3.  Session token codec
# ---------------------------------------------------------------------------


class TokenError(Exception):
    """Base class for session-token verification failures."""


class TokenMalformed(TokenError):
    """Structurally invalid, bad signature, or missing / mistyped claims."""


class TokenExpired(TokenError):
    """Signature fine but the token is past its ``exp``."""


@dataclass(frozen=True)
class SessionClaims:
    """
    Payload of a session token.

    ``requires_2fa=True``  -> partial session (password proven, 2FA pending)
    ``requires_2fa=False`` -> full session
    """

    user_id: int
    username: str
    role: str = "user"
    requires_2fa: bool = False


class TokenCodec:
    """Signs and verifies session tokens with a single process-wide key."""

    algorithm = "HS256"

    def __init__(self, secret_key: str, lifetime: timedelta):
        self._secret_key = secret_key
        self.lifetime = lifetime

    def issue(self, claims: SessionClaims, now: Optional[datetime] = None) -> str:
        """Sign *claims* into a compact JWT valid for ``self.lifetime``."""
        now = now or datetime.now(timezone.utc)
        payload = {
            "sub": str(claims.user_id),
            "username": claims.username,
            "role": claims.role,
            "requires_2fa": claims.requires_2fa,
            "iat": now,
            "exp": now + self.lifetime,
        }
        return _jwt.encode(payload, self._secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> SessionClaims:
        """
        Decode and verify a token.

        Raises :class:`TokenExpired` past ``exp`` and :class:`TokenMalformed`
        for every other defect.
        """
        try:
            payload = _jwt.decode(
                token,
                self._secret_key,
                algorithms=[self.algorithm],
                options={"require": ["sub", "iat", "exp"]},
            )
        except _jwt.ExpiredSignatureError as exc:
            raise TokenExpired("token expired") from exc
        except _jwt.InvalidTokenError as exc:
            raise TokenMalformed(str(exc)) from exc

        username = payload.get("username")
        role = payload.get("role")
        requires_2fa = payload.get("requires_2fa")
        if not isinstance(username, str) or not isinstance(role, str):
            raise TokenMalformed("missing identity claims")
        # must be a real boolean; a dropped flag is never read as "full"
        if not isinstance(requires_2fa, bool):
            raise TokenMalformed("missing requires_2fa claim")
        try:
            user_id = int(payload["sub"])
        except (TypeError, ValueError) as exc:
            raise TokenMalformed("bad subject") from exc

        return SessionClaims(
            user_id=user_id,
            username=username,
            role=role,
            requires_2fa=requires_2fa,
        )


# ---------------------------------------------------------------------------
# 4.  FastAPI access gates
# ---------------------------------------------------------------------------


def get_token_codec(request: Request) -> TokenCodec:
    return request.app.state.token_codec


def read_session_claims(request: Request) -> Optional[SessionClaims]:
    """Best-effort decode of the session cookie; None when absent or bad."""
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        return None
    try:
        return request.app.state.token_codec.verify(token)
    except TokenError:
        return None


def get_session_claims(
    request: Request,
    codec: TokenCodec = Depends(get_token_codec),
) -> SessionClaims:
    """
    Dependency: verified claims of the session cookie, partial or full.

    Raises 401 with reason missing / malformed / expired.
    """
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        raise UnauthenticatedError("missing")
    try:
        return codec.verify(token)
    except TokenExpired:
        raise UnauthenticatedError("expired")
    except TokenMalformed:
        raise UnauthenticatedError("malformed")


def require_full_session(claims: SessionClaims = Depends(get_session_claims)) -> SessionClaims:
    """Gate for ordinary protected routes: a partial token gets 403."""
    if claims.requires_2fa:
        raise StepUpRequiredError()
    return claims


def require_partial_session(claims: SessionClaims = Depends(get_session_claims)) -> SessionClaims:
    """Gate for the 2FA login-verification route only."""
    if not claims.requires_2fa:
        raise NotPendingError()
    return claims


def require_role(*roles: str):
    """
    Build a dependency that composes after :func:`require_full_session` and
    rejects tokens whose role is not in *roles*.
    """
    allowed = frozenset(roles)

    def _role_gate(claims: SessionClaims = Depends(require_full_session)) -> SessionClaims:
        if claims.role not in allowed:
            raise ForbiddenError(f"Requires role: {', '.join(sorted(allowed))}")
        return claims

    return _role_gate


def get_current_user(
    claims: SessionClaims = Depends(require_full_session),
    store: CredentialStore = Depends(get_store),
):
    """
    Dependency: full-session gate, then load the User row.

    Raises 401 if the account vanished after the token was issued.
    """
    user = store.find_user_by_id(claims.user_id)
    if not user:
        raise UnauthenticatedError("unknown_user")
    return user


_require_admin_claims = require_role("admin")


def require_admin(
    claims: SessionClaims = Depends(_require_admin_claims),
    store: CredentialStore = Depends(get_store),
):
    """
    Dependency: admin role in the token *and* still admin in the database,
    so a demotion takes effect before the token expires.
    """
    user = store.find_user_by_id(claims.user_id)
    if not user:
        raise UnauthenticatedError("unknown_user")
    if user.role != "admin":
        raise ForbiddenError("Admin access required")
    return user


# -- Session cookie -----------------------------------------------------------


def _cookie_samesite(settings) -> str:
    # Browsers drop SameSite=None cookies that are not Secure
    return "none" if settings.cookie_secure else "lax"


def set_session_cookie(response: Response, token: str, settings) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value=token,
        max_age=settings.session_token_expire_minutes * 60,
        httponly=True,
        secure=settings.cookie_secure,
        samesite=_cookie_samesite(settings),
        path="/",
    )


def clear_session_cookie(response: Response, settings) -> None:
    response.delete_cookie(
        key=SESSION_COOKIE,
        path="/",
        httponly=True,
        secure=settings.cookie_secure,
        samesite=_cookie_samesite(settings),
    )


# -- IP Address extraction ----------------------------------------------------


def get_client_ip(request: Request) -> str:
    """
    Extract the client IP address from the request.

    The direct peer is the client unless it is listed in TRUSTED_PROXIES;
    only then is X-Forwarded-For read, right to left, skipping further
    trusted hops.  A header sent by anyone else is ignored.
    """
    peer = request.client.host if request.client else "unknown"
    trusted = set(request.app.state.settings.trusted_proxies)
    if peer not in trusted:
        return peer

    forwarded = request.headers.get("X-Forwarded-For")
    if not forwarded:
        return peer
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return hops[0] if hops else peer
