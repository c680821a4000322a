# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Auth state machine – registration, login, 2FA login step, password reset
and GitHub login.

Session model
-------------
Every successful credential check ends in ``start_session``:

* no enabled 2FA   -> full token     (``requires_2fa=False``)
* enabled 2FA      -> partial token  (``requires_2fa=True``); for the email
                      method a fresh code is mailed at the same time.

``verify_login`` never edits the partial token.  It mints a new full one.

Security notes
--------------
* Login returns the *same* error whether the account doesn't exist, has no
  password (GitHub-only) or the password is wrong.
* Password-reset requests always get the same acknowledgement, so the
  response never tells whether an account exists.
* Only the sha256 digest of a reset token is stored.
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from core.config import Settings
from core.exceptions import (
    ConflictError,
    InvalidCredentialsError,
    InvalidInputError,
    InvalidOrExpiredTokenError,
    UpstreamFailureError,
)
from core.logger import logger
from core.mailer import Mailer
from core.security import SessionClaims, TokenCodec, hash_password, verify_password
from models.user import User
from store import CredentialStore
from twofactor.engine import SecondFactorEngine

PASSWORD_MAX_LENGTH = 128

# GitHub placeholder addresses cannot receive mail
_UNDELIVERABLE_DOMAIN = "@users.noreply.github.com"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def validate_new_password(pw: str, min_length: int) -> None:
    """Raise ``InvalidInputError`` unless *pw* meets the length policy."""
    if len(pw) < min_length:
        raise InvalidInputError(f"Password must be at least {min_length} characters")
    if len(pw) > PASSWORD_MAX_LENGTH:
        raise InvalidInputError(f"Password must be at most {PASSWORD_MAX_LENGTH} characters")


@dataclass
class LoginResult:
    user: User
    token: str
    requires_2fa: bool
    method: Optional[str] = None
    # email 2FA code just mailed; only surfaced with EXPOSE_DEV_SECRETS
    code: Optional[str] = None


class AuthService:
    def __init__(
        self,
        store: CredentialStore,
        codec: TokenCodec,
        mailer: Mailer,
        settings: Settings,
        github=None,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.codec = codec
        self.mailer = mailer
        self.settings = settings
        self.github = github
        self.now = now
        self.two_factor = SecondFactorEngine(store, mailer, settings, now=now)

    # -- helpers -------------------------------------------------------------

    def _validate_new_password(self, pw: str) -> None:
        validate_new_password(pw, self.settings.password_min_length)

    def _hash(self, pw: str) -> str:
        return hash_password(pw, rounds=self.settings.password_hash_rounds)

    def _issue(self, user: User, requires_2fa: bool) -> str:
        return self.codec.issue(
            SessionClaims(
                user_id=user.id,
                username=user.username,
                role=user.role,
                requires_2fa=requires_2fa,
            ),
            now=self.now(),
        )

    # -- register ------------------------------------------------------------

    def register(self, username: str, email: str, password: str, ip: Optional[str] = None) -> User:
        self._validate_new_password(password)
        email = email.lower()

        # Uniqueness pre-check; the unique constraints catch the race
        if self.store.find_user_by_username_or_email(username, email):
            raise ConflictError("Username or email already exists")

        user = self.store.create_user(username, email, password_hash=self._hash(password))
        self.store.add_audit("user_register", actor_id=user.id, target_user_id=user.id, request_ip=ip)
        self.store.commit()
        self.store.refresh(user)
        logger.info("User registered user_id=%s username=%s", user.id, user.username)
        return user

    # -- login ---------------------------------------------------------------

    def start_session(self, user: User, ip: Optional[str] = None, action: str = "user_login") -> LoginResult:
        """
        Issue the session token for an authenticated *user*: partial when an
        enabled 2FA configuration exists, full otherwise.
        """
        config = self.store.find_two_factor_config(user.id)
        requires_2fa = bool(config and config.enabled)

        code = None
        if requires_2fa:
            code = self.two_factor.issue_challenge(user, config)

        user.last_login = self.now()
        self.store.add_audit(action, actor_id=user.id, target_user_id=user.id,
                             detail="2fa_pending" if requires_2fa else None, request_ip=ip)
        self.store.commit()

        return LoginResult(
            user=user,
            token=self._issue(user, requires_2fa),
            requires_2fa=requires_2fa,
            method=config.method if requires_2fa else None,
            code=code,
        )

    def login(self, identifier: str, password: str, ip: Optional[str] = None) -> LoginResult:
        user = self.store.find_user_for_auth(identifier)

        # Unified failure path – no information leaks about which part was wrong
        if not user or not verify_password(password, user.password_hash):
            if user:
                self.store.add_audit("login_failed", target_user_id=user.id, request_ip=ip)
                self.store.commit()
            logger.warning("Login failed identifier=%r client=%s", identifier, ip)
            raise InvalidCredentialsError()

        result = self.start_session(user, ip)
        logger.info("Login user_id=%s requires_2fa=%s", user.id, result.requires_2fa)
        return result

    def verify_login(self, claims: SessionClaims, code: str, ip: Optional[str] = None) -> tuple[User, str]:
        """
        Second step of a 2FA login.  *claims* come from a partial token.
        Returns the user and a freshly minted full token.
        """
        user = self.store.find_user_by_id(claims.user_id)
        config = self.store.find_two_factor_config(claims.user_id) if user else None
        if not user or not config or not config.enabled:
            raise InvalidOrExpiredTokenError("Invalid or expired code")

        if not self.two_factor.verify(user, config, code):
            self.store.commit()
            logger.warning("2FA login verification failed user_id=%s", user.id)
            raise InvalidOrExpiredTokenError("Invalid or expired code")

        self.store.add_audit("login_2fa_verified", actor_id=user.id, target_user_id=user.id,
                             detail=f"method={config.method}", request_ip=ip)
        self.store.commit()
        logger.info("2FA login verified user_id=%s", user.id)
        return user, self._issue(user, requires_2fa=False)

    # -- password reset ------------------------------------------------------

    def request_password_reset(self, identifier: str, ip: Optional[str] = None) -> Optional[str]:
        """
        Mail a reset link when *identifier* matches an account.

        Returns the raw token (for development exposure) or None.  Callers
        must answer identically either way.
        """
        user = self.store.find_user_for_auth(identifier)
        if not user or not user.email or user.email.endswith(_UNDELIVERABLE_DOMAIN):
            logger.info("Password reset requested for unknown identifier")
            return None

        token = secrets.token_urlsafe(32)
        expires_at = self.now() + timedelta(minutes=self.settings.reset_token_expire_minutes)
        self.store.create_reset_token(user.id, hash_reset_token(token), expires_at)
        self.store.add_audit("password_reset_requested", target_user_id=user.id, request_ip=ip)

        try:
            self.mailer.send_password_reset_email(user.email, token, user.username)
        except UpstreamFailureError:
            self.store.rollback()
            logger.error("Password reset mail could not be sent user_id=%s", user.id)
            return None

        self.store.commit()
        logger.info("Password reset token issued user_id=%s", user.id)
        return token

    def reset_password(self, token: str, new_password: str, ip: Optional[str] = None) -> User:
        self._validate_new_password(new_password)

        user_id = self.store.consume_reset_token(hash_reset_token(token), self.now())
        user = self.store.find_user_by_id(user_id) if user_id is not None else None
        if user is None:
            self.store.commit()
            raise InvalidOrExpiredTokenError("Invalid or expired reset token")

        user.password_hash = self._hash(new_password)
        self.store.delete_reset_tokens_for_user(user.id)
        self.store.add_audit("password_reset", actor_id=user.id, target_user_id=user.id, request_ip=ip)
        self.store.commit()
        logger.info("Password reset completed user_id=%s", user.id)
        return user

    # -- GitHub --------------------------------------------------------------

    def github_login(self, code: str, ip: Optional[str] = None) -> tuple[LoginResult, bool]:
        """
        Finish the GitHub OAuth dance and start a session.

        Returns the login result and whether a new account was created.
        """
        if self.github is None:
            raise UpstreamFailureError("GitHub login is not configured")

        access_token = self.github.exchange_code_for_token(code)
        profile = self.github.fetch_profile(access_token)

        user, created = self.store.find_or_create_oauth_user(
            profile, max_attempts=self.settings.oauth_username_max_attempts
        )
        if created:
            self.store.add_audit("github_account_created", actor_id=user.id, target_user_id=user.id,
                                 detail=f"github_login={profile.login}", request_ip=ip)
            logger.info("GitHub account created user_id=%s github_id=%s", user.id, profile.id)

        result = self.start_session(user, ip, action="github_login")
        logger.info("GitHub login user_id=%s requires_2fa=%s", user.id, result.requires_2fa)
        return result, created
