# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Second-factor engine – enrollment, challenges and code verification.

Per-user lifecycle
------------------
    Unenrolled --setup--> Enrolled(enabled=False) --confirm--> Active
         ^                                                       |
         +---------------------- disable ------------------------+

Method dispatch goes through a small tagged variant: ``EmailFactor`` (codes
are mailed and stored) or ``TotpFactor(secret)`` (codes are derived from a
shared secret, nothing is stored).  Setup and verification both end in an
isinstance chain over the two classes.

Setup and teardown re-check the account password; a session cookie alone
must not be enough to change how the account is protected.
"""

import base64
import io
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

import pyotp
import qrcode

from core.config import Settings
from core.exceptions import (
    ConflictError,
    InvalidCredentialsError,
    InvalidInputError,
    InvalidOrExpiredTokenError,
)
from core.logger import logger
from core.mailer import Mailer
from core.security import decrypt_value, encrypt_value, verify_password
from models.two_factor import TwoFactorConfig
from models.user import User
from store import CredentialStore

METHODS = ("email", "totp")


@dataclass(frozen=True)
class EmailFactor:
    pass


@dataclass(frozen=True)
class TotpFactor:
    secret: str  # base32


SecondFactor = Union[EmailFactor, TotpFactor]


@dataclass
class Enrollment:
    """What ``begin_enrollment`` hands back to the router."""

    method: str
    # totp only
    secret: Optional[str] = None
    provisioning_uri: Optional[str] = None
    qr_code: Optional[str] = None
    # email only
    code: Optional[str] = None
    expires_in_minutes: Optional[int] = None


def generate_code() -> str:
    """Six digits, uniform over 100000-999999."""
    return str(secrets.randbelow(900000) + 100000)


def qr_code_data_url(uri: str) -> str:
    """Render *uri* as a PNG QR code and return it as a ``data:`` URL."""
    img = qrcode.make(uri)
    buf = io.BytesIO()
    img.save(buf)
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SecondFactorEngine:
    def __init__(
        self,
        store: CredentialStore,
        mailer: Mailer,
        settings: Settings,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.mailer = mailer
        self.settings = settings
        self.now = now

    # -- helpers -------------------------------------------------------------

    def _check_password(self, user: User, password: str) -> None:
        if not verify_password(password, user.password_hash):
            logger.warning("2FA change refused for user_id=%s: bad password", user.id)
            raise InvalidCredentialsError("Invalid password")

    def factor_for(self, config: TwoFactorConfig) -> SecondFactor:
        """Turn a stored configuration into its variant, decrypting the TOTP secret."""
        if config.method == "email":
            return EmailFactor()
        if config.method == "totp":
            secret = decrypt_value(
                config.totp_secret,
                config.totp_iv,
                self.settings.master_encryption_key,
            )
            return TotpFactor(secret)
        raise ValueError(f"unknown 2FA method {config.method!r}")

    def _send_code(self, user: User) -> str:
        code = generate_code()
        expires_at = self.now() + timedelta(minutes=self.settings.two_factor_code_expire_minutes)
        self.store.create_one_time_code(user.id, code, expires_at)
        self.mailer.send_2fa_code(user.email, code)
        return code

    # -- code checks ---------------------------------------------------------

    def check_code(self, user_id: int, factor: SecondFactor, code: str) -> bool:
        """
        True iff *code* is valid for *factor*.

        Email codes are consumed by the check; TOTP codes are not stored and
        stay valid for the rest of their window.
        """
        if isinstance(factor, EmailFactor):
            return self.store.consume_one_time_code(user_id, code, self.now())
        if isinstance(factor, TotpFactor):
            return pyotp.TOTP(factor.secret).verify(
                code,
                for_time=self.now(),
                valid_window=self.settings.totp_valid_window,
            )
        raise TypeError(f"unsupported factor {factor!r}")

    def verify(self, user: User, config: TwoFactorConfig, code: str) -> bool:
        return self.check_code(user.id, self.factor_for(config), code)

    # -- lifecycle -----------------------------------------------------------

    def begin_enrollment(self, user: User, method: str, password: str, ip: Optional[str] = None) -> Enrollment:
        """
        Start (or restart) enrollment in *method*.

        An enabled configuration must be disabled first; an unconfirmed one
        is replaced.
        """
        if method not in METHODS:
            raise InvalidInputError("Method must be 'email' or 'totp'")
        self._check_password(user, password)

        existing = self.store.find_two_factor_config(user.id)
        if existing and existing.enabled:
            raise ConflictError("2FA is already enabled. Disable it first.")
        if existing:
            self.store.delete_one_time_codes_for_user(user.id)

        if method == "totp":
            factor: SecondFactor = TotpFactor(pyotp.random_base32())
        else:
            factor = EmailFactor()

        if isinstance(factor, TotpFactor):
            encrypted, iv = encrypt_value(factor.secret, self.settings.master_encryption_key)
            self.store.create_two_factor_config(user.id, "totp", totp_secret=encrypted, totp_iv=iv)
            uri = pyotp.TOTP(factor.secret).provisioning_uri(
                name=user.email,
                issuer_name=self.settings.totp_issuer,
            )
            enrollment = Enrollment(
                method="totp",
                secret=factor.secret,
                provisioning_uri=uri,
                qr_code=qr_code_data_url(uri),
            )
        elif isinstance(factor, EmailFactor):
            self.store.create_two_factor_config(user.id, "email")
            enrollment = Enrollment(
                method="email",
                code=self._send_code(user),
                expires_in_minutes=self.settings.two_factor_code_expire_minutes,
            )
        else:
            raise TypeError(f"unsupported factor {factor!r}")

        self.store.add_audit("2fa_setup", actor_id=user.id, target_user_id=user.id,
                             detail=f"method={method}", request_ip=ip)
        self.store.commit()
        logger.info("2FA enrollment started user_id=%s method=%s", user.id, method)
        return enrollment

    def confirm_enrollment(self, user: User, code: str, ip: Optional[str] = None) -> TwoFactorConfig:
        """Flip a pending configuration to enabled after one good code."""
        config = self.store.find_two_factor_config(user.id)
        if config is None:
            raise InvalidInputError("2FA is not configured")
        if config.enabled:
            raise ConflictError("2FA is already enabled")

        if not self.verify(user, config, code):
            # keep the expired-code purge
            self.store.commit()
            logger.warning("2FA confirmation failed user_id=%s", user.id)
            raise InvalidOrExpiredTokenError("Invalid or expired code")

        self.store.enable_two_factor_config(config)
        self.store.add_audit("2fa_enabled", actor_id=user.id, target_user_id=user.id,
                             detail=f"method={config.method}", request_ip=ip)
        self.store.commit()
        logger.info("2FA enabled user_id=%s method=%s", user.id, config.method)
        return config

    def disable(self, user: User, password: str, ip: Optional[str] = None) -> None:
        """Remove the configuration and every outstanding code in one commit."""
        config = self.store.find_two_factor_config(user.id)
        if config is None:
            raise InvalidInputError("2FA is not configured")
        self._check_password(user, password)

        self.store.delete_two_factor_config(user.id)
        self.store.add_audit("2fa_disabled", actor_id=user.id, target_user_id=user.id, request_ip=ip)
        self.store.commit()
        logger.info("2FA disabled user_id=%s", user.id)

    def issue_challenge(self, user: User, config: TwoFactorConfig) -> Optional[str]:
        """
        Prompt for a code at login.  Email mails a fresh code and returns it;
        TOTP needs nothing and returns None.  The caller commits.
        """
        factor = self.factor_for(config)
        if isinstance(factor, EmailFactor):
            return self._send_code(user)
        if isinstance(factor, TotpFactor):
            return None
        raise TypeError(f"unsupported factor {factor!r}")
