# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Credential store – the only module that issues queries against the account
tables.

A ``CredentialStore`` wraps the request's SQLAlchemy session and is handed
to routers through the ``get_store`` dependency.  Methods ``flush`` but never
``commit``; the caller decides where the transaction ends.

One-time codes and reset tokens are consumed with a conditional
``DELETE ... WHERE ... AND expires_at > :now``.  Only the request whose
delete actually removed the row wins, so two concurrent submissions of the
same code cannot both succeed.
"""

from datetime import datetime
from typing import Optional

from fastapi import Depends
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from core.exceptions import ConflictError
from core.logger import logger
from database import get_db
from models.audit_log import AuditLog
from models.password_reset import PasswordResetToken
from models.two_factor import TwoFactorCode, TwoFactorConfig
from models.user import User


def placeholder_email(github_id: str, login: str) -> str:
    """Address used when GitHub does not give us a usable email."""
    return f"{github_id}+{login}@users.noreply.github.com"


class CredentialStore:
    def __init__(self, db: Session):
        self.db = db

    # -- transaction ---------------------------------------------------------

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    def refresh(self, obj) -> None:
        self.db.refresh(obj)

    # -- users ---------------------------------------------------------------

    def create_user(
        self,
        username: str,
        email: str,
        password_hash: Optional[str] = None,
        role: str = "user",
        avatar_url: Optional[str] = None,
        github_id: Optional[str] = None,
    ) -> User:
        """
        Insert a user row.  A unique-constraint violation (two registrations
        racing for the same name) rolls back and raises ``ConflictError``.
        """
        user = User(
            username=username,
            email=email,
            password_hash=password_hash,
            role=role,
            avatar_url=avatar_url,
            github_id=github_id,
        )
        self.db.add(user)
        try:
            self.db.flush()  # get user.id before commit
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Username or email already exists")
        return user

    def find_user_by_id(self, user_id: int) -> Optional[User]:
        return self.db.get(User, user_id)

    def find_user_by_username_or_email(self, username: str, email: str) -> Optional[User]:
        """Any user holding *username* or *email*; used by the duplicate pre-check."""
        return (
            self.db.query(User)
            .filter(or_(User.username == username, User.email == email))
            .first()
        )

    def find_user_for_auth(self, identifier: str) -> Optional[User]:
        """Login and password reset accept either a username or an email."""
        return (
            self.db.query(User)
            .filter(or_(User.username == identifier, User.email == identifier.lower()))
            .first()
        )

    def find_user_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email).first()

    def find_user_by_github_id(self, github_id: str) -> Optional[User]:
        return self.db.query(User).filter(User.github_id == github_id).first()

    def update_user(self, user: User, **fields) -> User:
        for name, value in fields.items():
            setattr(user, name, value)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Username or email already exists")
        return user

    def delete_user(self, user: User) -> None:
        """Remove the user; 2FA config, codes and reset tokens go with it."""
        self.db.delete(user)
        self.db.flush()

    def list_users(self, offset: int = 0, limit: int = 100) -> list[User]:
        return self.db.query(User).order_by(User.id).offset(offset).limit(limit).all()

    def count_users(self) -> int:
        return self.db.query(User).count()

    # -- GitHub accounts -----------------------------------------------------

    def _free_username(self, login: str, max_attempts: int) -> Optional[str]:
        """First of ``login``, ``login1``, ``login2`` ... not yet taken."""
        candidates = [login] + [f"{login}{i}" for i in range(1, max_attempts)]
        taken = {
            row[0]
            for row in self.db.query(User.username).filter(User.username.in_(candidates))
        }
        for candidate in candidates:
            if candidate not in taken:
                return candidate
        return None

    def find_or_create_oauth_user(self, profile, max_attempts: int = 100) -> tuple[User, bool]:
        """
        Resolve a GitHub profile to a local account.

        Returns ``(user, created)``.  An existing account keeps its data
        except the avatar, which follows GitHub.  A new account has no
        password and gets a synthesized username and, when GitHub's email is
        missing or already used locally, a placeholder address.
        """
        user = self.find_user_by_github_id(profile.id)
        if user:
            if profile.avatar_url and user.avatar_url != profile.avatar_url:
                user.avatar_url = profile.avatar_url
                self.db.flush()
            return user, False

        username = self._free_username(profile.login, max_attempts)
        if username is None:
            logger.warning(
                "No free username for GitHub login %s after %d attempts",
                profile.login, max_attempts,
            )
            raise ConflictError("Could not allocate a username for this GitHub account")

        email = profile.email.lower() if profile.email else None
        if not email or self.find_user_by_email(email):
            email = placeholder_email(profile.id, profile.login)

        user = User(
            username=username,
            email=email,
            password_hash=None,
            role="user",
            avatar_url=profile.avatar_url,
            github_id=profile.id,
        )
        self.db.add(user)
        try:
            self.db.flush()
        except IntegrityError:
            # Another request created the same GitHub account first
            self.db.rollback()
            user = self.find_user_by_github_id(profile.id)
            if user:
                return user, False
            raise ConflictError("Could not create account for this GitHub user")
        return user, True

    # -- password reset tokens -----------------------------------------------

    def create_reset_token(self, user_id: int, token_hash: str, expires_at: datetime) -> PasswordResetToken:
        """Store a new token; every earlier token of the user is dropped."""
        self.delete_reset_tokens_for_user(user_id)
        row = PasswordResetToken(token_hash=token_hash, user_id=user_id, expires_at=expires_at)
        self.db.add(row)
        self.db.flush()
        return row

    def find_reset_token(self, token_hash: str, now: datetime) -> Optional[PasswordResetToken]:
        return (
            self.db.query(PasswordResetToken)
            .filter(
                PasswordResetToken.token_hash == token_hash,
                PasswordResetToken.expires_at > now,
            )
            .first()
        )

    def consume_reset_token(self, token_hash: str, now: datetime) -> Optional[int]:
        """
        Delete the unexpired token matching *token_hash*.

        Returns the owning user id, or None if no live token matched or a
        concurrent request consumed it first.  Expired tokens are purged on
        the way.
        """
        (
            self.db.query(PasswordResetToken)
            .filter(PasswordResetToken.expires_at <= now)
            .delete(synchronize_session=False)
        )
        row = self.find_reset_token(token_hash, now)
        if row is None:
            return None
        user_id = row.user_id
        deleted = (
            self.db.query(PasswordResetToken)
            .filter(
                PasswordResetToken.id == row.id,
                PasswordResetToken.expires_at > now,
            )
            .delete(synchronize_session=False)
        )
        self.db.expunge(row)
        if deleted != 1:
            return None
        return user_id

    def delete_reset_tokens_for_user(self, user_id: int) -> int:
        return (
            self.db.query(PasswordResetToken)
            .filter(PasswordResetToken.user_id == user_id)
            .delete(synchronize_session=False)
        )

    # -- two-factor configuration --------------------------------------------

    def create_two_factor_config(
        self,
        user_id: int,
        method: str,
        totp_secret: Optional[str] = None,
        totp_iv: Optional[str] = None,
    ) -> TwoFactorConfig:
        """
        Store a disabled configuration.  A previous configuration of the
        user is replaced; callers reject the enabled case beforehand.
        """
        existing = self.find_two_factor_config(user_id)
        if existing:
            self.db.delete(existing)
            self.db.flush()
        config = TwoFactorConfig(
            user_id=user_id,
            method=method,
            totp_secret=totp_secret,
            totp_iv=totp_iv,
            enabled=False,
        )
        self.db.add(config)
        self.db.flush()
        return config

    def find_two_factor_config(self, user_id: int) -> Optional[TwoFactorConfig]:
        return self.db.query(TwoFactorConfig).filter(TwoFactorConfig.user_id == user_id).first()

    def enable_two_factor_config(self, config: TwoFactorConfig) -> TwoFactorConfig:
        config.enabled = True
        self.db.flush()
        return config

    def delete_two_factor_config(self, user_id: int) -> bool:
        """Drop the configuration and every outstanding code of the user."""
        config = self.find_two_factor_config(user_id)
        self.delete_one_time_codes_for_user(user_id)
        if config is None:
            return False
        self.db.delete(config)
        self.db.flush()
        return True

    # -- one-time codes ------------------------------------------------------

    def create_one_time_code(self, user_id: int, code: str, expires_at: datetime) -> TwoFactorCode:
        row = TwoFactorCode(user_id=user_id, code=code, expires_at=expires_at)
        self.db.add(row)
        self.db.flush()
        return row

    def consume_one_time_code(self, user_id: int, code: str, now: datetime) -> bool:
        """
        Compare-and-delete an unexpired code of *user_id*.

        Expired codes of the user are purged first.  On a match the user's
        other outstanding codes are removed as well.
        """
        (
            self.db.query(TwoFactorCode)
            .filter(TwoFactorCode.user_id == user_id, TwoFactorCode.expires_at <= now)
            .delete(synchronize_session=False)
        )
        deleted = (
            self.db.query(TwoFactorCode)
            .filter(
                TwoFactorCode.user_id == user_id,
                TwoFactorCode.code == code,
                TwoFactorCode.expires_at > now,
            )
            .delete(synchronize_session=False)
        )
        if deleted < 1:
            return False
        self.delete_one_time_codes_for_user(user_id)
        return True

    def delete_one_time_codes_for_user(self, user_id: int) -> int:
        return (
            self.db.query(TwoFactorCode)
            .filter(TwoFactorCode.user_id == user_id)
            .delete(synchronize_session=False)
        )

    # -- audit trail ---------------------------------------------------------

    def add_audit(
        self,
        action: str,
        actor_id: Optional[int] = None,
        target_user_id: Optional[int] = None,
        detail: Optional[str] = None,
        request_ip: Optional[str] = None,
    ) -> AuditLog:
        row = AuditLog(
            actor_id=actor_id,
            target_user_id=target_user_id,
            action=action,
            detail=detail,
            request_ip=request_ip,
        )
        self.db.add(row)
        return row

    def list_audit_logs(
        self,
        user_ids: Optional[list[int]] = None,
        actions: Optional[list[str]] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 200,
    ) -> list[tuple[AuditLog, Optional[str], Optional[str]]]:
        """
        Audit rows newest-first, each with the actor's and the target's
        username resolved (None once the account is gone).

        * ``user_ids`` – match rows where *either* actor or target is listed.
        * ``actions``  – exact action names.
        * ``since`` / ``until`` – bounds on ``created_at``.
        """
        Actor = aliased(User)
        Target = aliased(User)

        q = (
            self.db.query(AuditLog, Actor.username, Target.username)
            .outerjoin(Actor, AuditLog.actor_id == Actor.id)
            .outerjoin(Target, AuditLog.target_user_id == Target.id)
        )
        if user_ids:
            q = q.filter(
                AuditLog.actor_id.in_(user_ids) | AuditLog.target_user_id.in_(user_ids)
            )
        if actions:
            q = q.filter(AuditLog.action.in_(actions))
        if since:
            q = q.filter(AuditLog.created_at >= since)
        if until:
            q = q.filter(AuditLog.created_at <= until)

        return q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()


def get_store(db: Session = Depends(get_db)) -> CredentialStore:
    """FastAPI dependency: a store bound to the request's DB session."""
    return CredentialStore(db)
