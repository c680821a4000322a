# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""User ORM model."""

from sqlalchemy import Column, Integer, String, Enum, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(64), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    # NULL for accounts created through GitHub login
    password_hash = Column(String(255), nullable=True)
    role = Column(Enum("admin", "user", name="user_role"), nullable=False, default="user")
    avatar_url = Column(String(2048), nullable=True)
    # GitHub's numeric account id, stored as text.  Never changes once set.
    github_id = Column(String(64), unique=True, nullable=True, index=True)
    last_login = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    two_factor = relationship(
        "TwoFactorConfig",
        uselist=False,
        back_populates="user",
        cascade="all, delete-orphan",
    )
    two_factor_codes = relationship(
        "TwoFactorCode",
        cascade="all, delete-orphan",
    )
    reset_tokens = relationship(
        "PasswordResetToken",
        cascade="all, delete-orphan",
    )
