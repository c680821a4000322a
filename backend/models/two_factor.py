# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""Two-factor configuration and one-time code ORM models."""

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class TwoFactorConfig(Base):
    __tablename__ = "two_factor_configs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # At most one configuration per user
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    method = Column(Enum("email", "totp", name="two_factor_method"), nullable=False)
    # base64( ciphertext || GCM tag ) of the base32 TOTP secret; NULL for email
    totp_secret = Column(Text, nullable=True)
    # base64( 12-byte AES-GCM nonce )
    totp_iv = Column(String(64), nullable=True)
    # Flipped to True after the first successful confirmation
    enabled = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="two_factor")


class TwoFactorCode(Base):
    __tablename__ = "two_factor_codes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    code = Column(String(6), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
