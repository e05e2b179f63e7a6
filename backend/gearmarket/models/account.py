"""Account model"""

import uuid

from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from gearmarket.core.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class Account(Base):
    """Marketplace account with its pending verification/reset tokens"""

    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=_new_id)
    # Stored lower-cased; uniqueness is therefore case-insensitive.
    email = Column(String(255), unique=True, nullable=False)
    nickname = Column(String(50), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    phone = Column(String(32), nullable=True)
    verified = Column(Boolean, default=False, nullable=False)

    email_verification_token = Column(String(128), unique=True, nullable=True)
    email_verification_token_expires_at = Column(DateTime, nullable=True)
    # SHA-256 hex of the emailed token; the raw value is never stored.
    password_reset_token_hash = Column(String(64), unique=True, nullable=True)
    password_reset_token_expires_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)
    last_login_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)

    # Relationships
    refresh_tokens = relationship("RefreshToken", back_populates="account", cascade="all, delete-orphan")
    block_records = relationship("BlockRecord", back_populates="account", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Account(id={self.id}, email='{self.email}', verified={self.verified})>"
