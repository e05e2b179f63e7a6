"""Security-related persistence models."""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from gearmarket.core.database import Base


class RefreshToken(Base):
    """Refresh credential for rotation/revocation."""

    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    token = Column(String(128), unique=True, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    account = relationship("Account", back_populates="refresh_tokens")

    __table_args__ = (
        Index("idx_refresh_tokens_account", "account_id"),
    )

    def is_usable(self, now) -> bool:
        return self.revoked_at is None and now < self.expires_at


class BlockRecord(Base):
    """Account suspension written by moderation; a null expiry is permanent."""

    __tablename__ = "block_records"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    reason = Column(String(255), nullable=True)
    blocked_at = Column(DateTime, server_default=func.now(), nullable=False)
    expires_at = Column(DateTime, nullable=True)
    blocked_by = Column(String(64), nullable=True)

    account = relationship("Account", back_populates="block_records")

    __table_args__ = (
        Index("idx_block_records_account", "account_id"),
    )

    @property
    def is_permanent(self) -> bool:
        return self.expires_at is None
