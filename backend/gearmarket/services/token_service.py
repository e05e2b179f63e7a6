"""Refresh credential rotation and revocation service."""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from gearmarket.config import settings
from gearmarket.core.exceptions import InvalidRefreshTokenError, RefreshTokenUnusableError
from gearmarket.core.security import Clock, create_access_token, utcnow
from gearmarket.models.account import Account
from gearmarket.models.security import RefreshToken

logger = logging.getLogger(__name__)

REFRESH_TOKEN_BYTES = 64


class TokenService:
    """Manage refresh credential lifecycle (rotate-on-use)."""

    def __init__(self, clock: Clock = utcnow, refresh_ttl: Optional[timedelta] = None) -> None:
        self._clock = clock
        self.refresh_ttl = refresh_ttl or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)

    def create_access_token(self, account: Account) -> str:
        return create_access_token(
            {"sub": account.id, "email": account.email, "nickname": account.nickname},
            now=self._clock(),
        )

    def _add_refresh_record(self, db: Session, account_id: str) -> RefreshToken:
        now = self._clock()
        record = RefreshToken(
            account_id=account_id,
            token=secrets.token_urlsafe(REFRESH_TOKEN_BYTES),
            created_at=now,
            expires_at=now + self.refresh_ttl,
        )
        db.add(record)
        db.flush()
        return record

    def issue_refresh(self, db: Session, account_id: str) -> str:
        record = self._add_refresh_record(db, account_id)
        db.commit()
        return record.token

    def issue_token_pair(self, db: Session, account: Account) -> Tuple[str, str]:
        access_token = self.create_access_token(account)
        refresh_token = self.issue_refresh(db, account.id)
        return access_token, refresh_token

    def rotate(self, db: Session, refresh_token: str) -> Tuple[str, str, Account]:
        """
        Exchange a refresh credential for a new access/refresh pair

        The old row is revoked and the new row inserted in one commit.

        Raises:
            InvalidRefreshTokenError: token unknown
            RefreshTokenUnusableError: token expired or already revoked
        """
        if not refresh_token:
            raise InvalidRefreshTokenError()

        record = db.query(RefreshToken).filter(RefreshToken.token == refresh_token).first()
        if not record or record.account is None or record.account.deleted_at is not None:
            raise InvalidRefreshTokenError()

        now = self._clock()
        if not record.is_usable(now):
            raise RefreshTokenUnusableError()

        account = record.account
        try:
            record.revoked_at = now
            new_record = self._add_refresh_record(db, account.id)
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info("Refresh token rotated for account %s", account.id)
        return self.create_access_token(account), new_record.token, account

    def revoke(self, db: Session, refresh_token: Optional[str]) -> bool:
        """Revoke a credential if it exists; never raises for unknown tokens."""
        if not refresh_token:
            return True
        record = db.query(RefreshToken).filter(RefreshToken.token == refresh_token).first()
        if record and record.revoked_at is None:
            record.revoked_at = self._clock()
            db.commit()
            logger.info("Refresh token revoked for account %s", record.account_id)
        return True

    def revoke_all(self, db: Session, account_id: str, *, commit: bool = True) -> int:
        """Delete every refresh credential of an account (global logout)."""
        deleted = (
            db.query(RefreshToken)
            .filter(RefreshToken.account_id == account_id)
            .delete(synchronize_session=False)
        )
        if commit:
            db.commit()
        return deleted
