"""Account lookups against the credential store"""

from sqlalchemy.orm import Session
from typing import Optional
from gearmarket.models.account import Account
import logging

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AccountService:
    """Queries used by the auth flows; soft-deleted accounts are never returned"""

    @staticmethod
    def _live(db: Session):
        return db.query(Account).filter(Account.deleted_at.is_(None))

    @staticmethod
    def get_by_id(db: Session, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        return AccountService._live(db).filter(Account.id == account_id).first()

    @staticmethod
    def get_by_email(db: Session, email: str) -> Optional[Account]:
        """Get account by email (case-insensitive)"""
        return AccountService._live(db).filter(Account.email == normalize_email(email)).first()

    @staticmethod
    def get_by_nickname(db: Session, nickname: str) -> Optional[Account]:
        """Get account by nickname (case-sensitive)"""
        return AccountService._live(db).filter(Account.nickname == nickname).first()

    @staticmethod
    def get_by_verification_token(db: Session, token: str) -> Optional[Account]:
        if not token:
            return None
        return AccountService._live(db).filter(Account.email_verification_token == token).first()

    @staticmethod
    def get_by_reset_token_hash(db: Session, token_hash: str) -> Optional[Account]:
        if not token_hash:
            return None
        return AccountService._live(db).filter(Account.password_reset_token_hash == token_hash).first()

    @staticmethod
    def delete_account(db: Session, account: Account) -> None:
        """Hard-delete an account row (abandoned signups only)"""
        logger.info("Deleting abandoned unverified account %s", account.id)
        db.delete(account)
        db.flush()


account_service = AccountService()
