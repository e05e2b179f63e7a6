"""Account suspension checks."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from gearmarket.core.exceptions import AccountBlockedError
from gearmarket.models.security import BlockRecord

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_REASON = "This account has been blocked"


class BlockPolicy:
    """Reads block records written by moderation; never creates them."""

    @staticmethod
    def check_active(db: Session, account_id: str, now: datetime) -> Optional[BlockRecord]:
        """Return the active block for an account, or None.

        Permanent blocks win over temporary ones; among temporary blocks the
        one lasting longest is reported.
        """
        records = (
            db.query(BlockRecord)
            .filter(
                BlockRecord.account_id == account_id,
                or_(BlockRecord.expires_at.is_(None), BlockRecord.expires_at > now),
            )
            .all()
        )
        if not records:
            return None
        for record in records:
            if record.is_permanent:
                return record
        return max(records, key=lambda r: r.expires_at)

    @staticmethod
    def ensure_not_blocked(db: Session, account_id: str, now: datetime) -> None:
        record = BlockPolicy.check_active(db, account_id, now)
        if record is None:
            return
        reason = record.reason or DEFAULT_BLOCK_REASON
        logger.warning("Blocked account %s attempted access", account_id)
        if record.is_permanent:
            raise AccountBlockedError(reason)
        raise AccountBlockedError(reason, blocked_until=record.expires_at)


block_policy = BlockPolicy()
