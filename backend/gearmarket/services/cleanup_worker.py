"""Background worker that prunes expired credentials."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from gearmarket.config import settings
from gearmarket.core.database import SessionLocal
from gearmarket.core.security import Clock, utcnow
from gearmarket.models.account import Account
from gearmarket.models.security import RefreshToken

logger = logging.getLogger(__name__)


class CleanupWorker:
    """Periodically clears expired reset tokens and expired refresh credentials.

    Expired verification tokens are left in place: registration and login use
    them to recognise abandoned signups.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        clock: Clock = utcnow,
        interval_seconds: Optional[float] = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._interval = interval_seconds or settings.CLEANUP_INTERVAL_SECONDS
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._heartbeat: float = 0.0
        self._runs: int = 0

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="cleanup-worker", daemon=True)
        self._thread.start()
        logger.info("Cleanup worker started")

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        logger.info("Cleanup worker stopped")

    def status(self) -> dict:
        return {
            "running": self.is_running(),
            "last_heartbeat": self._heartbeat,
            "runs": self._runs,
        }

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as exc:
                logger.exception("Credential cleanup failed: %s", exc)
            self._heartbeat = time.time()
            self._stop_event.wait(max(1.0, self._interval))

    def run_once(self) -> Dict[str, int]:
        db = self._session_factory()
        try:
            now = self._clock()
            cleared_resets = (
                db.query(Account)
                .filter(
                    Account.password_reset_token_hash.isnot(None),
                    Account.password_reset_token_expires_at < now,
                )
                .update(
                    {
                        Account.password_reset_token_hash: None,
                        Account.password_reset_token_expires_at: None,
                    },
                    synchronize_session=False,
                )
            )
            purged_refresh = (
                db.query(RefreshToken)
                .filter(RefreshToken.expires_at < now)
                .delete(synchronize_session=False)
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        self._runs += 1
        if cleared_resets or purged_refresh:
            logger.info(
                "Cleaned up %d expired reset tokens and %d expired refresh tokens",
                cleared_resets,
                purged_refresh,
            )
        else:
            logger.debug("No expired tokens to clean up")
        return {"reset_tokens": cleared_resets, "refresh_tokens": purged_refresh}


cleanup_worker = CleanupWorker()
