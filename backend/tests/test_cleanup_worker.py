from datetime import timedelta

from gearmarket.models.account import Account
from gearmarket.models.security import RefreshToken
from gearmarket.services.cleanup_worker import CleanupWorker


def test_run_once_prunes_only_expired_credentials(session_factory, db, clock, make_account):
    stale = make_account(email="stale@x.com", nickname="stale")
    fresh = make_account(email="fresh@x.com", nickname="fresh")
    pending = make_account(email="pending@x.com", nickname="pending", verified=False)

    now = clock()
    stale.password_reset_token_hash = "a" * 64
    stale.password_reset_token_expires_at = now - timedelta(minutes=1)
    fresh.password_reset_token_hash = "b" * 64
    fresh.password_reset_token_expires_at = now + timedelta(hours=1)
    pending.email_verification_token = "pending-token"
    pending.email_verification_token_expires_at = now - timedelta(days=2)
    db.add_all([
        RefreshToken(account_id=stale.id, token="old", expires_at=now - timedelta(seconds=1)),
        RefreshToken(account_id=fresh.id, token="live", expires_at=now + timedelta(days=1)),
    ])
    db.commit()

    worker = CleanupWorker(session_factory=session_factory, clock=clock, interval_seconds=60)
    assert worker.run_once() == {"reset_tokens": 1, "refresh_tokens": 1}

    db.expire_all()
    by_email = {a.email: a for a in db.query(Account).all()}
    assert by_email["stale@x.com"].password_reset_token_hash is None
    assert by_email["fresh@x.com"].password_reset_token_hash == "b" * 64
    # Lapsed verification tokens mark abandoned signups and are kept.
    assert by_email["pending@x.com"].email_verification_token == "pending-token"
    assert [t.token for t in db.query(RefreshToken).all()] == ["live"]

    assert worker.run_once() == {"reset_tokens": 0, "refresh_tokens": 0}
    status = worker.status()
    assert status["runs"] == 2
    assert status["running"] is False
