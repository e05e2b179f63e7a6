import hashlib
from datetime import timedelta

import pytest

from gearmarket.core.exceptions import (
    AccountBlockedError,
    ChallengeFailedError,
    ChallengeRequiredError,
    InvalidCredentialsError,
    InvalidRefreshTokenError,
    InvalidResetTokenError,
    RateLimitExceededError,
)
from gearmarket.core.security import verify_password
from gearmarket.models.account import Account
from gearmarket.models.security import BlockRecord
from gearmarket.services.auth_service import RESET_EMAIL_SENT_MESSAGE


def _reset_token(auth):
    return auth.emails.of_kind("reset")[-1][2]


def test_reset_request_does_not_reveal_account_existence(auth, db, make_account):
    make_account(email="a@x.com")

    known = auth.service.send_password_reset_email(db, "a@x.com")
    unknown = auth.service.send_password_reset_email(db, "ghost@x.com")

    assert known.model_dump() == unknown.model_dump() == {"message": RESET_EMAIL_SENT_MESSAGE}
    assert [entry[1] for entry in auth.emails.of_kind("reset")] == ["a@x.com"]


def test_reset_token_is_hashed_at_rest(auth, db, make_account):
    make_account()
    auth.service.send_password_reset_email(db, "a@x.com")
    raw = _reset_token(auth)

    account = db.query(Account).one()
    assert account.password_reset_token_hash == hashlib.sha256(raw.encode("utf-8")).hexdigest()
    assert account.password_reset_token_expires_at == auth.clock() + timedelta(hours=24)
    assert auth.service.verify_password_reset_token(db, raw).email == "a@x.com"


def test_reset_password_is_single_use_and_ends_sessions(auth, db, make_account):
    make_account()
    session = auth.service.log_in(db, "a@x.com", "Secret1!")
    auth.service.send_password_reset_email(db, "a@x.com")
    raw = _reset_token(auth)

    auth.service.reset_password(db, raw, "NewSecret2!")

    account = db.query(Account).one()
    assert verify_password("NewSecret2!", account.password_hash)
    assert account.password_reset_token_hash is None
    with pytest.raises(InvalidCredentialsError):
        auth.service.log_in(db, "a@x.com", "Secret1!")
    with pytest.raises(InvalidRefreshTokenError):
        auth.service.refresh_access_token(db, session.refresh_token)
    with pytest.raises(InvalidResetTokenError):
        auth.service.reset_password(db, raw, "Another3!")
    assert auth.service.log_in(db, "a@x.com", "NewSecret2!").access_token


def test_expired_reset_token(auth, db, make_account):
    make_account()
    auth.service.send_password_reset_email(db, "a@x.com")
    raw = _reset_token(auth)
    auth.clock.advance(hours=24)

    with pytest.raises(InvalidResetTokenError):
        auth.service.verify_password_reset_token(db, raw)
    with pytest.raises(InvalidResetTokenError):
        auth.service.reset_password(db, raw, "NewSecret2!")
    with pytest.raises(InvalidResetTokenError):
        auth.service.verify_password_reset_token(db, "")


def test_fourth_request_in_an_hour_is_rate_limited(auth, db, make_account):
    make_account()
    auth.service.send_password_reset_email(db, "a@x.com")
    auth.service.send_password_reset_email(db, "a@x.com")
    with pytest.raises(ChallengeRequiredError):
        auth.service.send_password_reset_email(db, "a@x.com")

    with pytest.raises(RateLimitExceededError) as exc_info:
        auth.service.send_password_reset_email(db, "a@x.com")
    assert exc_info.value.retry_after == 3600
    assert len(auth.emails.of_kind("reset")) == 2


def test_third_request_passes_with_valid_proof(auth, db, make_account):
    make_account()
    auth.service.send_password_reset_email(db, "a@x.com")
    auth.service.send_password_reset_email(db, "a@x.com")

    auth.service.send_password_reset_email(db, "a@x.com", captcha_token="valid-proof", remote_ip="10.1.1.1")

    assert auth.verifier.calls == [("valid-proof", "10.1.1.1")]
    assert len(auth.emails.of_kind("reset")) == 3


def test_third_request_with_rejected_proof(auth, db, make_account):
    make_account()
    auth.service.send_password_reset_email(db, "a@x.com")
    auth.service.send_password_reset_email(db, "a@x.com")

    with pytest.raises(ChallengeFailedError):
        auth.service.send_password_reset_email(db, "a@x.com", captcha_token="forged")


def test_daily_reset_limit(auth, db, make_account):
    make_account()
    auth.service.send_password_reset_email(db, "a@x.com")
    auth.service.send_password_reset_email(db, "a@x.com")
    auth.service.send_password_reset_email(db, "a@x.com", captcha_token="valid-proof")
    auth.clock.advance(hours=1, seconds=1)
    auth.service.send_password_reset_email(db, "a@x.com")
    auth.service.send_password_reset_email(db, "a@x.com")

    with pytest.raises(RateLimitExceededError) as exc_info:
        auth.service.send_password_reset_email(db, "a@x.com")
    assert exc_info.value.retry_after == 86400


def test_unknown_email_still_counts_against_limits(auth, db):
    auth.service.send_password_reset_email(db, "ghost@x.com")
    auth.service.send_password_reset_email(db, "ghost@x.com")
    with pytest.raises(ChallengeRequiredError):
        auth.service.send_password_reset_email(db, "ghost@x.com")


def test_blocked_account_gets_no_reset_email(auth, db, make_account):
    account = make_account()
    db.add(BlockRecord(account_id=account.id, reason="Fraud"))
    db.commit()

    response = auth.service.send_password_reset_email(db, "a@x.com")

    assert response.message == RESET_EMAIL_SENT_MESSAGE
    assert auth.emails.of_kind("reset") == []
    assert db.query(Account).one().password_reset_token_hash is None


def test_reset_on_blocked_account_changes_nothing(auth, db, make_account):
    account = make_account()
    auth.service.send_password_reset_email(db, "a@x.com")
    raw = _reset_token(auth)
    until = auth.clock() + timedelta(days=2)
    db.add(BlockRecord(account_id=account.id, reason="Chargeback", expires_at=until))
    db.commit()

    with pytest.raises(AccountBlockedError) as exc_info:
        auth.service.reset_password(db, raw, "NewSecret2!")

    assert exc_info.value.blocked_until == until
    db.expire_all()
    stored = db.query(Account).one()
    assert verify_password("Secret1!", stored.password_hash)
    assert stored.password_reset_token_hash is not None


def test_reset_accepts_long_password(auth, db, make_account):
    make_account()
    auth.service.send_password_reset_email(db, "a@x.com")
    new_password = "ü" * 128

    auth.service.reset_password(db, _reset_token(auth), new_password)

    assert verify_password(new_password, db.query(Account).one().password_hash)
    assert auth.service.log_in(db, "a@x.com", new_password).access_token
