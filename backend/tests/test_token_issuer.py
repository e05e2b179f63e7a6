import hashlib
from datetime import timedelta

from gearmarket.core.security import utcnow
from gearmarket.services.token_issuer import ResetToken, VerificationToken


def test_verification_token_is_stored_raw_and_validates_until_expiry():
    issuer = VerificationToken(timedelta(hours=24))
    now = utcnow()
    issued = issuer.issue(now)

    assert issued.stored == issued.raw
    assert issued.expires_at == now + timedelta(hours=24)
    assert issuer.validate(issued.raw, issued.stored, issued.expires_at, now)
    assert issuer.validate(issued.raw, issued.stored, issued.expires_at, issued.expires_at - timedelta(seconds=1))
    assert not issuer.validate(issued.raw, issued.stored, issued.expires_at, issued.expires_at)


def test_reset_token_is_stored_as_sha256():
    issuer = ResetToken(timedelta(hours=1))
    now = utcnow()
    issued = issuer.issue(now)

    assert issued.stored != issued.raw
    assert issued.stored == hashlib.sha256(issued.raw.encode("utf-8")).hexdigest()
    assert issuer.validate(issued.raw, issued.stored, issued.expires_at, now)
    # Presenting the stored digest is not the same as presenting the token.
    assert not issuer.validate(issued.stored, issued.stored, issued.expires_at, now)


def test_absent_and_expired_tokens_are_indistinguishable():
    issuer = VerificationToken(timedelta(minutes=5))
    now = utcnow()
    issued = issuer.issue(now)
    later = now + timedelta(minutes=10)

    results = {
        "missing raw": issuer.validate(None, issued.stored, issued.expires_at, now),
        "missing stored": issuer.validate(issued.raw, None, issued.expires_at, now),
        "missing expiry": issuer.validate(issued.raw, issued.stored, None, now),
        "expired": issuer.validate(issued.raw, issued.stored, issued.expires_at, later),
        "mismatch": issuer.validate("other", issued.stored, issued.expires_at, now),
    }
    assert set(results.values()) == {False}


def test_issue_accepts_ttl_override_and_tokens_are_unique():
    issuer = ResetToken(timedelta(hours=24))
    now = utcnow()
    first = issuer.issue(now, ttl=timedelta(minutes=15))
    second = issuer.issue(now)

    assert first.expires_at == now + timedelta(minutes=15)
    assert first.raw != second.raw
    assert len(first.raw) >= 43
