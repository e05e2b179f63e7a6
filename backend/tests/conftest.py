from datetime import timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gearmarket.core.database import Base
from gearmarket.core.security import get_password_hash, utcnow
from gearmarket.models.account import Account
from gearmarket.services.auth_service import (
    PASSWORD_RESET_ACTION,
    VERIFICATION_ACTION,
    AuthPolicy,
    AuthService,
)
from gearmarket.services.cache import InMemoryCache
from gearmarket.services.challenge import ChallengeVerifier
from gearmarket.services.email_service import EmailDispatcher
from gearmarket.services.rate_limiter import RateLimitPolicy

VALID_PROOF = "valid-proof"


class FakeClock:
    def __init__(self, start=None):
        self.now = start or utcnow().replace(microsecond=0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingEmail(EmailDispatcher):
    def __init__(self):
        self.sent = []

    def send_verification_link(self, to_email, token):
        self.sent.append(("verification", to_email, token))

    def send_password_reset_link(self, to_email, token):
        self.sent.append(("reset", to_email, token))

    def of_kind(self, kind):
        return [entry for entry in self.sent if entry[0] == kind]


class StubVerifier(ChallengeVerifier):
    def __init__(self):
        self.calls = []

    def verify(self, proof, remote_ip=None):
        self.calls.append((proof, remote_ip))
        return proof == VALID_PROOF


def _policy():
    return AuthPolicy(
        verification_ttl=timedelta(hours=24),
        reset_ttl=timedelta(hours=24),
        email_cooldown_seconds=60,
        resend_limits=RateLimitPolicy(VERIFICATION_ACTION, hourly_limit=5, daily_limit=15),
        reset_limits=RateLimitPolicy(PASSWORD_RESET_ACTION, hourly_limit=3, daily_limit=5),
        expose_verification_token=True,
    )


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def auth(clock):
    cache = InMemoryCache(clock=clock)
    emails = RecordingEmail()
    verifier = StubVerifier()
    service = AuthService(
        cache=cache,
        email_dispatcher=emails,
        challenge_verifier=verifier,
        policy=_policy(),
        clock=clock,
    )
    return SimpleNamespace(service=service, clock=clock, cache=cache, emails=emails, verifier=verifier)


@pytest.fixture
def make_account(db, clock):
    def _make(email="a@x.com", nickname="alice", password="Secret1!", verified=True):
        account = Account(
            email=email,
            nickname=nickname,
            password_hash=get_password_hash(password),
            verified=verified,
            created_at=clock(),
            updated_at=clock(),
        )
        db.add(account)
        db.commit()
        db.refresh(account)
        return account

    return _make
