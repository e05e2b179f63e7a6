"""Auth orchestration - registration, verification, login and password reset flows"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from gearmarket.config import Settings, settings
from gearmarket.core.exceptions import (
    AccountBlockedError,
    AccountUnverifiedError,
    DuplicateEmailError,
    DuplicateNicknameError,
    InvalidCredentialsError,
    InvalidResetTokenError,
    InvalidVerificationTokenError,
    TermsNotAgreedError,
)
from gearmarket.core.security import (
    Clock,
    access_token_lifetime,
    get_password_hash,
    redact_email,
    utcnow,
    verify_password,
)
from gearmarket.models.account import Account
from gearmarket.schemas.auth import (
    AccountResponse,
    AuthResponse,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    VerificationInfoResponse,
    VerifyResetTokenResponse,
)
from gearmarket.services.account_service import account_service, normalize_email
from gearmarket.services.block_policy import DEFAULT_BLOCK_REASON, block_policy
from gearmarket.services.cache import KeyValueCache
from gearmarket.services.challenge import ChallengeGate, ChallengeVerifier
from gearmarket.services.email_service import EmailDispatcher
from gearmarket.services.rate_limiter import FixedWindowRateLimiter, RateLimitPolicy, cache_key
from gearmarket.services.token_issuer import ResetToken, VerificationToken
from gearmarket.services.token_service import TokenService

logger = logging.getLogger(__name__)

VERIFICATION_ACTION = "resend_verification"
PASSWORD_RESET_ACTION = "password_reset"

RESET_EMAIL_SENT_MESSAGE = "If an account exists for this email, a password reset link has been sent."


@dataclass(frozen=True)
class AuthPolicy:
    """Expiry windows, cooldowns and abuse limits for the auth flows."""

    verification_ttl: timedelta
    reset_ttl: timedelta
    email_cooldown_seconds: int
    resend_limits: RateLimitPolicy
    reset_limits: RateLimitPolicy
    expose_verification_token: bool = True

    @classmethod
    def from_settings(cls, config: Settings) -> "AuthPolicy":
        return cls(
            verification_ttl=timedelta(hours=config.EMAIL_VERIFICATION_TOKEN_EXPIRE_HOURS),
            reset_ttl=timedelta(hours=config.PASSWORD_RESET_TOKEN_EXPIRE_HOURS),
            email_cooldown_seconds=config.EMAIL_COOLDOWN_SECONDS,
            resend_limits=RateLimitPolicy(
                action=VERIFICATION_ACTION,
                hourly_limit=config.RESEND_VERIFICATION_LIMIT_PER_HOUR,
                daily_limit=config.RESEND_VERIFICATION_LIMIT_PER_DAY,
                challenge_threshold=config.CHALLENGE_THRESHOLD,
            ),
            reset_limits=RateLimitPolicy(
                action=PASSWORD_RESET_ACTION,
                hourly_limit=config.PASSWORD_RESET_LIMIT_PER_HOUR,
                daily_limit=config.PASSWORD_RESET_LIMIT_PER_DAY,
                challenge_threshold=config.CHALLENGE_THRESHOLD,
            ),
            expose_verification_token=config.EXPOSE_VERIFICATION_TOKEN,
        )


class AuthService:
    """Entry point for every credential flow.

    Policy checks (block, rate limit, challenge) run before any token is
    issued or rotated, and email is dispatched only after they pass.
    """

    def __init__(
        self,
        *,
        cache: KeyValueCache,
        email_dispatcher: EmailDispatcher,
        challenge_verifier: ChallengeVerifier,
        policy: Optional[AuthPolicy] = None,
        clock: Clock = utcnow,
        token_service: Optional[TokenService] = None,
    ) -> None:
        self.policy = policy or AuthPolicy.from_settings(settings)
        self._clock = clock
        self._cache = cache
        self._email = email_dispatcher
        self.rate_limiter = FixedWindowRateLimiter(cache)
        self.resend_gate = ChallengeGate(challenge_verifier, self.policy.resend_limits.challenge_threshold)
        self.reset_gate = ChallengeGate(challenge_verifier, self.policy.reset_limits.challenge_threshold)
        self.verification_tokens = VerificationToken(self.policy.verification_ttl)
        self.reset_tokens = ResetToken(self.policy.reset_ttl)
        self.tokens = token_service or TokenService(clock=clock)

    # ------------------------------------------------------------------
    # Last-sent markers
    # ------------------------------------------------------------------

    @staticmethod
    def _marker_key(action: str, email: str) -> str:
        return cache_key("sent", action, email)

    def _mark_sent(self, action: str, email: str, now: datetime) -> None:
        self._cache.set(
            self._marker_key(action, email),
            now.isoformat(),
            self.policy.email_cooldown_seconds,
        )

    def _last_sent(self, action: str, email: str) -> Optional[datetime]:
        raw = self._cache.get(self._marker_key(action, email))
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("Discarding malformed send marker for %s", redact_email(email))
            return None

    def _remaining_cooldown(self, action: str, email: str, now: datetime) -> Optional[int]:
        """Seconds until another email may be sent, or None if allowed now."""
        sent_at = self._last_sent(action, email)
        if sent_at is None:
            return None
        remaining = self.policy.email_cooldown_seconds - (now - sent_at).total_seconds()
        if remaining <= 0:
            return None
        return int(math.ceil(remaining))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _verification_token_live(self, account: Account, now: datetime) -> bool:
        return self.verification_tokens.validate(
            account.email_verification_token,
            account.email_verification_token,
            account.email_verification_token_expires_at,
            now,
        )

    def _account_for_verification_token(self, db: Session, token: str, now: datetime) -> Account:
        account = account_service.get_by_verification_token(db, token)
        if (
            account is None
            or account.verified
            or not self.verification_tokens.validate(
                token,
                account.email_verification_token,
                account.email_verification_token_expires_at,
                now,
            )
        ):
            raise InvalidVerificationTokenError()
        return account

    def _account_for_reset_token(self, db: Session, token: str, now: datetime) -> Account:
        if not token:
            raise InvalidResetTokenError()
        account = account_service.get_by_reset_token_hash(db, self.reset_tokens.stored_form(token))
        if account is None or not self.reset_tokens.validate(
            token,
            account.password_reset_token_hash,
            account.password_reset_token_expires_at,
            now,
        ):
            raise InvalidResetTokenError()
        return account

    def _auth_response(self, db: Session, account: Account, now: datetime) -> AuthResponse:
        access_token, refresh_token = self.tokens.issue_token_pair(db, account)
        return self._build_auth_response(account, access_token, refresh_token, now)

    @staticmethod
    def _build_auth_response(
        account: Account, access_token: str, refresh_token: str, now: datetime
    ) -> AuthResponse:
        return AuthResponse(
            account_id=account.id,
            email=account.email,
            nickname=account.nickname,
            verified=account.verified,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=now + access_token_lifetime(),
        )

    def _is_reclaimable(self, account: Account, now: datetime) -> bool:
        """Unverified signup whose verification window has lapsed."""
        expires_at = account.email_verification_token_expires_at
        return not account.verified and (expires_at is None or expires_at <= now)

    # ------------------------------------------------------------------
    # Registration & email verification
    # ------------------------------------------------------------------

    def register(self, db: Session, request: RegisterRequest) -> RegisterResponse:
        """
        Create an unverified account and email its verification link

        An existing unverified account whose verification token has expired is
        treated as abandoned and replaced.

        Raises:
            TermsNotAgreedError, DuplicateEmailError, DuplicateNicknameError
        """
        if not (request.agree_terms and request.agree_privacy):
            raise TermsNotAgreedError()

        now = self._clock()
        email = normalize_email(request.email)

        existing = account_service.get_by_email(db, email)
        if existing is not None:
            if not self._is_reclaimable(existing, now):
                raise DuplicateEmailError()
            account_service.delete_account(db, existing)

        if account_service.get_by_nickname(db, request.nickname) is not None:
            db.rollback()
            raise DuplicateNicknameError()

        issued = self.verification_tokens.issue(now)
        account = Account(
            email=email,
            nickname=request.nickname,
            password_hash=get_password_hash(request.password),
            phone=request.phone,
            verified=False,
            email_verification_token=issued.stored,
            email_verification_token_expires_at=issued.expires_at,
            created_at=now,
            updated_at=now,
        )
        db.add(account)
        try:
            db.commit()
        except IntegrityError:
            # A concurrent registration won the unique constraint.
            db.rollback()
            if account_service.get_by_email(db, email) is not None:
                raise DuplicateEmailError()
            raise DuplicateNicknameError()
        db.refresh(account)

        self._email.send_verification_link(account.email, issued.raw)
        self._mark_sent(VERIFICATION_ACTION, account.email, now)
        logger.info("Registered account %s (%s)", account.id, redact_email(account.email))

        return RegisterResponse(
            message="Registration successful. Please check your email to verify your account.",
            account=AccountResponse.model_validate(account),
            verification_token=issued.raw if self.policy.expose_verification_token else None,
        )

    def verify_email_by_token(self, db: Session, token: str) -> AuthResponse:
        """Mark the account verified and sign it in."""
        now = self._clock()
        account = self._account_for_verification_token(db, token, now)

        account.verified = True
        account.email_verification_token = None
        account.email_verification_token_expires_at = None
        account.updated_at = now
        db.commit()

        logger.info("Email verified for account %s", account.id)
        return self._auth_response(db, account, now)

    def get_verification_info(self, db: Session, token: str) -> VerificationInfoResponse:
        now = self._clock()
        account = self._account_for_verification_token(db, token, now)

        sent_at = self._last_sent(VERIFICATION_ACTION, account.email)
        if sent_at is None:
            # The expiry is refreshed on every send.
            sent_at = account.email_verification_token_expires_at - self.policy.verification_ttl

        return VerificationInfoResponse(
            email=account.email,
            sent_at=sent_at,
            remaining_cooldown=self._remaining_cooldown(VERIFICATION_ACTION, account.email, now),
        )

    def resend_verification_email(
        self,
        db: Session,
        token: str,
        captcha_token: Optional[str] = None,
        remote_ip: Optional[str] = None,
    ) -> MessageResponse:
        """
        Re-send the verification link

        Token failures are reported before any rate-limit counter is touched.
        The token value is kept; only its expiry is extended.
        """
        now = self._clock()
        account = self._account_for_verification_token(db, token, now)

        attempts = self.rate_limiter.hit(self.policy.resend_limits, account.email)
        self.resend_gate.enforce(attempts, captcha_token, remote_ip)

        account.email_verification_token_expires_at = self.verification_tokens.expiry_from(now)
        account.updated_at = now
        db.commit()

        self._email.send_verification_link(account.email, account.email_verification_token)
        self._mark_sent(VERIFICATION_ACTION, account.email, now)
        logger.info("Verification email re-sent for account %s (attempt %d this hour)", account.id, attempts)

        return MessageResponse(message="Verification email sent")

    def check_email_available(self, db: Session, email: str) -> bool:
        account = account_service.get_by_email(db, email)
        return account is None or self._is_reclaimable(account, self._clock())

    def check_nickname_available(self, db: Session, nickname: str) -> bool:
        return account_service.get_by_nickname(db, nickname.strip()) is None

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def log_in(self, db: Session, email: str, password: str) -> AuthResponse:
        """
        Authenticate with email and password

        Raises:
            InvalidCredentialsError: unknown email or wrong password
            AccountBlockedError: active permanent or temporary block
            AccountUnverifiedError: email not verified yet; carries the
                pending token and the resend cooldown
        """
        now = self._clock()
        account = account_service.get_by_email(db, email)
        password_ok = verify_password(password, account.password_hash if account else None)
        if account is None or not password_ok:
            raise InvalidCredentialsError()

        block_policy.ensure_not_blocked(db, account.id, now)

        if not account.verified:
            self._handle_unverified_login(db, account, now)

        account.last_login_at = now
        db.commit()

        logger.info("Account authenticated: %s", account.id)
        return self._auth_response(db, account, now)

    def _handle_unverified_login(self, db: Session, account: Account, now: datetime) -> None:
        token_live = self._verification_token_live(account, now)
        remaining = self._remaining_cooldown(VERIFICATION_ACTION, account.email, now)
        if remaining is not None and token_live:
            raise AccountUnverifiedError(account.email_verification_token, remaining)

        if not token_live:
            issued = self.verification_tokens.issue(now)
            account.email_verification_token = issued.stored
            account.email_verification_token_expires_at = issued.expires_at
            account.updated_at = now
            db.commit()

        self._email.send_verification_link(account.email, account.email_verification_token)
        self._mark_sent(VERIFICATION_ACTION, account.email, now)
        logger.info("Verification email sent on login for unverified account %s", account.id)
        raise AccountUnverifiedError(account.email_verification_token, self.policy.email_cooldown_seconds)

    def log_out(self, db: Session, refresh_token: Optional[str] = None) -> MessageResponse:
        """Best-effort revoke; always reports success."""
        try:
            self.tokens.revoke(db, refresh_token)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to revoke refresh token during logout")
        return MessageResponse(message="Logout successful")

    def refresh_access_token(self, db: Session, refresh_token: str) -> AuthResponse:
        now = self._clock()
        access_token, new_refresh_token, account = self.tokens.rotate(db, refresh_token)
        return self._build_auth_response(account, access_token, new_refresh_token, now)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def send_password_reset_email(
        self,
        db: Session,
        email: str,
        captcha_token: Optional[str] = None,
        remote_ip: Optional[str] = None,
    ) -> MessageResponse:
        """
        Email a single-use reset link

        Unknown and blocked accounts get the same response and the same
        marker update as a real send, but no token and no email.
        """
        now = self._clock()
        email = normalize_email(email)

        attempts = self.rate_limiter.hit(self.policy.reset_limits, email)
        self.reset_gate.enforce(attempts, captcha_token, remote_ip)

        account = account_service.get_by_email(db, email)
        if account is None or block_policy.check_active(db, account.id, now) is not None:
            logger.info("Password reset requested for ineligible address %s; not sent", redact_email(email))
        else:
            issued = self.reset_tokens.issue(now)
            account.password_reset_token_hash = issued.stored
            account.password_reset_token_expires_at = issued.expires_at
            account.updated_at = now
            db.commit()
            self._email.send_password_reset_link(account.email, issued.raw)
            logger.info("Password reset email sent for account %s", account.id)

        self._mark_sent(PASSWORD_RESET_ACTION, email, now)
        return MessageResponse(message=RESET_EMAIL_SENT_MESSAGE)

    def verify_password_reset_token(self, db: Session, token: str) -> VerifyResetTokenResponse:
        account = self._account_for_reset_token(db, token, self._clock())
        return VerifyResetTokenResponse(email=account.email)

    def reset_password(self, db: Session, token: str, new_password: str) -> MessageResponse:
        """
        Set a new password with a reset token

        The token is consumed and every refresh credential of the account is
        deleted in the same commit. A blocked account is left untouched.
        """
        now = self._clock()
        account = self._account_for_reset_token(db, token, now)

        block = block_policy.check_active(db, account.id, now)
        if block is not None:
            logger.warning("Password reset refused for blocked account %s", account.id)
            raise AccountBlockedError(DEFAULT_BLOCK_REASON, blocked_until=block.expires_at)

        account.password_hash = get_password_hash(new_password)
        account.password_reset_token_hash = None
        account.password_reset_token_expires_at = None
        account.updated_at = now
        revoked = self.tokens.revoke_all(db, account.id, commit=False)
        db.commit()

        logger.info("Password reset for account %s; %d sessions revoked", account.id, revoked)
        return MessageResponse(message="Password has been reset successfully")
