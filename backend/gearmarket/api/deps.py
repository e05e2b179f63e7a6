"""API dependencies - service wiring and authentication"""

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from functools import lru_cache
from sqlalchemy.orm import Session
from typing import Optional
import logging

from gearmarket.config import settings
from gearmarket.core.database import get_db
from gearmarket.core.security import decode_access_token
from gearmarket.core.exceptions import AuthenticationError
from gearmarket.models.account import Account
from gearmarket.services.account_service import account_service
from gearmarket.services.auth_service import AuthPolicy, AuthService
from gearmarket.services.cache import InMemoryCache, KeyValueCache, RedisCache
from gearmarket.services.challenge import ChallengeVerifier, TurnstileVerifier
from gearmarket.services.email_service import EmailDispatcher, SmtpEmailService

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme
security = HTTPBearer()


@lru_cache()
def get_cache() -> KeyValueCache:
    """Shared cache: Redis when configured, otherwise process-local"""
    if settings.REDIS_URL:
        return RedisCache(settings.REDIS_URL, socket_timeout=settings.REDIS_SOCKET_TIMEOUT)
    logger.warning("REDIS_URL not set; rate limits and cooldowns are kept in process memory")
    return InMemoryCache()


@lru_cache()
def get_email_dispatcher() -> EmailDispatcher:
    return SmtpEmailService(
        smtp_host=settings.SMTP_HOST or None,
        smtp_port=settings.SMTP_PORT,
        smtp_user=settings.SMTP_USERNAME or None,
        smtp_password=settings.SMTP_PASSWORD or None,
        smtp_use_tls=settings.SMTP_USE_TLS,
        from_email=settings.SMTP_FROM_EMAIL,
        from_name=settings.SMTP_FROM_NAME,
        api_url=settings.API_URL,
        frontend_url=settings.FRONTEND_URL,
        send_actual_email=settings.SEND_ACTUAL_EMAIL,
        verification_ttl_hours=settings.EMAIL_VERIFICATION_TOKEN_EXPIRE_HOURS,
        reset_ttl_hours=settings.PASSWORD_RESET_TOKEN_EXPIRE_HOURS,
    )


@lru_cache()
def get_challenge_verifier() -> ChallengeVerifier:
    return TurnstileVerifier(
        settings.TURNSTILE_SECRET_KEY,
        settings.TURNSTILE_API_URL,
        timeout=settings.TURNSTILE_TIMEOUT_SECONDS,
    )


@lru_cache()
def get_auth_service() -> AuthService:
    """Build the auth orchestrator with its collaborators"""
    return AuthService(
        cache=get_cache(),
        email_dispatcher=get_email_dispatcher(),
        challenge_verifier=get_challenge_verifier(),
        policy=AuthPolicy.from_settings(settings),
    )


def get_client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


async def get_current_account(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> Account:
    """
    Get current authenticated account from JWT access token

    Raises:
        AuthenticationError: If token is invalid or account not found
    """
    payload = decode_access_token(credentials.credentials)
    if not payload:
        raise AuthenticationError("Invalid or expired token")

    account_id = payload.get("sub")
    if not account_id:
        raise AuthenticationError("Invalid token payload")

    account = account_service.get_by_id(db, account_id)
    if not account:
        raise AuthenticationError("Account not found")

    return account
