"""Security utilities - JWT, password hashing, clock"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Dict, Any
from jose import JWTError, jwt
import base64
import bcrypt
import hashlib
from gearmarket.config import settings
import secrets

Clock = Callable[[], datetime]


def _password_digest(password: str) -> bytes:
    # bcrypt reads at most 72 bytes; a fixed 44-byte digest keeps every character significant.
    return base64.b64encode(hashlib.sha256(password.encode('utf-8')).digest())


# Verified against when the email is unknown so login timing stays uniform.
_TIMING_DUMMY_HASH = bcrypt.hashpw(_password_digest("timing-dummy-password"), bcrypt.gensalt())


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the store keeps naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """
    Verify a password against its hash

    Args:
        plain_password: Plain text password
        hashed_password: Hashed password, or None for an unknown account

    Returns:
        bool: True if password matches
    """
    digest = _password_digest(plain_password)
    if not hashed_password:
        bcrypt.checkpw(digest, _TIMING_DUMMY_HASH)
        return False
    try:
        return bcrypt.checkpw(digest, hashed_password.encode('utf-8'))
    except ValueError:
        return False


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt

    Args:
        password: Plain text password of any length

    Returns:
        str: Hashed password
    """
    return bcrypt.hashpw(
        _password_digest(password),
        bcrypt.gensalt()
    ).decode('utf-8')


def access_token_lifetime() -> timedelta:
    return timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)


def create_access_token(
    data: Dict[str, Any],
    expires_delta: Optional[timedelta] = None,
    now: Optional[datetime] = None,
) -> str:
    """
    Create JWT access token

    Args:
        data: Data to encode in token
        expires_delta: Token expiration time
        now: Issue time (defaults to current UTC time)

    Returns:
        str: Encoded JWT token
    """
    to_encode = data.copy()
    issued_at = now or utcnow()
    expire = issued_at + (expires_delta or access_token_lifetime())

    to_encode.update({
        "exp": expire.replace(tzinfo=timezone.utc),
        "iat": issued_at.replace(tzinfo=timezone.utc),
        "iss": settings.JWT_ISSUER,
        "typ": "access",
        "jti": secrets.token_urlsafe(32)  # Unique token ID
    })

    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and verify JWT access token

    Args:
        token: JWT token string

    Returns:
        Optional[Dict]: Decoded token data or None if invalid
    """
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            issuer=settings.JWT_ISSUER,
        )
    except JWTError:
        return None
    if payload.get("typ") != "access":
        return None
    return payload


def redact_email(email: str) -> str:
    """Redact an email address for logging."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"
