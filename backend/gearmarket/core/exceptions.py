"""Custom exception classes for the application"""

from datetime import datetime
from typing import Optional, Dict, Any


class BaseAPIException(Exception):
    """Base exception for all API errors"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# Validation Errors
class ValidationError(BaseAPIException):
    """Input the caller can correct"""
    def __init__(self, message: str, status_code: int = 400, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=status_code, details=details)


class TermsNotAgreedError(ValidationError):
    """Required agreements were not affirmed"""
    def __init__(self):
        super().__init__("You must agree to the terms of service and privacy policy")


class DuplicateEmailError(ValidationError):
    """Email already registered"""
    def __init__(self):
        super().__init__("Email already exists", status_code=409)


class DuplicateNicknameError(ValidationError):
    """Nickname already taken"""
    def __init__(self):
        super().__init__("Nickname already exists", status_code=409)


# Credential Errors
class InvalidCredentialsError(BaseAPIException):
    """Invalid email or password"""
    def __init__(self):
        super().__init__("Email or Password is not correct", status_code=400)


class InvalidTokenError(BaseAPIException):
    """Token is unknown, expired or already consumed.

    The message is fixed per token type so callers cannot tell the cases apart.
    """
    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(message, status_code=400)


class InvalidVerificationTokenError(InvalidTokenError):
    def __init__(self):
        super().__init__("Invalid or expired verification link")


class InvalidResetTokenError(InvalidTokenError):
    def __init__(self):
        super().__init__("Invalid or expired reset link")


class InvalidRefreshTokenError(InvalidTokenError):
    def __init__(self):
        super().__init__("Invalid refresh token")


class RefreshTokenUnusableError(InvalidTokenError):
    def __init__(self):
        super().__init__("Refresh token is expired or revoked")


class AuthenticationError(BaseAPIException):
    """Missing or bad access token"""
    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, status_code=401)


# Account state
class AccountUnverifiedError(BaseAPIException):
    """Login attempted before email verification.

    Carries the pending verification token and the seconds left before
    another verification email may be sent.
    """
    def __init__(self, verification_token: str, remaining_cooldown: Optional[int]):
        self.verification_token = verification_token
        self.remaining_cooldown = remaining_cooldown
        super().__init__(
            "Account is not verified. Please check your email.",
            status_code=403,
            details={
                "verification_token": verification_token,
                "remaining_cooldown": remaining_cooldown,
            },
        )


class AccountBlockedError(BaseAPIException):
    """Account is suspended"""
    def __init__(self, reason: str, blocked_until: Optional[datetime] = None):
        self.reason = reason
        self.blocked_until = blocked_until
        if blocked_until is None:
            message = reason
            details: Dict[str, Any] = {"reason": reason, "permanent": True}
        else:
            message = f"{reason} (blocked until {blocked_until.isoformat()})"
            details = {
                "reason": reason,
                "permanent": False,
                "blocked_until": blocked_until.isoformat(),
            }
        super().__init__(message, status_code=403, details=details)


# Abuse mitigation
class RateLimitExceededError(BaseAPIException):
    """Rate limit exceeded"""
    def __init__(
        self,
        message: str = "Rate limit exceeded. Please try again later.",
        retry_after: int = 3600,
    ):
        self.retry_after = retry_after
        super().__init__(message, status_code=429, details={"retry_after": retry_after})


class ChallengeRequiredError(BaseAPIException):
    """A human-verification proof must accompany this request"""
    def __init__(self):
        super().__init__(
            "Captcha verification required",
            status_code=400,
            details={"challenge_required": True},
        )


class ChallengeFailedError(BaseAPIException):
    """The supplied human-verification proof was rejected"""
    def __init__(self):
        super().__init__(
            "Captcha verification failed",
            status_code=400,
            details={"challenge_required": True},
        )


# System Errors
class InternalServiceError(BaseAPIException):
    """Store, cache or transport failure"""
    def __init__(self, message: str = "An internal error occurred"):
        super().__init__(message, status_code=500)


class EmailDeliveryError(InternalServiceError):
    """Outbound email could not be sent"""
    def __init__(self, message: str = "Failed to send email"):
        super().__init__(message)
