"""Pydantic schemas for API validation"""

from gearmarket.schemas.auth import (
    RegisterRequest,
    LoginRequest,
    RefreshTokenRequest,
    LogoutRequest,
    ResendVerificationRequest,
    ForgotPasswordRequest,
    ResetPasswordRequest,
    CheckEmailRequest,
    CheckNicknameRequest,
    AvailabilityResponse,
    AccountResponse,
    RegisterResponse,
    AuthResponse,
    VerificationInfoResponse,
    VerifyResetTokenResponse,
    MessageResponse,
)
from gearmarket.schemas.response import ErrorResponse, HealthResponse

__all__ = [
    "RegisterRequest", "LoginRequest", "RefreshTokenRequest", "LogoutRequest",
    "ResendVerificationRequest", "ForgotPasswordRequest", "ResetPasswordRequest",
    "CheckEmailRequest", "CheckNicknameRequest", "AvailabilityResponse",
    "AccountResponse", "RegisterResponse", "AuthResponse",
    "VerificationInfoResponse", "VerifyResetTokenResponse", "MessageResponse",
    "ErrorResponse", "HealthResponse",
]
