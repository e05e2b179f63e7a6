"""Auth request/response schemas"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime

EMAIL_PATTERN = r'^[^@\s]+@[^@\s]+\.[^@\s]+$'


class RegisterRequest(BaseModel):
    """Registration schema"""
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=1, max_length=128)
    nickname: str = Field(..., min_length=2, max_length=15)
    phone: Optional[str] = Field(None, max_length=32)
    agree_terms: bool = False
    agree_privacy: bool = False

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v):
        """Emails are case-insensitive"""
        return v.strip().lower()

    @field_validator('nickname')
    @classmethod
    def strip_nickname(cls, v):
        return v.strip()


class LoginRequest(BaseModel):
    """Login schema"""
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=1)


class RefreshTokenRequest(BaseModel):
    """Refresh token request"""
    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(BaseModel):
    """Logout request"""
    refresh_token: Optional[str] = None


class ResendVerificationRequest(BaseModel):
    """Resend verification email; captcha_token is needed on the 3rd attempt in an hour"""
    verification_token: str = Field(..., min_length=1)
    captcha_token: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    """Password reset email request"""
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    captcha_token: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    """Password reset with emailed token"""
    reset_token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1, max_length=128)


class CheckEmailRequest(BaseModel):
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)


class CheckNicknameRequest(BaseModel):
    nickname: str = Field(..., min_length=2, max_length=15)


class AvailabilityResponse(BaseModel):
    available: bool


class AccountResponse(BaseModel):
    """Public account fields"""
    id: str
    email: str
    nickname: str
    verified: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RegisterResponse(BaseModel):
    """Registration confirmation"""
    message: str
    account: AccountResponse
    verification_token: Optional[str] = None


class AuthResponse(BaseModel):
    """Access/refresh pair returned by login, verification and refresh"""
    account_id: str
    email: str
    nickname: str
    verified: bool
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: datetime


class VerificationInfoResponse(BaseModel):
    """Pending verification details; remaining_cooldown is None once a resend is allowed"""
    email: str
    sent_at: Optional[datetime] = None
    remaining_cooldown: Optional[int] = None


class VerifyResetTokenResponse(BaseModel):
    email: str


class MessageResponse(BaseModel):
    message: str
