"""Authentication routes"""

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session
from typing import Optional

from gearmarket.core.database import get_db
from gearmarket.schemas.auth import (
    AccountResponse,
    AuthResponse,
    AvailabilityResponse,
    CheckEmailRequest,
    CheckNicknameRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    RefreshTokenRequest,
    RegisterRequest,
    RegisterResponse,
    ResendVerificationRequest,
    ResetPasswordRequest,
    VerificationInfoResponse,
    VerifyResetTokenResponse,
)
from gearmarket.services.auth_service import AuthService
from gearmarket.api.deps import get_auth_service, get_client_ip, get_current_account
from gearmarket.models.account import Account

router = APIRouter()


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterRequest,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Register an unverified account and email its verification link
    """
    return auth.register(db, body)


@router.get("/verify-email/{token}", response_model=AuthResponse)
def verify_email(
    token: str,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Verify email by link token; signs the account in on success
    """
    return auth.verify_email_by_token(db, token)


@router.get("/verification-info", response_model=VerificationInfoResponse)
def verification_info(
    token: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    return auth.get_verification_info(db, token)


@router.post("/resend-verification", response_model=MessageResponse)
def resend_verification(
    body: ResendVerificationRequest,
    request: Request,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    return auth.resend_verification_email(
        db,
        body.verification_token,
        captcha_token=body.captcha_token,
        remote_ip=get_client_ip(request),
    )


@router.post("/check-email", response_model=AvailabilityResponse)
def check_email(
    body: CheckEmailRequest,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    return AvailabilityResponse(available=auth.check_email_available(db, body.email))


@router.post("/check-nickname", response_model=AvailabilityResponse)
def check_nickname(
    body: CheckNicknameRequest,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    return AvailabilityResponse(available=auth.check_nickname_available(db, body.nickname))


@router.post("/login", response_model=AuthResponse, status_code=status.HTTP_200_OK)
def login(
    credentials: LoginRequest,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Login endpoint - authenticate and return access/refresh tokens
    """
    return auth.log_in(db, credentials.email, credentials.password)


@router.post("/logout", response_model=MessageResponse)
def logout(
    body: Optional[LogoutRequest] = None,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Logout endpoint - revoke the refresh token if one is supplied
    """
    return auth.log_out(db, body.refresh_token if body else None)


@router.post("/refresh", response_model=AuthResponse)
def refresh_token(
    body: RefreshTokenRequest,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Exchange a refresh token for a new access/refresh pair
    """
    return auth.refresh_access_token(db, body.refresh_token)


@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(
    body: ForgotPasswordRequest,
    request: Request,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    return auth.send_password_reset_email(
        db,
        body.email,
        captcha_token=body.captcha_token,
        remote_ip=get_client_ip(request),
    )


@router.get("/verify-reset-token", response_model=VerifyResetTokenResponse)
def verify_reset_token(
    token: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    return auth.verify_password_reset_token(db, token)


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(
    body: ResetPasswordRequest,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    return auth.reset_password(db, body.reset_token, body.new_password)


@router.get("/me", response_model=AccountResponse)
def get_current_account_info(
    current_account: Account = Depends(get_current_account)
):
    """
    Get current account information
    """
    return AccountResponse.model_validate(current_account)
