from fastapi import APIRouter, Depends
from typing import Optional

from app.core.dependencies import get_auth_service, get_bearer_token
from app.core.errors import Unauthorized
from app.schemas.auth import (
    LoginRequest, OtpRequest, OtpVerify,
    PasswordResetRequest, ResetCodeVerify, PasswordResetConfirm,
    MessageResponse, LoginResponse, SessionResponse, TokenResponse,
)
from app.services.auth import AdminAuthService

router = APIRouter()


@router.post("/login", response_model=LoginResponse)
async def login(
        body: LoginRequest,
        auth: AdminAuthService = Depends(get_auth_service),
):
    """Шаг 1 протокола B: проверка пароля и отправка OTP"""
    return await auth.login(body.identifier, body.password)


@router.post("/request-otp", response_model=MessageResponse)
async def request_otp(
        body: OtpRequest,
        auth: AdminAuthService = Depends(get_auth_service),
):
    return await auth.request_otp(body.username)


@router.post("/verify-otp", response_model=SessionResponse)
async def verify_otp(
        body: OtpVerify,
        auth: AdminAuthService = Depends(get_auth_service),
):
    return await auth.verify_otp(body.username, body.code)


@router.post("/request-password-reset", response_model=MessageResponse)
async def request_password_reset(
        body: PasswordResetRequest,
        auth: AdminAuthService = Depends(get_auth_service),
):
    return await auth.request_password_reset(body.identifier, body.redirect_url)


@router.post("/verify-reset-code", response_model=MessageResponse)
async def verify_reset_code(
        body: ResetCodeVerify,
        auth: AdminAuthService = Depends(get_auth_service),
):
    return await auth.verify_reset_code_only(body.identifier, body.code)


@router.post("/verify-password-reset", response_model=MessageResponse)
async def verify_password_reset(
        body: PasswordResetConfirm,
        auth: AdminAuthService = Depends(get_auth_service),
):
    return await auth.verify_password_reset(
        body.identifier, body.code, body.new_password, body.confirm_password
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
        token: Optional[str] = Depends(get_bearer_token),
        auth: AdminAuthService = Depends(get_auth_service),
):
    return await auth.logout(token)


@router.post("/refresh-token", response_model=TokenResponse)
async def refresh_token(
        token: Optional[str] = Depends(get_bearer_token),
        auth: AdminAuthService = Depends(get_auth_service),
):
    if not token:
        raise Unauthorized("Not authenticated")
    return await auth.refresh_token(token)
