# app/schemas/auth.py
from pydantic import BaseModel, Field
from typing import Optional


class LoginRequest(BaseModel):
    identifier: str = Field(..., min_length=1, description="Username, email или телефон")
    password: str = Field(..., min_length=1)


class OtpRequest(BaseModel):
    username: str = Field(..., min_length=1)


class OtpVerify(BaseModel):
    username: str = Field(..., min_length=1)
    code: str = Field(..., min_length=6, max_length=6, pattern=r"^\d{6}$")


class PasswordResetRequest(BaseModel):
    identifier: str = Field(..., min_length=1)
    redirect_url: Optional[str] = None


class ResetCodeVerify(BaseModel):
    identifier: str = Field(..., min_length=1)
    code: str = Field(..., min_length=6, max_length=6, pattern=r"^\d{6}$")


class PasswordResetConfirm(ResetCodeVerify):
    new_password: str
    confirm_password: str


class MessageResponse(BaseModel):
    success: bool
    message: str


class LoginResponse(MessageResponse):
    username: str


class SessionResponse(BaseModel):
    id: str
    username: str
    email: Optional[str] = None
    role: str
    name: str
    is_active: bool
    token: str
    expires_at: str


class TokenResponse(BaseModel):
    token: str
    expires_at: str
