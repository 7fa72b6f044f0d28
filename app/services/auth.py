"""
Вход в back-office и управление сессией.

Два протокола входа заканчиваются одинаковым токеном:
  A. request_otp -> verify_otp
  B. login (пароль) -> verify_otp
Плюс logout / refresh_token через blacklist и сброс пароля через одноразовый код.
"""
import functools
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from jose import JWTError
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import BadRequest, Internal, ServiceError, Unauthorized
from app.core.security import (
    create_access_token,
    decode_access_token,
    get_password_hash,
    is_supported_hash,
    verify_password,
)
from app.models.users import User, BACKOFFICE_LOGIN_ROLES, PASSWORD_RESET_ROLES
from app.services.notifications import NotificationService
from app.services.secret_store import SecretStore
from app.services.token_blacklist import TokenBlacklist
from app.services.users import UserRepository

INVALID_CREDENTIALS = "Invalid credentials"
INVALID_RESET_CODE = "Invalid or expired reset code"

OTP_SENT_MESSAGE = "A login code has been sent to your email and phone."
LOGIN_OTP_SENT_MESSAGE = "A verification code has been sent. Please enter it to sign in."
RESET_REQUESTED_MESSAGE = "If your account exists, you will receive a reset code by email and/or SMS."
RESET_CODE_VERIFIED_MESSAGE = "Code verified. You can now set your new password."
PASSWORD_RESET_MESSAGE = "Your password has been reset. You can now sign in with your new password."
LOGOUT_MESSAGE = "Logged out successfully"


async def sliding_refresh(token: Optional[str], blacklist: TokenBlacklist, now: Optional[float] = None) -> Optional[str]:
    """
    Новый токен для почти истёкшей сессии (до истечения меньше
    TOKEN_REFRESH_THRESHOLD_MINUTES) или None, если продлевать не нужно.
    """
    if not token:
        return None
    try:
        payload = decode_access_token(token)
    except JWTError:
        return None

    exp = payload.get("exp")
    if not exp or not payload.get("sub"):
        return None

    remaining = float(exp) - (now if now is not None else time.time())
    if remaining >= settings.TOKEN_REFRESH_THRESHOLD_MINUTES * 60:
        return None

    if await blacklist.is_blacklisted(token):
        return None

    claims = {k: payload[k] for k in ("username", "email", "role") if k in payload}
    logger.debug(f"Sliding refresh of the token of user {payload['sub']}")
    return create_access_token(subject=payload["sub"], claims=claims)


def service_errors(message: str):
    """Доменные ошибки пропускаем как есть, всё остальное логируем и превращаем в Internal"""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except ServiceError:
                raise
            except Exception as e:
                if settings.is_production:
                    logger.error(f"{message}: {str(e)}")
                else:
                    logger.exception(f"{message}: {str(e)}")
                raise Internal(message)

        return wrapper

    return decorator


class AdminAuthService:
    def __init__(
            self,
            db: AsyncSession,
            otp_store: SecretStore,
            reset_store: SecretStore,
            blacklist: TokenBlacklist,
            notifier: Optional[NotificationService] = None,
            users: Optional[UserRepository] = None,
    ):
        self.db = db
        self.otp_store = otp_store
        self.reset_store = reset_store
        self.blacklist = blacklist
        self.notifier = notifier or NotificationService()
        self.users = users or UserRepository(db)

    # --- Protocol A: OTP -------------------------------------------------

    @service_errors("An error occurred while requesting a login code")
    async def request_otp(self, username: str) -> Dict[str, Any]:
        user = await self.users.find_active_by_username(username)
        if user is None:
            logger.warning(f"OTP requested for unknown or inactive user '{username}'")
            raise Unauthorized(INVALID_CREDENTIALS)

        if user.role not in BACKOFFICE_LOGIN_ROLES:
            logger.warning(f"OTP requested by user '{username}' with role {user.role.value}")
            raise Unauthorized(INVALID_CREDENTIALS)

        await self._issue_login_code(user)
        return {"success": True, "message": OTP_SENT_MESSAGE}

    @service_errors("An error occurred while verifying the code")
    async def verify_otp(self, username: str, code: str) -> Dict[str, Any]:
        await self.otp_store.verify(username, code)

        user = await self.users.find_active_by_username(username)
        if user is None:
            raise Unauthorized(INVALID_CREDENTIALS)

        await self.users.update_last_login(user)
        token, expires_at = self._issue_token(user)
        logger.info(f"User {user.sid} signed in to the back-office")

        return {
            "id": user.sid,
            "username": user.username,
            "email": user.email,
            "role": user.role.value,
            "name": user.display_name,
            "is_active": user.is_active,
            "token": token,
            "expires_at": expires_at.isoformat(),
        }

    # --- Protocol B: password, then OTP ----------------------------------

    @service_errors("An error occurred while signing in")
    async def login(self, identifier: str, password: str) -> Dict[str, Any]:
        user = await self.users.find_active_by_identifier(identifier)
        if user is None:
            logger.warning(f"Login attempt for unknown or inactive identifier '{identifier}'")
            raise Unauthorized(INVALID_CREDENTIALS)

        if user.role not in BACKOFFICE_LOGIN_ROLES:
            logger.warning(f"Login attempt by user {user.sid} with role {user.role.value}")
            raise Unauthorized(INVALID_CREDENTIALS)

        if not user.password_hash:
            logger.warning(f"User {user.sid} has no password set (incomplete account)")
            raise Unauthorized(INVALID_CREDENTIALS)

        if not is_supported_hash(user.password_hash):
            logger.error(f"Unsupported password hash format for user {user.sid}")
            raise Unauthorized(INVALID_CREDENTIALS)

        try:
            password_ok = verify_password(password, user.password_hash)
        except ValueError as e:
            logger.error(f"bcrypt failed to check the password of user {user.sid}: {str(e)}")
            raise Unauthorized(INVALID_CREDENTIALS)

        if not password_ok:
            logger.warning(f"Wrong password for user {user.sid}")
            raise Unauthorized(INVALID_CREDENTIALS)

        await self._issue_login_code(user)
        return {"success": True, "message": LOGIN_OTP_SENT_MESSAGE, "username": user.username}

    # --- Session ---------------------------------------------------------

    async def logout(self, token: Optional[str]) -> Dict[str, Any]:
        if not token:
            return {"success": True, "message": LOGOUT_MESSAGE}

        try:
            payload = decode_access_token(token)
        except JWTError as e:
            logger.warning(f"Logout with an invalid token: {str(e)}")
            return {"success": True, "message": LOGOUT_MESSAGE}

        if payload.get("sub") and payload.get("exp"):
            try:
                await self.blacklist.add(token, float(payload["exp"]))
                logger.info(f"Token of user {payload['sub']} invalidated on logout")
            except Exception as e:
                logger.error(f"Failed to invalidate token on logout: {str(e)}")

        return {"success": True, "message": LOGOUT_MESSAGE}

    @service_errors("An error occurred while refreshing the token")
    async def refresh_token(self, token: str) -> Dict[str, Any]:
        if not token or await self.blacklist.is_blacklisted(token):
            logger.warning("Refresh attempted with a blacklisted token")
            raise Unauthorized("Invalid token")

        try:
            payload = decode_access_token(token)
        except JWTError as e:
            logger.warning(f"Token verification failed on refresh: {str(e)}")
            raise Unauthorized("Invalid or expired token")

        user = await self.users.get_by_sid(payload.get("sub") or "")
        if user is None or not user.is_active:
            raise Unauthorized("User not found or inactive")

        if payload.get("exp"):
            await self.blacklist.add(token, float(payload["exp"]))
        else:
            logger.warning("Refreshed token has no exp claim, it was not blacklisted")

        new_token, expires_at = self._issue_token(user)
        return {"token": new_token, "expires_at": expires_at.isoformat()}

    # --- Password reset --------------------------------------------------

    @service_errors("An error occurred while requesting a password reset")
    async def request_password_reset(self, identifier: str, redirect_url: Optional[str] = None) -> Dict[str, Any]:
        user = await self.users.find_active_by_login_name(identifier, roles=PASSWORD_RESET_ROLES)
        if user is None:
            logger.info(f"Password reset requested for unknown identifier '{identifier}'")
            return {"success": True, "message": RESET_REQUESTED_MESSAGE}

        reset_key = f"{identifier}_{int(time.time() * 1000)}"
        code = await self.reset_store.issue(reset_key, user_sid=user.sid)
        self._log_code("Password reset", user, code)

        await self._dispatch_code(user, code, "password-reset", "MediConnect password reset", redirect_url)
        return {"success": True, "message": RESET_REQUESTED_MESSAGE}

    @service_errors("An error occurred while verifying the reset code")
    async def verify_reset_code_only(self, identifier: str, code: str) -> Dict[str, Any]:
        user = await self._find_reset_user(identifier)
        key = await self.reset_store.locate(f"{identifier}_", code, user.sid)
        if key is None:
            raise Unauthorized(INVALID_RESET_CODE)

        await self.reset_store.check(key, code, consume=False)
        return {"success": True, "message": RESET_CODE_VERIFIED_MESSAGE}

    @service_errors("An error occurred while resetting the password")
    async def verify_password_reset(
            self,
            identifier: str,
            code: str,
            new_password: str,
            confirm_password: str,
    ) -> Dict[str, Any]:
        if new_password != confirm_password:
            raise BadRequest("Passwords do not match")

        await self.verify_reset_code_only(identifier, code)

        if len(new_password) < settings.PASSWORD_MIN_LENGTH:
            raise BadRequest(f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters long.")

        user = await self._find_reset_user(identifier)
        key = await self.reset_store.locate(f"{identifier}_", code, user.sid)
        if key is None:
            raise Unauthorized(INVALID_RESET_CODE)
        await self.reset_store.check(key, code, consume=True)

        await self.users.update_password_hash(user, get_password_hash(new_password))
        logger.info(f"Password of user {user.sid} has been reset")
        return {"success": True, "message": PASSWORD_RESET_MESSAGE}

    # --- helpers ---------------------------------------------------------

    async def _find_reset_user(self, identifier: str) -> User:
        user = await self.users.find_active_by_login_name(identifier)
        if user is None:
            raise Unauthorized(INVALID_CREDENTIALS)
        return user

    async def _issue_login_code(self, user: User) -> None:
        code = await self.otp_store.issue(user.username, user_sid=user.sid)
        self._log_code("Login", user, code)
        await self._dispatch_code(user, code, "otp", "Your MediConnect login code")

    def _issue_token(self, user: User) -> Tuple[str, datetime]:
        now = datetime.now(timezone.utc)
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        token = create_access_token(
            subject=user.sid,
            claims={"username": user.username, "email": user.email, "role": user.role.value},
            expires_delta=expires_delta,
            now=now,
        )
        # exp в токене округлён до секунды, отдаём клиенту то же значение
        expires_at = datetime.fromtimestamp(int((now + expires_delta).timestamp()), tz=timezone.utc)
        return token, expires_at

    async def _dispatch_code(
            self,
            user: User,
            code: str,
            template: str,
            subject: str,
            redirect_url: Optional[str] = None,
    ) -> None:
        """Отправляем код по SMS и email независимо; сбой одного канала не мешает другому"""
        data: Dict[str, Any] = {
            "firstName": user.first_name or user.username,
            "code": code,
            "validity": str(settings.OTP_TTL_MINUTES),
            "year": datetime.now(timezone.utc).year,
        }
        if redirect_url:
            data["redirectUrl"] = redirect_url

        if user.phone:
            try:
                await self.notifier.send(user.phone, subject, f"{template}-sms", data)
            except Exception as e:
                logger.error(f"Failed to send {template} code by SMS to user {user.sid}: {str(e)}")

        if user.email:
            try:
                await self.notifier.send(user.email, subject, f"{template}-email", data)
            except Exception as e:
                logger.error(f"Failed to send {template} code by email to user {user.sid}: {str(e)}")

    @staticmethod
    def _log_code(kind: str, user: User, code: str) -> None:
        if not settings.is_production:
            logger.debug(f"{kind} code for user {user.sid}: {code}")
