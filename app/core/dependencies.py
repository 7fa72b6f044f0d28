from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from redis.asyncio import Redis
from typing import Optional
from loguru import logger

from app.db.session import get_db
from app.db.redis import get_redis
from app.models.users import User, UserRole
from app.core.config import settings
from app.core.errors import Unauthorized, Forbidden
from app.core.security import decode_access_token
from app.services.auth import AdminAuthService
from app.services.notifications import NotificationService
from app.services.permissions import PermissionService
from app.services.secret_store import SecretStore, build_secret_store
from app.services.token_blacklist import TokenBlacklist
from app.services.users import UserRepository

bearer_scheme = HTTPBearer(auto_error=False)

OTP_NAMESPACE = "otp"
RESET_NAMESPACE = "password-reset"


async def get_bearer_token(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    """Токен из заголовка Authorization: Bearer <token> или None"""
    if credentials is None:
        return None
    return credentials.credentials


async def get_token_blacklist(request: Request, redis: Redis = Depends(get_redis)) -> TokenBlacklist:
    blacklist = getattr(request.app.state, "token_blacklist", None)
    if blacklist is None:
        blacklist = TokenBlacklist(redis)
        request.app.state.token_blacklist = blacklist
    return blacklist


async def _secret_store(request: Request, attr: str, namespace: str) -> SecretStore:
    store = getattr(request.app.state, attr, None)
    if store is None:
        redis = None
        if settings.SECRET_STORE_BACKEND.lower() == "redis":
            redis = await get_redis(request)
        store = build_secret_store(namespace, redis)
        setattr(request.app.state, attr, store)
    return store


async def get_otp_store(request: Request) -> SecretStore:
    return await _secret_store(request, "otp_store", OTP_NAMESPACE)


async def get_reset_store(request: Request) -> SecretStore:
    return await _secret_store(request, "reset_store", RESET_NAMESPACE)


def get_notification_service() -> NotificationService:
    return NotificationService()


async def get_auth_service(
        db: AsyncSession = Depends(get_db),
        otp_store: SecretStore = Depends(get_otp_store),
        reset_store: SecretStore = Depends(get_reset_store),
        blacklist: TokenBlacklist = Depends(get_token_blacklist),
        notifier: NotificationService = Depends(get_notification_service),
) -> AdminAuthService:
    return AdminAuthService(db, otp_store, reset_store, blacklist, notifier)


async def get_permission_service(db: AsyncSession = Depends(get_db)) -> PermissionService:
    return PermissionService(db)


async def get_current_user(
        token: Optional[str] = Depends(get_bearer_token),
        db: AsyncSession = Depends(get_db),
        blacklist: TokenBlacklist = Depends(get_token_blacklist),
) -> User:
    """
    Получает текущего пользователя из JWT-токена
    """
    if not token:
        raise Unauthorized("Not authenticated")

    try:
        payload = decode_access_token(token)
    except JWTError:
        raise Unauthorized("Could not validate credentials")

    user_sid = payload.get("sub")
    if user_sid is None:
        raise Unauthorized("Could not validate credentials")

    # Проверяем, не в черном ли списке токен
    if await blacklist.is_blacklisted(token):
        raise Unauthorized("Token has been revoked")

    user = await UserRepository(db).get_by_sid(user_sid)
    if user is None or not user.is_active:
        raise Unauthorized("Could not validate credentials")

    return user


def require_roles(*roles: UserRole):
    """
    Пропускает пользователя, если его роль входит в roles.
    Пустой набор ролей пропускает любого аутентифицированного пользователя.
    """
    allowed = frozenset(roles)

    async def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if allowed and current_user.role not in allowed:
            logger.warning(f"User {current_user.sid} with role {current_user.role.value} denied, requires {sorted(r.value for r in allowed)}")
            raise Forbidden()
        return current_user

    return role_checker


def require_permissions(*permission_names: str):
    """
    Пропускает пользователя, если у него есть хотя бы одно из разрешений.
    SUPER_ADMIN проходит всегда.
    """

    async def permission_checker(
            current_user: User = Depends(get_current_user),
            permissions: PermissionService = Depends(get_permission_service),
    ) -> User:
        if not permission_names or current_user.role == UserRole.SUPER_ADMIN:
            return current_user

        for name in permission_names:
            if await permissions.has_permission(current_user.sid, name):
                return current_user

        logger.warning(f"User {current_user.sid} denied, requires one of {list(permission_names)}")
        raise Forbidden()

    return permission_checker
