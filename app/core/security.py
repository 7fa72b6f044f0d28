# app/core/security.py
# Хеширование паролей (bcrypt) и подписанные JWT-токены сессии (python-jose).
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
from jose import jwt

from app.core.config import settings

BCRYPT_PREFIX = "$2"


def get_password_hash(password: str, rounds: Optional[int] = None) -> str:
    """Хешируем пароль для хранения в БД."""
    salt = bcrypt.gensalt(rounds=rounds or settings.PASSWORD_HASH_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Проверяем пароль при логине. Ошибки формата хеша пробрасываются наружу."""
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def is_supported_hash(hashed_password: Optional[str]) -> bool:
    return bool(hashed_password) and hashed_password.startswith(BCRYPT_PREFIX)


def create_access_token(
        subject: str,
        claims: Optional[Dict[str, Any]] = None,
        expires_delta: Optional[timedelta] = None,
        now: Optional[datetime] = None,
) -> str:
    """Создаём JWT с полем sub = subject (sid пользователя) и уникальным jti."""
    issued_at = now or datetime.now(timezone.utc)
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode: Dict[str, Any] = dict(claims or {})
    to_encode.update({
        "sub": str(subject),
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + expires_delta).timestamp()),
        "jti": str(uuid.uuid4()),
    })
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Проверяет подпись и срок действия. Бросает JWTError для невалидного токена."""
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None
    return parts[1]
