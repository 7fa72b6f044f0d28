"""
Blacklist JWT-токенов в Redis.

Токен хранится только в виде хеша, запись живёт ровно до истечения исходного
токена. По умолчанию используется bcrypt с солью, поэтому проверка идёт
перебором всех ключей (O(n) по числу отозванных токенов). Стратегия "hmac"
даёт детерминированный ключ и прямой EXISTS.
"""
import hashlib
import hmac
import math
import time
from typing import Callable, Optional

import bcrypt
from loguru import logger
from redis.asyncio import Redis

from app.core.config import settings

TOKEN_BLACKLIST_PREFIX = "token:blacklist:"


def _digest(token: str) -> bytes:
    # bcrypt учитывает только первые 72 байта, поэтому хешируем дайджест всего токена
    return hashlib.sha256(token.encode("utf-8")).hexdigest().encode("ascii")


class TokenBlacklist:
    def __init__(
            self,
            redis: Redis,
            strategy: Optional[str] = None,
            rounds: Optional[int] = None,
            clock: Optional[Callable[[], float]] = None,
    ):
        self.redis = redis
        self.strategy = (strategy or settings.TOKEN_BLACKLIST_STRATEGY).lower()
        if self.strategy not in ("bcrypt", "hmac"):
            raise ValueError(f"Unknown token blacklist strategy: {self.strategy}")
        self.rounds = rounds or settings.BLACKLIST_HASH_ROUNDS
        self.clock = clock or time.time

    async def add(self, token: str, expiry_timestamp: float) -> bool:
        """Добавляет токен в blacklist. Возвращает False, если токен уже истёк."""
        remaining = expiry_timestamp - self.clock()
        if remaining <= 0:
            logger.debug("Token already expired, nothing to blacklist")
            return False

        # округляем вверх: токен с долей секунды жизни ещё принимается
        ttl = math.ceil(remaining)
        key = f"{TOKEN_BLACKLIST_PREFIX}{self._hash_token(token)}"
        await self.redis.set(key, "blacklisted", ex=ttl)
        logger.debug(f"Token blacklisted for {ttl} seconds")
        return True

    async def is_blacklisted(self, token: str) -> bool:
        try:
            if self.strategy == "hmac":
                return bool(await self.redis.exists(f"{TOKEN_BLACKLIST_PREFIX}{self._hmac(token)}"))

            digest = _digest(token)
            async for key in self.redis.scan_iter(match=f"{TOKEN_BLACKLIST_PREFIX}*"):
                if isinstance(key, bytes):
                    key = key.decode("utf-8")
                stored_hash = key[len(TOKEN_BLACKLIST_PREFIX):]
                if not stored_hash.startswith("$2"):
                    continue
                if bcrypt.checkpw(digest, stored_hash.encode("utf-8")):
                    logger.debug("Token found in blacklist")
                    return True
            return False
        except Exception as e:
            # Не смогли проверить - считаем токен отозванным
            logger.error(f"Token blacklist lookup failed, rejecting token: {str(e)}")
            return True

    def _hash_token(self, token: str) -> str:
        if self.strategy == "hmac":
            return self._hmac(token)
        return bcrypt.hashpw(_digest(token), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def _hmac(self, token: str) -> str:
        return hmac.new(settings.SECRET_KEY.encode("utf-8"), token.encode("utf-8"), hashlib.sha256).hexdigest()
