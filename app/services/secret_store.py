"""
Хранилище одноразовых кодов (OTP и коды сброса пароля).

Каждый код живёт ограниченное время и допускает не больше OTP_MAX_ATTEMPTS
попыток проверки. Две реализации с одинаковым контрактом: в памяти процесса
(один инстанс, тесты) и в Redis (несколько инстансов).
"""
import asyncio
import contextlib
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from loguru import logger
from redis.asyncio import Redis

from app.core.config import settings
from app.core.errors import Unauthorized

Clock = Callable[[], datetime]

# Redis держит запись чуть дольше срока кода, чтобы истечение определялось по expires_at
EXPIRE_GRACE_SECONDS = 60


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


class ChallengeError(Unauthorized):
    pass


class ChallengeNotFound(ChallengeError):
    default_detail = "Code expired or not found. Please request a new code."


class ChallengeExpired(ChallengeError):
    default_detail = "Code expired. Please request a new code."


class TooManyAttempts(ChallengeError):
    default_detail = "Too many failed attempts. Please request a new code."


class CodeMismatch(ChallengeError):
    default_detail = "Invalid code. Please try again."


@dataclass
class Challenge:
    code: str
    expires_at: datetime
    attempts: int = 0
    user_sid: Optional[str] = None


class SecretStore(ABC):
    def __init__(
            self,
            namespace: str,
            max_attempts: Optional[int] = None,
            ttl_minutes: Optional[int] = None,
            clock: Optional[Clock] = None,
    ):
        self.namespace = namespace
        self.max_attempts = max_attempts or settings.OTP_MAX_ATTEMPTS
        self.ttl_minutes = ttl_minutes or settings.OTP_TTL_MINUTES
        self.clock = clock or utcnow

    async def issue(self, identifier: str, ttl_minutes: Optional[int] = None, user_sid: Optional[str] = None) -> str:
        """Создаёт новый код, перезаписывая предыдущий для этого ключа"""
        ttl = timedelta(minutes=ttl_minutes or self.ttl_minutes)
        code = generate_code()
        challenge = Challenge(code=code, expires_at=self.clock() + ttl, attempts=0, user_sid=user_sid)
        await self._save(identifier, challenge, ttl)
        return code

    async def verify(self, identifier: str, code: str) -> Challenge:
        return await self.check(identifier, code, consume=True)

    async def verify_without_consuming(self, identifier: str, code: str) -> Challenge:
        return await self.check(identifier, code, consume=False)

    async def check(self, key: str, code: str, consume: bool) -> Challenge:
        async with self._guard():
            challenge = await self._load(key)
            if challenge is None:
                raise ChallengeNotFound()

            if self.clock() > challenge.expires_at:
                await self._delete(key)
                raise ChallengeExpired()

            attempts = await self._increment_attempts(key)
            if attempts is None:
                raise ChallengeNotFound()
            challenge.attempts = attempts

            if attempts > self.max_attempts:
                await self._delete(key)
                raise TooManyAttempts()

            if not secrets.compare_digest(challenge.code, str(code)):
                raise CodeMismatch()

            if consume:
                await self._delete(key)
            return challenge

    async def locate(self, prefix: str, code: str, user_sid: Optional[str]) -> Optional[str]:
        """Ищет ключ записи, начинающийся с prefix, с тем же кодом и пользователем"""
        for key in await self._keys(prefix):
            challenge = await self._load(key)
            if challenge is None:
                continue
            if challenge.code == str(code) and challenge.user_sid == user_sid:
                return key
        return None

    async def purge_expired(self) -> int:
        return 0

    def _guard(self):
        return contextlib.nullcontext()

    @abstractmethod
    async def _load(self, key: str) -> Optional[Challenge]:
        ...

    @abstractmethod
    async def _save(self, key: str, challenge: Challenge, ttl: timedelta) -> None:
        ...

    @abstractmethod
    async def _increment_attempts(self, key: str) -> Optional[int]:
        ...

    @abstractmethod
    async def _delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def _keys(self, prefix: str) -> List[str]:
        ...


class InMemorySecretStore(SecretStore):
    def __init__(self, namespace: str, **kwargs):
        super().__init__(namespace, **kwargs)
        self._entries: Dict[str, Challenge] = {}
        self._lock = asyncio.Lock()

    def _guard(self):
        return self._lock

    async def _load(self, key: str) -> Optional[Challenge]:
        return self._entries.get(key)

    async def _save(self, key: str, challenge: Challenge, ttl: timedelta) -> None:
        async with self._lock:
            self._entries[key] = challenge

    async def _increment_attempts(self, key: str) -> Optional[int]:
        challenge = self._entries.get(key)
        if challenge is None:
            return None
        challenge.attempts += 1
        return challenge.attempts

    async def _delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def _keys(self, prefix: str) -> List[str]:
        return [key for key in list(self._entries) if key.startswith(prefix)]

    async def purge_expired(self) -> int:
        now = self.clock()
        async with self._lock:
            expired = [key for key, c in self._entries.items() if now > c.expires_at]
            for key in expired:
                self._entries.pop(key, None)
        if expired:
            logger.debug(f"[{self.namespace}] purged {len(expired)} expired codes")
        return len(expired)


def _escape_glob(value: str) -> str:
    return "".join("\\" + ch if ch in "*?[]\\" else ch for ch in value)


def _text(value) -> Optional[str]:
    if value is None:
        return None
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


class RedisSecretStore(SecretStore):
    def __init__(self, namespace: str, redis: Redis, **kwargs):
        super().__init__(namespace, **kwargs)
        self.redis = redis

    def _redis_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def _load(self, key: str) -> Optional[Challenge]:
        data = await self.redis.hgetall(self._redis_key(key))
        if not data:
            return None
        data = {_text(k): _text(v) for k, v in data.items()}
        if "code" not in data or "expires_at" not in data:
            return None
        return Challenge(
            code=data["code"],
            expires_at=datetime.fromisoformat(data["expires_at"]),
            attempts=int(data.get("attempts") or 0),
            user_sid=data.get("user_sid") or None,
        )

    async def _save(self, key: str, challenge: Challenge, ttl: timedelta) -> None:
        redis_key = self._redis_key(key)
        mapping = {
            "code": challenge.code,
            "expires_at": challenge.expires_at.isoformat(),
            "attempts": challenge.attempts,
            "user_sid": challenge.user_sid or "",
        }
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.delete(redis_key)
            pipe.hset(redis_key, mapping=mapping)
            pipe.expire(redis_key, int(ttl.total_seconds()) + EXPIRE_GRACE_SECONDS)
            await pipe.execute()

    async def _increment_attempts(self, key: str) -> Optional[int]:
        redis_key = self._redis_key(key)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hincrby(redis_key, "attempts", 1)
            pipe.hexists(redis_key, "code")
            attempts, exists = await pipe.execute()
        if not exists:
            # Запись истекла между чтением и инкрементом, убираем осиротевший счётчик
            await self.redis.delete(redis_key)
            return None
        return int(attempts)

    async def _delete(self, key: str) -> None:
        await self.redis.delete(self._redis_key(key))

    async def _keys(self, prefix: str) -> List[str]:
        pattern = f"{_escape_glob(self._redis_key(prefix))}*"
        offset = len(self.namespace) + 1
        return [_text(k)[offset:] async for k in self.redis.scan_iter(match=pattern)]


def build_secret_store(namespace: str, redis: Optional[Redis] = None, backend: Optional[str] = None) -> SecretStore:
    backend = (backend or settings.SECRET_STORE_BACKEND).lower()
    if backend == "redis":
        if redis is None:
            raise ValueError("Redis client is required for the redis secret store backend")
        return RedisSecretStore(namespace, redis)
    if backend == "memory":
        return InMemorySecretStore(namespace)
    raise ValueError(f"Unknown secret store backend: {backend}")
