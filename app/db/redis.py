# /app/db/redis.py
from redis.asyncio import Redis
from fastapi import HTTPException, Request
from app.core.config import settings
import logging
import asyncio

logger = logging.getLogger(__name__)


async def connect_redis(max_retries: int = 3, retry_delay: float = 1) -> Redis:
    """Создаёт клиент Redis, проверяя соединение с повторными попытками"""
    last_error = None

    for attempt in range(max_retries):
        redis = Redis.from_url(settings.redis_url, decode_responses=True)
        try:
            await redis.ping()
            logger.info(f"Successfully connected to Redis at {settings.REDIS_HOST}:{settings.REDIS_PORT}")
            return redis
        except Exception as e:
            last_error = e
            await redis.aclose()
            if attempt < max_retries - 1:
                logger.warning(
                    f"Redis connection attempt {attempt + 1} failed: {str(e)}. Retrying in {retry_delay}s...")
                await asyncio.sleep(retry_delay)
                retry_delay *= 2
            else:
                logger.error(f"Redis connection failed after {max_retries} attempts: {str(e)}")

    raise ConnectionError(
        f"Could not connect to Redis ({settings.REDIS_HOST}:{settings.REDIS_PORT}): {last_error}"
    )


async def get_redis(request: Request) -> Redis:
    """Возвращает общий клиент Redis как зависимость FastAPI"""
    redis = getattr(request.app.state, "redis", None)
    if redis is None:
        try:
            redis = await connect_redis()
        except ConnectionError as e:
            logger.error(str(e))
            # Без Redis нельзя проверить blacklist токенов, поэтому запрос отклоняем
            raise HTTPException(
                status_code=503,
                detail="Service temporarily unavailable",
            )
        request.app.state.redis = redis
    return redis
