# /app/db/session.py
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from app.core.config import settings
import logging
from fastapi import HTTPException, status
import asyncio
from sqlalchemy import text
logger = logging.getLogger(__name__)


def _async_url(url: str) -> str:
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


engine = create_async_engine(
    _async_url(settings.SQLALCHEMY_DATABASE_URI),
    echo=False,
    pool_pre_ping=True,  # проверка соединения перед выдачей из пула
)

AsyncSessionLocal = async_sessionmaker(
    engine, expire_on_commit=False, class_=AsyncSession
)


async def get_db():
    db = AsyncSessionLocal()
    try:
        try:
            await db.execute(text("SELECT 1"))
            logger.debug("Database connection successful")
        except Exception as e:
            logger.error(f"Database connection failed: {str(e)}")

            retry_count = 3
            retry_delay = 1  # seconds

            for attempt in range(retry_count):
                try:
                    await asyncio.sleep(retry_delay)
                    logger.info(f"Retrying database connection (attempt {attempt + 1}/{retry_count})...")
                    await db.execute(text("SELECT 1"))
                    logger.info("Database connection successful after retry")
                    break
                except Exception as retry_e:
                    logger.warning(f"Retry {attempt + 1} failed: {str(retry_e)}")
                    retry_delay *= 2
                    if attempt == retry_count - 1:
                        logger.error(f"All {retry_count} connection attempts failed")
                        # Детали подключения клиенту не отдаём
                        raise HTTPException(
                            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                            detail="Service temporarily unavailable",
                        )

        yield db
    finally:
        await db.close()
