import os

# Настройки должны быть в окружении до первого импорта app.*
os.environ.setdefault("SECRET_KEY", "test_secret_key")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "4")
os.environ.setdefault("BLACKLIST_HASH_ROUNDS", "4")

# Test database URL - use environment variable if available for CI/CD support
TEST_DB_URL = os.getenv("TEST_DB_URL", "sqlite+aiosqlite://")
os.environ.setdefault("DATABASE_URL", TEST_DB_URL)

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool
from fakeredis.aioredis import FakeRedis
from typing import Optional
from unittest.mock import AsyncMock

from app.db.session import get_db
from app.db.redis import get_redis
from app.db.init_permissions import seed_default_permissions
from app.main import app
from app.models.base import Base
from app.models.users import User, UserRole
from app.core.dependencies import get_notification_service
from app.core.security import get_password_hash
from app.services.auth import AdminAuthService
from app.services.notifications import NotificationService
from app.services.secret_store import InMemorySecretStore
from app.services.token_blacklist import TokenBlacklist

from helpers import FakeClock, TEST_PASSWORD


def create_test_engine():
    if TEST_DB_URL.startswith("sqlite"):
        # одна in-memory база на всё соединение теста
        return create_async_engine(
            TEST_DB_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(TEST_DB_URL)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(scope="function")
async def test_db():
    """Create test database tables before tests and drop them after"""
    engine = create_test_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Clean up after tests
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db_session(test_db):
    """Create a clean database session for each test"""
    session_factory = async_sessionmaker(test_db, expire_on_commit=False, class_=AsyncSession)
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(db_session):
    """Фабрика пользователей с паролем TEST_PASSWORD по умолчанию"""

    async def _make_user(
            username: str,
            role: UserRole = UserRole.ADMIN,
            email: Optional[str] = None,
            phone: Optional[str] = None,
            password: Optional[str] = TEST_PASSWORD,
            password_hash: Optional[str] = None,
            is_active: bool = True,
            first_name: Optional[str] = None,
            last_name: Optional[str] = None,
    ) -> User:
        if password_hash is None and password is not None:
            password_hash = get_password_hash(password)
        user = User(
            sid=User.generate_sid(),
            username=username,
            email=email,
            phone=phone,
            first_name=first_name,
            last_name=last_name,
            role=role,
            password_hash=password_hash,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
async def admin_user(make_user):
    return await make_user(
        "alice",
        role=UserRole.ADMIN,
        email="alice@example.com",
        phone="+33600000001",
        first_name="Alice",
        last_name="Martin",
    )


@pytest.fixture
async def super_admin_user(make_user):
    return await make_user("root", role=UserRole.SUPER_ADMIN, email="root@example.com")


@pytest.fixture
async def pharmacist_user(make_user):
    return await make_user("paul", role=UserRole.PHARMACIST, email="paul@example.com", phone="+33600000002")


@pytest.fixture
async def customer_user(make_user):
    return await make_user("carla", role=UserRole.CUSTOMER, email="carla@example.com", phone="+33600000003")


@pytest.fixture
async def permission_catalog(db_session):
    """Базовый каталог разрешений; возвращает name -> sid"""
    return await seed_default_permissions(db_session)


@pytest.fixture
async def fake_redis():
    redis = FakeRedis(decode_responses=True)
    yield redis
    await redis.flushall()
    await redis.aclose()


@pytest.fixture
def otp_store(clock):
    return InMemorySecretStore("otp", clock=clock)


@pytest.fixture
def reset_store(clock):
    return InMemorySecretStore("password-reset", clock=clock)


@pytest.fixture
def blacklist(fake_redis):
    return TokenBlacklist(fake_redis, rounds=4)


@pytest.fixture
def mock_notifier():
    """Mock notification service"""
    return AsyncMock(spec=NotificationService)


@pytest.fixture
def auth_service(db_session, otp_store, reset_store, blacklist, mock_notifier):
    return AdminAuthService(db_session, otp_store, reset_store, blacklist, mock_notifier)


@pytest.fixture
async def client(db_session, fake_redis, otp_store, reset_store, blacklist, mock_notifier):
    """Create test client with mocked dependencies"""

    # Override db dependency
    async def override_get_db():
        yield db_session

    async def override_get_redis():
        return fake_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_notification_service] = lambda: mock_notifier

    app.state.redis = fake_redis
    app.state.token_blacklist = blacklist
    app.state.otp_store = otp_store
    app.state.reset_store = reset_store

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    # Clear overrides after test
    app.dependency_overrides = {}
    for name in ("redis", "token_blacklist", "otp_store", "reset_store"):
        setattr(app.state, name, None)
