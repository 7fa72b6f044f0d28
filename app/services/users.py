from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.users import User, UserRole


class UserRepository:
    """Доступ к таблице пользователей, который нужен подсистеме авторизации"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _first(self, *conditions) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(*conditions).order_by(User.created_at).limit(1)
        )
        return result.scalars().first()

    async def find_active_by_username(self, username: str, roles: Optional[Iterable[UserRole]] = None) -> Optional[User]:
        return await self._first(User.username == username, User.is_active.is_(True), *self._role_filter(roles))

    async def find_active_by_email(self, email: str, roles: Optional[Iterable[UserRole]] = None) -> Optional[User]:
        return await self._first(User.email == email, User.is_active.is_(True), *self._role_filter(roles))

    async def find_active_by_identifier(self, identifier: str) -> Optional[User]:
        """Ищет по username, email или телефону, первое совпадение"""
        return await self._first(
            or_(User.username == identifier, User.email == identifier, User.phone == identifier),
            User.is_active.is_(True),
        )

    async def find_active_by_login_name(self, identifier: str, roles: Optional[Iterable[UserRole]] = None) -> Optional[User]:
        """Email, если в идентификаторе есть '@', иначе username"""
        if "@" in identifier:
            return await self.find_active_by_email(identifier, roles)
        return await self.find_active_by_username(identifier, roles)

    async def get_by_sid(self, sid: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.sid == sid))
        return result.scalar_one_or_none()

    async def update_last_login(self, user: User) -> None:
        user.last_login = datetime.now(timezone.utc)
        await self.db.commit()

    async def update_password_hash(self, user: User, password_hash: str) -> None:
        user.password_hash = password_hash
        user.updated_at = datetime.now(timezone.utc)
        await self.db.commit()

    @staticmethod
    def _role_filter(roles: Optional[Iterable[UserRole]]):
        if roles is None:
            return ()
        return (User.role.in_(list(roles)),)
