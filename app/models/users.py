# app/models/users.py
from sqlalchemy import Column, String, Boolean, Text, Enum, DateTime
from datetime import datetime, timezone
from app.models.base import Base
import enum


def utcnow():
    return datetime.now(timezone.utc)


class UserRole(str, enum.Enum):
    CUSTOMER = "CUSTOMER"
    ADMIN = "ADMIN"
    PHARMACY_STAFF = "PHARMACY_STAFF"
    PHARMACIST = "PHARMACIST"
    DELIVERY_PERSON = "DELIVERY_PERSON"
    SUPER_ADMIN = "SUPER_ADMIN"
    MANAGER = "MANAGER"
    SUPPORT = "SUPPORT"
    VIEWER = "VIEWER"


# Роли, которым разрешён вход в back-office (логин по паролю и по OTP)
BACKOFFICE_LOGIN_ROLES = frozenset({
    UserRole.ADMIN,
    UserRole.PHARMACIST,
    UserRole.PHARMACY_STAFF,
    UserRole.SUPER_ADMIN,
})

# Роли, которые могут сбрасывать пароль через back-office
PASSWORD_RESET_ROLES = frozenset({
    UserRole.ADMIN,
    UserRole.PHARMACY_STAFF,
    UserRole.SUPER_ADMIN,
})


class User(Base):
    username = Column(String(100), unique=True, nullable=False, index=True)
    email = Column(String, unique=True, nullable=True, index=True)
    phone = Column(String(32), nullable=True, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.CUSTOMER)
    password_hash = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_login = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def display_name(self) -> str:
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.username
