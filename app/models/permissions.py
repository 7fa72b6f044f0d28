# app/models/permissions.py
from sqlalchemy import Column, String, Boolean, Text, Enum, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.orm import relationship
from app.models.base import Base
from app.models.users import UserRole, utcnow

# Permission, которая даёт право менять роли и дерогации
MANAGE_PERMISSIONS = "system:permissions"


class Permission(Base):
    name = Column(String(100), unique=True, nullable=False, index=True)
    category = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class RolePermission(Base):
    __table_args__ = (UniqueConstraint("role", "permission_sid", name="uq_rolepermission_role_permission"),)

    role = Column(Enum(UserRole), nullable=False, index=True)
    permission_sid = Column(String(22), ForeignKey("permission.sid", ondelete="CASCADE"), nullable=False)
    permission = relationship("Permission")
    created_at = Column(DateTime(timezone=True), default=utcnow)


class UserPermission(Base):
    __table_args__ = (UniqueConstraint("user_sid", "permission_sid", name="uq_userpermission_user_permission"),)

    user_sid = Column(String(22), ForeignKey("user.sid", ondelete="CASCADE"), nullable=False, index=True)
    permission_sid = Column(String(22), ForeignKey("permission.sid", ondelete="CASCADE"), nullable=False)
    permission = relationship("Permission")
    granted = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
