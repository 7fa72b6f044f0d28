# /app/db/init_permissions.py
"""
Базовый каталог разрешений и их привязка к ролям.

Запуск: python -m app.db.init_permissions
"""
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, List, Tuple
import asyncio
import logging

from app.models.permissions import Permission, RolePermission
from app.models.users import UserRole

logger = logging.getLogger(__name__)

# (name, category, description)
DEFAULT_PERMISSIONS: List[Tuple[str, str, str]] = [
    ("user:create", "users", "Create users"),
    ("user:read", "users", "View users"),
    ("user:update", "users", "Update users"),
    ("user:delete", "users", "Delete users"),
    ("user:manage_roles", "users", "Change user roles"),

    ("pharmacy:create", "pharmacies", "Create pharmacies"),
    ("pharmacy:read", "pharmacies", "View pharmacies"),
    ("pharmacy:update", "pharmacies", "Update pharmacies"),
    ("pharmacy:delete", "pharmacies", "Delete pharmacies"),
    ("pharmacy:approve", "pharmacies", "Approve pharmacy registrations"),

    ("medicine:create", "medicines", "Create medicines"),
    ("medicine:read", "medicines", "View medicines"),
    ("medicine:update", "medicines", "Update medicines"),
    ("medicine:delete", "medicines", "Delete medicines"),

    ("order:create", "orders", "Create orders"),
    ("order:read", "orders", "View orders"),
    ("order:update", "orders", "Update orders"),
    ("order:cancel", "orders", "Cancel orders"),

    ("delivery:create", "deliveries", "Create deliveries"),
    ("delivery:read", "deliveries", "View deliveries"),
    ("delivery:update", "deliveries", "Update deliveries"),

    ("system:logs", "system", "View system logs"),
    ("system:settings", "system", "Change system settings"),
    ("system:permissions", "system", "Manage roles and permissions"),

    ("analytics:view", "analytics", "View analytics"),
    ("analytics:export", "analytics", "Export analytics"),
]

DEFAULT_ROLE_PERMISSIONS: Dict[UserRole, List[str]] = {
    UserRole.SUPER_ADMIN: [name for name, _, _ in DEFAULT_PERMISSIONS],
    UserRole.ADMIN: [
        "user:read", "user:create", "user:update",
        "pharmacy:create", "pharmacy:read", "pharmacy:update", "pharmacy:delete", "pharmacy:approve",
        "medicine:read", "medicine:create", "medicine:update",
        "order:read", "order:update",
        "delivery:read", "delivery:update",
        "analytics:view", "analytics:export",
        "system:logs",
    ],
    UserRole.PHARMACIST: [
        "user:read",
        "pharmacy:read",
        "medicine:create", "medicine:read", "medicine:update", "medicine:delete",
        "order:read", "order:update",
    ],
    UserRole.PHARMACY_STAFF: [
        "medicine:read",
        "order:read", "order:update",
    ],
    UserRole.DELIVERY_PERSON: [
        "delivery:read", "delivery:update",
        "order:read",
    ],
    UserRole.CUSTOMER: [
        "order:create", "order:read", "order:cancel",
    ],
}


async def seed_default_permissions(db: AsyncSession) -> Dict[str, str]:
    """
    Создаёт недостающие разрешения и перезаписывает привязки ролей из DEFAULT_ROLE_PERMISSIONS.
    Возвращает словарь name -> sid.
    """
    result = await db.execute(select(Permission))
    existing = {p.name: p for p in result.scalars().all()}

    created = 0
    for name, category, description in DEFAULT_PERMISSIONS:
        if name in existing:
            continue
        permission = Permission(
            sid=Permission.generate_sid(),
            name=name,
            category=category,
            description=description,
        )
        db.add(permission)
        existing[name] = permission
        created += 1
    await db.flush()

    sids = {name: permission.sid for name, permission in existing.items()}

    for role, names in DEFAULT_ROLE_PERMISSIONS.items():
        await db.execute(delete(RolePermission).where(RolePermission.role == role))
        for name in names:
            db.add(RolePermission(sid=RolePermission.generate_sid(), role=role, permission_sid=sids[name]))

    await db.commit()
    logger.info(f"Permissions seeded: {created} created, {len(DEFAULT_ROLE_PERMISSIONS)} roles mapped")
    return sids


async def main():
    from app.db.session import AsyncSessionLocal

    async with AsyncSessionLocal() as db:
        await seed_default_permissions(db)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
