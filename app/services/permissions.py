from typing import Any, Dict, Iterable, List

from loguru import logger
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import Forbidden, NotFound
from app.models.permissions import Permission, RolePermission, UserPermission, MANAGE_PERMISSIONS
from app.models.users import User, UserRole


def _permission_dict(permission: Permission) -> Dict[str, Any]:
    return {
        "sid": permission.sid,
        "name": permission.name,
        "description": permission.description,
        "category": permission.category,
    }


class PermissionService:
    """
    Разрешения пользователя складываются из трёх уровней:
    SUPER_ADMIN имеет всё, затем персональная дерогация пользователя,
    затем разрешения его роли.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_user_role(self, user_sid: str) -> UserRole:
        result = await self.db.execute(select(User.role).where(User.sid == user_sid))
        role = result.scalar_one_or_none()
        if role is None:
            raise NotFound(f"User {user_sid} not found")
        return UserRole(role)

    async def has_permission(self, user_sid: str, permission_name: str) -> bool:
        role = await self._get_user_role(user_sid)

        if role == UserRole.SUPER_ADMIN:
            return True

        result = await self.db.execute(select(Permission.sid).where(Permission.name == permission_name))
        permission_sid = result.scalar_one_or_none()
        if permission_sid is None:
            # Неизвестное имя разрешения никогда не даёт доступа
            logger.warning(f'Permission "{permission_name}" not found in the catalog')
            return False

        result = await self.db.execute(
            select(UserPermission.granted).where(
                UserPermission.user_sid == user_sid,
                UserPermission.permission_sid == permission_sid,
            )
        )
        override = result.scalar_one_or_none()
        if override is not None:
            return bool(override)

        result = await self.db.execute(
            select(RolePermission.id).where(
                RolePermission.role == role,
                RolePermission.permission_sid == permission_sid,
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def get_all_permissions(self) -> List[Dict[str, Any]]:
        result = await self.db.execute(select(Permission).order_by(Permission.category, Permission.name))
        return [_permission_dict(p) for p in result.scalars().all()]

    async def get_permissions_by_role(self, role: UserRole) -> List[Dict[str, Any]]:
        result = await self.db.execute(
            select(Permission)
            .join(RolePermission, RolePermission.permission_sid == Permission.sid)
            .where(RolePermission.role == role)
            .order_by(Permission.category, Permission.name)
        )
        return [_permission_dict(p) for p in result.scalars().all()]

    async def get_user_permissions(self, user_sid: str) -> List[Dict[str, Any]]:
        role = await self._get_user_role(user_sid)

        if role == UserRole.SUPER_ADMIN:
            return [
                {**perm, "source": "role", "granted": True}
                for perm in await self.get_all_permissions()
            ]

        effective: Dict[str, Dict[str, Any]] = {}
        for perm in await self.get_permissions_by_role(role):
            effective[perm["name"]] = {**perm, "source": "role", "granted": True}

        result = await self.db.execute(
            select(Permission, UserPermission.granted)
            .join(UserPermission, UserPermission.permission_sid == Permission.sid)
            .where(UserPermission.user_sid == user_sid)
        )
        for permission, granted in result.all():
            effective[permission.name] = {**_permission_dict(permission), "source": "user", "granted": bool(granted)}

        return list(effective.values())

    async def _ensure_can_manage(self, admin_sid: str) -> None:
        if not await self.has_permission(admin_sid, MANAGE_PERMISSIONS):
            raise Forbidden("You are not allowed to manage permissions")

    async def _ensure_permissions_exist(self, permission_sids: Iterable[str]) -> None:
        wanted = set(permission_sids)
        if not wanted:
            return
        result = await self.db.execute(select(Permission.sid).where(Permission.sid.in_(wanted)))
        missing = wanted - set(result.scalars().all())
        if missing:
            raise NotFound(f"Unknown permissions: {', '.join(sorted(missing))}")

    async def update_role_permissions(self, role: UserRole, permission_sids: List[str], admin_sid: str) -> Dict[str, Any]:
        """Полностью заменяет набор разрешений роли"""
        await self._ensure_can_manage(admin_sid)

        unique_sids = list(dict.fromkeys(permission_sids))
        await self._ensure_permissions_exist(unique_sids)

        await self.db.execute(delete(RolePermission).where(RolePermission.role == role))
        for permission_sid in unique_sids:
            self.db.add(RolePermission(sid=RolePermission.generate_sid(), role=role, permission_sid=permission_sid))
        await self.db.commit()

        logger.info(f"Permissions of role {role.value} replaced by {admin_sid}: {len(unique_sids)} grants")
        return {
            "success": True,
            "message": f"Permissions updated for role {role.value}",
            "count": len(unique_sids),
        }

    async def set_user_permission(self, user_sid: str, permission_sid: str, granted: bool, admin_sid: str) -> Dict[str, Any]:
        await self._ensure_can_manage(admin_sid)
        await self._get_user_role(user_sid)
        await self._ensure_permissions_exist([permission_sid])

        result = await self.db.execute(
            select(UserPermission).where(
                UserPermission.user_sid == user_sid,
                UserPermission.permission_sid == permission_sid,
            )
        )
        override = result.scalar_one_or_none()
        if override is not None:
            override.granted = granted
        else:
            self.db.add(UserPermission(
                sid=UserPermission.generate_sid(),
                user_sid=user_sid,
                permission_sid=permission_sid,
                granted=granted,
            ))
        await self.db.commit()

        logger.info(f"Permission {permission_sid} {'granted to' if granted else 'denied for'} user {user_sid} by {admin_sid}")
        return {
            "success": True,
            "message": f"Permission {'granted' if granted else 'denied'} for user {user_sid}",
            "granted": granted,
        }

    async def remove_user_permission(self, user_sid: str, permission_sid: str, admin_sid: str) -> Dict[str, Any]:
        await self._ensure_can_manage(admin_sid)

        await self.db.execute(
            delete(UserPermission).where(
                UserPermission.user_sid == user_sid,
                UserPermission.permission_sid == permission_sid,
            )
        )
        await self.db.commit()

        logger.info(f"Permission override {permission_sid} removed for user {user_sid} by {admin_sid}")
        return {
            "success": True,
            "message": f"Permission override removed for user {user_sid}",
        }
