from fastapi import APIRouter, Depends
from typing import List

from app.core.dependencies import get_current_user, get_permission_service, require_roles
from app.models.users import User, UserRole
from app.schemas.permissions import (
    PermissionResponse, UserPermissionResponse,
    RolePermissionsUpdate, UserPermissionUpdate,
    PermissionCheckRequest, PermissionCheckResponse, PermissionChangeResponse,
)
from app.services.permissions import PermissionService

router = APIRouter()

admins = require_roles(UserRole.SUPER_ADMIN, UserRole.ADMIN)
super_admins = require_roles(UserRole.SUPER_ADMIN)


@router.get("", response_model=List[PermissionResponse])
async def list_permissions(
        current_user: User = Depends(admins),
        permissions: PermissionService = Depends(get_permission_service),
):
    return await permissions.get_all_permissions()


@router.get("/me", response_model=List[UserPermissionResponse])
async def my_permissions(
        current_user: User = Depends(get_current_user),
        permissions: PermissionService = Depends(get_permission_service),
):
    return await permissions.get_user_permissions(current_user.sid)


@router.get("/role/{role}", response_model=List[PermissionResponse])
async def role_permissions(
        role: UserRole,
        current_user: User = Depends(admins),
        permissions: PermissionService = Depends(get_permission_service),
):
    return await permissions.get_permissions_by_role(role)


@router.get("/user/{user_sid}", response_model=List[UserPermissionResponse])
async def user_permissions(
        user_sid: str,
        current_user: User = Depends(admins),
        permissions: PermissionService = Depends(get_permission_service),
):
    return await permissions.get_user_permissions(user_sid)


@router.post("/role/{role}", response_model=PermissionChangeResponse)
async def update_role_permissions(
        role: UserRole,
        body: RolePermissionsUpdate,
        current_user: User = Depends(super_admins),
        permissions: PermissionService = Depends(get_permission_service),
):
    """Полная замена разрешений роли"""
    return await permissions.update_role_permissions(role, body.permission_sids, current_user.sid)


@router.post("/user/{user_sid}/permission/{permission_sid}", response_model=PermissionChangeResponse)
async def set_user_permission(
        user_sid: str,
        permission_sid: str,
        body: UserPermissionUpdate,
        current_user: User = Depends(admins),
        permissions: PermissionService = Depends(get_permission_service),
):
    return await permissions.set_user_permission(user_sid, permission_sid, body.granted, current_user.sid)


@router.delete("/user/{user_sid}/permission/{permission_sid}", response_model=PermissionChangeResponse)
async def remove_user_permission(
        user_sid: str,
        permission_sid: str,
        current_user: User = Depends(admins),
        permissions: PermissionService = Depends(get_permission_service),
):
    return await permissions.remove_user_permission(user_sid, permission_sid, current_user.sid)


@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
        body: PermissionCheckRequest,
        current_user: User = Depends(get_current_user),
        permissions: PermissionService = Depends(get_permission_service),
):
    granted = await permissions.has_permission(current_user.sid, body.permission)
    return {"permission": body.permission, "granted": granted}
