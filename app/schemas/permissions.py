# app/schemas/permissions.py
from pydantic import BaseModel, Field
from typing import List, Literal, Optional


class PermissionResponse(BaseModel):
    sid: str
    name: str
    category: str
    description: Optional[str] = None


class UserPermissionResponse(PermissionResponse):
    source: Literal["role", "user"]
    granted: bool


class RolePermissionsUpdate(BaseModel):
    permission_sids: List[str] = Field(default_factory=list)


class UserPermissionUpdate(BaseModel):
    granted: bool = True


class PermissionCheckRequest(BaseModel):
    permission: str = Field(..., min_length=1)


class PermissionCheckResponse(BaseModel):
    permission: str
    granted: bool


class PermissionChangeResponse(BaseModel):
    success: bool
    message: str
    count: Optional[int] = None
    granted: Optional[bool] = None
