"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field

from permission_engine.features.users.models import UserStatus


class DepartmentPublic(BaseModel):
    """Department as shown alongside users."""
    id: str
    name: str
    is_active: bool

    model_config = {"from_attributes": True}


class UserRolePublic(BaseModel):
    id: int
    name: str
    level: int
    is_system_role: bool

    model_config = {"from_attributes": True}


class UserResponse(BaseModel):
    """Schema for user responses."""
    id: str
    email: EmailStr
    display_name: str
    status: UserStatus
    department_id: str | None = None
    department: DepartmentPublic | None = None
    roles: list[UserRolePublic] = []
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AssignRolesRequest(BaseModel):
    """Replace a user's roles."""
    role_ids: list[int] = Field(..., description="Role IDs; an empty list removes every role")
