"""
User feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from permission_engine.core.database.engine import get_db
from permission_engine.features.permissions.dependencies import require_permission
from permission_engine.features.users import service
from permission_engine.features.users.models import User
from permission_engine.features.users.schemas import AssignRolesRequest, DepartmentPublic, UserResponse


router = APIRouter(tags=["users"])


@router.get("/departments", response_model=list[DepartmentPublic])
async def list_departments(
    db: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(require_permission("departments", "read"))],
    include_inactive: bool = False
):
    """List departments (active only unless asked)."""
    return await service.list_departments(db, include_inactive=include_inactive)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user_by_id(
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(require_permission("users", "read"))]
):
    """Get a user with roles and department."""
    return await service.get_user(db, user_id)


@router.put("/{user_id}/roles", response_model=UserResponse)
async def assign_user_roles(
    user_id: str,
    request: AssignRolesRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(require_permission("users", "update"))]
):
    """Replace a user's roles."""
    return await service.assign_roles(db, user_id, request.role_ids, actor_id=user.id)
