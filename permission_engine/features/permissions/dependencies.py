"""
FastAPI dependencies for route protection.

Usage:
    @router.post("/roles")
    async def create_role(
        db: AsyncSession = Depends(get_db),
        user: User = Depends(require_permission("roles", "create"))
    ):
        # User has permission to create roles
        pass
"""
from typing import Sequence

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from permission_engine.core.database.engine import get_db
from permission_engine.core.exceptions import PermissionDeniedError
from permission_engine.features.permissions.actions import permission_key
from permission_engine.features.permissions.guard import RequirementMode, authorize
from permission_engine.features.users.claims import Claims
from permission_engine.features.users.dependencies import get_claims, get_current_user
from permission_engine.features.users.models import User
from permission_engine.utils import get_logger


log = get_logger(__name__)


def require_permissions(required: Sequence[str], mode: RequirementMode = RequirementMode.ANY):
    """
    FastAPI dependency to require a list of "resource:action" permissions.

    Args:
        required: permission strings; an empty list lets every caller through
        mode: ANY (one is enough) or ALL

    Returns:
        Dependency function that returns the current user if the guard allows

    Raises:
        PermissionDeniedError: 403 naming the missing permission
    """
    required = list(required)

    async def permission_dependency(
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(get_current_user),
        claims: Claims = Depends(get_claims),
    ) -> User:
        result = await authorize(db, current_user.id, required, mode, claims)
        if not result.allowed:
            raise PermissionDeniedError(result.reason, required_permission=result.required_permission)
        return current_user

    return permission_dependency


def require_permission(resource: str, action: str):
    """FastAPI dependency to require a single (resource, action) permission."""
    return require_permissions([permission_key(resource, action)])
