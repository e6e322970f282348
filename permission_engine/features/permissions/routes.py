"""
Permission management API routes.

Provides endpoints for the permission catalog, roles, the role matrix
editor, permission checks and the caller's session.
"""
from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from permission_engine.core.database.engine import get_db
from permission_engine.core.exceptions import ValidationError
from permission_engine.features.users.claims import Claims
from permission_engine.features.users.dependencies import get_claims, get_current_user, get_token
from permission_engine.features.users.models import User
from permission_engine.features.permissions import store
from permission_engine.features.permissions.dependencies import require_permission
from permission_engine.features.permissions.guard import authorize
from permission_engine.features.permissions.matrix import PermissionMatrix
from permission_engine.features.permissions.resolver import check_permission
from permission_engine.features.permissions.session import build_session
from permission_engine.features.permissions.schemas import (
    AccessLevelPresetRequest,
    AccessLevelPresetResponse,
    MatrixColumn,
    MatrixResponse,
    MatrixRow,
    PermissionCheckRequest,
    PermissionCheckResponse,
    PermissionCreate,
    PermissionResponse,
    ResourceResponse,
    RoleCreate,
    RoleMatrixUpdate,
    RoleUpdate,
    RoleWithPermissions,
    SessionResponse,
)
from permission_engine.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


def _matrix_response(matrix: PermissionMatrix) -> MatrixResponse:
    validation = matrix.validate()
    return MatrixResponse(
        columns=[MatrixColumn(action=a, state=matrix.column_state(a)) for a in matrix.columns],
        rows=[
            MatrixRow(
                resource=resource,
                state=matrix.row_state(resource),
                available=dict(matrix.availability[resource]),
                selected=list(matrix.selected_actions(resource)),
            )
            for resource in matrix.resources
        ],
        selected_count=matrix.selected_count(),
        available_count=matrix.available_count(),
        errors=dict(validation.errors),
        global_error=validation.global_error,
    )


def _payload(entries) -> List[dict]:
    return [entry.model_dump() for entry in entries]


# ============================================================================
# Permission Catalog Routes
# ============================================================================

@router.get("/permissions", response_model=List[PermissionResponse])
async def list_permissions(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("roles", "read"))
):
    """List the permission catalog."""
    return await store.list_permissions(db)


@router.post("/permissions", response_model=PermissionResponse, status_code=status.HTTP_201_CREATED)
async def create_permission(
    permission: PermissionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("roles", "manage"))
):
    """Add a (resource, action) pair to the catalog."""
    return await store.create_permission(
        db,
        resource=permission.resource,
        action=permission.action,
        name=permission.name,
        description=permission.description,
        actor_id=current_user.id,
    )


@router.get("/permissions/{permission_id}", response_model=PermissionResponse)
async def get_permission(
    permission_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("roles", "read"))
):
    """Get a specific permission by ID."""
    return await store.get_permission(db, permission_id)


@router.delete("/permissions/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_permission(
    permission_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("roles", "manage"))
):
    """Delete a permission no role references."""
    await store.delete_permission(db, permission_id, actor_id=current_user.id)


@router.get("/resources", response_model=List[ResourceResponse])
async def list_resources(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("roles", "read"))
):
    """Distinct resources with their catalog actions."""
    return await store.list_resources(db)


# ============================================================================
# Matrix Routes
# ============================================================================

@router.get("/matrix", response_model=MatrixResponse)
async def get_catalog_matrix(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("roles", "read"))
):
    """Empty matrix over the catalog, as shown when creating a role."""
    matrix = PermissionMatrix.from_catalog(await store.list_permissions(db))
    return _matrix_response(matrix)


@router.post("/matrix/access-level", response_model=AccessLevelPresetResponse)
async def apply_access_level(
    request: AccessLevelPresetRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("roles", "read"))
):
    """Resolve an access-level preset and the selection it leaves behind."""
    matrix = PermissionMatrix.from_catalog(await store.list_permissions(db))
    matrix = matrix.with_payload(_payload(request.permissions))
    level, matrix = matrix.change_access_level(request.preset, request.mode)
    return AccessLevelPresetResponse(level=level, permissions=matrix.to_persistence_payload())


@router.get("/roles/{role_id}/matrix", response_model=MatrixResponse)
async def get_role_matrix(
    role_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("roles", "read"))
):
    """Matrix over the catalog with the role's permissions checked."""
    role = await store.get_role(db, role_id)
    matrix = PermissionMatrix.from_catalog(await store.list_permissions(db), selected=role.permissions)
    return _matrix_response(matrix)


@router.put("/roles/{role_id}/matrix", response_model=RoleWithPermissions)
async def update_role_matrix(
    role_id: int,
    update: RoleMatrixUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("roles", "update"))
):
    """Replace the role's permissions with a matrix selection."""
    await store.get_role(db, role_id)
    matrix = PermissionMatrix.from_catalog(await store.list_permissions(db))
    matrix = matrix.with_payload(_payload(update.permissions))

    validation = matrix.validate()
    if not validation.is_valid:
        fields = dict(validation.errors)
        if validation.global_error:
            fields["permissions"] = validation.global_error
        raise ValidationError(validation.global_error or "Some resources have no actions selected", fields=fields)

    return await store.update_role(db, role_id, permission_ids=matrix.permission_ids(), actor_id=current_user.id)


# ============================================================================
# Role Routes
# ============================================================================

@router.get("/roles", response_model=List[RoleWithPermissions])
async def list_roles(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("roles", "read"))
):
    """List roles, highest level first."""
    return await store.list_roles(db)


@router.post("/roles", response_model=RoleWithPermissions, status_code=status.HTTP_201_CREATED)
async def create_role(
    role: RoleCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("roles", "create"))
):
    """Create a new role with its permission set."""
    return await store.create_role(
        db,
        name=role.name,
        description=role.description,
        level=role.level,
        permission_ids=role.permission_ids,
        actor_id=current_user.id,
    )


@router.get("/roles/{role_id}", response_model=RoleWithPermissions)
async def get_role(
    role_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("roles", "read"))
):
    """Get a role with its permissions."""
    return await store.get_role(db, role_id)


@router.put("/roles/{role_id}", response_model=RoleWithPermissions)
async def update_role(
    role_id: int,
    role_update: RoleUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("roles", "update"))
):
    """Update a role. An explicit permission_ids list replaces the whole set."""
    return await store.update_role(
        db,
        role_id,
        name=role_update.name,
        description=role_update.description,
        level=role_update.level,
        permission_ids=role_update.permission_ids,
        actor_id=current_user.id,
    )


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("roles", "delete"))
):
    """Delete a non-system role."""
    await store.delete_role(db, role_id, actor_id=current_user.id)


# ============================================================================
# Permission Check & Session Routes
# ============================================================================

@router.post("/check", response_model=PermissionCheckResponse)
async def check_current_user_permission(
    request: PermissionCheckRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    claims: Claims = Depends(get_claims)
):
    """
    Check a permission (or a list of them) for the current user.

    An explicit empty ``permissions`` list requires nothing and is allowed.
    """
    if request.permissions:
        result = await authorize(db, current_user.id, request.permissions, request.mode, claims)
    elif request.resource and request.action:
        result = await check_permission(db, current_user.id, request.resource, request.action, claims)
    elif "permissions" in request.model_fields_set:
        result = await authorize(db, current_user.id, [], request.mode, claims)
    else:
        message = "Provide resource and action, or a list of permissions"
        raise ValidationError(message, fields={"permissions": message})

    return PermissionCheckResponse(
        allowed=result.allowed,
        reason=result.reason,
        required_permission=result.required_permission,
    )


@router.get("/session", response_model=SessionResponse)
async def get_session(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    token: str = Depends(get_token)
):
    """Session for the current user: resolved permissions and feature access."""
    return await build_session(db, current_user.id, token)
