"""
Permission catalog and role store.

All reads and writes of permissions, roles and role-permission links go
through here. Input is validated before anything is written; every
mutation commits together with its audit row or not at all.
"""
import asyncio
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select, delete, insert, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError, OperationalError, DisconnectionError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from permission_engine.core import config
from permission_engine.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
)
from permission_engine.features.permissions.actions import normalize_action, permission_key
from permission_engine.features.permissions.models import (
    AuditLog,
    Permission,
    Role,
    role_permissions,
    user_roles,
)
from permission_engine.utils import get_logger


log = get_logger(__name__)

ROLE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9\s_-]+$")
ROLE_NAME_MIN_LENGTH = 2
ROLE_NAME_MAX_LENGTH = 50
ROLE_DESCRIPTION_MAX_LENGTH = 200
ROLE_LEVEL_MIN = 0
ROLE_LEVEL_MAX = 100

# Errors worth one more attempt on the live role fetch
TRANSIENT_ERRORS = (OperationalError, DisconnectionError, ConnectionError, OSError)


# ============================================================================
# Validation helpers
# ============================================================================

def validate_role_name(name: Optional[str]) -> str:
    """Return the stripped role name or raise ValidationError."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Role name is required", fields={"name": "Role name is required"})
    if len(name) < ROLE_NAME_MIN_LENGTH:
        message = f"Role name must be at least {ROLE_NAME_MIN_LENGTH} characters"
        raise ValidationError(message, fields={"name": message})
    if len(name) > ROLE_NAME_MAX_LENGTH:
        message = f"Role name must be less than {ROLE_NAME_MAX_LENGTH} characters"
        raise ValidationError(message, fields={"name": message})
    if not ROLE_NAME_PATTERN.match(name):
        message = "Role name can only contain letters, numbers, spaces, hyphens, and underscores"
        raise ValidationError(message, fields={"name": message})
    return name


def validate_role_description(description: Optional[str]) -> Optional[str]:
    if description is not None and len(description) > ROLE_DESCRIPTION_MAX_LENGTH:
        message = f"Description must be less than {ROLE_DESCRIPTION_MAX_LENGTH} characters"
        raise ValidationError(message, fields={"description": message})
    return description


def validate_role_level(level: Any) -> int:
    if isinstance(level, bool) or not isinstance(level, int) or not ROLE_LEVEL_MIN <= level <= ROLE_LEVEL_MAX:
        message = f"Level must be an integer between {ROLE_LEVEL_MIN} and {ROLE_LEVEL_MAX}"
        raise ValidationError(message, fields={"level": message})
    return level


def _dedupe_ids(permission_ids: Iterable[int]) -> List[int]:
    return list(dict.fromkeys(permission_ids))


async def _ensure_name_available(db: AsyncSession, name: str, exclude_role_id: Optional[int] = None) -> None:
    stmt = select(Role.id).where(func.lower(Role.name) == name.lower())
    if exclude_role_id is not None:
        stmt = stmt.where(Role.id != exclude_role_id)
    result = await db.execute(stmt)
    if result.first():
        raise ConflictError(f"Role with name '{name}' already exists")


async def _resolve_permission_ids(db: AsyncSession, permission_ids: Sequence[int]) -> List[Permission]:
    if not permission_ids:
        return []
    result = await db.execute(select(Permission).where(Permission.id.in_(permission_ids)))
    found = {p.id: p for p in result.scalars().all()}
    missing = [pid for pid in permission_ids if pid not in found]
    if missing:
        message = f"Unknown permission ids: {', '.join(str(pid) for pid in missing)}"
        raise ValidationError(message, fields={"permission_ids": message})
    return [found[pid] for pid in permission_ids]


def _audit(db: AsyncSession, actor_id: Optional[str], action: str, resource_type: str,
           resource_id: Any, details: Optional[Dict[str, Any]] = None) -> None:
    db.add(AuditLog(
        actor_id=actor_id,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        details=details,
    ))


async def _commit(db: AsyncSession, conflict_message: str) -> None:
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError(conflict_message) from e
    except SQLAlchemyError as e:
        await db.rollback()
        log.error("Store write failed: %s", e)
        raise StorageError("Permission store unavailable") from e


# ============================================================================
# Permission catalog
# ============================================================================

async def list_permissions(db: AsyncSession) -> List[Permission]:
    """All catalog entries ordered by resource, then action."""
    result = await db.execute(select(Permission).order_by(Permission.resource, Permission.action))
    return list(result.scalars().all())


async def get_permission(db: AsyncSession, permission_id: int) -> Permission:
    permission = await db.get(Permission, permission_id)
    if permission is None:
        raise NotFoundError(f"Permission {permission_id} not found")
    return permission


async def create_permission(
    db: AsyncSession,
    resource: str,
    action: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
    actor_id: Optional[str] = None,
) -> Permission:
    """Add a (resource, action) pair to the catalog."""
    resource = (resource or "").strip()
    action = normalize_action(action or "")
    if not resource:
        raise ValidationError("Resource is required", fields={"resource": "Resource is required"})
    if not action:
        raise ValidationError("Action is required", fields={"action": "Action is required"})

    existing = await db.execute(
        select(Permission.id).where(Permission.resource == resource, Permission.action == action)
    )
    if existing.first():
        raise ConflictError(f"Permission '{permission_key(resource, action)}' already exists")

    permission = Permission(
        resource=resource,
        action=action,
        name=(name or "").strip() or permission_key(resource, action),
        description=description,
    )
    db.add(permission)
    await db.flush()
    _audit(db, actor_id, "create", "permission", permission.id, {"resource": resource, "action": action})
    await _commit(db, f"Permission '{permission_key(resource, action)}' already exists")
    await db.refresh(permission)

    log.info("Created permission %s (id=%s)", permission.key, permission.id)
    return permission


async def delete_permission(db: AsyncSession, permission_id: int, actor_id: Optional[str] = None) -> None:
    """Remove a catalog entry that no role references."""
    permission = await get_permission(db, permission_id)

    result = await db.execute(
        select(func.count()).select_from(role_permissions).where(role_permissions.c.permission_id == permission_id)
    )
    if result.scalar():
        raise ConflictError(f"Permission '{permission.key}' is assigned to one or more roles")

    key = permission.key
    await db.delete(permission)
    _audit(db, actor_id, "delete", "permission", permission_id, {"permission": key})
    await _commit(db, f"Permission '{key}' could not be deleted")
    log.info("Deleted permission %s (id=%s)", key, permission_id)


async def ensure_permissions_exist(db: AsyncSession, resources: Iterable[str], actions: Iterable[str]) -> int:
    """
    Insert every missing (resource, action) pair of the cross product.

    Returns:
        Number of permissions inserted
    """
    existing = {(p.resource, p.action) for p in await list_permissions(db)}
    actions = [normalize_action(a) for a in actions]

    created = 0
    for resource in resources:
        for action in actions:
            if (resource, action) in existing:
                continue
            db.add(Permission(
                resource=resource,
                action=action,
                name=permission_key(resource, action),
                description=f"{action.capitalize()} access for {resource}",
            ))
            existing.add((resource, action))
            created += 1

    if created:
        await _commit(db, "Permission catalog changed concurrently")
        log.info("Inserted %d missing permissions", created)
    return created


async def list_resources(db: AsyncSession) -> List[Dict[str, Any]]:
    """Distinct resources with their distinct catalog actions."""
    grouped: Dict[str, List[str]] = {}
    for permission in await list_permissions(db):
        actions = grouped.setdefault(permission.resource, [])
        if permission.action not in actions:
            actions.append(permission.action)
    return [{"resource": resource, "actions": actions} for resource, actions in grouped.items()]


# ============================================================================
# Role store
# ============================================================================

async def list_roles(db: AsyncSession) -> List[Role]:
    """All roles, each with its permission set loaded."""
    result = await db.execute(
        select(Role).options(selectinload(Role.permissions)).order_by(Role.level.desc(), Role.name)
    )
    return list(result.scalars().all())


async def get_role(db: AsyncSession, role_id: int) -> Role:
    stmt = (
        select(Role)
        .where(Role.id == role_id)
        .options(selectinload(Role.permissions))
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    role = result.scalars().first()
    if role is None:
        raise NotFoundError(f"Role {role_id} not found")
    return role


async def create_role(
    db: AsyncSession,
    name: str,
    description: Optional[str],
    level: int,
    permission_ids: Sequence[int],
    actor_id: Optional[str] = None,
    is_system_role: bool = False,
) -> Role:
    """
    Create a role with its permission set.

    Raises:
        ValidationError: bad name/description/level or unknown permission ids
        ConflictError: another role already uses the name (case-insensitive)
    """
    name = validate_role_name(name)
    description = validate_role_description(description)
    level = validate_role_level(level)
    permission_ids = _dedupe_ids(permission_ids)

    await _ensure_name_available(db, name)
    permissions = await _resolve_permission_ids(db, permission_ids)

    role = Role(
        name=name,
        description=description,
        level=level,
        is_system_role=is_system_role,
        permissions=permissions,
    )
    db.add(role)
    await db.flush()
    _audit(db, actor_id, "create", "role", role.id, {
        "name": name, "level": level, "permission_ids": permission_ids,
    })
    await _commit(db, f"Role with name '{name}' already exists")

    log.info("Created role %r (id=%s) with %d permissions", name, role.id, len(permissions))
    return await get_role(db, role.id)


async def update_role(
    db: AsyncSession,
    role_id: int,
    name: Optional[str] = None,
    description: Optional[str] = None,
    level: Optional[int] = None,
    permission_ids: Optional[Sequence[int]] = None,
    actor_id: Optional[str] = None,
) -> Role:
    """
    Update a role. Arguments left as None are unchanged.

    An explicit ``permission_ids`` replaces the whole permission set: existing
    links are deleted and the new ones inserted in the same transaction.
    System roles keep their name; their level and permissions are editable.
    """
    role = await get_role(db, role_id)
    changes: Dict[str, Any] = {}

    if name is not None:
        name = validate_role_name(name)
        if name != role.name:
            if role.is_system_role:
                raise PermissionDeniedError(f"System role '{role.name}' cannot be renamed")
            await _ensure_name_available(db, name, exclude_role_id=role_id)
            changes["name"] = name
    if description is not None:
        changes["description"] = validate_role_description(description)
    if level is not None:
        changes["level"] = validate_role_level(level)
    if permission_ids is not None:
        permission_ids = _dedupe_ids(permission_ids)
        if not permission_ids:
            message = "A role must keep at least one permission"
            raise ValidationError(message, fields={"permission_ids": message})
        await _resolve_permission_ids(db, permission_ids)
        changes["permission_ids"] = permission_ids

    if not changes:
        return role

    for key in ("name", "description", "level"):
        if key in changes:
            setattr(role, key, changes[key])

    try:
        if "permission_ids" in changes:
            await db.execute(delete(role_permissions).where(role_permissions.c.role_id == role_id))
            await db.execute(
                insert(role_permissions),
                [{"role_id": role_id, "permission_id": pid} for pid in changes["permission_ids"]],
            )
        _audit(db, actor_id, "update", "role", role_id, changes)
    except SQLAlchemyError as e:
        await db.rollback()
        log.error("Role %s update failed, rolled back: %s", role_id, e)
        raise StorageError("Permission store unavailable") from e
    await _commit(db, f"Role with name '{changes.get('name', role.name)}' already exists")

    log.info("Updated role %s: %s", role_id, ", ".join(sorted(changes)))
    return await get_role(db, role_id)


async def delete_role(db: AsyncSession, role_id: int, actor_id: Optional[str] = None) -> None:
    """Delete a role and its user assignments. System roles cannot be deleted."""
    role = await get_role(db, role_id)
    if role.is_system_role:
        raise PermissionDeniedError(f"System role '{role.name}' cannot be deleted")

    role_name = role.name
    await db.execute(delete(user_roles).where(user_roles.c.role_id == role_id))
    await db.delete(role)
    _audit(db, actor_id, "delete", "role", role_id, {"name": role_name})
    await _commit(db, f"Role '{role_name}' could not be deleted")
    log.info("Deleted role %r (id=%s)", role_name, role_id)


async def role_matrix(db: AsyncSession, role_id: int) -> Dict[str, Dict[str, bool]]:
    """The role's assignments grouped as ``{resource: {action: True}}``."""
    role = await get_role(db, role_id)
    matrix: Dict[str, Dict[str, bool]] = {}
    for permission in role.permissions:
        matrix.setdefault(permission.resource, {})[permission.action] = True
    return matrix


# ============================================================================
# Live role fetch
# ============================================================================

async def _load_user_roles(db: AsyncSession, user_id: str) -> List[Role]:
    stmt = (
        select(Role)
        .join(user_roles, user_roles.c.role_id == Role.id)
        .where(user_roles.c.user_id == user_id)
        .options(selectinload(Role.permissions))
    )
    result = await db.execute(stmt)
    return list(result.scalars().unique().all())


async def fetch_user_roles(db: AsyncSession, user_id: str) -> List[Role]:
    """
    Read a user's roles (with permissions) from the store.

    Transient connectivity errors are retried ``STORE_RETRY_ATTEMPTS`` times.
    Timeouts and exhausted retries raise StorageError, never an empty result.
    """
    attempts = config.STORE_RETRY_ATTEMPTS + 1
    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(_load_user_roles(db, user_id), timeout=config.STORE_TIMEOUT_SECONDS)
        except asyncio.TimeoutError as e:
            log.error("Role fetch for user %s timed out after %ss", user_id, config.STORE_TIMEOUT_SECONDS)
            raise StorageError("Role store unavailable: timed out") from e
        except TRANSIENT_ERRORS as e:
            if attempt < attempts:
                log.warning("Role fetch for user %s failed (attempt %d/%d), retrying: %s",
                            user_id, attempt, attempts, e)
                await db.rollback()
                continue
            log.error("Role fetch for user %s failed: %s", user_id, e)
            raise StorageError("Role store unavailable") from e
        except SQLAlchemyError as e:
            log.error("Role fetch for user %s failed: %s", user_id, e)
            raise StorageError("Role store unavailable") from e
    raise StorageError("Role store unavailable")
