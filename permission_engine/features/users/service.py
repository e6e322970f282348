"""
User lookups and role assignment.
"""
from typing import List, Optional, Sequence

from sqlalchemy import select, delete, insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from permission_engine.core.exceptions import NotFoundError, StorageError, ValidationError
from permission_engine.features.permissions.models import AuditLog, Role, user_roles
from permission_engine.features.users.models import Department, User
from permission_engine.utils import get_logger


log = get_logger(__name__)


async def get_user(db: AsyncSession, user_id: str) -> User:
    """Load a user with roles and department, or raise NotFoundError."""
    stmt = (
        select(User)
        .where(User.id == user_id)
        .options(selectinload(User.roles), selectinload(User.department))
        .execution_options(populate_existing=True)
    )
    try:
        result = await db.execute(stmt)
    except SQLAlchemyError as e:
        log.error("User lookup for %s failed: %s", user_id, e)
        raise StorageError("User store unavailable") from e
    user = result.scalars().first()
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return user


async def assign_roles(
    db: AsyncSession,
    user_id: str,
    role_ids: Sequence[int],
    actor_id: Optional[str] = None,
) -> User:
    """Replace a user's roles with ``role_ids`` in one transaction."""
    await get_user(db, user_id)
    role_ids = list(dict.fromkeys(role_ids))

    if role_ids:
        result = await db.execute(select(Role.id).where(Role.id.in_(role_ids)))
        found = set(result.scalars().all())
        missing = [rid for rid in role_ids if rid not in found]
        if missing:
            message = f"Unknown role ids: {', '.join(str(rid) for rid in missing)}"
            raise ValidationError(message, fields={"role_ids": message})

    try:
        await db.execute(delete(user_roles).where(user_roles.c.user_id == user_id))
        if role_ids:
            await db.execute(insert(user_roles), [{"user_id": user_id, "role_id": rid} for rid in role_ids])
        db.add(AuditLog(
            actor_id=actor_id,
            action="assign_roles",
            resource_type="user",
            resource_id=user_id,
            details={"role_ids": role_ids},
        ))
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        log.error("Role assignment for user %s failed: %s", user_id, e)
        raise StorageError("User store unavailable") from e

    log.info("Assigned roles %s to user %s", role_ids, user_id)
    return await get_user(db, user_id)


async def list_departments(db: AsyncSession, include_inactive: bool = False) -> List[Department]:
    stmt = select(Department).order_by(Department.name)
    if not include_inactive:
        stmt = stmt.where(Department.is_active.is_(True))
    result = await db.execute(stmt)
    return list(result.scalars().all())
