"""
Session assembly: who the user is, what they may do, and which features
that unlocks, valid for a fixed TTL.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from permission_engine.core import config
from permission_engine.features.permissions.feature_access import FeatureAccess, map_to_features
from permission_engine.features.permissions.resolver import ResolvedPermission, resolve_permissions
from permission_engine.features.permissions.store import fetch_user_roles
from permission_engine.features.users.claims import Claims, extract_claims
from permission_engine.features.users.service import get_user
from permission_engine.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class SessionRole:
    id: int
    name: str
    level: int


@dataclass(frozen=True)
class SessionUser:
    id: str
    email: str
    display_name: str
    status: str
    department_id: Optional[str] = None
    department_name: Optional[str] = None
    roles: Tuple[SessionRole, ...] = ()


@dataclass
class Session:
    user: SessionUser
    permissions: List[ResolvedPermission]
    features: Dict[str, FeatureAccess]
    session_id: str
    expires_at: datetime
    claims: Claims = field(default_factory=Claims.empty)


async def build_session(
    db: AsyncSession,
    user_id: str,
    token: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Session:
    """
    Build the session for ``user_id``.

    The live role fetch and the token decode run concurrently; a bad token
    only means empty claims. An unknown user raises NotFoundError and a
    failing store raises StorageError.
    """
    user = await get_user(db, user_id)

    roles, claims = await asyncio.gather(
        fetch_user_roles(db, user.id),
        asyncio.to_thread(extract_claims, token),
    )

    permissions = resolve_permissions(roles, claims)
    features = map_to_features(permissions)

    now = now or datetime.now(timezone.utc)
    department = user.department
    session_user = SessionUser(
        id=user.id,
        email=user.email,
        display_name=user.display_name,
        status=user.status.value,
        department_id=user.department_id or claims.department_id,
        department_name=department.name if department else claims.department_name,
        roles=tuple(SessionRole(id=r.id, name=r.name, level=r.level) for r in roles),
    )

    session = Session(
        user=session_user,
        permissions=permissions,
        features=features,
        session_id=f"{user.id}:{int(now.timestamp() * 1000)}",
        expires_at=now + timedelta(seconds=config.SESSION_TTL_SECONDS),
        claims=claims,
    )
    log.debug("Built session %s with %d permissions", session.session_id, len(permissions))
    return session
