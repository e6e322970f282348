"""
Permission resolution.

A request is decided from two sources: the user's live roles in the store
and the claims of the caller's access token. Claims may lag the store, so
the merge is a lenient union: access is granted if either source grants it.

Decision order, first match wins:
1. any live role with level >= ADMIN_LEVEL_THRESHOLD
2. any claimed role name in ADMIN_ROLE_NAMES
3. (resource, action) or (resource, "manage") in the merged permission set
4. deny, naming the missing "resource:action"
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from permission_engine.core import config
from permission_engine.features.permissions.actions import (
    MANAGE,
    normalize_action,
    parse_permission_string,
    permission_key,
)
from permission_engine.features.permissions.models import Role
from permission_engine.features.permissions.store import fetch_user_roles
from permission_engine.features.users.claims import Claims
from permission_engine.utils import get_logger


log = get_logger(__name__)

DENIED_REASON = "Permission denied"

SOURCE_ROLE = "role"
SOURCE_CLAIMS = "claims"


@dataclass(frozen=True)
class ResolvedPermission:
    """One effective (resource, action) grant and where it came from."""
    resource: str
    action: str
    permission_id: Optional[int] = None
    name: Optional[str] = None
    source: str = SOURCE_ROLE

    @property
    def key(self) -> str:
        return permission_key(self.resource, self.action)


@dataclass(frozen=True)
class PermissionCheckResult:
    allowed: bool
    reason: Optional[str] = None
    required_permission: Optional[str] = None

    @classmethod
    def allow(cls) -> "PermissionCheckResult":
        return cls(allowed=True)

    @classmethod
    def deny(cls, resource: str, action: str) -> "PermissionCheckResult":
        return cls(allowed=False, reason=DENIED_REASON, required_permission=permission_key(resource, action))


def has_privileged_role(roles: Iterable[Role], threshold: Optional[int] = None) -> bool:
    threshold = config.ADMIN_LEVEL_THRESHOLD if threshold is None else threshold
    return any(role.level is not None and role.level >= threshold for role in roles)


def has_privileged_claim(claims: Optional[Claims], admin_role_names: Optional[Iterable[str]] = None) -> bool:
    if claims is None:
        return False
    names = config.ADMIN_ROLE_NAMES if admin_role_names is None else {n.lower() for n in admin_role_names}
    return any(role_name.strip().lower() in names for role_name in claims.role_names)


def resolve_permissions(roles: Iterable[Role], claims: Optional[Claims] = None) -> List[ResolvedPermission]:
    """
    Union of live role permissions and claimed permission strings.

    Deduplicated by (resource, action); a pair granted by both sources keeps
    the store's entry. Claimed strings that do not parse are skipped.
    """
    resolved: Dict[Tuple[str, str], ResolvedPermission] = {}

    for role in roles:
        for permission in role.permissions:
            pair = (permission.resource, normalize_action(permission.action))
            if pair not in resolved:
                resolved[pair] = ResolvedPermission(
                    resource=pair[0],
                    action=pair[1],
                    permission_id=permission.id,
                    name=permission.name,
                )

    if claims is not None:
        for value in claims.permission_strings:
            pair = parse_permission_string(value)
            if pair is None:
                log.debug("Ignoring malformed claimed permission %r", value)
                continue
            if pair not in resolved:
                resolved[pair] = ResolvedPermission(
                    resource=pair[0],
                    action=pair[1],
                    name=permission_key(*pair),
                    source=SOURCE_CLAIMS,
                )

    return list(resolved.values())


def grants(permissions: Iterable[ResolvedPermission], resource: str, action: str) -> bool:
    """True if the set holds (resource, action) or (resource, manage)."""
    action = normalize_action(action)
    return any(
        p.resource == resource and (p.action == action or p.action == MANAGE)
        for p in permissions
    )


def evaluate_permission(
    roles: Iterable[Role],
    claims: Optional[Claims],
    resource: str,
    action: str,
    threshold: Optional[int] = None,
    admin_role_names: Optional[Iterable[str]] = None,
) -> PermissionCheckResult:
    """Decide one request from already-loaded roles and claims. No I/O."""
    roles = list(roles)

    if has_privileged_role(roles, threshold):
        return PermissionCheckResult.allow()

    if has_privileged_claim(claims, admin_role_names):
        return PermissionCheckResult.allow()

    if grants(resolve_permissions(roles, claims), resource, action):
        return PermissionCheckResult.allow()

    return PermissionCheckResult.deny(resource, normalize_action(action))


async def check_permission(
    db: AsyncSession,
    user_id: str,
    resource: str,
    action: str,
    claims: Optional[Claims] = None,
) -> PermissionCheckResult:
    """
    Check whether a user may perform ``action`` on ``resource``.

    Being denied is a normal result, not an exception. A failing role fetch
    raises StorageError so the caller decides; access is never granted or
    denied silently on a store failure.
    """
    roles = await fetch_user_roles(db, user_id)
    result = evaluate_permission(roles, claims, resource, action)
    log.debug(
        "User %s %s %s:%s",
        user_id, "granted" if result.allowed else "denied", resource, normalize_action(action),
    )
    return result
