"""
Route and UI guards over lists of "resource:action" requirements.
"""
import enum
from typing import Iterable, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from permission_engine.features.permissions.actions import parse_permission_string
from permission_engine.features.permissions.models import Role
from permission_engine.features.permissions.resolver import (
    DENIED_REASON,
    PermissionCheckResult,
    evaluate_permission,
)
from permission_engine.features.permissions.store import fetch_user_roles
from permission_engine.features.users.claims import Claims
from permission_engine.utils import get_logger


log = get_logger(__name__)


class RequirementMode(str, enum.Enum):
    ANY = "any"
    ALL = "all"


def _check_one(roles: Sequence[Role], claims: Optional[Claims], requirement: str) -> PermissionCheckResult:
    pair = parse_permission_string(requirement)
    if pair is None:
        # Unparseable requirements only pass through a privileged bypass
        result = evaluate_permission(roles, claims, "", "")
        if result.allowed:
            return result
        return PermissionCheckResult(allowed=False, reason=DENIED_REASON, required_permission=requirement)
    return evaluate_permission(roles, claims, *pair)


def check_requirements(
    roles: Iterable[Role],
    claims: Optional[Claims],
    required: Sequence[str],
    mode: RequirementMode = RequirementMode.ANY,
) -> PermissionCheckResult:
    """
    Decide a list of requirements against loaded roles and claims.

    An empty list always allows. In ANY mode the first granted requirement
    allows; in ALL mode the first refused one is reported.
    """
    if not required:
        return PermissionCheckResult.allow()

    roles = list(roles)
    first_denial: Optional[PermissionCheckResult] = None
    for requirement in required:
        result = _check_one(roles, claims, requirement)
        if result.allowed and mode is RequirementMode.ANY:
            return result
        if not result.allowed:
            if mode is RequirementMode.ALL:
                return result
            first_denial = first_denial or result

    if mode is RequirementMode.ALL:
        return PermissionCheckResult.allow()
    return first_denial


async def authorize(
    db: AsyncSession,
    user_id: str,
    required_permissions: Sequence[str],
    mode: RequirementMode = RequirementMode.ANY,
    claims: Optional[Claims] = None,
) -> PermissionCheckResult:
    """Fetch the user's roles once and decide every requirement against them."""
    if not required_permissions:
        return PermissionCheckResult.allow()
    roles = await fetch_user_roles(db, user_id)
    result = check_requirements(roles, claims, required_permissions, mode)
    if not result.allowed:
        log.info("User %s refused %s (%s)", user_id, result.required_permission, mode.value)
    return result
