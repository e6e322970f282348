"""
Feature access mapping for UI gating.

Each resource maps to a feature of the same name with a coarse access
level. Levels only ever go up within one computation:
none < read < write < admin.
"""
import enum
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from permission_engine.features.permissions.actions import MANAGE, WRITE_ACTIONS, normalize_action


class AccessLevel(str, enum.Enum):
    NONE = "none"
    READ = "read"
    WRITE = "write"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _RANKS[self]


_RANKS = {
    AccessLevel.NONE: 0,
    AccessLevel.READ: 1,
    AccessLevel.WRITE: 2,
    AccessLevel.ADMIN: 3,
}


@dataclass
class FeatureAccess:
    feature: str
    access_level: AccessLevel = AccessLevel.NONE
    actions: List[str] = field(default_factory=list)


def escalate(current: AccessLevel, action: str) -> AccessLevel:
    """Access level after seeing ``action``; never lower than ``current``."""
    action = normalize_action(action)
    if action == MANAGE:
        return AccessLevel.ADMIN
    if action in WRITE_ACTIONS:
        return AccessLevel.ADMIN if current is AccessLevel.ADMIN else AccessLevel.WRITE
    # read, and any custom action, grants read when nothing else has
    if current is AccessLevel.NONE:
        return AccessLevel.READ
    return current


def map_to_features(permissions: Iterable) -> Dict[str, FeatureAccess]:
    """
    Build ``{resource: FeatureAccess}`` from permissions.

    Args:
        permissions: objects with ``resource`` and ``action`` attributes
            (catalog permissions or resolved permissions)
    """
    features: Dict[str, FeatureAccess] = {}
    for permission in permissions:
        resource = getattr(permission, "resource", None)
        action = getattr(permission, "action", None)
        if not resource or not action:
            continue
        action = normalize_action(action)
        access = features.setdefault(resource, FeatureAccess(feature=resource))
        access.access_level = escalate(access.access_level, action)
        if action not in access.actions:
            access.actions.append(action)
    return features


def has_feature_access(features: Dict[str, FeatureAccess], feature: str) -> bool:
    access = features.get(feature)
    return access is not None and access.access_level is not AccessLevel.NONE
