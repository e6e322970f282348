"""
Well-known actions and permission-string helpers.

Actions are open strings: any custom action present in the catalog is
valid for its resource. The constants below carry special meaning during
resolution and feature mapping.
"""
from typing import Optional, Tuple


CREATE = "create"
READ = "read"
UPDATE = "update"
DELETE = "delete"
MANAGE = "manage"

# Column order of the administration matrix
STANDARD_ACTIONS: Tuple[str, ...] = (CREATE, READ, UPDATE, DELETE, MANAGE)

WRITE_ACTIONS = frozenset({CREATE, UPDATE, DELETE})


def normalize_action(action: str) -> str:
    return action.strip().lower()


def permission_key(resource: str, action: str) -> str:
    """Format a (resource, action) pair as ``"resource:action"``."""
    return f"{resource}:{action}"


def parse_permission_string(value: object) -> Optional[Tuple[str, str]]:
    """
    Parse ``"resource:action"`` into a normalized pair.

    Returns None for anything that is not a string with a non-empty
    resource and action on either side of the first colon.
    """
    if not isinstance(value, str):
        return None
    resource, sep, action = value.partition(":")
    resource = resource.strip()
    action = normalize_action(action)
    if not sep or not resource or not action:
        return None
    return resource, action


def is_custom_action(action: str) -> bool:
    return normalize_action(action) not in STANDARD_ACTIONS
