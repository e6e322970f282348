"""Data builders and token helpers shared by the tests."""
from datetime import datetime, timedelta, timezone

import jwt

from permission_engine.features.permissions.models import Permission, Role
from permission_engine.features.users.models import Department, User
from permission_engine.features.users.service import get_user


TEST_SECRET = "permission-engine-test-secret-0123456789"


async def make_permission(db, resource, action, permission_id=None):
    permission = Permission(
        id=permission_id,
        resource=resource,
        action=action,
        name=f"{resource}:{action}",
    )
    db.add(permission)
    await db.commit()
    await db.refresh(permission)
    return permission


async def make_catalog(db, resources, actions):
    """Create the cross product and return {"resource:action": Permission}."""
    catalog = {}
    for resource in resources:
        for action in actions:
            permission = Permission(resource=resource, action=action, name=f"{resource}:{action}")
            db.add(permission)
            catalog[f"{resource}:{action}"] = permission
    await db.commit()
    for permission in catalog.values():
        await db.refresh(permission)
    return catalog


async def make_role(db, name, level=50, permissions=(), is_system_role=False):
    role = Role(name=name, level=level, is_system_role=is_system_role, permissions=list(permissions))
    db.add(role)
    await db.commit()
    await db.refresh(role)
    return role


async def make_user(db, email="alice@acme.io", roles=(), department=None):
    user = User(
        email=email,
        display_name=email.split("@")[0].title(),
        roles=list(roles),
        department=department,
    )
    db.add(user)
    await db.commit()
    return await get_user(db, user.id)


async def make_department(db, name="Engineering", is_active=True):
    department = Department(name=name, is_active=is_active)
    db.add(department)
    await db.commit()
    return department


def mint_token(sub=None, expires_in=3600, secret=TEST_SECRET, **claims):
    """Signed HS256 access token for tests."""
    payload = dict(claims)
    if sub is not None:
        payload["sub"] = sub
    payload["exp"] = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(user, **claims):
    return {"Authorization": f"Bearer {mint_token(user.id, **claims)}"}
