"""
Seed script to populate the default permission catalog and system roles.

Run this script after database initialization to create:
- The default catalog (standard actions plus a few custom ones per resource)
- The system roles super_admin, admin, manager and user

Usage:
    python -m scripts.seed_permissions
"""
import asyncio
from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from permission_engine.core.database.engine import get_db, init_db
from permission_engine.features.permissions import store
from permission_engine.features.permissions.actions import STANDARD_ACTIONS
from permission_engine.features.permissions.models import Role
from permission_engine.utils import get_logger


log = get_logger(__name__)


DEFAULT_RESOURCES = [
    "documents",
    "knowledge-base",
    "users",
    "departments",
    "roles",
    "reports",
]

# Resource-specific actions beyond create/read/update/delete/manage
CUSTOM_ACTIONS = {
    "documents": ["share", "export"],
    "knowledge-base": ["sync", "publish"],
    "reports": ["export"],
}


DEFAULT_ROLES = {
    "super_admin": {
        "description": "Full access to everything",
        "level": 100,
        "permissions": "ALL"  # Special case - gets all permissions
    },
    "admin": {
        "description": "Administers users, roles and content",
        "level": 90,
        "permissions": "ALL"
    },
    "manager": {
        "description": "Manages content and reads user data",
        "level": 70,
        "permissions": [
            "documents:create", "documents:read", "documents:update", "documents:delete", "documents:share",
            "knowledge-base:create", "knowledge-base:read", "knowledge-base:update", "knowledge-base:publish",
            "reports:read", "reports:export",
            "users:read",
            "departments:read",
            "roles:read",
        ]
    },
    "user": {
        "description": "Works with documents and reads the knowledge base",
        "level": 50,
        "permissions": [
            "documents:create", "documents:read",
            "knowledge-base:read",
            "reports:read",
        ]
    },
}


async def seed_catalog(db: AsyncSession) -> int:
    """
    Create the default permission catalog.

    Returns:
        Number of permissions inserted
    """
    log.info("Creating default permissions...")
    created = await store.ensure_permissions_exist(db, DEFAULT_RESOURCES, STANDARD_ACTIONS)
    for resource, actions in CUSTOM_ACTIONS.items():
        created += await store.ensure_permissions_exist(db, [resource], actions)
    log.info("Created %d permissions", created)
    return created


async def seed_roles(db: AsyncSession) -> List[Role]:
    """Create the default system roles that do not exist yet."""
    log.info("Creating default roles...")
    catalog: Dict[str, int] = {p.key: p.id for p in await store.list_permissions(db)}
    created = []

    for role_name, role_config in DEFAULT_ROLES.items():
        result = await db.execute(select(Role).where(Role.name == role_name))
        if result.scalars().first():
            log.debug("Role '%s' already exists, skipping", role_name)
            continue

        if role_config["permissions"] == "ALL":
            permission_ids = list(catalog.values())
        else:
            permission_ids = []
            for key in role_config["permissions"]:
                if key in catalog:
                    permission_ids.append(catalog[key])
                else:
                    log.warning("Permission '%s' not found for role '%s'", key, role_name)

        role = await store.create_role(
            db,
            name=role_name,
            description=role_config["description"],
            level=role_config["level"],
            permission_ids=permission_ids,
            is_system_role=True,
        )
        log.info("Created role '%s' with %d permissions", role_name, len(permission_ids))
        created.append(role)

    return created


async def main():
    """Main function to seed permissions and roles."""
    log.info("Starting permission seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        await seed_catalog(db)
        await seed_roles(db)

        log.info("Permission seeding completed successfully!")
        log.info("Default roles:")
        for role_name, role_config in DEFAULT_ROLES.items():
            log.info("  - %s (level %d): %s", role_name, role_config["level"], role_config["description"])
        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
