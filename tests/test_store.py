"""Tests for the permission catalog and role store."""

import asyncio

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from permission_engine.core import config
from permission_engine.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
)
from permission_engine.features.permissions import store
from permission_engine.features.permissions.matrix import PermissionMatrix
from permission_engine.features.permissions.models import AuditLog, role_permissions, user_roles
from tests.helpers import make_catalog, make_permission, make_role, make_user


STANDARD = ["create", "read", "update", "delete", "manage"]


class TestCatalog:
    """Permission catalog operations."""

    @pytest.mark.asyncio
    async def test_create_and_list(self, db):
        created = await store.create_permission(db, "reports", " Export ", actor_id="admin-1")
        assert created.action == "export"
        assert created.name == "reports:export"

        listed = await store.list_permissions(db)
        assert [p.key for p in listed] == ["reports:export"]
        assert (await store.get_permission(db, created.id)).id == created.id

    @pytest.mark.asyncio
    async def test_duplicate_pair_conflicts(self, db):
        await store.create_permission(db, "reports", "read")
        with pytest.raises(ConflictError):
            await store.create_permission(db, "reports", "READ")

    @pytest.mark.asyncio
    async def test_requires_resource_and_action(self, db):
        with pytest.raises(ValidationError):
            await store.create_permission(db, " ", "read")
        with pytest.raises(ValidationError):
            await store.create_permission(db, "reports", "")

    @pytest.mark.asyncio
    async def test_get_missing_permission(self, db):
        with pytest.raises(NotFoundError):
            await store.get_permission(db, 999)

    @pytest.mark.asyncio
    async def test_delete_unreferenced(self, db):
        permission = await make_permission(db, "reports", "read")
        await store.delete_permission(db, permission.id)
        assert await store.list_permissions(db) == []

    @pytest.mark.asyncio
    async def test_delete_referenced_conflicts(self, db):
        permission = await make_permission(db, "reports", "read")
        await make_role(db, "Reader", 10, [permission])
        with pytest.raises(ConflictError):
            await store.delete_permission(db, permission.id)

    @pytest.mark.asyncio
    async def test_ensure_permissions_exist(self, db):
        await make_permission(db, "document", "read")
        created = await store.ensure_permissions_exist(db, ["document", "kb"], ["read", "Sync"])
        assert created == 3
        assert await store.ensure_permissions_exist(db, ["document", "kb"], ["read", "sync"]) == 0

    @pytest.mark.asyncio
    async def test_list_resources(self, db):
        await make_catalog(db, ["document"], ["read", "update"])
        await make_permission(db, "kb", "sync")
        assert await store.list_resources(db) == [
            {"resource": "document", "actions": ["read", "update"]},
            {"resource": "kb", "actions": ["sync"]},
        ]


class TestCreateRole:
    """Role creation and validation."""

    @pytest.mark.asyncio
    async def test_create_role_with_permissions(self, db):
        catalog = await make_catalog(db, ["document"], ["read", "update"])
        role = await store.create_role(
            db, "Editor", "Edits documents", 50, [p.id for p in catalog.values()], actor_id="admin-1"
        )
        assert role.name == "Editor"
        assert sorted(p.key for p in role.permissions) == ["document:read", "document:update"]

        audit = (await db.execute(select(AuditLog))).scalars().all()
        assert [(a.action, a.resource_type, a.actor_id) for a in audit] == [("create", "role", "admin-1")]

    @pytest.mark.asyncio
    async def test_duplicate_name_conflicts(self, db):
        await store.create_role(db, "Ops", "", 10, [])
        with pytest.raises(ConflictError):
            await store.create_role(db, "Ops", "", 10, [])

    @pytest.mark.asyncio
    async def test_duplicate_name_is_case_insensitive(self, db):
        await store.create_role(db, "Ops", None, 10, [])
        with pytest.raises(ConflictError):
            await store.create_role(db, "  OPS ", None, 10, [])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "   ", "A", "x" * 51, "bad!name", "semi;colon"])
    async def test_invalid_names(self, db, name):
        with pytest.raises(ValidationError) as exc:
            await store.create_role(db, name, None, 10, [])
        assert "name" in exc.value.fields

    @pytest.mark.asyncio
    @pytest.mark.parametrize("level", [-1, 101, "50", True, None])
    async def test_invalid_levels(self, db, level):
        with pytest.raises(ValidationError) as exc:
            await store.create_role(db, "Ops", None, level, [])
        assert "level" in exc.value.fields

    @pytest.mark.asyncio
    async def test_long_description(self, db):
        with pytest.raises(ValidationError):
            await store.create_role(db, "Ops", "d" * 201, 10, [])

    @pytest.mark.asyncio
    async def test_unknown_permission_ids(self, db):
        permission = await make_permission(db, "document", "read")
        with pytest.raises(ValidationError) as exc:
            await store.create_role(db, "Ops", None, 10, [permission.id, 404])
        assert "404" in exc.value.message
        assert await store.list_roles(db) == []


class TestUpdateRole:
    """Role updates and the full permission replace."""

    @pytest.mark.asyncio
    async def test_replace_permissions(self, db):
        catalog = await make_catalog(db, ["document"], ["read", "update", "delete"])
        role = await make_role(db, "Editor", 50, [catalog["document:read"], catalog["document:update"]])

        updated = await store.update_role(db, role.id, permission_ids=[catalog["document:delete"].id])
        assert [p.key for p in updated.permissions] == ["document:delete"]

    @pytest.mark.asyncio
    async def test_partial_update_keeps_permissions(self, db):
        read = await make_permission(db, "document", "read")
        role = await make_role(db, "Editor", 50, [read])

        updated = await store.update_role(db, role.id, name="Senior Editor", level=60, description="More")
        assert (updated.name, updated.level, updated.description) == ("Senior Editor", 60, "More")
        assert [p.key for p in updated.permissions] == ["document:read"]

    @pytest.mark.asyncio
    async def test_empty_permission_ids_rejected(self, db):
        read = await make_permission(db, "document", "read")
        role = await make_role(db, "Editor", 50, [read])
        with pytest.raises(ValidationError):
            await store.update_role(db, role.id, permission_ids=[])
        assert [p.key for p in (await store.get_role(db, role.id)).permissions] == ["document:read"]

    @pytest.mark.asyncio
    async def test_unknown_ids_leave_role_untouched(self, db):
        read = await make_permission(db, "document", "read")
        role = await make_role(db, "Editor", 50, [read])
        with pytest.raises(ValidationError):
            await store.update_role(db, role.id, permission_ids=[read.id, 12345])
        assert [p.key for p in (await store.get_role(db, role.id)).permissions] == ["document:read"]

    @pytest.mark.asyncio
    async def test_failed_insert_rolls_back_delete(self, db, monkeypatch):
        catalog = await make_catalog(db, ["document"], ["read", "update"])
        role = await make_role(db, "Editor", 50, [catalog["document:read"]])
        role_id = role.id

        original_execute = db.execute

        async def failing_execute(statement, *args, **kwargs):
            if getattr(statement, "is_insert", False) and getattr(statement, "table", None) is role_permissions:
                raise OperationalError("INSERT", {}, Exception("disk I/O error"))
            return await original_execute(statement, *args, **kwargs)

        monkeypatch.setattr(db, "execute", failing_execute)
        with pytest.raises(StorageError):
            await store.update_role(db, role_id, permission_ids=[catalog["document:update"].id])
        monkeypatch.undo()

        count = await db.execute(
            select(func.count()).select_from(role_permissions).where(role_permissions.c.role_id == role_id)
        )
        assert count.scalar() == 1

    @pytest.mark.asyncio
    async def test_rename_conflict(self, db):
        await make_role(db, "Editor")
        viewer = await make_role(db, "Viewer")
        with pytest.raises(ConflictError):
            await store.update_role(db, viewer.id, name="editor")

    @pytest.mark.asyncio
    async def test_missing_role(self, db):
        with pytest.raises(NotFoundError):
            await store.update_role(db, 999, level=10)

    @pytest.mark.asyncio
    async def test_system_role_cannot_be_renamed(self, db):
        role = await make_role(db, "admin", 90, is_system_role=True)
        with pytest.raises(PermissionDeniedError):
            await store.update_role(db, role.id, name="root")

    @pytest.mark.asyncio
    async def test_system_role_level_is_editable(self, db):
        role = await make_role(db, "admin", 90, is_system_role=True)
        updated = await store.update_role(db, role.id, name="admin", level=95)
        assert updated.level == 95

    @pytest.mark.asyncio
    async def test_matrix_round_trip(self, db):
        catalog = await make_catalog(db, ["document", "reports"], STANDARD)
        await make_permission(db, "kb", "sync")
        role = await make_role(db, "Editor", 50, [catalog["document:read"]])
        permissions = await store.list_permissions(db)

        matrix = PermissionMatrix.from_catalog(permissions, selected=role.permissions)
        matrix = matrix.toggle_row("document").toggle_cell("reports", "manage", True).toggle_cell("kb", "sync", True)
        assert matrix.validate().is_valid

        updated = await store.update_role(db, role.id, permission_ids=matrix.permission_ids())
        reloaded = PermissionMatrix.from_catalog(permissions, selected=updated.permissions)
        assert reloaded.selected == matrix.selected


class TestRoleMatrix:

    @pytest.mark.asyncio
    async def test_grouped_by_resource(self, db):
        catalog = await make_catalog(db, ["document", "reports"], ["read", "export"])
        role = await make_role(db, "Analyst", 20, [catalog["document:read"], catalog["reports:export"]])
        assert await store.role_matrix(db, role.id) == {
            "document": {"read": True},
            "reports": {"export": True},
        }


class TestDeleteRole:
    """Role deletion."""

    @pytest.mark.asyncio
    async def test_delete_role_and_assignments(self, db):
        read = await make_permission(db, "document", "read")
        role = await make_role(db, "Editor", 50, [read])
        await make_user(db, roles=[role])

        await store.delete_role(db, role.id, actor_id="admin-1")

        with pytest.raises(NotFoundError):
            await store.get_role(db, role.id)
        links = await db.execute(select(func.count()).select_from(user_roles))
        assert links.scalar() == 0
        links = await db.execute(select(func.count()).select_from(role_permissions))
        assert links.scalar() == 0
        assert [p.key for p in await store.list_permissions(db)] == ["document:read"]

    @pytest.mark.asyncio
    async def test_system_role_cannot_be_deleted(self, db):
        role = await make_role(db, "super_admin", 100, is_system_role=True)
        with pytest.raises(PermissionDeniedError):
            await store.delete_role(db, role.id)
        assert (await store.get_role(db, role.id)).name == "super_admin"


class TestFetchUserRoles:
    """Live role fetch with retry and timeout."""

    @pytest.mark.asyncio
    async def test_returns_roles_with_permissions(self, db):
        read = await make_permission(db, "document", "read")
        role = await make_role(db, "Reader", 10, [read])
        user = await make_user(db, roles=[role])

        (fetched,) = await store.fetch_user_roles(db, user.id)
        assert fetched.name == "Reader"
        assert [p.key for p in fetched.permissions] == ["document:read"]

    @pytest.mark.asyncio
    async def test_retries_once_on_transient_error(self, db, monkeypatch):
        calls = []

        async def flaky(_db, _user_id):
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("SELECT", {}, Exception("database is locked"))
            return []

        monkeypatch.setattr(store, "_load_user_roles", flaky)
        assert await store.fetch_user_roles(db, "user-1") == []
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_storage_error_after_retry(self, db, monkeypatch):
        calls = []

        async def broken(_db, _user_id):
            calls.append(1)
            raise ConnectionError("connection refused")

        monkeypatch.setattr(store, "_load_user_roles", broken)
        with pytest.raises(StorageError):
            await store.fetch_user_roles(db, "user-1")
        assert len(calls) == config.STORE_RETRY_ATTEMPTS + 1

    @pytest.mark.asyncio
    async def test_timeout_is_storage_error(self, db, monkeypatch):
        async def slow(_db, _user_id):
            await asyncio.sleep(1)
            return []

        monkeypatch.setattr(store, "_load_user_roles", slow)
        monkeypatch.setattr(config, "STORE_TIMEOUT_SECONDS", 0.01)
        with pytest.raises(StorageError):
            await store.fetch_user_roles(db, "user-1")
