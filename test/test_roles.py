"""
Custom role administration tests
"""

from __future__ import annotations

import pytest

from origo.constants.roles import CustomRoleRef, SystemRole, SystemRoleRef
from origo.exceptions import (
    PermissionDeniedError,
    ResourceNotFoundError,
    RoleInUseError,
    RoleNameConflictError,
    ValidationError,
)
from origo.services import tenant_service
from origo.services.role_service import RoleService


@pytest.fixture
async def tenant(make_user, make_tenant):
    owner = await make_user()
    return await make_tenant("acme", owner=owner)


class TestCreateRole:
    async def test_create_with_permissions(self, db, tenant):
        role = await RoleService(db).create_role(
            tenant.id,
            "Reviewers",
            "reader",
            description="Can approve posts",
            permissions={"posts.publish": True, "media.*": False},
        )

        assert role.id is not None
        assert role.based_on_role == "reader"
        assert sorted(p.key for p in role.permissions) == ["media.*", "posts.publish"]

    async def test_duplicate_name_conflicts(self, db, tenant):
        service = RoleService(db)
        await service.create_role(tenant.id, "Reviewers", "reader")

        with pytest.raises(RoleNameConflictError):
            await service.create_role(tenant.id, "Reviewers", "editor")

    async def test_names_are_case_sensitive(self, db, tenant):
        service = RoleService(db)
        await service.create_role(tenant.id, "Reviewers", "reader")

        role = await service.create_role(tenant.id, "reviewers", "reader")
        assert role.name == "reviewers"

    async def test_same_name_in_other_tenant(self, db, tenant, make_user, make_tenant):
        other = await make_tenant("globex", owner=await make_user())
        service = RoleService(db)
        await service.create_role(tenant.id, "Reviewers", "reader")

        role = await service.create_role(other.id, "Reviewers", "reader")
        assert role.tenant_id == other.id

    async def test_system_role_name_rejected(self, db, tenant):
        with pytest.raises(ValidationError):
            await RoleService(db).create_role(tenant.id, "admin", "admin")

    async def test_unknown_base_role_rejected(self, db, tenant):
        with pytest.raises(ValidationError):
            await RoleService(db).create_role(tenant.id, "Owners", "owner")

    async def test_unknown_permission_rejected(self, db, tenant):
        with pytest.raises(ValidationError):
            await RoleService(db).create_role(tenant.id, "Pilots", "viewer", permissions={"spaceships.fly": True})

    async def test_only_one_default_role(self, db, tenant):
        service = RoleService(db)
        first = await service.create_role(tenant.id, "First", "viewer", is_default=True)
        second = await service.create_role(tenant.id, "Second", "viewer", is_default=True)

        default = await service.get_default_role(tenant.id)
        assert default.id == second.id
        assert (await service.get_role(first.id)).is_default is False


class TestRoleQueries:
    async def test_definition_merges_base_and_overrides(self, db, tenant):
        service = RoleService(db)
        role = await service.create_role(
            tenant.id, "Readers+", "viewer", permissions={"posts.create": True, "pages.read": False}
        )

        definition = await service.get_role_definition(role.id, tenant.id)

        assert "pages.read" in definition.base_permissions
        assert definition.overrides == {"posts.create": True, "pages.read": False}
        assert definition.permissions["posts.create"] is True
        assert definition.permissions["pages.read"] is False
        assert definition.permissions["media.read"] is True
        assert definition.member_count == 0

    async def test_role_of_other_tenant_not_found(self, db, tenant, make_user, make_tenant):
        other = await make_tenant("globex", owner=await make_user())
        role = await RoleService(db).create_role(other.id, "Theirs", "viewer")

        with pytest.raises(ResourceNotFoundError):
            await RoleService(db).get_role(role.id, tenant.id)

    async def test_list_roles_sorted_by_name(self, db, tenant):
        service = RoleService(db)
        await service.create_role(tenant.id, "Zeta", "viewer")
        await service.create_role(tenant.id, "Alpha", "viewer")

        assert [r.name for r in await service.list_roles(tenant.id)] == ["Alpha", "Zeta"]


class TestUpdateRole:
    async def test_permissions_map_replaces_overrides(self, db, tenant):
        service = RoleService(db)
        role = await service.create_role(tenant.id, "Writers", "editor", permissions={"posts.delete": True})

        updated = await service.update_role(role.id, tenant.id, permissions={"pages.delete": True})

        assert [p.key for p in updated.permissions] == ["pages.delete"]

    async def test_rename_to_taken_name_conflicts(self, db, tenant):
        service = RoleService(db)
        await service.create_role(tenant.id, "Writers", "editor")
        other = await service.create_role(tenant.id, "Readers", "reader")

        with pytest.raises(RoleNameConflictError):
            await service.update_role(other.id, tenant.id, name="Writers")

    async def test_change_base_role(self, db, tenant):
        service = RoleService(db)
        role = await service.create_role(tenant.id, "Writers", "viewer")

        updated = await service.update_role(role.id, tenant.id, based_on_role="editor", description="Promoted")

        assert updated.based_on_role == "editor"
        assert updated.description == "Promoted"

    async def test_upsert_permission_is_keyed(self, db, tenant):
        service = RoleService(db)
        role = await service.create_role(tenant.id, "Writers", "editor")

        first = await service.upsert_role_permission(role.id, tenant.id, "posts", "delete", True)
        second = await service.upsert_role_permission(role.id, tenant.id, "posts", "delete", False)

        assert first.id == second.id
        rows = await service.list_role_permissions(role.id, tenant.id)
        assert [(r.key, r.allowed) for r in rows] == [("posts.delete", False)]

    async def test_remove_permission(self, db, tenant):
        service = RoleService(db)
        role = await service.create_role(tenant.id, "Writers", "editor", permissions={"posts.delete": True})
        row_id = role.permissions[0].id

        await service.remove_role_permission(role.id, tenant.id, row_id)

        assert await service.list_role_permissions(role.id, tenant.id) == []
        with pytest.raises(ResourceNotFoundError):
            await service.remove_role_permission(role.id, tenant.id, row_id)


class TestDeleteRole:
    async def test_role_in_use_reports_exact_count(self, db, tenant, make_user):
        service = RoleService(db)
        role = await service.create_role(tenant.id, "Writers", "editor")
        members = [await make_user(), await make_user()]
        for member in members:
            await tenant_service.add_member(tenant.id, member.id, CustomRoleRef(role.id), db)

        with pytest.raises(RoleInUseError) as exc_info:
            await service.delete_role(role.id, tenant.id)
        assert exc_info.value.count == 2
        assert exc_info.value.details["count"] == 2

        for member in members:
            await tenant_service.set_member_role(tenant.id, member.id, SystemRoleRef(SystemRole.EDITOR), db)
        await service.delete_role(role.id, tenant.id)

        with pytest.raises(ResourceNotFoundError):
            await service.get_role(role.id)

    async def test_delete_cascades_permissions(self, db, tenant):
        service = RoleService(db)
        role = await service.create_role(tenant.id, "Writers", "editor", permissions={"posts.delete": True})

        await service.delete_role(role.id, tenant.id)

        with pytest.raises(ResourceNotFoundError):
            await service.list_role_permissions(role.id)

    async def test_assign_role(self, db, tenant, make_user):
        service = RoleService(db)
        role = await service.create_role(tenant.id, "Writers", "editor")
        member = await make_user()
        await tenant_service.add_member(tenant.id, member.id, SystemRoleRef(SystemRole.VIEWER), db)

        membership = await service.assign_role(role.id, tenant.id, member.id)

        assert membership.role == CustomRoleRef(role.id)
        assert await service.count_role_references(role.id) == 1

    async def test_assign_to_non_member_fails(self, db, tenant, make_user):
        service = RoleService(db)
        role = await service.create_role(tenant.id, "Writers", "editor")
        stranger = await make_user()

        with pytest.raises(ResourceNotFoundError):
            await service.assign_role(role.id, tenant.id, stranger.id)


class TestGrantLimits:
    @pytest.fixture
    async def owner_and_tenant(self, make_user, make_tenant):
        owner = await make_user()
        return owner, await make_tenant("globex", owner=owner)

    async def test_admin_cannot_create_superadmin_based_role(self, db, owner_and_tenant):
        owner, tenant = owner_and_tenant

        with pytest.raises(PermissionDeniedError):
            await RoleService(db).create_role(tenant.id, "Root", "superadmin", grantor=owner)
        assert await RoleService(db).list_roles(tenant.id) == []

    async def test_platform_superadmin_can_create_superadmin_based_role(self, db, owner_and_tenant, make_user):
        _, tenant = owner_and_tenant
        root = await make_user(system_role="superadmin")

        role = await RoleService(db).create_role(tenant.id, "Root", "superadmin", grantor=root)

        assert role.based_on_role == "superadmin"

    async def test_admin_cannot_rebase_role_to_superadmin(self, db, owner_and_tenant):
        owner, tenant = owner_and_tenant
        service = RoleService(db)
        role = await service.create_role(tenant.id, "Leads", "admin", grantor=owner)

        with pytest.raises(PermissionDeniedError):
            await service.update_role(role.id, tenant.id, based_on_role="superadmin", grantor=owner)
        assert (await service.get_role(role.id)).based_on_role == "admin"

    async def test_admin_cannot_self_assign_superadmin_role(self, db, owner_and_tenant, make_user):
        owner, tenant = owner_and_tenant
        service = RoleService(db)
        role = await service.create_role(tenant.id, "Root", "superadmin", grantor=await make_user(system_role="superadmin"))

        with pytest.raises(PermissionDeniedError):
            await service.assign_role(role.id, tenant.id, owner.id, grantor=owner)
        assert await service.count_role_references(role.id) == 0

    async def test_custom_role_member_capped_at_base_role(self, db, owner_and_tenant, make_user):
        _, tenant = owner_and_tenant
        service = RoleService(db)
        lead_role = await service.create_role(tenant.id, "Team lead", "editor", permissions={"roles.create": True})
        lead = await make_user()
        await tenant_service.add_member(tenant.id, lead.id, CustomRoleRef(lead_role.id), db)

        assert await service.effective_base_role(lead.id, tenant.id) == "editor"
        await service.ensure_can_grant(lead, tenant.id, "editor")
        with pytest.raises(PermissionDeniedError):
            await service.ensure_can_grant(lead, tenant.id, "admin")
        with pytest.raises(PermissionDeniedError):
            await service.create_role(tenant.id, "Managers", "admin", grantor=lead)

    async def test_non_member_cannot_grant(self, db, owner_and_tenant, make_user):
        _, tenant = owner_and_tenant

        with pytest.raises(PermissionDeniedError):
            await RoleService(db).ensure_can_grant(await make_user(), tenant.id, "viewer")
