"""
RoleService

Administration of tenant-scoped custom roles and their permission overrides.

Invariants:
  - role names are unique within a tenant (case-sensitive exact match) and
    may not shadow a system role name;
  - ``based_on_role`` is one of the closed SystemRole values;
  - a role cannot be deleted while any membership references it. The
    reference count is taken inside the deleting transaction, with the role
    row locked, immediately before the DELETE.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from origo.constants.roles import CustomRoleRef, SystemRole, is_higher_role, is_system_role
from origo.exceptions import (
    PermissionDeniedError,
    ResourceNotFoundError,
    RoleInUseError,
    RoleNameConflictError,
    ValidationError,
)
from origo.models.custom_role import CustomRole, RolePermission
from origo.models.membership import TenantMembership
from origo.models.user import User
from origo.permissions_config.permissions import (
    get_role_permissions,
    split_permission_key,
    validate_permission,
)
from origo.services import tenant_service

logger = logging.getLogger(__name__)


@dataclass
class RoleDefinition:
    """A custom role with its base grants and overrides merged for display."""

    id: int
    tenant_id: int
    name: str
    description: str | None
    based_on_role: str
    is_default: bool
    base_permissions: list[str]
    overrides: dict[str, bool]
    permissions: dict[str, bool] = field(default_factory=dict)
    member_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


def _parse_permission_map(permissions: Mapping[str, bool]) -> list[tuple[str, str, bool]]:
    parsed = []
    for key, allowed in permissions.items():
        try:
            resource, action = split_permission_key(key)
            validate_permission(resource, action)
        except ValueError as e:
            raise ValidationError(str(e), field="permissions") from None
        parsed.append((resource, action, bool(allowed)))
    return parsed


class RoleService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ── Queries ──────────────────────────────────────────────────────────────

    async def list_roles(self, tenant_id: int) -> list[CustomRole]:
        result = await self.db.execute(
            select(CustomRole)
            .options(selectinload(CustomRole.permissions))
            .where(CustomRole.tenant_id == tenant_id)
            .order_by(CustomRole.name)
        )
        return list(result.scalars().all())

    async def get_role(self, role_id: int, tenant_id: int | None = None, lock: bool = False) -> CustomRole:
        """
        Fetch a role with its overrides.

        When ``tenant_id`` is given, roles of other tenants are reported as
        not found. ``lock`` takes a row lock for the rest of the transaction.
        """
        query = select(CustomRole).options(selectinload(CustomRole.permissions)).where(CustomRole.id == role_id)
        if tenant_id is not None:
            query = query.where(CustomRole.tenant_id == tenant_id)
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query)
        role = result.scalars().first()
        if role is None:
            raise ResourceNotFoundError("Role", role_id)
        return role

    async def get_default_role(self, tenant_id: int) -> CustomRole | None:
        result = await self.db.execute(
            select(CustomRole).where(CustomRole.tenant_id == tenant_id, CustomRole.is_default.is_(True))
        )
        return result.scalars().first()

    async def get_role_definition(self, role_id: int, tenant_id: int | None = None) -> RoleDefinition:
        role = await self.get_role(role_id, tenant_id)
        base = sorted(get_role_permissions(role.based_on_role))
        overrides = {p.key: p.allowed for p in role.permissions}

        merged = dict.fromkeys(base, True)
        merged.update(overrides)

        return RoleDefinition(
            id=role.id,
            tenant_id=role.tenant_id,
            name=role.name,
            description=role.description,
            based_on_role=role.based_on_role,
            is_default=role.is_default,
            base_permissions=base,
            overrides=overrides,
            permissions=merged,
            member_count=await self.count_role_references(role.id),
            created_at=role.created_at,
            updated_at=role.updated_at,
        )

    async def list_role_permissions(self, role_id: int, tenant_id: int | None = None) -> list[RolePermission]:
        role = await self.get_role(role_id, tenant_id)
        return list(role.permissions)

    async def count_role_references(self, role_id: int) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(TenantMembership).where(TenantMembership.custom_role_id == role_id)
        )
        return int(result.scalar_one())

    async def effective_base_role(self, user_id: int, tenant_id: int) -> str | None:
        """The system role bounding a member's grants; a custom role counts as its base role."""
        membership = await tenant_service.get_membership(tenant_id, user_id, self.db)
        if membership is None:
            return None
        role = membership.role
        if isinstance(role, CustomRoleRef):
            return (await self.get_role(role.role_id)).based_on_role
        return role.name

    async def ensure_can_grant(self, grantor: User, tenant_id: int, role_name: str) -> None:
        """
        Raise PermissionDeniedError unless ``grantor`` may hand out ``role_name``.

        Only platform superadmins grant ``superadmin``. Everyone else is
        capped at their own effective base role in the tenant.
        """
        if grantor.is_superadmin:
            return
        if role_name == SystemRole.SUPERADMIN.value:
            raise PermissionDeniedError("roles", "manage", "Only platform superadmins can grant 'superadmin'")
        own = await self.effective_base_role(grantor.id, tenant_id)
        if own is None or is_higher_role(role_name, own):
            raise PermissionDeniedError("roles", "manage", f"Cannot grant the '{role_name}' role")

    # ── Mutations ────────────────────────────────────────────────────────────

    async def create_role(
        self,
        tenant_id: int,
        name: str,
        based_on_role: str,
        description: str | None = None,
        is_default: bool = False,
        permissions: Mapping[str, bool] | None = None,
        grantor: User | None = None,
    ) -> CustomRole:
        self._validate_base_role(based_on_role)
        if grantor is not None:
            await self.ensure_can_grant(grantor, tenant_id, based_on_role)
        await self._ensure_name_available(tenant_id, name)
        parsed = _parse_permission_map(permissions or {})

        if is_default:
            await self._clear_default(tenant_id)

        role = CustomRole(
            tenant_id=tenant_id,
            name=name,
            description=description,
            based_on_role=based_on_role,
            is_default=is_default,
        )
        role.permissions = [RolePermission(resource=r, action=a, allowed=allowed) for r, a, allowed in parsed]
        self.db.add(role)
        try:
            await self.db.commit()
        except IntegrityError:
            # a concurrent create won the unique (tenant_id, name) race
            await self.db.rollback()
            raise RoleNameConflictError(name, tenant_id) from None

        logger.info("Custom role created: id=%d tenant=%d name=%s base=%s", role.id, tenant_id, name, based_on_role)
        return await self.get_role(role.id)

    async def update_role(
        self,
        role_id: int,
        tenant_id: int,
        *,
        name: str | None = None,
        description: str | None = None,
        based_on_role: str | None = None,
        is_default: bool | None = None,
        permissions: Mapping[str, bool] | None = None,
        grantor: User | None = None,
    ) -> CustomRole:
        """
        Apply a partial update.

        A ``permissions`` map replaces the role's whole override set.
        """
        role = await self.get_role(role_id, tenant_id)
        target_name = name if name is not None else role.name

        if grantor is not None:
            await self.ensure_can_grant(grantor, tenant_id, based_on_role or role.based_on_role)
        if based_on_role is not None:
            self._validate_base_role(based_on_role)
            role.based_on_role = based_on_role
        if name is not None and name != role.name:
            await self._ensure_name_available(tenant_id, name, exclude_role_id=role.id)
            role.name = name
        if description is not None:
            role.description = description
        if is_default is not None:
            if is_default and not role.is_default:
                await self._clear_default(tenant_id)
            role.is_default = is_default
        if permissions is not None:
            parsed = _parse_permission_map(permissions)
            role.permissions.clear()
            await self.db.flush()
            role.permissions.extend(RolePermission(resource=r, action=a, allowed=allowed) for r, a, allowed in parsed)

        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise RoleNameConflictError(target_name, tenant_id) from None

        logger.info("Custom role updated: id=%d tenant=%d", role_id, tenant_id)
        return await self.get_role(role_id)

    async def delete_role(self, role_id: int, tenant_id: int) -> None:
        role = await self.get_role(role_id, tenant_id, lock=True)

        count = await self.count_role_references(role.id)
        if count:
            raise RoleInUseError(role_id, count)

        await self.db.delete(role)
        try:
            await self.db.commit()
        except IntegrityError:
            # a membership was pointed at the role after the count; the FK refused the delete
            await self.db.rollback()
            raise RoleInUseError(role_id, await self.count_role_references(role_id)) from None
        logger.info("Custom role deleted: id=%d tenant=%d", role_id, tenant_id)

    async def upsert_role_permission(
        self,
        role_id: int,
        tenant_id: int,
        resource: str,
        action: str,
        allowed: bool,
    ) -> RolePermission:
        """Insert or update the override keyed by (role, resource, action)."""
        try:
            validate_permission(resource, action)
        except ValueError as e:
            raise ValidationError(str(e), field="permission") from None

        role = await self.get_role(role_id, tenant_id)
        existing = next((p for p in role.permissions if p.resource == resource and p.action == action), None)
        if existing is not None:
            existing.allowed = allowed
            row = existing
        else:
            row = RolePermission(resource=resource, action=action, allowed=allowed)
            role.permissions.append(row)
        await self.db.commit()
        await self.db.refresh(row)
        logger.info("Role permission set: role=%d %s=%s", role_id, row.key, allowed)
        return row

    async def remove_role_permission(self, role_id: int, tenant_id: int, permission_id: int) -> None:
        role = await self.get_role(role_id, tenant_id)
        row = next((p for p in role.permissions if p.id == permission_id), None)
        if row is None:
            raise ResourceNotFoundError("RolePermission", permission_id)
        role.permissions.remove(row)
        await self.db.commit()

    async def assign_role(
        self, role_id: int, tenant_id: int, user_id: int, grantor: User | None = None
    ) -> TenantMembership:
        """Point an existing member's role at a custom role of the same tenant."""
        # the lock serialises against delete_role's reference count
        role = await self.get_role(role_id, tenant_id, lock=True)
        if grantor is not None:
            await self.ensure_can_grant(grantor, tenant_id, role.based_on_role)
        return await tenant_service.set_member_role(tenant_id, user_id, CustomRoleRef(role.id), self.db)

    # ── Private helpers ──────────────────────────────────────────────────────

    @staticmethod
    def _validate_base_role(based_on_role: str) -> None:
        if not is_system_role(based_on_role):
            allowed = ", ".join(r.value for r in SystemRole)
            raise ValidationError(f"Invalid base role {based_on_role!r}; expected one of: {allowed}", field="based_on_role")

    async def _ensure_name_available(self, tenant_id: int, name: str, exclude_role_id: int | None = None) -> None:
        if not name or not name.strip():
            raise ValidationError("Role name must not be empty", field="name")
        if is_system_role(name):
            raise ValidationError(f"'{name}' is a system role and cannot be redefined", field="name")
        query = select(CustomRole.id).where(CustomRole.tenant_id == tenant_id, CustomRole.name == name)
        if exclude_role_id is not None:
            query = query.where(CustomRole.id != exclude_role_id)
        result = await self.db.execute(query)
        if result.first() is not None:
            raise RoleNameConflictError(name, tenant_id)

    async def _clear_default(self, tenant_id: int) -> None:
        current = await self.get_default_role(tenant_id)
        if current is not None:
            current.is_default = False
