"""
PermissionService

Centralised permission evaluation for (subject, tenant, resource, action).

Resolution order, first decisive answer wins:
  1. Superadmin (platform role or tenant role) → allow.
     Subjects without a membership in the tenant → deny.
  2. UserPermission row for (subject, tenant, resource, action) → its value,
     in both directions.
  3. Custom role overrides: exact → ``resource.*`` → ``*``; no match falls
     back to the custom role's base system role.
  4. Baseline PermissionTable for the (base) system role, same precedence.
  5. Nothing matched → deny.

``decide()`` is the whole policy as a pure function; the service only
gathers its inputs from the database.
"""

import logging
from collections.abc import Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from origo.constants.roles import CustomRoleRef, SystemRole
from origo.exceptions import PermissionDeniedError, ResourceNotFoundError, ValidationError
from origo.models.custom_role import CustomRole
from origo.models.membership import TenantMembership
from origo.models.tenant import Tenant
from origo.models.user import User
from origo.models.user_permission import UserPermission
from origo.permissions_config.permissions import (
    ALL_PERMISSIONS,
    WILDCARD,
    role_grants,
    split_permission_key,
    validate_permission,
)

logger = logging.getLogger(__name__)

OverrideMap = Mapping[tuple[str, str], bool]


def match_override(overrides: OverrideMap, resource: str, action: str) -> bool | None:
    """Return the most specific override for (resource, action), or None."""
    for key in ((resource, action), (resource, WILDCARD), (WILDCARD, WILDCARD)):
        if key in overrides:
            return overrides[key]
    return None


def decide(
    resource: str,
    action: str,
    *,
    superadmin: bool,
    member: bool,
    base_role: str | None,
    user_override: bool | None = None,
    role_overrides: OverrideMap | None = None,
) -> bool:
    if superadmin:
        return True
    if not member or base_role is None:
        return False
    if user_override is not None:
        return user_override
    if role_overrides:
        decision = match_override(role_overrides, resource, action)
        if decision is not None:
            return decision
    return bool(role_grants(base_role, resource, action))


def _is_tenant_superadmin(membership: TenantMembership) -> bool:
    # A custom role based on superadmin still honours its own overrides
    role = membership.role
    return not isinstance(role, CustomRoleRef) and role.role is SystemRole.SUPERADMIN


class PermissionService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ── Core check ────────────────────────────────────────────────────────────

    async def has_permission(self, subject: User, tenant: Tenant, resource: str, action: str) -> bool:
        """
        Return True if *subject* may perform *action* on *resource* inside *tenant*.

        Never raises for a plain "no".
        """
        if subject.is_superadmin:
            return True

        membership = await self._get_membership(subject.id, tenant.id)
        if membership is None:
            logger.debug("Permission denied: user=%s is not a member of tenant=%s", subject.id, tenant.id)
            return False

        base_role, role_overrides = await self._resolve_role(membership)
        user_override = await self._get_user_override(subject.id, tenant.id, resource, action)

        allowed = decide(
            resource,
            action,
            superadmin=_is_tenant_superadmin(membership),
            member=True,
            base_role=base_role,
            user_override=user_override,
            role_overrides=role_overrides,
        )
        logger.debug(
            "Permission %s.%s for user=%s tenant=%s -> %s",
            resource,
            action,
            subject.id,
            tenant.id,
            allowed,
        )
        return allowed

    async def authorize(self, subject: User, tenant: Tenant, resource: str, action: str) -> None:
        """Raise PermissionDeniedError unless the subject is allowed."""
        if not await self.has_permission(subject, tenant, resource, action):
            logger.info(
                "Denied %s.%s to user=%s in tenant=%s",
                resource,
                action,
                subject.id,
                tenant.id,
            )
            raise PermissionDeniedError(resource, action)

    async def get_effective_permissions(self, subject: User, tenant: Tenant) -> dict[str, bool]:
        """
        Return the resolved decision for every concrete permission token.

        Built from one read of the subject's facts rather than one query per token.
        """
        if subject.is_superadmin:
            return dict.fromkeys(ALL_PERMISSIONS, True)

        membership = await self._get_membership(subject.id, tenant.id)
        if membership is None:
            return dict.fromkeys(ALL_PERMISSIONS, False)

        base_role, role_overrides = await self._resolve_role(membership)
        user_overrides = {
            (row.resource, row.action): row.allowed for row in await self.list_user_overrides(subject.id, tenant.id)
        }

        effective: dict[str, bool] = {}
        for token in ALL_PERMISSIONS:
            resource, action = split_permission_key(token)
            effective[token] = decide(
                resource,
                action,
                superadmin=_is_tenant_superadmin(membership),
                member=True,
                base_role=base_role,
                user_override=user_overrides.get((resource, action)),
                role_overrides=role_overrides,
            )
        return effective

    # ── Per-user override management ─────────────────────────────────────────

    async def list_user_overrides(self, user_id: int, tenant_id: int) -> list[UserPermission]:
        result = await self.db.execute(
            select(UserPermission)
            .where(UserPermission.user_id == user_id, UserPermission.tenant_id == tenant_id)
            .order_by(UserPermission.resource, UserPermission.action)
        )
        return list(result.scalars().all())

    async def set_user_override(
        self,
        user_id: int,
        tenant_id: int,
        resource: str,
        action: str,
        allowed: bool,
        created_by_id: int | None = None,
    ) -> UserPermission:
        """
        Create or update the override for (user, tenant, resource, action).

        Overrides name one concrete permission; wildcards are reserved for
        role definitions.
        """
        try:
            validate_permission(resource, action)
        except ValueError as e:
            raise ValidationError(str(e), field="permission") from None
        if WILDCARD in (resource, action):
            raise ValidationError("User overrides must name a concrete resource and action", field="permission")

        existing = await self._get_user_override_row(user_id, tenant_id, resource, action)
        if existing is not None:
            existing.allowed = allowed
            existing.created_by_id = created_by_id
            await self.db.commit()
            await self.db.refresh(existing)
            return existing

        row = UserPermission(
            user_id=user_id,
            tenant_id=tenant_id,
            resource=resource,
            action=action,
            allowed=allowed,
            created_by_id=created_by_id,
        )
        self.db.add(row)
        await self.db.commit()
        await self.db.refresh(row)
        logger.info(
            "User permission set: tenant=%s user=%s perm=%s.%s allowed=%s",
            tenant_id,
            user_id,
            resource,
            action,
            allowed,
        )
        return row

    async def remove_user_override(self, override_id: int, tenant_id: int) -> None:
        row = await self.db.get(UserPermission, override_id)
        if row is None or row.tenant_id != tenant_id:
            raise ResourceNotFoundError("UserPermission", override_id)
        await self.db.delete(row)
        await self.db.commit()
        logger.info("User permission removed: id=%s", override_id)

    # ── Private helpers ──────────────────────────────────────────────────────

    async def _get_membership(self, user_id: int, tenant_id: int) -> TenantMembership | None:
        result = await self.db.execute(
            select(TenantMembership).where(
                TenantMembership.user_id == user_id,
                TenantMembership.tenant_id == tenant_id,
            )
        )
        return result.scalars().first()

    async def _resolve_role(self, membership: TenantMembership) -> tuple[str | None, dict[tuple[str, str], bool]]:
        """Return (base system role name, custom role overrides) for a membership."""
        role = membership.role
        if not isinstance(role, CustomRoleRef):
            return role.name, {}

        result = await self.db.execute(
            select(CustomRole)
            .options(selectinload(CustomRole.permissions))
            .where(CustomRole.id == role.role_id, CustomRole.tenant_id == membership.tenant_id)
        )
        custom_role = result.scalars().first()
        if custom_role is None:
            logger.warning(
                "Membership %s references custom role %s outside its tenant; denying",
                membership.id,
                role.role_id,
            )
            return None, {}
        overrides = {(p.resource, p.action): p.allowed for p in custom_role.permissions}
        return custom_role.based_on_role, overrides

    async def _get_user_override_row(
        self, user_id: int, tenant_id: int, resource: str, action: str
    ) -> UserPermission | None:
        result = await self.db.execute(
            select(UserPermission).where(
                UserPermission.user_id == user_id,
                UserPermission.tenant_id == tenant_id,
                UserPermission.resource == resource,
                UserPermission.action == action,
            )
        )
        return result.scalars().first()

    async def _get_user_override(self, user_id: int, tenant_id: int, resource: str, action: str) -> bool | None:
        row = await self._get_user_override_row(user_id, tenant_id, resource, action)
        return None if row is None else row.allowed
