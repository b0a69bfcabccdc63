"""
Tenant Service

Tenant directory (lookup by id / slug / subdomain / custom domain) and the
membership store. All functions accept an injected AsyncSession.
"""

import logging
import re

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from origo.constants.plans import DEFAULT_PLAN, PlanTier
from origo.constants.roles import OWNER_ROLE, Role, SystemRoleRef
from origo.exceptions import ResourceNotFoundError, ValidationError
from origo.models.membership import TenantMembership
from origo.models.tenant import Tenant, TenantStatus

logger = logging.getLogger(__name__)

SLUG_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,98}[a-z0-9])?$")
SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")
RESERVED_SUBDOMAINS = frozenset({"www", "api", "admin", "app", "mail"})


def _validate_plan(plan: str) -> str:
    try:
        return PlanTier(plan).value
    except ValueError:
        raise ValidationError(f"Unknown plan: {plan!r}", field="plan") from None


def _validate_subdomain(subdomain: str) -> str:
    subdomain = subdomain.strip().lower()
    if not SUBDOMAIN_PATTERN.match(subdomain):
        raise ValidationError("Subdomain may only contain lowercase letters, digits and hyphens", field="subdomain")
    if subdomain in RESERVED_SUBDOMAINS:
        raise ValidationError(f"Subdomain '{subdomain}' is reserved", field="subdomain")
    return subdomain


# ── Tenant directory ──────────────────────────────────────────────────────────


async def create_tenant(
    name: str,
    slug: str,
    created_by_id: int | None,
    db: AsyncSession,
    plan: str | None = None,
    subdomain: str | None = None,
) -> Tenant:
    """
    Create a new tenant organisation.

    When ``created_by_id`` is given the creator becomes the tenant's first
    member with the owner role.
    """
    if not SLUG_PATTERN.match(slug):
        raise ValidationError("Slug may only contain lowercase letters, digits and hyphens", field="slug")
    if await get_tenant_by_slug(slug, db) is not None:
        raise ValidationError(f"Slug '{slug}' is already in use", field="slug")
    if subdomain is not None:
        subdomain = _validate_subdomain(subdomain)
        if await get_tenant_by_subdomain(subdomain, db, active_only=False) is not None:
            raise ValidationError(f"Subdomain '{subdomain}' is already in use", field="subdomain")

    tenant = Tenant(
        name=name,
        slug=slug,
        subdomain=subdomain,
        plan=_validate_plan(plan) if plan else DEFAULT_PLAN.value,
        created_by_id=created_by_id,
        status=TenantStatus.active.value,
    )
    db.add(tenant)
    await db.flush()

    if created_by_id is not None:
        db.add(TenantMembership(tenant_id=tenant.id, user_id=created_by_id, role=SystemRoleRef(OWNER_ROLE)))

    await db.commit()
    await db.refresh(tenant)
    logger.info("Tenant created: id=%d slug=%s", tenant.id, tenant.slug)
    return tenant


async def get_tenant_by_id(tenant_id: int, db: AsyncSession, active_only: bool = False) -> Tenant | None:
    """Return a Tenant by primary key, or None if not found."""
    query = select(Tenant).where(Tenant.id == tenant_id)
    if active_only:
        query = query.where(Tenant.status == TenantStatus.active.value)
    result = await db.execute(query)
    return result.scalars().first()


async def get_tenant_by_slug(slug: str, db: AsyncSession) -> Tenant | None:
    result = await db.execute(select(Tenant).where(Tenant.slug == slug))
    return result.scalars().first()


async def get_tenant_by_subdomain(subdomain: str, db: AsyncSession, active_only: bool = True) -> Tenant | None:
    query = select(Tenant).where(Tenant.subdomain == subdomain.lower())
    if active_only:
        query = query.where(Tenant.status == TenantStatus.active.value)
    result = await db.execute(query)
    return result.scalars().first()


async def get_tenant_by_domain(domain: str, db: AsyncSession) -> Tenant | None:
    """Return the tenant holding ``domain`` in any verification state."""
    result = await db.execute(select(Tenant).where(Tenant.domain == domain.lower()))
    return result.scalars().first()


async def get_tenant_by_verified_domain(domain: str, db: AsyncSession) -> Tenant | None:
    """Return the active tenant whose custom domain is ``domain`` and verified."""
    result = await db.execute(
        select(Tenant).where(
            Tenant.domain == domain.lower(),
            Tenant.domain_verified.is_(True),
            Tenant.status == TenantStatus.active.value,
        )
    )
    return result.scalars().first()


async def list_tenants(db: AsyncSession, skip: int = 0, limit: int = 20) -> list[Tenant]:
    """Return a paginated list of all tenants (any status)."""
    result = await db.execute(select(Tenant).order_by(Tenant.id).offset(skip).limit(limit))
    return list(result.scalars().all())


async def update_tenant(tenant_id: int, updates: dict, db: AsyncSession) -> Tenant | None:
    """
    Apply a partial update to a Tenant.

    Only branding fields are accepted here; plan and domain changes go
    through change_plan() and DomainService.
    """
    tenant = await get_tenant_by_id(tenant_id, db)
    if tenant is None:
        return None
    if "subdomain" in updates and updates["subdomain"] is not None:
        subdomain = _validate_subdomain(updates["subdomain"])
        holder = await get_tenant_by_subdomain(subdomain, db, active_only=False)
        if holder is not None and holder.id != tenant.id:
            raise ValidationError(f"Subdomain '{subdomain}' is already in use", field="subdomain")
        updates = {**updates, "subdomain": subdomain}
    allowed_fields = {"name", "subdomain", "metadata_"}
    for field, value in updates.items():
        if field in allowed_fields:
            setattr(tenant, field, value)
    await db.commit()
    await db.refresh(tenant)
    return tenant


async def change_plan(tenant_id: int, plan: str, db: AsyncSession) -> Tenant:
    tenant = await get_tenant_by_id(tenant_id, db)
    if tenant is None:
        raise ResourceNotFoundError("Tenant", tenant_id)
    previous = tenant.plan
    tenant.plan = _validate_plan(plan)
    await db.commit()
    await db.refresh(tenant)
    logger.info("Tenant plan changed: id=%d %s -> %s", tenant.id, previous, tenant.plan)
    return tenant


async def suspend_tenant(tenant_id: int, db: AsyncSession) -> Tenant | None:
    """Set a tenant's status to 'suspended'. Suspended tenants no longer resolve."""
    tenant = await get_tenant_by_id(tenant_id, db)
    if tenant is None:
        return None
    tenant.status = TenantStatus.suspended.value
    await db.commit()
    await db.refresh(tenant)
    logger.info("Tenant suspended: id=%d slug=%s", tenant.id, tenant.slug)
    return tenant


async def delete_tenant(tenant_id: int, db: AsyncSession) -> bool:
    """
    Soft-delete a tenant.

    Memberships are removed first so no subject keeps resolving into a
    deleted tenant; the row itself stays for audit and billing history.
    """
    tenant = await get_tenant_by_id(tenant_id, db)
    if tenant is None:
        return False
    memberships = await db.execute(select(TenantMembership).where(TenantMembership.tenant_id == tenant_id))
    for membership in memberships.scalars().all():
        await db.delete(membership)
    tenant.status = TenantStatus.deleted.value
    tenant.clear_domain()
    await db.commit()
    logger.info("Tenant soft-deleted: id=%d slug=%s", tenant.id, tenant.slug)
    return True


# ── Membership store ──────────────────────────────────────────────────────────


async def get_membership(tenant_id: int, user_id: int, db: AsyncSession) -> TenantMembership | None:
    result = await db.execute(
        select(TenantMembership).where(
            TenantMembership.tenant_id == tenant_id,
            TenantMembership.user_id == user_id,
        )
    )
    return result.scalars().first()


async def list_user_memberships(user_id: int, db: AsyncSession) -> list[TenantMembership]:
    """
    Memberships of a user in active tenants, oldest first.

    The order is stable (creation time, then id) because the first entry is
    the user's default tenant.
    """
    result = await db.execute(
        select(TenantMembership)
        .join(Tenant, Tenant.id == TenantMembership.tenant_id)
        .options(selectinload(TenantMembership.tenant))
        .where(
            TenantMembership.user_id == user_id,
            Tenant.status == TenantStatus.active.value,
        )
        .order_by(TenantMembership.created_at, TenantMembership.id)
    )
    return list(result.scalars().all())


async def list_tenant_members(tenant_id: int, db: AsyncSession) -> list[TenantMembership]:
    result = await db.execute(
        select(TenantMembership)
        .options(selectinload(TenantMembership.user))
        .where(TenantMembership.tenant_id == tenant_id)
        .order_by(TenantMembership.created_at, TenantMembership.id)
    )
    return list(result.scalars().all())


async def count_members(tenant_id: int, db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count()).select_from(TenantMembership).where(TenantMembership.tenant_id == tenant_id)
    )
    return int(result.scalar_one())


async def add_member(tenant_id: int, user_id: int, role: Role, db: AsyncSession) -> TenantMembership:
    if await get_membership(tenant_id, user_id, db) is not None:
        raise ValidationError("User is already a member of this organization", field="user_id")
    membership = TenantMembership(tenant_id=tenant_id, user_id=user_id, role=role)
    db.add(membership)
    await db.commit()
    await db.refresh(membership)
    logger.info("Member added: tenant=%d user=%d role=%r", tenant_id, user_id, role)
    return membership


async def set_member_role(tenant_id: int, user_id: int, role: Role, db: AsyncSession) -> TenantMembership:
    membership = await get_membership(tenant_id, user_id, db)
    if membership is None:
        raise ResourceNotFoundError("Membership", user_id)
    membership.role = role
    await db.commit()
    await db.refresh(membership)
    return membership


async def remove_member(tenant_id: int, user_id: int, db: AsyncSession) -> bool:
    membership = await get_membership(tenant_id, user_id, db)
    if membership is None:
        return False
    await db.delete(membership)
    await db.commit()
    logger.info("Member removed: tenant=%d user=%d", tenant_id, user_id)
    return True
