"""
Tenant Routes

POST   /api/v1/tenants                          → create tenant (creator becomes admin)
GET    /api/v1/tenants/mine                     → tenants the subject belongs to
GET    /api/v1/tenants/current                  → tenant resolved for this request
POST   /api/v1/tenants/{tenant_id}/switch       → pin another tenant in the session
PUT    /api/v1/tenants/current/plan             → change the current tenant's plan
GET    /api/v1/tenants/current/members          → list members
POST   /api/v1/tenants/current/members          → add a member (users quota)
DELETE /api/v1/tenants/current/members/{user_id} → remove a member
GET    /api/v1/tenants/admin                    → all tenants (superadmin)
GET    /api/v1/tenants/admin/{slug}             → one tenant (superadmin)
PUT    /api/v1/tenants/admin/{slug}             → rename / change subdomain (superadmin)
POST   /api/v1/tenants/admin/{slug}/suspend     → suspend (superadmin)
DELETE /api/v1/tenants/admin/{slug}             → soft-delete (superadmin)
"""

import logging

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from origo.auth import get_current_user
from origo.constants.roles import DEFAULT_ROLE, CustomRoleRef, Role, SystemRole, SystemRoleRef
from origo.database import get_db
from origo.exceptions import (
    ResourceNotFoundError,
    TenantAccessDeniedError,
    TenantNotFoundError,
    ValidationError,
)
from origo.middleware.tenant import get_current_tenant
from origo.models.membership import TenantMembership
from origo.models.tenant import Tenant
from origo.models.user import User
from origo.permissions_config.permission_dependencies import require_permission, require_superadmin
from origo.services import tenant_service
from origo.services.quota_service import QuotaService
from origo.services.role_service import RoleService
from origo.services.tenant_resolver import SESSION_TENANT_KEY

router = APIRouter(tags=["Tenants"])
logger = logging.getLogger(__name__)


# ── Pydantic schemas ───────────────────────────────────────────────────────────


class TenantCreate(BaseModel):
    name: str
    slug: str
    subdomain: str | None = None
    plan: str | None = None


class TenantUpdate(BaseModel):
    name: str | None = None
    subdomain: str | None = None


class PlanChange(BaseModel):
    plan: str


class MemberCreate(BaseModel):
    email: str
    role: str | None = None
    custom_role_id: int | None = None


class TenantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    slug: str
    subdomain: str | None
    domain: str | None
    domain_state: str
    status: str
    plan: str
    created_at: str

    @classmethod
    def from_tenant(cls, tenant: Tenant) -> "TenantResponse":
        return cls(
            id=tenant.id,
            name=tenant.name,
            slug=tenant.slug,
            subdomain=tenant.subdomain,
            domain=tenant.domain,
            domain_state=tenant.domain_state.value,
            status=tenant.status,
            plan=tenant.plan,
            created_at=tenant.created_at.isoformat(),
        )


class MembershipResponse(BaseModel):
    tenant_id: int
    user_id: int
    email: str | None = None
    role: str | None
    custom_role_id: int | None
    created_at: str

    @classmethod
    def from_membership(cls, membership: TenantMembership, email: str | None = None) -> "MembershipResponse":
        return cls(
            tenant_id=membership.tenant_id,
            user_id=membership.user_id,
            email=email,
            role=membership.system_role,
            custom_role_id=membership.custom_role_id,
            created_at=membership.created_at.isoformat(),
        )


class MyTenantResponse(BaseModel):
    tenant: TenantResponse
    role: str | None
    custom_role_id: int | None
    is_current: bool


class CurrentTenantResponse(BaseModel):
    tenant: TenantResponse
    source: str | None
    role: str | None
    custom_role_id: int | None


# ── Helpers ────────────────────────────────────────────────────────────────────


async def _requested_role(payload: MemberCreate, tenant: Tenant, current_user: User, db: AsyncSession) -> Role:
    roles = RoleService(db)
    if payload.custom_role_id is not None:
        role = await roles.get_role(payload.custom_role_id, tenant.id)
        await roles.ensure_can_grant(current_user, tenant.id, role.based_on_role)
        return CustomRoleRef(role.id)

    try:
        system_role = SystemRole(payload.role) if payload.role else DEFAULT_ROLE
    except ValueError:
        raise ValidationError(f"Unknown role: {payload.role!r}", field="role") from None

    await roles.ensure_can_grant(current_user, tenant.id, system_role.value)
    return SystemRoleRef(system_role)


# ── Routes ─────────────────────────────────────────────────────────────────────


@router.post("/", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
async def create_tenant_route(
    payload: TenantCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> TenantResponse:
    """Create a new tenant organisation; the caller becomes its admin."""
    tenant = await tenant_service.create_tenant(
        name=payload.name,
        slug=payload.slug,
        created_by_id=int(current_user.id),
        db=db,
        plan=payload.plan,
        subdomain=payload.subdomain,
    )
    request.session[SESSION_TENANT_KEY] = tenant.id
    return TenantResponse.from_tenant(tenant)


@router.get("/mine", response_model=list[MyTenantResponse])
async def list_my_tenants_route(
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[MyTenantResponse]:
    """Active tenants the caller is a member of, oldest membership first."""
    memberships = await tenant_service.list_user_memberships(current_user.id, db)
    current_id = getattr(request.state, "tenant_id", None)
    return [
        MyTenantResponse(
            tenant=TenantResponse.from_tenant(m.tenant),
            role=m.system_role,
            custom_role_id=m.custom_role_id,
            is_current=m.tenant_id == current_id,
        )
        for m in memberships
    ]


@router.get("/current", response_model=CurrentTenantResponse)
async def get_current_tenant_route(
    request: Request,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    current_user: User = Depends(get_current_user),
) -> CurrentTenantResponse:
    membership = await tenant_service.get_membership(tenant.id, current_user.id, db)
    return CurrentTenantResponse(
        tenant=TenantResponse.from_tenant(tenant),
        source=getattr(request.state, "tenant_source", None),
        role=membership.system_role if membership else None,
        custom_role_id=membership.custom_role_id if membership else None,
    )


@router.post("/{tenant_id}/switch", response_model=TenantResponse)
async def switch_tenant_route(
    tenant_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> TenantResponse:
    """Pin ``tenant_id`` as the caller's tenant for subsequent requests."""
    tenant = await tenant_service.get_tenant_by_id(tenant_id, db, active_only=True)
    if tenant is None:
        raise TenantNotFoundError(tenant_id=tenant_id)
    if not current_user.is_superadmin and await tenant_service.get_membership(tenant.id, current_user.id, db) is None:
        raise TenantAccessDeniedError(tenant.id, current_user.id)
    request.session[SESSION_TENANT_KEY] = tenant.id
    logger.info("User %d switched to tenant %d", current_user.id, tenant.id)
    return TenantResponse.from_tenant(tenant)


@router.put("/current/plan", response_model=TenantResponse)
async def change_plan_route(
    payload: PlanChange,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _current_user: User = Depends(require_permission("organization", "update")),
) -> TenantResponse:
    updated = await tenant_service.change_plan(tenant.id, payload.plan, db)
    return TenantResponse.from_tenant(updated)


@router.get("/current/members", response_model=list[MembershipResponse])
async def list_members_route(
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _current_user: User = Depends(require_permission("users", "read")),
) -> list[MembershipResponse]:
    members = await tenant_service.list_tenant_members(tenant.id, db)
    return [MembershipResponse.from_membership(m, m.user.email if m.user else None) for m in members]


@router.post("/current/members", response_model=MembershipResponse, status_code=status.HTTP_201_CREATED)
async def add_member_route(
    payload: MemberCreate,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    current_user: User = Depends(require_permission("users", "invite")),
) -> MembershipResponse:
    """Add an existing user to the current tenant. Counts against the plan's users quota."""
    result = await db.execute(select(User).where(User.email == payload.email))
    user = result.scalars().first()
    if user is None:
        raise ResourceNotFoundError("User", payload.email)

    role = await _requested_role(payload, tenant, current_user, db)

    quotas = QuotaService(db)
    if quotas.mode == "counter":
        # committed together with the membership below
        await quotas.reserve(tenant, "users")
    else:
        await quotas.enforce_quota(tenant, "users")

    membership = await tenant_service.add_member(tenant.id, user.id, role, db)
    return MembershipResponse.from_membership(membership, user.email)


@router.delete("/current/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member_route(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _current_user: User = Depends(require_permission("users", "delete")),
) -> None:
    quotas = QuotaService(db)
    if quotas.mode == "counter":
        await quotas.release(tenant, "users")
    if not await tenant_service.remove_member(tenant.id, user_id, db):
        raise ResourceNotFoundError("Membership", user_id)


# ── Platform administration (superadmin only) ─────────────────────────────────


async def _get_tenant_or_404(slug: str, db: AsyncSession) -> Tenant:
    tenant = await tenant_service.get_tenant_by_slug(slug, db)
    if tenant is None:
        raise ResourceNotFoundError("Tenant", slug)
    return tenant


@router.get("/admin", response_model=list[TenantResponse])
async def list_tenants_route(
    skip: int = 0,
    limit: int = 20,
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_superadmin),
) -> list[TenantResponse]:
    """List all tenant organisations in any status, paginated."""
    tenants = await tenant_service.list_tenants(db, skip=skip, limit=limit)
    return [TenantResponse.from_tenant(t) for t in tenants]


@router.get("/admin/{slug}", response_model=TenantResponse)
async def get_tenant_route(
    slug: str,
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_superadmin),
) -> TenantResponse:
    return TenantResponse.from_tenant(await _get_tenant_or_404(slug, db))


@router.put("/admin/{slug}", response_model=TenantResponse)
async def update_tenant_route(
    slug: str,
    payload: TenantUpdate,
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_superadmin),
) -> TenantResponse:
    """Update a tenant's name or subdomain."""
    tenant = await _get_tenant_or_404(slug, db)
    updates = {k: v for k, v in payload.model_dump().items() if v is not None}
    updated = await tenant_service.update_tenant(tenant.id, updates, db)
    if updated is None:
        raise ResourceNotFoundError("Tenant", slug)
    return TenantResponse.from_tenant(updated)


@router.post("/admin/{slug}/suspend", response_model=TenantResponse)
async def suspend_tenant_route(
    slug: str,
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_superadmin),
) -> TenantResponse:
    """Suspend a tenant; it stops resolving on every signal."""
    tenant = await _get_tenant_or_404(slug, db)
    suspended = await tenant_service.suspend_tenant(tenant.id, db)
    if suspended is None:
        raise ResourceNotFoundError("Tenant", slug)
    return TenantResponse.from_tenant(suspended)


@router.delete("/admin/{slug}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tenant_route(
    slug: str,
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_superadmin),
) -> None:
    """Soft-delete a tenant (status=deleted). Memberships and the custom domain are dropped."""
    tenant = await _get_tenant_or_404(slug, db)
    if not await tenant_service.delete_tenant(tenant.id, db):
        raise ResourceNotFoundError("Tenant", slug)
