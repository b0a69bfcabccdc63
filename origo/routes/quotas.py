"""
Plan & Quota Routes

GET /api/v1/quotas/plans            → plan catalog
GET /api/v1/quotas                  → usage against every quota of the current tenant
GET /api/v1/quotas/{resource_type}  → usage against one quota
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from origo.constants.plans import PlanLimit
from origo.database import get_db
from origo.middleware.tenant import get_current_tenant
from origo.models.tenant import Tenant
from origo.models.user import User
from origo.permissions_config.permission_dependencies import require_permission
from origo.services.quota_service import QuotaResult, QuotaService

router = APIRouter(tags=["Quotas"])


class PlanResponse(BaseModel):
    tier: str
    name: str
    price: float
    description: str
    max_users: int
    max_pages: int
    max_posts: int
    max_courses: int
    max_storage_mb: int
    custom_domain: bool
    white_label: bool
    advanced_analytics: bool
    api_access: bool
    support: str

    @classmethod
    def from_plan(cls, plan: PlanLimit) -> "PlanResponse":
        return cls(
            tier=plan.tier.value,
            name=plan.name,
            price=plan.price,
            description=plan.description,
            max_users=plan.max_users,
            max_pages=plan.max_pages,
            max_posts=plan.max_posts,
            max_courses=plan.max_courses,
            max_storage_mb=plan.max_storage_mb,
            custom_domain=plan.custom_domain,
            white_label=plan.white_label,
            advanced_analytics=plan.advanced_analytics,
            api_access=plan.api_access,
            support=plan.support,
        )


class QuotaResponse(BaseModel):
    resource_type: str
    allowed: bool
    current: float
    limit: int
    percentage: int

    @classmethod
    def from_result(cls, result: QuotaResult) -> "QuotaResponse":
        return cls(**result.to_dict())


class TenantQuotasResponse(BaseModel):
    plan: PlanResponse
    quotas: list[QuotaResponse]


@router.get("/plans", response_model=list[PlanResponse])
async def list_plans_route() -> list[PlanResponse]:
    return [PlanResponse.from_plan(p) for p in QuotaService.list_plans()]


@router.get("/", response_model=TenantQuotasResponse)
async def get_quotas_route(
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _current_user: User = Depends(require_permission("organization", "read")),
) -> TenantQuotasResponse:
    service = QuotaService(db)
    results = await service.check_all_quotas(tenant)
    return TenantQuotasResponse(
        plan=PlanResponse.from_plan(service.get_plan(tenant)),
        quotas=[QuotaResponse.from_result(r) for r in results],
    )


@router.get("/{resource_type}", response_model=QuotaResponse)
async def get_quota_route(
    resource_type: str,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _current_user: User = Depends(require_permission("organization", "read")),
) -> QuotaResponse:
    return QuotaResponse.from_result(await QuotaService(db).check_quota(tenant, resource_type))
