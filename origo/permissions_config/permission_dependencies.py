from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from origo.auth import get_current_user
from origo.database import get_db
from origo.exceptions import PermissionDeniedError
from origo.middleware.tenant import get_current_tenant
from origo.models.tenant import Tenant
from origo.models.user import User
from origo.services.permission_service import PermissionService
from origo.services.quota_service import QuotaResult, QuotaService


def require_permission(resource: str, action: str):
    """Dependency factory: 403 unless the subject may do ``resource.action`` in the current tenant."""

    async def checker(
        current_user: User = Depends(get_current_user),
        tenant: Tenant = Depends(get_current_tenant),
        db: AsyncSession = Depends(get_db),
    ) -> User:
        await PermissionService(db).authorize(current_user, tenant, resource, action)
        return current_user

    return checker


def require_quota(resource_type: str):
    """Dependency factory: 403 PLAN_LIMIT_REACHED when the tenant is at its plan limit."""

    async def checker(
        tenant: Tenant = Depends(get_current_tenant),
        db: AsyncSession = Depends(get_db),
    ) -> QuotaResult:
        return await QuotaService(db).enforce_quota(tenant, resource_type)

    return checker


async def require_superadmin(current_user: User = Depends(get_current_user)) -> User:
    """Dependency: 403 unless the subject is a platform superadmin."""
    if not current_user.is_superadmin:
        raise PermissionDeniedError("organization", "admin", "Platform superadmin access required")
    return current_user
