"""
Permission Routes

GET    /api/v1/permissions/catalog                  → permission tokens and role baselines
GET    /api/v1/permissions/check                    → one decision for the caller
GET    /api/v1/permissions/effective                → the caller's full decision matrix
GET    /api/v1/permissions/users/{user_id}          → a member's overrides
GET    /api/v1/permissions/users/{user_id}/effective → a member's decision matrix
PUT    /api/v1/permissions/users/{user_id}          → create or update an override
DELETE /api/v1/permissions/users/{user_id}/{override_id} → remove an override
"""

import logging

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from origo.auth import get_current_user
from origo.constants.roles import SystemRole
from origo.database import get_db
from origo.exceptions import ResourceNotFoundError
from origo.middleware.tenant import get_current_tenant
from origo.models.tenant import Tenant
from origo.models.user import User
from origo.permissions_config.permission_dependencies import require_permission
from origo.permissions_config.permissions import ALL_PERMISSIONS, get_role_permissions
from origo.services import tenant_service
from origo.services.permission_service import PermissionService

router = APIRouter(tags=["Permissions"])
logger = logging.getLogger(__name__)


class PermissionCheckResponse(BaseModel):
    resource: str
    action: str
    allowed: bool


class PermissionCatalogResponse(BaseModel):
    permissions: list[str]
    roles: dict[str, list[str]]


class UserPermissionSet(BaseModel):
    resource: str
    action: str
    allowed: bool


class UserPermissionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    tenant_id: int
    resource: str
    action: str
    allowed: bool
    created_by_id: int | None


async def _require_member(tenant: Tenant, user_id: int, db: AsyncSession) -> User:
    membership = await tenant_service.get_membership(tenant.id, user_id, db)
    if membership is None:
        raise ResourceNotFoundError("Membership", user_id)
    user = await db.get(User, user_id)
    if user is None:
        raise ResourceNotFoundError("User", user_id)
    return user


@router.get("/catalog", response_model=PermissionCatalogResponse)
async def permission_catalog_route(
    _current_user: User = Depends(get_current_user),
) -> PermissionCatalogResponse:
    return PermissionCatalogResponse(
        permissions=ALL_PERMISSIONS,
        roles={role.value: sorted(get_role_permissions(role.value)) for role in SystemRole},
    )


@router.get("/check", response_model=PermissionCheckResponse)
async def check_permission_route(
    resource: str = Query(...),
    action: str = Query(...),
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    current_user: User = Depends(get_current_user),
) -> PermissionCheckResponse:
    allowed = await PermissionService(db).has_permission(current_user, tenant, resource, action)
    return PermissionCheckResponse(resource=resource, action=action, allowed=allowed)


@router.get("/effective", response_model=dict[str, bool])
async def my_effective_permissions_route(
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    current_user: User = Depends(get_current_user),
) -> dict[str, bool]:
    return await PermissionService(db).get_effective_permissions(current_user, tenant)


@router.get("/users/{user_id}", response_model=list[UserPermissionResponse])
async def list_user_overrides_route(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _current_user: User = Depends(require_permission("users", "read")),
) -> list[UserPermissionResponse]:
    rows = await PermissionService(db).list_user_overrides(user_id, tenant.id)
    return [UserPermissionResponse.model_validate(r) for r in rows]


@router.get("/users/{user_id}/effective", response_model=dict[str, bool])
async def user_effective_permissions_route(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _current_user: User = Depends(require_permission("users", "read")),
) -> dict[str, bool]:
    user = await _require_member(tenant, user_id, db)
    return await PermissionService(db).get_effective_permissions(user, tenant)


@router.put("/users/{user_id}", response_model=UserPermissionResponse)
async def set_user_override_route(
    user_id: int,
    payload: UserPermissionSet,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    current_user: User = Depends(require_permission("users", "update")),
) -> UserPermissionResponse:
    await _require_member(tenant, user_id, db)
    row = await PermissionService(db).set_user_override(
        user_id,
        tenant.id,
        payload.resource,
        payload.action,
        payload.allowed,
        created_by_id=current_user.id,
    )
    return UserPermissionResponse.model_validate(row)


@router.delete("/users/{user_id}/{override_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_user_override_route(
    user_id: int,
    override_id: int,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _current_user: User = Depends(require_permission("users", "update")),
) -> None:
    service = PermissionService(db)
    if not any(r.id == override_id for r in await service.list_user_overrides(user_id, tenant.id)):
        raise ResourceNotFoundError("UserPermission", override_id)
    await service.remove_user_override(override_id, tenant.id)
