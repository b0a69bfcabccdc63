"""
Custom Role Routes

All routes act on the tenant resolved for the request and require the
matching ``roles.*`` permission.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from origo.constants.roles import SystemRole
from origo.database import get_db
from origo.middleware.tenant import get_current_tenant
from origo.models.custom_role import CustomRole
from origo.models.tenant import Tenant
from origo.models.user import User
from origo.permissions_config.permission_dependencies import require_permission
from origo.services.role_service import RoleService

router = APIRouter(tags=["Roles"])
logger = logging.getLogger(__name__)


# ── Pydantic schemas ───────────────────────────────────────────────────────────


class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    based_on_role: SystemRole
    description: str | None = None
    is_default: bool = False
    permissions: dict[str, bool] | None = None


class RoleUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    based_on_role: SystemRole | None = None
    description: str | None = None
    is_default: bool | None = None
    permissions: dict[str, bool] | None = None


class RolePermissionSet(BaseModel):
    resource: str
    action: str
    allowed: bool


class RoleAssign(BaseModel):
    user_id: int


class RolePermissionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    resource: str
    action: str
    allowed: bool


class RoleResponse(BaseModel):
    id: int
    name: str
    description: str | None
    based_on_role: str
    is_default: bool
    permissions: list[RolePermissionResponse]
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_role(cls, role: CustomRole) -> "RoleResponse":
        return cls(
            id=role.id,
            name=role.name,
            description=role.description,
            based_on_role=role.based_on_role,
            is_default=role.is_default,
            permissions=[RolePermissionResponse.model_validate(p) for p in role.permissions],
            created_at=role.created_at,
            updated_at=role.updated_at,
        )


class RoleDefinitionResponse(BaseModel):
    id: int
    name: str
    description: str | None
    based_on_role: str
    is_default: bool
    base_permissions: list[str]
    overrides: dict[str, bool]
    permissions: dict[str, bool]
    member_count: int


# ── Routes ─────────────────────────────────────────────────────────────────────


@router.get("/", response_model=list[RoleResponse])
async def list_roles_route(
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _current_user: User = Depends(require_permission("roles", "read")),
) -> list[RoleResponse]:
    roles = await RoleService(db).list_roles(tenant.id)
    return [RoleResponse.from_role(r) for r in roles]


@router.post("/", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role_route(
    payload: RoleCreate,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    current_user: User = Depends(require_permission("roles", "create")),
) -> RoleResponse:
    role = await RoleService(db).create_role(
        tenant.id,
        payload.name,
        payload.based_on_role.value,
        description=payload.description,
        is_default=payload.is_default,
        permissions=payload.permissions,
        grantor=current_user,
    )
    return RoleResponse.from_role(role)


@router.get("/{role_id}", response_model=RoleDefinitionResponse)
async def get_role_route(
    role_id: int,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _current_user: User = Depends(require_permission("roles", "read")),
) -> RoleDefinitionResponse:
    """The role with its base grants and overrides merged."""
    definition = await RoleService(db).get_role_definition(role_id, tenant.id)
    return RoleDefinitionResponse(
        id=definition.id,
        name=definition.name,
        description=definition.description,
        based_on_role=definition.based_on_role,
        is_default=definition.is_default,
        base_permissions=definition.base_permissions,
        overrides=definition.overrides,
        permissions=definition.permissions,
        member_count=definition.member_count,
    )


@router.put("/{role_id}", response_model=RoleResponse)
async def update_role_route(
    role_id: int,
    payload: RoleUpdate,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    current_user: User = Depends(require_permission("roles", "update")),
) -> RoleResponse:
    role = await RoleService(db).update_role(
        role_id,
        tenant.id,
        name=payload.name,
        description=payload.description,
        based_on_role=payload.based_on_role.value if payload.based_on_role else None,
        is_default=payload.is_default,
        permissions=payload.permissions,
        grantor=current_user,
    )
    return RoleResponse.from_role(role)


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role_route(
    role_id: int,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _current_user: User = Depends(require_permission("roles", "delete")),
) -> None:
    """Delete a role. Fails with ROLE_IN_USE while any member holds it."""
    await RoleService(db).delete_role(role_id, tenant.id)


@router.get("/{role_id}/permissions", response_model=list[RolePermissionResponse])
async def list_role_permissions_route(
    role_id: int,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _current_user: User = Depends(require_permission("roles", "read")),
) -> list[RolePermissionResponse]:
    rows = await RoleService(db).list_role_permissions(role_id, tenant.id)
    return [RolePermissionResponse.model_validate(r) for r in rows]


@router.put("/{role_id}/permissions", response_model=RolePermissionResponse)
async def upsert_role_permission_route(
    role_id: int,
    payload: RolePermissionSet,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _current_user: User = Depends(require_permission("roles", "update")),
) -> RolePermissionResponse:
    row = await RoleService(db).upsert_role_permission(
        role_id, tenant.id, payload.resource, payload.action, payload.allowed
    )
    return RolePermissionResponse.model_validate(row)


@router.delete("/{role_id}/permissions/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_role_permission_route(
    role_id: int,
    permission_id: int,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _current_user: User = Depends(require_permission("roles", "update")),
) -> None:
    await RoleService(db).remove_role_permission(role_id, tenant.id, permission_id)


@router.post("/{role_id}/assign", status_code=status.HTTP_204_NO_CONTENT)
async def assign_role_route(
    role_id: int,
    payload: RoleAssign,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    current_user: User = Depends(require_permission("roles", "manage")),
) -> None:
    """Point a member's role at this custom role."""
    await RoleService(db).assign_role(role_id, tenant.id, payload.user_id, grantor=current_user)
    logger.info("Role %d assigned to user %d in tenant %d", role_id, payload.user_id, tenant.id)
