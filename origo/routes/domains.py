"""
Custom Domain Routes

GET    /api/v1/domain         → verification status of the current tenant's domain
PUT    /api/v1/domain         → configure a domain (issues a token, probes once)
POST   /api/v1/domain/verify  → probe DNS again
DELETE /api/v1/domain         → remove the custom domain
"""

from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from origo.database import get_db
from origo.middleware.tenant import get_current_tenant
from origo.models.tenant import Tenant
from origo.models.user import User
from origo.permissions_config.permission_dependencies import require_permission
from origo.services.domain_service import (
    DomainService,
    DomainStatus,
    Remediation,
    ResolverFactory,
    VerificationResult,
)
from origo.utils.dns import open_txt_resolver

router = APIRouter(tags=["Domains"])


def get_txt_resolver_factory() -> ResolverFactory:
    return open_txt_resolver


class DomainConfigure(BaseModel):
    domain: str


class RemediationResponse(BaseModel):
    record_type: str
    host: str
    value: str
    alternate_host: str

    @classmethod
    def from_remediation(cls, remediation: Remediation | None) -> "RemediationResponse | None":
        return None if remediation is None else cls(**remediation.to_dict())


class DomainStatusResponse(BaseModel):
    state: str
    domain: str | None
    verified: bool
    verified_at: datetime | None
    last_attempt_at: datetime | None
    remediation: RemediationResponse | None

    @classmethod
    def from_status(cls, domain_status: DomainStatus) -> "DomainStatusResponse":
        return cls(
            state=domain_status.state.value,
            domain=domain_status.domain,
            verified=domain_status.verified,
            verified_at=domain_status.verified_at,
            last_attempt_at=domain_status.last_attempt_at,
            remediation=RemediationResponse.from_remediation(domain_status.remediation),
        )


class VerificationResponse(BaseModel):
    domain: str
    verified: bool
    state: str
    message: str
    reason: str | None
    retryable: bool
    matched_host: str | None
    checked_hosts: list[str]
    verified_at: datetime | None
    last_attempt_at: datetime | None
    remediation: RemediationResponse | None

    @classmethod
    def from_result(cls, result: VerificationResult) -> "VerificationResponse":
        return cls(
            domain=result.domain,
            verified=result.verified,
            state=result.state.value,
            message=result.message,
            reason=result.reason,
            retryable=result.retryable,
            matched_host=result.matched_host,
            checked_hosts=result.checked_hosts,
            verified_at=result.verified_at,
            last_attempt_at=result.last_attempt_at,
            remediation=RemediationResponse.from_remediation(result.remediation),
        )


class ConfigureResponse(BaseModel):
    domain: str
    verification_token: str
    remediation: RemediationResponse
    verification: VerificationResponse


@router.get("/", response_model=DomainStatusResponse)
async def domain_status_route(
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _current_user: User = Depends(require_permission("settings", "read")),
) -> DomainStatusResponse:
    return DomainStatusResponse.from_status(DomainService(db).status(tenant))


@router.put("/", response_model=ConfigureResponse)
async def configure_domain_route(
    payload: DomainConfigure,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    resolver_factory: ResolverFactory = Depends(get_txt_resolver_factory),
    _current_user: User = Depends(require_permission("settings", "update")),
) -> ConfigureResponse:
    result = await DomainService(db, resolver_factory).configure(tenant, payload.domain)
    return ConfigureResponse(
        domain=result.domain,
        verification_token=result.verification_token,
        remediation=RemediationResponse.from_remediation(result.remediation),
        verification=VerificationResponse.from_result(result.verification),
    )


@router.post("/verify", response_model=VerificationResponse)
async def verify_domain_route(
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    resolver_factory: ResolverFactory = Depends(get_txt_resolver_factory),
    _current_user: User = Depends(require_permission("settings", "update")),
) -> VerificationResponse:
    """Probe DNS for the token. A failed attempt is a 200 with ``verified: false``."""
    return VerificationResponse.from_result(await DomainService(db, resolver_factory).verify(tenant))


@router.delete("/", status_code=status.HTTP_204_NO_CONTENT)
async def remove_domain_route(
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    _current_user: User = Depends(require_permission("settings", "update")),
) -> None:
    await DomainService(db).remove(tenant)
