"""
Tenant Resolution Middleware

Runs the TenantResolver once per request and records the outcome on
request.state for downstream handlers:

    tenant_id     (int | None)  DB primary key of the resolved tenant
    tenant_slug   (str | None)  slug of the resolved tenant
    tenant_source (str | None)  which signal produced it
    tenant_error  (OrigoError | None)  why resolution failed, if it did

Resolution failures do not short-circuit the request: public routes keep
working, and routes that need a tenant raise the stored error through the
``get_current_tenant`` dependency.

Starlette middleware is LIFO; this middleware must be added BEFORE
SessionMiddleware in create_app() so that the session is available here.
"""

from __future__ import annotations

import hmac
import logging
from typing import TYPE_CHECKING

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.base import BaseHTTPMiddleware

from origo.auth import authenticate_token, extract_bearer_token
from origo.config import settings
from origo.database import get_db
from origo.exceptions import OrigoError, TenantNotFoundError
from origo.models.tenant import Tenant
from origo.services import tenant_service
from origo.services.tenant_resolver import TenantResolver, TenantSignals

if TYPE_CHECKING:
    from collections.abc import Callable

    from starlette.responses import Response

logger = logging.getLogger(__name__)

SERVICE_KEY_HEADER = "X-Service-Key"
TENANT_ID_HEADER = "X-Tenant-Id"


def is_trusted_service(request: Request) -> bool:
    presented = request.headers.get(SERVICE_KEY_HEADER)
    if not presented or not settings.service_api_key:
        return False
    return hmac.compare_digest(presented, settings.service_api_key)


def _explicit_tenant_id(request: Request) -> int | None:
    raw = request.headers.get(TENANT_ID_HEADER)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.info("Ignoring malformed %s header: %r", TENANT_ID_HEADER, raw)
        return None


class TenantMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Always initialise state so downstream code can safely read without AttributeError
        request.state.tenant_id = None
        request.state.tenant_slug = None
        request.state.tenant_source = None
        request.state.tenant_error = None

        # Deferred import so tests can swap the session factory
        from origo import database

        async with database.AsyncSessionLocal() as db:
            subject = await authenticate_token(extract_bearer_token(request), db)
            signals = TenantSignals(
                host=request.headers.get("host"),
                explicit_tenant_id=_explicit_tenant_id(request),
                trusted_service=is_trusted_service(request),
                session=request.scope.get("session"),
                subject=subject,
            )
            try:
                resolution = await TenantResolver(db).resolve_with_source(signals)
            except OrigoError as e:
                request.state.tenant_error = e
                logger.debug("TenantMiddleware: no tenant for %s (%s)", request.url.path, e.error_code)
            else:
                request.state.tenant_id = resolution.tenant.id
                request.state.tenant_slug = resolution.tenant.slug
                request.state.tenant_source = resolution.source.value
                logger.debug(
                    "TenantMiddleware: resolved tenant_id=%d slug=%s via %s",
                    resolution.tenant.id,
                    resolution.tenant.slug,
                    resolution.source.value,
                )

        return await call_next(request)


async def get_current_tenant(request: Request, db: AsyncSession = Depends(get_db)) -> Tenant:
    """
    FastAPI dependency returning the tenant resolved for this request.

    Re-loads the row in the request's own session and re-checks that it is
    still active.
    """
    tenant_id = getattr(request.state, "tenant_id", None)
    if tenant_id is None:
        error = getattr(request.state, "tenant_error", None)
        raise error if error is not None else TenantNotFoundError()
    tenant = await tenant_service.get_tenant_by_id(tenant_id, db, active_only=True)
    if tenant is None:
        raise TenantNotFoundError(tenant_id=tenant_id)
    return tenant
