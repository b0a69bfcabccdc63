"""
TenantResolver

Decides which tenant a request belongs to. Signals are tried in a fixed
order and the first one that yields an active tenant wins:

  1. explicit tenant id, honoured only for trusted service callers
  2. tenant id pinned in the session, re-checked against current memberships
  3. verified custom domain matching the request host
  4. subdomain of the platform domain
  5. the subject's first membership (oldest first)

Resolutions from 3-5 are pinned into the session. Suspended and deleted
tenants never resolve.
"""

import logging
from collections.abc import MutableMapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from origo.config import settings
from origo.exceptions import TenantAccessDeniedError, TenantNotFoundError
from origo.models.tenant import Tenant
from origo.models.user import User
from origo.services import tenant_service

logger = logging.getLogger(__name__)

SESSION_TENANT_KEY = "tenant_id"


class ResolutionSource(str, Enum):
    EXPLICIT = "explicit"
    SESSION = "session"
    CUSTOM_DOMAIN = "custom_domain"
    SUBDOMAIN = "subdomain"
    MEMBERSHIP = "membership"


@dataclass
class TenantSignals:
    host: str | None = None
    explicit_tenant_id: int | None = None
    trusted_service: bool = False
    session: MutableMapping[str, Any] | None = None
    subject: User | None = None


@dataclass(frozen=True)
class Resolution:
    tenant: Tenant
    source: ResolutionSource


def normalize_host(host: str | None) -> str | None:
    """
    Lower-case a Host header value and strip port and trailing dot.

        "Acme.Origo.App:8443" → "acme.origo.app"
        "[::1]:8000"          → "::1"
    """
    if not host:
        return None
    host = host.strip().lower()
    if host.startswith("["):
        host = host[1:].split("]", 1)[0]
    elif host.count(":") == 1:
        host = host.split(":", 1)[0]
    host = host.rstrip(".")
    return host or None


def extract_subdomain(host: str | None, app_domain: str) -> str | None:
    """
    Return the single label in front of ``app_domain``, if any.

        host="acme.origo.app",   app_domain="origo.app" → "acme"
        host="origo.app",        app_domain="origo.app" → None
        host="a.b.origo.app",    app_domain="origo.app" → None
    """
    if not host or not app_domain:
        return None
    suffix = "." + app_domain
    if host == app_domain or not host.endswith(suffix):
        return None
    label = host[: -len(suffix)]
    return label if label and "." not in label else None


def _coerce_id(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class TenantResolver:
    def __init__(self, db: AsyncSession, app_domain: str | None = None) -> None:
        self.db = db
        self.app_domain = (app_domain if app_domain is not None else settings.app_domain).lower().rstrip(".")

    async def resolve(self, signals: TenantSignals) -> Tenant:
        return (await self.resolve_with_source(signals)).tenant

    async def resolve_with_source(self, signals: TenantSignals) -> Resolution:
        subject = signals.subject

        # 1. Explicit id from a trusted service caller
        if signals.explicit_tenant_id is not None:
            if signals.trusted_service:
                return Resolution(await self._resolve_explicit(signals.explicit_tenant_id, subject), ResolutionSource.EXPLICIT)
            logger.warning("Ignoring explicit tenant id %r from an untrusted caller", signals.explicit_tenant_id)

        # 2. Session pin, only while the subject still belongs to it
        if signals.session is not None and subject is not None:
            tenant = await self._resolve_session_pin(signals.session, subject)
            if tenant is not None:
                return Resolution(tenant, ResolutionSource.SESSION)

        host = normalize_host(signals.host)
        subdomain = extract_subdomain(host, self.app_domain)

        # 3. Verified custom domain
        if host and subdomain is None and host != self.app_domain:
            tenant = await tenant_service.get_tenant_by_verified_domain(host, self.db)
            if tenant is not None:
                return self._pin(signals, Resolution(tenant, ResolutionSource.CUSTOM_DOMAIN))

        # 4. Subdomain
        if subdomain is not None:
            tenant = await tenant_service.get_tenant_by_subdomain(subdomain, self.db, active_only=True)
            if tenant is not None:
                return self._pin(signals, Resolution(tenant, ResolutionSource.SUBDOMAIN))

        # 5. Subject's first membership
        if subject is not None:
            memberships = await tenant_service.list_user_memberships(subject.id, self.db)
            if memberships:
                return self._pin(signals, Resolution(memberships[0].tenant, ResolutionSource.MEMBERSHIP))

        raise TenantNotFoundError()

    # ── Private helpers ──────────────────────────────────────────────────────

    async def _resolve_explicit(self, tenant_id: int, subject: User | None) -> Tenant:
        tenant = await tenant_service.get_tenant_by_id(tenant_id, self.db, active_only=True)
        if tenant is None:
            raise TenantNotFoundError(f"Tenant {tenant_id} does not exist or is not active", tenant_id=tenant_id)
        if subject is not None and not subject.is_superadmin:
            if await tenant_service.get_membership(tenant.id, subject.id, self.db) is None:
                raise TenantAccessDeniedError(tenant.id, subject.id)
        return tenant

    async def _resolve_session_pin(self, session: MutableMapping[str, Any], subject: User) -> Tenant | None:
        raw = session.get(SESSION_TENANT_KEY)
        if raw is None:
            return None

        tenant_id = _coerce_id(raw)
        tenant = None
        if tenant_id is not None:
            tenant = await tenant_service.get_tenant_by_id(tenant_id, self.db, active_only=True)
        if tenant is not None and (
            subject.is_superadmin or await tenant_service.get_membership(tenant.id, subject.id, self.db) is not None
        ):
            return tenant

        logger.info("Discarding stale session tenant pin %r for user=%s", raw, subject.id)
        session.pop(SESSION_TENANT_KEY, None)
        return None

    @staticmethod
    def _pin(signals: TenantSignals, resolution: Resolution) -> Resolution:
        if signals.session is not None:
            signals.session[SESSION_TENANT_KEY] = resolution.tenant.id
        logger.debug("Resolved tenant=%d via %s", resolution.tenant.id, resolution.source.value)
        return resolution
