"""
DomainService

Ownership verification for tenant custom domains.

A domain moves ``unconfigured → pending → verified``. Configuring issues a
random token the tenant publishes as a DNS TXT record, either on
``_origo-verify.<domain>`` or on the domain itself. Verification succeeds
when any TXT value on either host contains the token.

DNS trouble (timeouts, NXDOMAIN, empty answers) never escapes ``verify()``;
it is reported as a retryable, not-yet-satisfied result.
"""

import asyncio
import logging
import re
import secrets
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from origo.config import settings
from origo.constants.plans import get_plan_limits
from origo.exceptions import (
    DnsLookupTimeoutError,
    DomainAlreadyBoundError,
    DomainNotConfiguredError,
    DomainVerificationFailedError,
    InvalidDomainFormatError,
    PlanFeatureUnavailableError,
)
from origo.models.tenant import DomainState, Tenant
from origo.services import tenant_service
from origo.utils.dns import TxtLookup, open_txt_resolver

logger = logging.getLogger(__name__)

MAX_DOMAIN_LENGTH = 253
LABEL_PATTERN = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")

REASON_NOT_FOUND = "record_not_found"
REASON_TIMEOUT = "lookup_timeout"

ResolverFactory = Callable[[], AbstractAsyncContextManager[TxtLookup]]


# ── Pure helpers ──────────────────────────────────────────────────────────────


def normalize_domain(domain: str) -> str:
    return domain.strip().lower().rstrip(".")


def validate_domain(domain: str, app_domain: str | None = None) -> str:
    """
    Return the normalised domain or raise InvalidDomainFormatError.

    Hostnames under the platform's own domain are refused: those are
    subdomains, not custom domains.
    """
    normalized = normalize_domain(domain or "")
    if not normalized:
        raise InvalidDomainFormatError(domain, "domain is empty")
    if len(normalized) > MAX_DOMAIN_LENGTH:
        raise InvalidDomainFormatError(domain, f"longer than {MAX_DOMAIN_LENGTH} characters")

    labels = normalized.split(".")
    if len(labels) < 2:
        raise InvalidDomainFormatError(domain, "a domain needs at least two labels")
    for label in labels:
        if not LABEL_PATTERN.match(label):
            raise InvalidDomainFormatError(domain, f"invalid label {label!r}")
    if labels[-1].isdigit():
        raise InvalidDomainFormatError(domain, "top-level domain cannot be numeric")

    app_domain = normalize_domain(app_domain if app_domain is not None else settings.app_domain)
    if app_domain and (normalized == app_domain or normalized.endswith("." + app_domain)):
        raise InvalidDomainFormatError(domain, f"subdomains of {app_domain} are assigned, not verified")
    return normalized


def generate_token() -> str:
    return f"{settings.domain_token_prefix}{secrets.token_hex(16)}"


def mask_token(token: str | None) -> str:
    """Hide all but the first characters of a token's random part."""
    if not token:
        return ""
    prefix = settings.domain_token_prefix
    body = token[len(prefix) :] if token.startswith(prefix) else token
    shown = prefix if token.startswith(prefix) else ""
    return f"{shown}{body[:4]}****"


def candidate_hosts(domain: str) -> list[str]:
    """Hosts probed for the token, in order."""
    return [f"{settings.domain_verification_prefix}.{domain}", domain]


# ── Results ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Remediation:
    """What the tenant must publish for verification to pass."""

    record_type: str
    host: str
    value: str
    alternate_host: str

    @classmethod
    def for_domain(cls, domain: str, token: str) -> "Remediation":
        primary, alternate = candidate_hosts(domain)
        return cls(record_type="TXT", host=primary, value=token, alternate_host=alternate)

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass
class VerificationResult:
    domain: str
    verified: bool
    state: DomainState
    message: str
    reason: str | None = None
    retryable: bool = False
    matched_host: str | None = None
    checked_hosts: list[str] = field(default_factory=list)
    verified_at: datetime | None = None
    last_attempt_at: datetime | None = None
    remediation: Remediation | None = None

    def raise_for_failure(self) -> None:
        """Turn a failed attempt into DomainVerificationFailedError."""
        if self.verified:
            return
        remediation: dict[str, Any] = self.remediation.to_dict() if self.remediation else {}
        raise DomainVerificationFailedError(self.domain, remediation, reason=self.reason or REASON_NOT_FOUND)


@dataclass
class ConfigureResult:
    domain: str
    verification_token: str
    remediation: Remediation
    verification: VerificationResult

    @property
    def state(self) -> DomainState:
        return self.verification.state

    @property
    def verified(self) -> bool:
        return self.verification.verified


@dataclass
class DomainStatus:
    state: DomainState
    domain: str | None = None
    verified: bool = False
    verified_at: datetime | None = None
    last_attempt_at: datetime | None = None
    remediation: Remediation | None = None


# ── Service ───────────────────────────────────────────────────────────────────


class DomainService:
    def __init__(
        self,
        db: AsyncSession,
        resolver_factory: ResolverFactory = open_txt_resolver,
        probe_timeout: float | None = None,
    ) -> None:
        self.db = db
        self.resolver_factory = resolver_factory
        self.probe_timeout = settings.dns_timeout_seconds if probe_timeout is None else probe_timeout

    def status(self, tenant: Tenant) -> DomainStatus:
        config = tenant.domain_config
        if config is None:
            return DomainStatus(state=DomainState.unconfigured)
        return DomainStatus(
            state=config.state,
            domain=config.domain,
            verified=config.verified,
            verified_at=config.verified_at,
            last_attempt_at=config.last_attempt_at,
            remediation=None if config.verified else Remediation.for_domain(config.domain, config.verification_token),
        )

    async def configure(self, tenant: Tenant, domain: str) -> ConfigureResult:
        """
        Bind ``domain`` to ``tenant`` in the pending state and probe once.

        Re-configuring the domain the tenant already holds keeps the existing
        token (and verified state). A pending claim on the same domain by
        another tenant is released; a verified one is a conflict.
        """
        domain = validate_domain(domain)

        plan = get_plan_limits(tenant.plan)
        if not plan.custom_domain:
            raise PlanFeatureUnavailableError("custom_domain", tenant.plan)

        holder = await tenant_service.get_tenant_by_domain(domain, self.db)
        if holder is not None and holder.id != tenant.id:
            if holder.domain_verified:
                raise DomainAlreadyBoundError(domain, holder.slug)
            logger.info("Releasing pending claim on %s held by tenant=%d", domain, holder.id)
            holder.clear_domain()
            await self.db.flush()

        if tenant.domain != domain:
            tenant.clear_domain()
            tenant.domain = domain
            tenant.domain_verification_token = generate_token()

        try:
            await self.db.commit()
        except IntegrityError:
            # another tenant claimed the domain between the lookup and the commit
            await self.db.rollback()
            raise DomainAlreadyBoundError(domain) from None

        token = tenant.domain_verification_token
        logger.info(
            "Custom domain configured: tenant=%d domain=%s token=%s",
            tenant.id,
            domain,
            mask_token(token),
        )

        verification = await self.verify(tenant)
        return ConfigureResult(
            domain=domain,
            verification_token=token,
            remediation=Remediation.for_domain(domain, token),
            verification=verification,
        )

    async def verify(self, tenant: Tenant) -> VerificationResult:
        config = tenant.domain_config
        if config is None:
            raise DomainNotConfiguredError(tenant.id)

        hosts = candidate_hosts(config.domain)
        if config.verified:
            return VerificationResult(
                domain=config.domain,
                verified=True,
                state=DomainState.verified,
                message=f"{config.domain} is verified",
                checked_hosts=[],
                verified_at=config.verified_at,
                last_attempt_at=config.last_attempt_at,
            )

        matched_host, reason = await self._probe(config.domain, config.verification_token)
        now = datetime.now(timezone.utc)
        tenant.domain_last_attempt_at = now

        if matched_host is not None:
            tenant.domain_verified = True
            tenant.domain_verified_at = now
            await self.db.commit()
            logger.info("Custom domain verified: tenant=%d domain=%s via %s", tenant.id, config.domain, matched_host)
            return VerificationResult(
                domain=config.domain,
                verified=True,
                state=DomainState.verified,
                message=f"{config.domain} is verified",
                matched_host=matched_host,
                checked_hosts=hosts,
                verified_at=now,
                last_attempt_at=now,
            )

        await self.db.commit()
        remediation = Remediation.for_domain(config.domain, config.verification_token)
        if reason == REASON_TIMEOUT:
            message = f"DNS lookups for {config.domain} timed out; try again shortly"
        else:
            message = (
                f"No TXT record containing {mask_token(config.verification_token)} was found "
                f"at {remediation.host} or {remediation.alternate_host}"
            )
        logger.info(
            "Custom domain not verified: tenant=%d domain=%s reason=%s token=%s",
            tenant.id,
            config.domain,
            reason,
            mask_token(config.verification_token),
        )
        return VerificationResult(
            domain=config.domain,
            verified=False,
            state=DomainState.pending,
            message=message,
            reason=reason,
            retryable=True,
            checked_hosts=hosts,
            last_attempt_at=now,
            remediation=remediation,
        )

    async def remove(self, tenant: Tenant) -> bool:
        """Drop the tenant's custom domain. Returns False when none was set."""
        if tenant.domain is None:
            return False
        domain = tenant.domain
        tenant.clear_domain()
        await self.db.commit()
        logger.info("Custom domain removed: tenant=%d domain=%s", tenant.id, domain)
        return True

    async def _probe(self, domain: str, token: str) -> tuple[str | None, str | None]:
        """Return (matching host, None) or (None, failure reason) within ``probe_timeout``."""
        try:
            return await asyncio.wait_for(self._probe_hosts(domain, token), timeout=self.probe_timeout)
        except asyncio.TimeoutError:
            logger.warning("TXT probe for %s exceeded %ss", domain, self.probe_timeout)
            return None, REASON_TIMEOUT

    async def _probe_hosts(self, domain: str, token: str) -> tuple[str | None, str | None]:
        timed_out = False
        async with self.resolver_factory() as resolver:
            for host in candidate_hosts(domain):
                try:
                    values = await resolver.resolve_txt(host)
                except DnsLookupTimeoutError:
                    timed_out = True
                    continue
                if any(token in value for value in values):
                    return host, None
        return None, REASON_TIMEOUT if timed_out else REASON_NOT_FOUND
