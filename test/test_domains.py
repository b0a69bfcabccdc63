"""
Custom domain verification tests

Test classes:
    TestDomainValidation    - syntax rules and token masking
    TestDnsTxtResolver      - dnspython adapter error mapping
    TestDomainLifecycle     - configure / verify / remove against fake DNS
    TestDomainConflicts     - one domain, many tenants
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

import dns.asyncresolver
import dns.exception
import dns.resolver
import pytest

from origo.config import settings
from origo.exceptions import (
    DnsLookupTimeoutError,
    DomainAlreadyBoundError,
    DomainNotConfiguredError,
    DomainVerificationFailedError,
    InvalidDomainFormatError,
    PlanFeatureUnavailableError,
)
from origo.models.tenant import DomainState
from origo.services.domain_service import (
    REASON_NOT_FOUND,
    REASON_TIMEOUT,
    DomainService,
    mask_token,
    validate_domain,
)
from origo.utils.dns import DnsTxtResolver, open_txt_resolver

DOMAIN = "cms.acme.com"
PRIMARY_HOST = "_origo-verify.cms.acme.com"


@pytest.fixture
async def tenant(make_user, make_tenant):
    return await make_tenant("acme", owner=await make_user(), plan="basic")


@pytest.fixture
def no_system_dns(monkeypatch):
    """Make dnspython behave as on a host without resolv.conf."""
    system_resolver = dns.asyncresolver.Resolver

    def _without_resolv_conf(configure=True):
        if configure:
            raise dns.resolver.NoResolverConfiguration("no resolv.conf")
        return system_resolver(configure=False)

    monkeypatch.setattr(dns.asyncresolver, "Resolver", _without_resolv_conf)
    monkeypatch.setattr(settings, "dns_nameservers", [])


# ══════════════════════════════════════════════════════════════════════════════
# 1. TestDomainValidation
# ══════════════════════════════════════════════════════════════════════════════


class TestDomainValidation:
    def test_normalises(self):
        assert validate_domain("  CMS.Acme.com. ", app_domain="origo.app") == "cms.acme.com"

    @pytest.mark.parametrize(
        "domain",
        [
            "",
            "localhost",
            "-bad.example.com",
            "bad-.example.com",
            "a..example.com",
            "under_score.example.com",
            "10.0.0.1",
            ("a" * 64) + ".com",
            ".".join(["abcdefghi"] * 26),
        ],
    )
    def test_rejects_malformed(self, domain):
        with pytest.raises(InvalidDomainFormatError):
            validate_domain(domain, app_domain="origo.app")

    def test_rejects_platform_domain(self):
        with pytest.raises(InvalidDomainFormatError):
            validate_domain("acme.origo.app", app_domain="origo.app")
        with pytest.raises(InvalidDomainFormatError):
            validate_domain("origo.app", app_domain="origo.app")

    def test_mask_token(self):
        assert mask_token("origo-verify-abcdef0123") == "origo-verify-abcd****"
        assert mask_token("") == ""
        assert mask_token(None) == ""


# ══════════════════════════════════════════════════════════════════════════════
# 2. TestDnsTxtResolver
# ══════════════════════════════════════════════════════════════════════════════


class _Rdata:
    def __init__(self, *strings: bytes):
        self.strings = strings


class _StubResolver:
    nameservers = ["127.0.0.1"]

    def __init__(self, answer=None, error: Exception | None = None, delay: float = 0):
        self.answer = answer or []
        self.error = error
        self.delay = delay
        self.calls = []

    async def resolve(self, name, rdtype, lifetime=None):
        self.calls.append((name, rdtype, lifetime))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.answer


class TestDnsTxtResolver:
    async def test_joins_character_strings(self):
        stub = _StubResolver(answer=[_Rdata(b"origo-verify-", b"abc"), _Rdata(b"v=spf1 -all")])

        values = await DnsTxtResolver(stub, timeout=2.0).resolve_txt(DOMAIN)

        assert values == ["origo-verify-abc", "v=spf1 -all"]
        assert stub.calls == [(DOMAIN, "TXT", 2.0)]

    @pytest.mark.parametrize("error", [dns.resolver.NXDOMAIN(), dns.resolver.NoAnswer(), dns.exception.DNSException()])
    async def test_missing_records_are_empty(self, error):
        assert await DnsTxtResolver(_StubResolver(error=error), timeout=2.0).resolve_txt(DOMAIN) == []

    async def test_resolver_timeout(self):
        with pytest.raises(DnsLookupTimeoutError) as exc_info:
            await DnsTxtResolver(_StubResolver(error=dns.exception.Timeout()), timeout=2.0).resolve_txt(DOMAIN)
        assert exc_info.value.details["retryable"] is True

    async def test_hung_lookup_is_bounded(self):
        with pytest.raises(DnsLookupTimeoutError):
            await DnsTxtResolver(_StubResolver(delay=5), timeout=0.05).resolve_txt(DOMAIN)

    async def test_open_txt_resolver_splits_budget(self):
        async with open_txt_resolver(timeout=1.5, nameservers=["127.0.0.1"]) as lookup:
            assert isinstance(lookup, DnsTxtResolver)
            assert lookup.timeout == 0.75
            assert lookup.resolver.timeout == 0.75
            assert lookup.resolver.lifetime == 0.75
            assert lookup.deadline is not None

    async def test_spent_budget_times_out_without_querying(self):
        stub = _StubResolver(answer=[_Rdata(b"origo-verify-abc")])
        lookup = DnsTxtResolver(stub, timeout=2.0, budget=0)

        with pytest.raises(DnsLookupTimeoutError):
            await lookup.resolve_txt(DOMAIN)
        assert stub.calls == []

    async def test_lookup_capped_by_remaining_budget(self):
        stub = _StubResolver()

        await DnsTxtResolver(stub, timeout=2.0, budget=0.5).resolve_txt(DOMAIN)

        assert stub.calls[0][2] <= 0.5

    async def test_missing_system_configuration_finds_nothing(self, no_system_dns):
        async with open_txt_resolver(timeout=1.0, nameservers=[]) as lookup:
            assert await lookup.resolve_txt(DOMAIN) == []


# ══════════════════════════════════════════════════════════════════════════════
# 3. TestDomainLifecycle
# ══════════════════════════════════════════════════════════════════════════════


class TestDomainLifecycle:
    async def test_free_plan_cannot_configure(self, db, make_user, make_tenant, fake_dns):
        tenant = await make_tenant("tiny", owner=await make_user())

        with pytest.raises(PlanFeatureUnavailableError):
            await DomainService(db, fake_dns.factory()).configure(tenant, DOMAIN)
        assert fake_dns.queries == []

    async def test_configure_starts_pending(self, db, tenant, fake_dns):
        result = await DomainService(db, fake_dns.factory()).configure(tenant, "CMS.acme.com")

        assert result.domain == DOMAIN
        assert result.state is DomainState.pending
        assert result.verified is False
        assert result.verification_token.startswith("origo-verify-")
        assert result.remediation.host == PRIMARY_HOST
        assert result.remediation.alternate_host == DOMAIN
        assert result.remediation.value == result.verification_token
        assert fake_dns.queries == [PRIMARY_HOST, DOMAIN]
        assert fake_dns.opened == fake_dns.closed == 1
        assert tenant.domain_last_attempt_at is not None

    async def test_verify_lifecycle(self, db, tenant, fake_dns):
        service = DomainService(db, fake_dns.factory())
        configured = await service.configure(tenant, DOMAIN)
        token = configured.verification_token

        first = await service.verify(tenant)
        assert (first.verified, first.reason, first.retryable) == (False, REASON_NOT_FOUND, True)

        fake_dns.records[PRIMARY_HOST] = [f"some-other=1 {token}"]
        second = await service.verify(tenant)
        assert second.verified is True
        assert second.state is DomainState.verified
        assert second.matched_host == PRIMARY_HOST
        assert tenant.domain_verified_at is not None

        queries = list(fake_dns.queries)
        third = await service.verify(tenant)
        assert third.verified is True
        assert fake_dns.queries == queries
        assert tenant.domain_verification_token == token

    async def test_apex_record_accepted(self, db, tenant, fake_dns):
        service = DomainService(db, fake_dns.factory())
        configured = await service.configure(tenant, DOMAIN)
        fake_dns.records[DOMAIN] = [configured.verification_token]

        result = await service.verify(tenant)

        assert result.verified is True
        assert result.matched_host == DOMAIN

    async def test_token_from_another_domain_rejected(self, db, tenant, fake_dns):
        service = DomainService(db, fake_dns.factory())
        await service.configure(tenant, DOMAIN)
        fake_dns.records[PRIMARY_HOST] = ["origo-verify-0000000000000000"]

        assert (await service.verify(tenant)).verified is False

    async def test_timeouts_are_retryable(self, db, tenant, fake_dns):
        fake_dns.timeouts = {PRIMARY_HOST, DOMAIN}
        service = DomainService(db, fake_dns.factory())
        await service.configure(tenant, DOMAIN)

        result = await service.verify(tenant)

        assert result.verified is False
        assert result.reason == REASON_TIMEOUT
        assert result.retryable is True
        assert tenant.domain_state is DomainState.pending

    async def test_timeout_on_primary_still_checks_apex(self, db, tenant, fake_dns):
        service = DomainService(db, fake_dns.factory())
        configured = await service.configure(tenant, DOMAIN)
        fake_dns.timeouts = {PRIMARY_HOST}
        fake_dns.records[DOMAIN] = [configured.verification_token]

        result = await service.verify(tenant)

        assert result.verified is True
        assert result.matched_host == DOMAIN

    async def test_verification_bounded_by_one_budget(self, db, tenant, fake_dns):
        service = DomainService(db, fake_dns.factory())
        await service.configure(tenant, DOMAIN)

        class _HangingLookup:
            async def resolve_txt(self, name):
                await asyncio.sleep(1.0)
                return []

        @asynccontextmanager
        async def _hanging():
            yield _HangingLookup()

        loop = asyncio.get_running_loop()
        started = loop.time()
        result = await DomainService(db, _hanging, probe_timeout=0.2).verify(tenant)

        assert loop.time() - started < 1.0
        assert (result.verified, result.reason, result.retryable) == (False, REASON_TIMEOUT, True)

    async def test_missing_system_dns_is_not_an_error(self, db, tenant, fake_dns, no_system_dns):
        await DomainService(db, fake_dns.factory()).configure(tenant, DOMAIN)

        result = await DomainService(db).verify(tenant)

        assert result.verified is False
        assert result.reason == REASON_NOT_FOUND
        assert result.retryable is True

    async def test_raise_for_failure(self, db, tenant, fake_dns):
        service = DomainService(db, fake_dns.factory())
        await service.configure(tenant, DOMAIN)
        result = await service.verify(tenant)

        with pytest.raises(DomainVerificationFailedError) as exc_info:
            result.raise_for_failure()
        assert exc_info.value.details["reason"] == REASON_NOT_FOUND
        assert exc_info.value.details["remediation"]["host"] == PRIMARY_HOST

    async def test_verify_without_domain(self, db, tenant, fake_dns):
        with pytest.raises(DomainNotConfiguredError):
            await DomainService(db, fake_dns.factory()).verify(tenant)

    async def test_reconfigure_same_domain_keeps_token(self, db, tenant, fake_dns):
        service = DomainService(db, fake_dns.factory())
        first = await service.configure(tenant, DOMAIN)
        second = await service.configure(tenant, DOMAIN.upper())

        assert second.verification_token == first.verification_token

        third = await service.configure(tenant, "www.acme.com")
        assert third.verification_token != first.verification_token
        assert tenant.domain == "www.acme.com"

    async def test_status_and_remove(self, db, tenant, fake_dns):
        service = DomainService(db, fake_dns.factory())
        assert service.status(tenant).state is DomainState.unconfigured

        await service.configure(tenant, DOMAIN)
        pending = service.status(tenant)
        assert pending.state is DomainState.pending
        assert pending.remediation is not None

        assert await service.remove(tenant) is True
        assert service.status(tenant).state is DomainState.unconfigured
        assert await service.remove(tenant) is False


# ══════════════════════════════════════════════════════════════════════════════
# 4. TestDomainConflicts
# ══════════════════════════════════════════════════════════════════════════════


class TestDomainConflicts:
    async def test_verified_domain_cannot_be_claimed(self, db, tenant, make_user, make_tenant, fake_dns):
        other = await make_tenant("globex", owner=await make_user(), plan="basic")
        service = DomainService(db, fake_dns.factory())
        configured = await service.configure(tenant, DOMAIN)
        fake_dns.records[PRIMARY_HOST] = [configured.verification_token]
        await service.verify(tenant)

        with pytest.raises(DomainAlreadyBoundError) as exc_info:
            await service.configure(other, DOMAIN)
        assert exc_info.value.details["owner"] == "acme"
        assert other.domain is None

    async def test_pending_claim_is_released(self, db, tenant, make_user, make_tenant, fake_dns):
        other = await make_tenant("globex", owner=await make_user(), plan="basic")
        service = DomainService(db, fake_dns.factory())
        first = await service.configure(tenant, DOMAIN)

        second = await service.configure(other, DOMAIN)

        assert other.domain == DOMAIN
        assert second.verification_token != first.verification_token
        assert tenant.domain is None
        assert tenant.domain_state is DomainState.unconfigured
