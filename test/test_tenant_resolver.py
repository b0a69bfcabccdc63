"""
Tenant resolution tests

Test classes:
    TestHostParsing        - pure host / subdomain helpers
    TestResolutionOrder    - each signal, in precedence order
    TestSessionPin         - pin validation and write-back
"""

from __future__ import annotations

import pytest

from origo.constants.roles import SystemRole, SystemRoleRef
from origo.exceptions import TenantAccessDeniedError, TenantNotFoundError
from origo.services import tenant_service
from origo.services.tenant_resolver import (
    SESSION_TENANT_KEY,
    ResolutionSource,
    TenantResolver,
    TenantSignals,
    extract_subdomain,
    normalize_host,
)

APP_DOMAIN = "origo.app"

# ══════════════════════════════════════════════════════════════════════════════
# 1. TestHostParsing
# ══════════════════════════════════════════════════════════════════════════════


class TestHostParsing:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Acme.Origo.App:8443", "acme.origo.app"),
            ("cms.acme.com.", "cms.acme.com"),
            ("[::1]:8000", "::1"),
            ("localhost", "localhost"),
            ("", None),
            (None, None),
        ],
    )
    def test_normalize_host(self, raw, expected):
        assert normalize_host(raw) == expected

    def test_extract_subdomain(self):
        assert extract_subdomain("acme.origo.app", APP_DOMAIN) == "acme"
        assert extract_subdomain("origo.app", APP_DOMAIN) is None
        assert extract_subdomain("a.b.origo.app", APP_DOMAIN) is None
        assert extract_subdomain("acme.example.com", APP_DOMAIN) is None
        assert extract_subdomain("evilorigo.app", APP_DOMAIN) is None


# ══════════════════════════════════════════════════════════════════════════════
# 2. TestResolutionOrder
# ══════════════════════════════════════════════════════════════════════════════


class TestResolutionOrder:
    async def test_trusted_explicit_id_wins(self, db, make_user, make_tenant):
        user = await make_user()
        first = await make_tenant("first", owner=user)
        second = await make_tenant("second", owner=user, subdomain="second")

        resolution = await TenantResolver(db, APP_DOMAIN).resolve_with_source(
            TenantSignals(
                host="second.origo.app",
                explicit_tenant_id=first.id,
                trusted_service=True,
                subject=user,
            )
        )

        assert resolution.tenant.id == first.id
        assert resolution.source is ResolutionSource.EXPLICIT
        assert second.id != first.id

    async def test_untrusted_explicit_id_ignored(self, db, make_user, make_tenant):
        user = await make_user()
        own = await make_tenant("own", owner=user)
        foreign = await make_tenant("foreign", owner=await make_user())

        tenant = await TenantResolver(db, APP_DOMAIN).resolve(
            TenantSignals(explicit_tenant_id=foreign.id, trusted_service=False, subject=user)
        )

        assert tenant.id == own.id

    async def test_explicit_unknown_tenant(self, db, make_user):
        with pytest.raises(TenantNotFoundError):
            await TenantResolver(db, APP_DOMAIN).resolve(
                TenantSignals(explicit_tenant_id=9999, trusted_service=True, subject=await make_user())
            )

    async def test_explicit_tenant_subject_not_member(self, db, make_user, make_tenant):
        foreign = await make_tenant("foreign", owner=await make_user())
        outsider = await make_user()

        with pytest.raises(TenantAccessDeniedError):
            await TenantResolver(db, APP_DOMAIN).resolve(
                TenantSignals(explicit_tenant_id=foreign.id, trusted_service=True, subject=outsider)
            )

    async def test_explicit_tenant_for_superadmin_or_service(self, db, make_user, make_tenant):
        foreign = await make_tenant("foreign", owner=await make_user())
        root = await make_user(system_role="superadmin")
        resolver = TenantResolver(db, APP_DOMAIN)

        as_root = await resolver.resolve(TenantSignals(explicit_tenant_id=foreign.id, trusted_service=True, subject=root))
        as_service = await resolver.resolve(TenantSignals(explicit_tenant_id=foreign.id, trusted_service=True))

        assert as_root.id == as_service.id == foreign.id

    async def test_explicit_suspended_tenant(self, db, make_user, make_tenant):
        owner = await make_user()
        tenant = await make_tenant("acme", owner=owner)
        await tenant_service.suspend_tenant(tenant.id, db)

        with pytest.raises(TenantNotFoundError):
            await TenantResolver(db, APP_DOMAIN).resolve(
                TenantSignals(explicit_tenant_id=tenant.id, trusted_service=True, subject=owner)
            )

    async def test_verified_custom_domain(self, db, make_user, make_tenant):
        tenant = await make_tenant("acme", owner=await make_user(), plan="basic")
        tenant.domain = "cms.acme.com"
        tenant.domain_verification_token = "origo-verify-abc"
        tenant.domain_verified = True
        await db.commit()

        resolution = await TenantResolver(db, APP_DOMAIN).resolve_with_source(TenantSignals(host="CMS.acme.com:443"))

        assert resolution.tenant.id == tenant.id
        assert resolution.source is ResolutionSource.CUSTOM_DOMAIN

    async def test_unverified_custom_domain_does_not_resolve(self, db, make_user, make_tenant):
        tenant = await make_tenant("acme", owner=await make_user(), plan="basic")
        tenant.domain = "cms.acme.com"
        tenant.domain_verification_token = "origo-verify-abc"
        await db.commit()

        with pytest.raises(TenantNotFoundError):
            await TenantResolver(db, APP_DOMAIN).resolve(TenantSignals(host="cms.acme.com"))

    async def test_subdomain(self, db, make_user, make_tenant):
        tenant = await make_tenant("acme", owner=await make_user(), subdomain="acme")

        resolution = await TenantResolver(db, APP_DOMAIN).resolve_with_source(TenantSignals(host="Acme.Origo.App:8443"))

        assert resolution.tenant.id == tenant.id
        assert resolution.source is ResolutionSource.SUBDOMAIN

    async def test_suspended_subdomain_does_not_resolve(self, db, make_user, make_tenant):
        tenant = await make_tenant("acme", owner=await make_user(), subdomain="acme")
        await tenant_service.suspend_tenant(tenant.id, db)

        with pytest.raises(TenantNotFoundError):
            await TenantResolver(db, APP_DOMAIN).resolve(TenantSignals(host="acme.origo.app"))

    async def test_first_membership_is_oldest(self, db, make_user, make_tenant):
        user = await make_user()
        first = await make_tenant("first", owner=user)
        second = await make_tenant("second", owner=await make_user())
        await tenant_service.add_member(second.id, user.id, SystemRoleRef(SystemRole.EDITOR), db)

        resolution = await TenantResolver(db, APP_DOMAIN).resolve_with_source(TenantSignals(subject=user))

        assert resolution.tenant.id == first.id
        assert resolution.source is ResolutionSource.MEMBERSHIP

    async def test_deleted_tenant_skipped_for_membership(self, db, make_user, make_tenant):
        user = await make_user()
        first = await make_tenant("first", owner=user)
        second = await make_tenant("second", owner=user)
        first_id = first.id
        await tenant_service.delete_tenant(first_id, db)

        tenant = await TenantResolver(db, APP_DOMAIN).resolve(TenantSignals(subject=user))

        assert tenant.id == second.id

    async def test_nothing_matches(self, db, make_user):
        with pytest.raises(TenantNotFoundError):
            await TenantResolver(db, APP_DOMAIN).resolve(TenantSignals(host="origo.app", subject=await make_user()))


# ══════════════════════════════════════════════════════════════════════════════
# 3. TestSessionPin
# ══════════════════════════════════════════════════════════════════════════════


class TestSessionPin:
    async def test_valid_pin_beats_host(self, db, make_user, make_tenant):
        user = await make_user()
        pinned = await make_tenant("pinned", owner=user)
        await make_tenant("hosted", owner=user, subdomain="hosted")
        session = {SESSION_TENANT_KEY: pinned.id}

        resolution = await TenantResolver(db, APP_DOMAIN).resolve_with_source(
            TenantSignals(host="hosted.origo.app", session=session, subject=user)
        )

        assert resolution.tenant.id == pinned.id
        assert resolution.source is ResolutionSource.SESSION

    async def test_stale_pin_falls_through_to_first_membership(self, db, make_user, make_tenant):
        user = await make_user()
        home = await make_tenant("home", owner=user)
        other = await make_tenant("other", owner=await make_user())
        await tenant_service.add_member(other.id, user.id, SystemRoleRef(SystemRole.EDITOR), db)
        session = {SESSION_TENANT_KEY: other.id}

        await tenant_service.remove_member(other.id, user.id, db)
        resolution = await TenantResolver(db, APP_DOMAIN).resolve_with_source(
            TenantSignals(session=session, subject=user)
        )

        assert resolution.tenant.id == home.id
        assert resolution.source is ResolutionSource.MEMBERSHIP
        assert session[SESSION_TENANT_KEY] == home.id

    async def test_pin_to_suspended_tenant_discarded(self, db, make_user, make_tenant):
        user = await make_user()
        home = await make_tenant("home", owner=user)
        paused = await make_tenant("paused", owner=user)
        await tenant_service.suspend_tenant(paused.id, db)
        session = {SESSION_TENANT_KEY: str(paused.id)}

        tenant = await TenantResolver(db, APP_DOMAIN).resolve(TenantSignals(session=session, subject=user))

        assert tenant.id == home.id

    async def test_anonymous_pin_ignored(self, db, make_user, make_tenant):
        tenant = await make_tenant("acme", owner=await make_user())
        session = {SESSION_TENANT_KEY: tenant.id}

        with pytest.raises(TenantNotFoundError):
            await TenantResolver(db, APP_DOMAIN).resolve(TenantSignals(session=session))

    async def test_host_resolution_pins_session(self, db, make_user, make_tenant):
        user = await make_user()
        tenant = await make_tenant("acme", owner=user, subdomain="acme")
        session: dict = {}

        await TenantResolver(db, APP_DOMAIN).resolve(TenantSignals(host="acme.origo.app", session=session, subject=user))

        assert session == {SESSION_TENANT_KEY: tenant.id}

    async def test_explicit_resolution_does_not_pin(self, db, make_user, make_tenant):
        user = await make_user()
        tenant = await make_tenant("acme", owner=user)
        session: dict = {}

        await TenantResolver(db, APP_DOMAIN).resolve(
            TenantSignals(explicit_tenant_id=tenant.id, trusted_service=True, session=session, subject=user)
        )

        assert session == {}
