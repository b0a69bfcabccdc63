"""
DNS TXT lookups for custom-domain verification.

A resolver is acquired per probe through ``open_txt_resolver()`` and
released when the probe finishes. ``timeout`` is the budget for the whole
probe: it is split evenly across the lookups the probe may make, and every
lookup is bounded twice, by the dnspython ``lifetime`` and by an
``asyncio.wait_for`` hard timeout, never past the probe deadline.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Protocol

import dns.asyncresolver
import dns.exception
import dns.resolver

from origo.config import settings
from origo.exceptions import DnsLookupTimeoutError

logger = logging.getLogger(__name__)

# _origo-verify.<domain>, then <domain>
LOOKUPS_PER_PROBE = 2


class TxtLookup(Protocol):
    async def resolve_txt(self, name: str) -> list[str]: ...


class DnsTxtResolver:
    """Answers TXT queries; an absent name or record is an empty answer, not an error."""

    def __init__(self, resolver: dns.asyncresolver.Resolver, timeout: float, budget: float | None = None) -> None:
        self.resolver = resolver
        self.timeout = timeout
        self.deadline = asyncio.get_running_loop().time() + budget if budget is not None else None

    def _lookup_timeout(self) -> float:
        if self.deadline is None:
            return self.timeout
        return min(self.timeout, self.deadline - asyncio.get_running_loop().time())

    async def resolve_txt(self, name: str) -> list[str]:
        if not self.resolver.nameservers:
            logger.warning("TXT lookup for %s skipped: no nameservers configured", name)
            return []

        timeout = self._lookup_timeout()
        if timeout <= 0:
            logger.warning("TXT lookup for %s skipped: probe budget spent", name)
            raise DnsLookupTimeoutError(name, self.timeout)
        try:
            answer = await asyncio.wait_for(
                self.resolver.resolve(name, "TXT", lifetime=timeout),
                timeout=timeout,
            )
        except (dns.exception.Timeout, asyncio.TimeoutError):
            logger.warning("TXT lookup for %s timed out after %.2fs", name, timeout)
            raise DnsLookupTimeoutError(name, self.timeout) from None
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return []
        except dns.exception.DNSException as e:
            logger.warning("TXT lookup for %s failed: %s", name, e)
            return []

        values = []
        for rdata in answer:
            # long TXT values arrive split into 255-byte character strings
            values.append(b"".join(rdata.strings).decode("utf-8", errors="replace"))
        return values


def _system_resolver() -> dns.asyncresolver.Resolver:
    try:
        return dns.asyncresolver.Resolver()
    except dns.resolver.NoResolverConfiguration as e:
        logger.error("No system DNS configuration, TXT lookups will find nothing: %s", e)
        return dns.asyncresolver.Resolver(configure=False)


@asynccontextmanager
async def open_txt_resolver(
    timeout: float | None = None,
    nameservers: list[str] | None = None,
    lookups: int = LOOKUPS_PER_PROBE,
) -> AsyncIterator[TxtLookup]:
    budget = settings.dns_timeout_seconds if timeout is None else timeout
    nameservers = nameservers if nameservers is not None else settings.dns_nameservers
    per_lookup = budget / max(lookups, 1)

    if nameservers:
        resolver = dns.asyncresolver.Resolver(configure=False)
        resolver.nameservers = list(nameservers)
    else:
        resolver = _system_resolver()
    resolver.timeout = per_lookup
    resolver.lifetime = per_lookup

    try:
        yield DnsTxtResolver(resolver, per_lookup, budget=budget)
    finally:
        logger.debug("Released TXT resolver")
