"""
QuotaService

Plan quota checks for tenant-owned resources.

Two modes, chosen by ``settings.quota_mode``:

  advisory  usage is counted live (one registered counter per resource
            type) before each creation. Two concurrent creators may both
            see ``current < limit``; the overshoot is bounded by the number
            of concurrent requests.
  counter   usage is kept in ``tenant_usage_counters`` and ``reserve()``
            increments it with a single conditional UPDATE inside the
            caller's transaction, so the limit cannot be exceeded.

Storage is counted in bytes and reported in MB.
"""

import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from origo.config import settings
from origo.constants.plans import PlanLimit, ResourceType, get_plan_limits, list_plans
from origo.exceptions import PlanLimitExceededError, ValidationError
from origo.models.tenant import Tenant
from origo.models.usage_counter import TenantUsageCounter
from origo.services import tenant_service

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024

UsageCounter = Callable[[AsyncSession, int], Awaitable[int]]


@dataclass(frozen=True)
class QuotaResult:
    resource_type: str
    allowed: bool
    current: float
    limit: int

    @property
    def percentage(self) -> int:
        if self.limit <= 0:
            return 0
        return math.floor(self.current / self.limit * 100 + 0.5)

    def to_dict(self) -> dict:
        return {
            "resource_type": self.resource_type,
            "allowed": self.allowed,
            "current": self.current,
            "limit": self.limit,
            "percentage": self.percentage,
        }


class UsageRegistry:
    """
    Live usage counters, one per resource type.

    Resource stores register an async ``counter(db, tenant_id) -> int``
    returning usage in base units (items, or bytes for storage).
    """

    def __init__(self) -> None:
        self._counters: dict[ResourceType, UsageCounter] = {}

    def register(self, resource_type: str, counter: UsageCounter | None = None):
        rt = ResourceType(resource_type)

        def decorator(func: UsageCounter) -> UsageCounter:
            self._counters[rt] = func
            return func

        if counter is not None:
            return decorator(counter)
        return decorator

    def unregister(self, resource_type: str) -> None:
        self._counters.pop(ResourceType(resource_type), None)

    def get(self, resource_type: str) -> UsageCounter | None:
        return self._counters.get(ResourceType(resource_type))

    def __contains__(self, resource_type: object) -> bool:
        try:
            return ResourceType(resource_type) in self._counters
        except ValueError:
            return False


usage_registry = UsageRegistry()


@usage_registry.register(ResourceType.USERS)
async def count_tenant_users(db: AsyncSession, tenant_id: int) -> int:
    return await tenant_service.count_members(tenant_id, db)


def _resource_type(resource_type: str) -> ResourceType:
    try:
        return ResourceType(resource_type)
    except ValueError:
        allowed = ", ".join(r.value for r in ResourceType)
        raise ValidationError(
            f"Unknown resource type {resource_type!r}; expected one of: {allowed}", field="resource_type"
        ) from None


def _to_units(resource_type: ResourceType, raw: int) -> float:
    if resource_type is ResourceType.STORAGE:
        return round(raw / BYTES_PER_MB, 2)
    return raw


def _cap(resource_type: ResourceType, limit: int) -> int:
    """Plan limit in base units."""
    return limit * BYTES_PER_MB if resource_type is ResourceType.STORAGE else limit


class QuotaService:
    def __init__(
        self,
        db: AsyncSession,
        registry: UsageRegistry | None = None,
        mode: str | None = None,
    ) -> None:
        self.db = db
        self.registry = registry if registry is not None else usage_registry
        self.mode = mode or settings.quota_mode

    # ── Plans ─────────────────────────────────────────────────────────────────

    @staticmethod
    def list_plans() -> list[PlanLimit]:
        return list_plans()

    @staticmethod
    def get_plan(tenant: Tenant) -> PlanLimit:
        try:
            return get_plan_limits(tenant.plan)
        except ValueError:
            raise ValidationError(f"Tenant has an unknown plan: {tenant.plan!r}", field="plan") from None

    # ── Checks ────────────────────────────────────────────────────────────────

    async def get_usage(self, tenant: Tenant, resource_type: str) -> float:
        rt = _resource_type(resource_type)
        return _to_units(rt, await self._raw_usage(tenant.id, rt))

    async def check_quota(self, tenant: Tenant, resource_type: str) -> QuotaResult:
        """Whether one more ``resource_type`` may be created. The boundary is exclusive."""
        rt = _resource_type(resource_type)
        limit = self.get_plan(tenant).limit_for(rt)
        raw = await self._raw_usage(tenant.id, rt)
        # compared in base units; the MB figure is rounded for display only
        return QuotaResult(
            resource_type=rt.value, allowed=raw < _cap(rt, limit), current=_to_units(rt, raw), limit=limit
        )

    async def check_all_quotas(self, tenant: Tenant) -> list[QuotaResult]:
        return [await self.check_quota(tenant, rt.value) for rt in ResourceType]

    async def enforce_quota(self, tenant: Tenant, resource_type: str) -> QuotaResult:
        result = await self.check_quota(tenant, resource_type)
        if not result.allowed:
            logger.info(
                "Plan limit reached: tenant=%d plan=%s %s=%s/%s",
                tenant.id,
                tenant.plan,
                result.resource_type,
                result.current,
                result.limit,
            )
            raise PlanLimitExceededError(result.resource_type, result.current, result.limit)
        return result

    # ── Counter mode ──────────────────────────────────────────────────────────

    async def reserve(self, tenant: Tenant, resource_type: str, amount: int = 1) -> QuotaResult:
        """
        Atomically add ``amount`` base units to the tenant's counter.

        Runs inside the caller's transaction and does not commit; rolling the
        transaction back releases the reservation.
        """
        rt = _resource_type(resource_type)
        if amount < 1:
            raise ValidationError("Reservation amount must be positive", field="amount")
        limit = self.get_plan(tenant).limit_for(rt)
        cap = _cap(rt, limit)

        await self._ensure_counter(tenant.id, rt)
        result = await self.db.execute(
            update(TenantUsageCounter)
            .where(
                TenantUsageCounter.tenant_id == tenant.id,
                TenantUsageCounter.resource_type == rt.value,
                TenantUsageCounter.value + amount <= cap,
            )
            .values(value=TenantUsageCounter.value + amount)
            .execution_options(synchronize_session=False)
        )
        raw = await self._read_counter(tenant.id, rt) or 0
        current = _to_units(rt, raw)
        if result.rowcount == 0:
            logger.info("Reservation refused: tenant=%d %s+%d exceeds %d", tenant.id, rt.value, amount, cap)
            raise PlanLimitExceededError(rt.value, current, limit)
        return QuotaResult(resource_type=rt.value, allowed=raw < cap, current=current, limit=limit)

    async def release(self, tenant: Tenant, resource_type: str, amount: int = 1) -> None:
        """Give back ``amount`` base units; the counter never goes below zero."""
        rt = _resource_type(resource_type)
        await self.db.execute(
            update(TenantUsageCounter)
            .where(
                TenantUsageCounter.tenant_id == tenant.id,
                TenantUsageCounter.resource_type == rt.value,
            )
            .values(
                value=case(
                    (TenantUsageCounter.value >= amount, TenantUsageCounter.value - amount),
                    else_=0,
                )
            )
            .execution_options(synchronize_session=False)
        )

    async def sync_counter(self, tenant: Tenant, resource_type: str) -> int:
        """Reset a counter to the live count and commit. Returns the new base-unit value."""
        rt = _resource_type(resource_type)
        live = await self._live_usage(tenant.id, rt)
        await self._ensure_counter(tenant.id, rt)
        await self.db.execute(
            update(TenantUsageCounter)
            .where(
                TenantUsageCounter.tenant_id == tenant.id,
                TenantUsageCounter.resource_type == rt.value,
            )
            .values(value=live)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.info("Usage counter synced: tenant=%d %s=%d", tenant.id, rt.value, live)
        return live

    # ── Private helpers ──────────────────────────────────────────────────────

    async def _raw_usage(self, tenant_id: int, rt: ResourceType) -> int:
        if self.mode == "counter":
            value = await self._read_counter(tenant_id, rt)
            if value is not None:
                return value
        return await self._live_usage(tenant_id, rt)

    async def _live_usage(self, tenant_id: int, rt: ResourceType) -> int:
        counter = self.registry.get(rt)
        if counter is not None:
            return int(await counter(self.db, tenant_id))
        # no live source registered: the counter table is the only record
        return await self._read_counter(tenant_id, rt) or 0

    async def _read_counter(self, tenant_id: int, rt: ResourceType) -> int | None:
        result = await self.db.execute(
            select(TenantUsageCounter.value).where(
                TenantUsageCounter.tenant_id == tenant_id,
                TenantUsageCounter.resource_type == rt.value,
            )
        )
        value = result.scalar_one_or_none()
        return None if value is None else int(value)

    async def _ensure_counter(self, tenant_id: int, rt: ResourceType) -> None:
        """Create the counter row, seeded from the live count, if it is missing."""
        if await self._read_counter(tenant_id, rt) is not None:
            return
        seed = await self._live_usage(tenant_id, rt)
        try:
            async with self.db.begin_nested():
                self.db.add(TenantUsageCounter(tenant_id=tenant_id, resource_type=rt.value, value=seed))
        except IntegrityError:
            # a concurrent reservation created the row first
            logger.debug("Usage counter for tenant=%d %s already exists", tenant_id, rt.value)
