"""
Plan catalog

Plan limits are billing-relevant, so they are compiled in rather than stored
in the database. The catalog is a read-only mapping built once at import.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType


class PlanTier(str, Enum):
    FREE = "free"
    BASIC = "basic"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


class ResourceType(str, Enum):
    """Resource types governed by plan quotas."""

    USERS = "users"
    PAGES = "pages"
    POSTS = "posts"
    COURSES = "courses"
    STORAGE = "storage"


DEFAULT_PLAN = PlanTier.FREE


@dataclass(frozen=True)
class PlanLimit:
    tier: PlanTier
    name: str
    price: float
    description: str
    max_users: int
    max_pages: int
    max_posts: int
    max_courses: int
    max_storage_mb: int
    custom_domain: bool
    white_label: bool
    advanced_analytics: bool
    api_access: bool
    support: str

    def limit_for(self, resource_type: ResourceType) -> int:
        return {
            ResourceType.USERS: self.max_users,
            ResourceType.PAGES: self.max_pages,
            ResourceType.POSTS: self.max_posts,
            ResourceType.COURSES: self.max_courses,
            ResourceType.STORAGE: self.max_storage_mb,
        }[ResourceType(resource_type)]


PLAN_CATALOG: MappingProxyType[PlanTier, PlanLimit] = MappingProxyType(
    {
        PlanTier.FREE: PlanLimit(
            tier=PlanTier.FREE,
            name="Free",
            price=0,
            description="For trying the platform or personal projects",
            max_users=1,
            max_pages=5,
            max_posts=10,
            max_courses=0,
            max_storage_mb=100,
            custom_domain=False,
            white_label=False,
            advanced_analytics=False,
            api_access=False,
            support="email",
        ),
        PlanTier.BASIC: PlanLimit(
            tier=PlanTier.BASIC,
            name="Basic",
            price=9.99,
            description="For blogs and small websites",
            max_users=3,
            max_pages=20,
            max_posts=50,
            max_courses=1,
            max_storage_mb=1000,
            custom_domain=True,
            white_label=False,
            advanced_analytics=False,
            api_access=True,
            support="email",
        ),
        PlanTier.PROFESSIONAL: PlanLimit(
            tier=PlanTier.PROFESSIONAL,
            name="Professional",
            price=29.99,
            description="For businesses and professional projects",
            max_users=10,
            max_pages=100,
            max_posts=500,
            max_courses=10,
            max_storage_mb=10000,
            custom_domain=True,
            white_label=True,
            advanced_analytics=True,
            api_access=True,
            support="priority",
        ),
        PlanTier.ENTERPRISE: PlanLimit(
            tier=PlanTier.ENTERPRISE,
            name="Enterprise",
            price=99.99,
            description="For organizations with advanced needs",
            max_users=50,
            max_pages=1000,
            max_posts=5000,
            max_courses=100,
            max_storage_mb=100000,
            custom_domain=True,
            white_label=True,
            advanced_analytics=True,
            api_access=True,
            support="24/7",
        ),
    }
)


def get_plan_limits(plan: str | None) -> PlanLimit:
    """
    Return the limits for a plan tier.

    Tenants without a plan are on the default tier. Unknown tier names raise
    ValueError rather than silently granting a different tier's limits.
    """
    if not plan:
        return PLAN_CATALOG[DEFAULT_PLAN]
    return PLAN_CATALOG[PlanTier(plan)]


def list_plans() -> list[PlanLimit]:
    return list(PLAN_CATALOG.values())
