"""Constants package: system roles and the plan catalog."""

from .plans import DEFAULT_PLAN, PLAN_CATALOG, PlanLimit, PlanTier, ResourceType, get_plan_limits, list_plans
from .roles import (
    DEFAULT_ROLE,
    OWNER_ROLE,
    ROLE_HIERARCHY,
    CustomRoleRef,
    Role,
    SystemRole,
    SystemRoleRef,
    is_higher_role,
    is_system_role,
)

__all__ = [
    # Role constants
    "SystemRole",
    "SystemRoleRef",
    "CustomRoleRef",
    "Role",
    "DEFAULT_ROLE",
    "OWNER_ROLE",
    "ROLE_HIERARCHY",
    "is_higher_role",
    "is_system_role",
    # Plan constants
    "PlanTier",
    "PlanLimit",
    "ResourceType",
    "DEFAULT_PLAN",
    "PLAN_CATALOG",
    "get_plan_limits",
    "list_plans",
]
