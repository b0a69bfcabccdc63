from .custom_role import CustomRole, RolePermission
from .membership import TenantMembership
from .tenant import DomainConfig, DomainState, Tenant, TenantStatus
from .usage_counter import TenantUsageCounter
from .user import User
from .user_permission import UserPermission

__all__ = [
    "CustomRole",
    "DomainConfig",
    "DomainState",
    "RolePermission",
    "Tenant",
    "TenantMembership",
    "TenantStatus",
    "TenantUsageCounter",
    "User",
    "UserPermission",
]
