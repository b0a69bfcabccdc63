"""
Role constants

System roles are code-level policy: a closed set, never stored as rows and
never editable. A member's role inside a tenant is either one of these or a
reference to a tenant-defined custom role, expressed as the ``Role`` union.
"""

from dataclasses import dataclass
from enum import Enum


class SystemRole(str, Enum):
    """Enumeration of built-in role names."""

    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    EDITOR = "editor"
    READER = "reader"
    VIEWER = "viewer"


# Role given to members added without an explicit role
DEFAULT_ROLE = SystemRole.VIEWER

# Role given to the member who creates a tenant
OWNER_ROLE = SystemRole.ADMIN

# Higher number = more privileges
ROLE_HIERARCHY = {
    SystemRole.VIEWER: 1,
    SystemRole.READER: 2,
    SystemRole.EDITOR: 3,
    SystemRole.ADMIN: 4,
    SystemRole.SUPERADMIN: 5,
}


def is_system_role(name: str) -> bool:
    try:
        SystemRole(name)
    except ValueError:
        return False
    return True


def is_higher_role(role1: str, role2: str) -> bool:
    """
    Check if role1 has higher privileges than role2.

    Unknown role names rank below every system role.
    """
    rank1 = ROLE_HIERARCHY.get(SystemRole(role1), 0) if is_system_role(role1) else 0
    rank2 = ROLE_HIERARCHY.get(SystemRole(role2), 0) if is_system_role(role2) else 0
    return rank1 > rank2


@dataclass(frozen=True)
class SystemRoleRef:
    """A membership role that is one of the built-in system roles."""

    role: SystemRole

    @property
    def name(self) -> str:
        return self.role.value


@dataclass(frozen=True)
class CustomRoleRef:
    """A membership role that points at a tenant-defined custom role."""

    role_id: int


Role = SystemRoleRef | CustomRoleRef
