"""
Baseline permission table for system roles

Grants are ``resource.action`` tokens. ``resource.*`` grants every action on
a resource and ``*`` grants everything. The table is built once at import and
exposed read-only; custom roles and per-user overrides layer on top of it at
evaluation time, never by mutating it.
"""

from enum import Enum
from types import MappingProxyType

from origo.constants.roles import SystemRole

WILDCARD = "*"


class Resource(str, Enum):
    PAGES = "pages"
    POSTS = "posts"
    MEDIA = "media"
    COURSES = "courses"
    USERS = "users"
    ROLES = "roles"
    ORGANIZATION = "organization"
    SETTINGS = "settings"
    ANALYTICS = "analytics"
    API_KEYS = "api_keys"
    CATEGORIES = "categories"
    TAGS = "tags"


class Action(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    PUBLISH = "publish"
    UNPUBLISH = "unpublish"
    INVITE = "invite"
    MANAGE = "manage"
    ADMIN = "admin"


RESOURCES = frozenset(r.value for r in Resource)
ACTIONS = frozenset(a.value for a in Action)

# Every concrete permission token, for display and validation
ALL_PERMISSIONS = sorted(f"{r}.{a}" for r in RESOURCES for a in ACTIONS)


ROLE_PERMISSIONS: MappingProxyType[SystemRole, frozenset[str]] = MappingProxyType(
    {
        SystemRole.SUPERADMIN: frozenset({"*"}),
        SystemRole.ADMIN: frozenset(
            {
                "pages.*",
                "posts.*",
                "media.*",
                "courses.*",
                "users.create",
                "users.read",
                "users.update",
                "users.delete",
                "users.invite",
                "roles.*",
                "organization.read",
                "organization.update",
                "settings.*",
                "analytics.*",
                "api_keys.*",
                "categories.*",
                "tags.*",
            }
        ),
        SystemRole.EDITOR: frozenset(
            {
                "pages.create",
                "pages.read",
                "pages.update",
                "pages.publish",
                "pages.unpublish",
                "posts.create",
                "posts.read",
                "posts.update",
                "posts.publish",
                "posts.unpublish",
                "media.create",
                "media.read",
                "media.update",
                "courses.create",
                "courses.read",
                "courses.update",
                "courses.publish",
                "courses.unpublish",
                "categories.create",
                "categories.read",
                "categories.update",
                "tags.create",
                "tags.read",
                "tags.update",
                "analytics.read",
            }
        ),
        SystemRole.READER: frozenset(
            {
                "pages.read",
                "posts.read",
                "media.read",
                "courses.read",
                "categories.read",
                "tags.read",
            }
        ),
        SystemRole.VIEWER: frozenset(
            {
                "pages.read",
                "posts.read",
                "media.read",
                "courses.read",
            }
        ),
    }
)


def permission_key(resource: str, action: str) -> str:
    return f"{resource}.{action}"


def split_permission_key(key: str) -> tuple[str, str]:
    """
    Split ``"resource.action"`` into its parts.

    ``"*"`` is the global wildcard and splits to ``("*", "*")``.
    """
    if key == WILDCARD:
        return WILDCARD, WILDCARD
    resource, sep, action = key.partition(".")
    if not sep or not resource or not action:
        raise ValueError(f"Invalid permission token: {key!r}")
    return resource, action


def candidate_keys(resource: str, action: str) -> tuple[str, str, str]:
    """Lookup keys from most to least specific: exact, resource wildcard, global wildcard."""
    return permission_key(resource, action), permission_key(resource, WILDCARD), WILDCARD


def get_role_permissions(role: str) -> frozenset[str]:
    """Return the baseline grants of a system role."""
    try:
        return ROLE_PERMISSIONS[SystemRole(role)]
    except ValueError:
        raise ValueError(f"Invalid role: {role}") from None


def role_grants(role: str, resource: str, action: str) -> bool | None:
    """
    Evaluate the baseline table for one role.

    Returns True on the first matching grant in exact → ``resource.*`` → ``*``
    order, or None when the table has no opinion.
    """
    grants = get_role_permissions(role)
    for key in candidate_keys(resource, action):
        if key in grants:
            return True
    return None


def validate_permission(resource: str, action: str) -> None:
    """
    Reject tokens outside the known catalogue.

    Wildcards are accepted: ``resource.*`` for a known resource, and the
    global ``*`` only as ``("*", "*")``.
    """
    if resource == WILDCARD:
        if action != WILDCARD:
            raise ValueError("The global wildcard must be written as '*'")
        return
    if resource not in RESOURCES:
        raise ValueError(f"Unknown resource: {resource!r}")
    if action != WILDCARD and action not in ACTIONS:
        raise ValueError(f"Unknown action: {action!r}")
