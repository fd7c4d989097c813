"""
Role and permission model for sharing grants.

Every resource (organization, project, secret) carries its own per-user and
per-group sharing grants. A grant names a role, and the role decides which
permissions the principal holds on that resource:

- Roles are ordered by level (viewer < editor < owner)
- A higher role holds every permission of the lower roles
- Comparisons always use the level, never the role name

Role names only exist on the wire. ``role_from_name`` is the single parse
boundary and ``role_name`` the single serialize boundary.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum, IntEnum
from typing import Final

from ..errors import AccessDeniedError


# ============================================================================
# ROLES
# ============================================================================

class Role(IntEnum):
    """Sharing roles. The integer value is the role level."""

    UNSPECIFIED = 0
    VIEWER = 1
    EDITOR = 2
    OWNER = 3


_ROLE_BY_NAME: Final[dict[str, Role]] = {
    "viewer": Role.VIEWER,
    "editor": Role.EDITOR,
    "owner": Role.OWNER,
}


def role_from_name(name: object) -> Role:
    """Parse a wire role name, case-insensitively.

    Unknown names, empty strings and non-strings all map to UNSPECIFIED.
    """
    if not isinstance(name, str):
        return Role.UNSPECIFIED
    return _ROLE_BY_NAME.get(name.lower(), Role.UNSPECIFIED)


def as_role(value: Role | str) -> Role:
    """Accept either a Role or a wire role name."""
    if isinstance(value, Role):
        return value
    return role_from_name(value)


def role_name(role: Role) -> str:
    return role.name.lower()


def role_level(role: Role) -> int:
    return int(role)


# Active grants keyed by principal. Values may still be wire names when they
# come from an external resolver.
GrantMap = Mapping[str, Role | str]


# ============================================================================
# PERMISSIONS
# ============================================================================

class Scope(str, Enum):
    """Resource tiers, nested organization > project > secret."""

    SECRET = "secret"
    PROJECT = "project"
    ORGANIZATION = "organization"


class Permission(str, Enum):
    SECRETS_READ = "secrets.read"
    SECRETS_LIST = "secrets.list"
    SECRETS_WRITE = "secrets.write"
    SECRETS_DELETE = "secrets.delete"
    SECRETS_ADMIN = "secrets.admin"

    PROJECTS_READ = "projects.read"
    PROJECTS_LIST = "projects.list"
    PROJECTS_WRITE = "projects.write"
    PROJECTS_DELETE = "projects.delete"
    PROJECTS_ADMIN = "projects.admin"
    PROJECTS_CREATE = "projects.create"

    ORGANIZATIONS_READ = "organizations.read"
    ORGANIZATIONS_LIST = "organizations.list"
    ORGANIZATIONS_WRITE = "organizations.write"
    ORGANIZATIONS_DELETE = "organizations.delete"
    ORGANIZATIONS_ADMIN = "organizations.admin"
    ORGANIZATIONS_CREATE = "organizations.create"


SECRET_PERMISSIONS: Final[frozenset[Permission]] = frozenset({
    Permission.SECRETS_READ,
    Permission.SECRETS_LIST,
    Permission.SECRETS_WRITE,
    Permission.SECRETS_DELETE,
    Permission.SECRETS_ADMIN,
})

PROJECT_PERMISSIONS: Final[frozenset[Permission]] = frozenset({
    Permission.PROJECTS_READ,
    Permission.PROJECTS_LIST,
    Permission.PROJECTS_WRITE,
    Permission.PROJECTS_DELETE,
    Permission.PROJECTS_ADMIN,
    Permission.PROJECTS_CREATE,
})

ORGANIZATION_PERMISSIONS: Final[frozenset[Permission]] = frozenset({
    Permission.ORGANIZATIONS_READ,
    Permission.ORGANIZATIONS_LIST,
    Permission.ORGANIZATIONS_WRITE,
    Permission.ORGANIZATIONS_DELETE,
    Permission.ORGANIZATIONS_ADMIN,
    Permission.ORGANIZATIONS_CREATE,
})

PERMISSIONS_BY_SCOPE: Final[dict[Scope, frozenset[Permission]]] = {
    Scope.SECRET: SECRET_PERMISSIONS,
    Scope.PROJECT: PROJECT_PERMISSIONS,
    Scope.ORGANIZATION: ORGANIZATION_PERMISSIONS,
}


def scope_of(permission: Permission) -> Scope:
    for scope, permissions in PERMISSIONS_BY_SCOPE.items():
        if permission in permissions:
            return scope
    raise ValueError(f"Permission '{permission}' does not belong to a scope")


# ============================================================================
# ROLE-PERMISSION TABLE
# ============================================================================

_VIEWER_PERMISSIONS: Final[frozenset[Permission]] = frozenset({
    Permission.SECRETS_READ,
    Permission.SECRETS_LIST,
    Permission.PROJECTS_READ,
    Permission.PROJECTS_LIST,
    Permission.ORGANIZATIONS_READ,
    Permission.ORGANIZATIONS_LIST,
})

_EDITOR_PERMISSIONS: Final[frozenset[Permission]] = _VIEWER_PERMISSIONS | {
    Permission.SECRETS_WRITE,
    Permission.PROJECTS_WRITE,
    Permission.ORGANIZATIONS_WRITE,
}

_OWNER_PERMISSIONS: Final[frozenset[Permission]] = _EDITOR_PERMISSIONS | {
    Permission.SECRETS_DELETE,
    Permission.SECRETS_ADMIN,
    Permission.PROJECTS_DELETE,
    Permission.PROJECTS_ADMIN,
    Permission.PROJECTS_CREATE,
    Permission.ORGANIZATIONS_DELETE,
    Permission.ORGANIZATIONS_ADMIN,
    Permission.ORGANIZATIONS_CREATE,
}

ROLE_PERMISSIONS: Final[dict[Role, frozenset[Permission]]] = {
    Role.UNSPECIFIED: frozenset(),
    Role.VIEWER: _VIEWER_PERMISSIONS,
    Role.EDITOR: _EDITOR_PERMISSIONS,
    Role.OWNER: _OWNER_PERMISSIONS,
}


def has_permission(role: Role, permission: Permission) -> bool:
    return permission in ROLE_PERMISSIONS.get(role, frozenset())


# ============================================================================
# GRANT EVALUATION
# ============================================================================

def _best_level(
    email: str,
    groups: Iterable[str],
    user_grants: GrantMap | None,
    group_grants: GrantMap | None,
) -> int:
    """Highest role level among grants matching the caller, case-insensitively."""
    best = 0

    if user_grants:
        email_key = email.lower()
        for principal, role in user_grants.items():
            if principal.lower() == email_key:
                best = max(best, role_level(as_role(role)))

    if group_grants:
        group_keys = {group.lower() for group in groups}
        for principal, role in group_grants.items():
            if principal.lower() in group_keys:
                best = max(best, role_level(as_role(role)))

    return best


def best_role_from_grants(
    email: str,
    groups: Iterable[str],
    user_grants: GrantMap | None,
    group_grants: GrantMap | None,
) -> Role:
    """Return the highest role the caller holds, or UNSPECIFIED without a match."""
    return Role(_best_level(email, groups, user_grants, group_grants))


def has_access(
    email: str,
    groups: Iterable[str],
    user_grants: GrantMap | None,
    group_grants: GrantMap | None,
    permission: Permission,
) -> bool:
    """Check a permission against the caller's best matching grant.

    Only the top matching level is tested. The role table is monotonic, so a
    permission missing at the top level is missing at every lower level too.
    """
    level = _best_level(email, groups, user_grants, group_grants)
    if level <= 0:
        return False
    return has_permission(Role(level), permission)


def check_access_grants(
    email: str,
    groups: Iterable[str],
    user_grants: GrantMap | None,
    group_grants: GrantMap | None,
    permission: Permission,
) -> None:
    """Raise AccessDeniedError unless the grants authorize the permission."""
    if not has_access(email, groups, user_grants, group_grants, permission):
        raise AccessDeniedError()


# ============================================================================
# CONTRACT VALIDATION
# ============================================================================

def _validate_contract() -> None:
    """Validate the role table at import time."""
    errors = []

    if ROLE_PERMISSIONS.get(Role.UNSPECIFIED):
        errors.append("UNSPECIFIED must not grant any permission")

    for role in Role:
        if role not in ROLE_PERMISSIONS:
            errors.append(f"Role '{role_name(role)}' has no permission entry")

    all_permissions = frozenset().union(*PERMISSIONS_BY_SCOPE.values())
    for role, permissions in ROLE_PERMISSIONS.items():
        unknown = permissions - all_permissions
        if unknown:
            errors.append(f"Role '{role_name(role)}' has permissions outside any scope: {unknown}")

    ordered = sorted(ROLE_PERMISSIONS, key=role_level)
    for lower, higher in zip(ordered, ordered[1:]):
        missing = ROLE_PERMISSIONS[lower] - ROLE_PERMISSIONS[higher]
        if missing:
            errors.append(
                f"Role '{role_name(higher)}' is missing permissions of "
                f"'{role_name(lower)}': {sorted(missing)}"
            )

    if errors:
        raise RuntimeError(
            "Role table validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        )


_validate_contract()
