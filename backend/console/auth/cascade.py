"""
Scope cascade policy.

When the caller has no sufficient grant on a resource, a grant on the parent
scope may stand in for it. Each directed scope pair has its own fixed table
mapping the permission being checked to the permission required on the
parent. A permission mapped to None never cascades.

    secret       <- project       list/write/delete/admin only, never read
    secret       <- organization  never
    project      <- organization  every project permission
    organization <- project       never (permissions do not flow upward)

Reading secret data always requires a grant on the secret itself.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Final

from ..errors import AccessDeniedError
from .rbac import (
    ORGANIZATION_PERMISSIONS,
    PERMISSIONS_BY_SCOPE,
    SECRET_PERMISSIONS,
    GrantMap,
    Permission,
    Scope,
    has_access,
)

CascadeTable = Mapping[Permission, Permission | None]


SECRET_TO_PROJECT: Final[CascadeTable] = MappingProxyType({
    Permission.SECRETS_READ: None,
    Permission.SECRETS_LIST: Permission.PROJECTS_READ,
    Permission.SECRETS_WRITE: Permission.PROJECTS_WRITE,
    Permission.SECRETS_DELETE: Permission.PROJECTS_ADMIN,
    Permission.SECRETS_ADMIN: Permission.PROJECTS_ADMIN,
})

SECRET_TO_ORGANIZATION: Final[CascadeTable] = MappingProxyType(
    {permission: None for permission in SECRET_PERMISSIONS}
)

# Organization grants standing in for project grants.
PROJECT_TO_ORGANIZATION: Final[CascadeTable] = MappingProxyType({
    Permission.PROJECTS_READ: Permission.ORGANIZATIONS_READ,
    Permission.PROJECTS_LIST: Permission.ORGANIZATIONS_LIST,
    Permission.PROJECTS_WRITE: Permission.ORGANIZATIONS_WRITE,
    Permission.PROJECTS_DELETE: Permission.ORGANIZATIONS_DELETE,
    Permission.PROJECTS_ADMIN: Permission.ORGANIZATIONS_ADMIN,
    Permission.PROJECTS_CREATE: Permission.ORGANIZATIONS_CREATE,
})

ORGANIZATION_TO_PROJECT: Final[CascadeTable] = MappingProxyType(
    {permission: None for permission in ORGANIZATION_PERMISSIONS}
)

# Keyed by (scope being checked, scope the grants come from).
CASCADE_TABLES: Final[Mapping[tuple[Scope, Scope], CascadeTable]] = MappingProxyType({
    (Scope.SECRET, Scope.PROJECT): SECRET_TO_PROJECT,
    (Scope.SECRET, Scope.ORGANIZATION): SECRET_TO_ORGANIZATION,
    (Scope.PROJECT, Scope.ORGANIZATION): PROJECT_TO_ORGANIZATION,
    (Scope.ORGANIZATION, Scope.PROJECT): ORGANIZATION_TO_PROJECT,
})


def cascade_permission(table: CascadeTable, permission: Permission) -> Permission | None:
    """Return the parent-scope permission standing in for ``permission``, if any."""
    return table.get(permission)


def cascade_table(target: Scope, source: Scope) -> CascadeTable:
    """Return the table for grants at ``source`` satisfying checks at ``target``.

    Pairs without a table never cascade.
    """
    return CASCADE_TABLES.get((target, source), MappingProxyType({}))


def has_cascade_access(
    email: str,
    groups: Iterable[str],
    user_grants: GrantMap | None,
    group_grants: GrantMap | None,
    permission: Permission,
    table: CascadeTable,
) -> bool:
    """Check ``permission`` against parent-scope grants through ``table``."""
    target = cascade_permission(table, permission)
    if target is None:
        return False
    return has_access(email, groups, user_grants, group_grants, target)


def check_cascade_access(
    email: str,
    groups: Iterable[str],
    user_grants: GrantMap | None,
    group_grants: GrantMap | None,
    permission: Permission,
    table: CascadeTable,
) -> None:
    if not has_cascade_access(email, groups, user_grants, group_grants, permission, table):
        raise AccessDeniedError()


def _validate_tables() -> None:
    """Validate that every table maps target-scope keys to source-scope values."""
    errors = []
    scoped = PERMISSIONS_BY_SCOPE
    for (target, source), table in CASCADE_TABLES.items():
        for permission, substitute in table.items():
            if permission not in scoped[target]:
                errors.append(f"{target.value}<-{source.value}: key {permission.value} is not a {target.value} permission")
            if substitute is not None and substitute not in scoped[source]:
                errors.append(f"{target.value}<-{source.value}: {substitute.value} is not a {source.value} permission")

    if errors:
        raise RuntimeError(
            "Cascade table validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        )


_validate_tables()
