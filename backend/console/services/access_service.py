from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Final

from ..errors import AccessDeniedError, MalformedGrantsError
from ..auth.cascade import cascade_permission, cascade_table, has_cascade_access
from ..auth.grants import ResourceGrants
from ..auth.rbac import (
    Permission,
    Role,
    Scope,
    best_role_from_grants,
    has_access,
    role_level,
    scope_of,
)
from ..domain.ports.grants import ActiveGrantMaps, Clock, GrantResolver, utc_now
from ..schemas.caller import Caller
from ..schemas.resource import StoredResource

logger = logging.getLogger("console.authz")

PARENT_SCOPE: Final[dict[Scope, Scope]] = {
    Scope.SECRET: Scope.PROJECT,
    Scope.PROJECT: Scope.ORGANIZATION,
}

LIST_PERMISSION: Final[dict[Scope, Permission]] = {
    Scope.SECRET: Permission.SECRETS_LIST,
    Scope.PROJECT: Permission.PROJECTS_LIST,
    Scope.ORGANIZATION: Permission.ORGANIZATIONS_LIST,
}

# Parent grants fetched during one call, keyed by (scope, name). None marks a
# resolver failure.
_ParentCache = dict[tuple[Scope, str], ActiveGrantMaps | None]


class AccessService:
    """Authorization decisions for secrets, projects and organizations.

    Every check reads the resource's own grants first. Only when they do not
    authorize the caller are the parent's grants fetched and evaluated through
    the cascade table for that scope pair. Direct grants and cascaded grants
    are never merged into one scan.

    Resolvers are optional: without a project resolver secret checks use
    direct grants only, without an organization resolver project checks do.
    """

    def __init__(
        self,
        *,
        project_grants: GrantResolver | None = None,
        org_grants: GrantResolver | None = None,
        clock: Clock = utc_now,
    ):
        self.clock = clock
        self._resolvers: dict[Scope, GrantResolver] = {}
        if project_grants is not None:
            self._resolvers[Scope.PROJECT] = project_grants
        if org_grants is not None:
            self._resolvers[Scope.ORGANIZATION] = org_grants

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    async def check_secret_access(
        self,
        caller: Caller,
        secret: StoredResource,
        permission: Permission,
        now: datetime | None = None,
    ) -> None:
        await self.require(caller, Scope.SECRET, secret, permission, now)

    async def check_project_access(
        self,
        caller: Caller,
        project: StoredResource,
        permission: Permission,
        now: datetime | None = None,
    ) -> None:
        await self.require(caller, Scope.PROJECT, project, permission, now)

    async def check_organization_access(
        self,
        caller: Caller,
        organization: StoredResource,
        permission: Permission,
        now: datetime | None = None,
    ) -> None:
        await self.require(caller, Scope.ORGANIZATION, organization, permission, now)

    async def require(
        self,
        caller: Caller,
        scope: Scope,
        resource: StoredResource,
        permission: Permission,
        now: datetime | None = None,
    ) -> None:
        """Raise AccessDeniedError unless the caller holds ``permission`` on ``resource``.

        Raises:
            AccessDeniedError: If access is denied or the resource's grants are malformed
            ValueError: If ``permission`` does not belong to ``scope``
        """
        if not await self.is_authorized(caller, scope, resource, permission, now):
            logger.warning(
                "access_denied scope=%s resource=%s permission=%s email=%s",
                scope.value,
                resource.name,
                permission.value,
                caller.email,
            )
            raise AccessDeniedError()

    async def is_authorized(
        self,
        caller: Caller,
        scope: Scope,
        resource: StoredResource,
        permission: Permission,
        now: datetime | None = None,
    ) -> bool:
        """Return True when the caller holds ``permission`` on ``resource``.

        Malformed grants on the resource deny access.
        """
        try:
            return await self._authorize(caller, scope, resource, permission, now, {})
        except AccessDeniedError:
            return False

    async def check_project_create_access(
        self,
        caller: Caller,
        organization: str,
        projects: Iterable[StoredResource],
        now: datetime | None = None,
    ) -> None:
        """Allow project creation for owners of an existing project or of the organization.

        Projects with malformed grants are skipped.

        Raises:
            AccessDeniedError: If no grant authorizes project creation
        """
        now = now or self.clock()
        permission = Permission.PROJECTS_CREATE
        for project in projects:
            try:
                grants = self.load_grants(Scope.PROJECT, project)
            except AccessDeniedError:
                continue
            users, groups = grants.active(now)
            if has_access(caller.email, caller.groups, users, groups, permission):
                return

        resolver = self._resolvers.get(Scope.ORGANIZATION)
        if organization and resolver is not None:
            parent = await self._resolve(resolver, Scope.ORGANIZATION, organization, now, {})
            if parent is not None:
                org_users, org_groups = parent
                table = cascade_table(Scope.PROJECT, Scope.ORGANIZATION)
                if has_cascade_access(
                    caller.email, caller.groups, org_users, org_groups, permission, table
                ):
                    return

        logger.warning(
            "access_denied scope=%s organization=%s permission=%s email=%s",
            Scope.PROJECT.value,
            organization,
            permission.value,
            caller.email,
        )
        raise AccessDeniedError()

    # ------------------------------------------------------------------
    # Listing and roles
    # ------------------------------------------------------------------

    async def visible_resources(
        self,
        caller: Caller,
        scope: Scope,
        resources: Iterable[StoredResource],
        now: datetime | None = None,
    ) -> list[StoredResource]:
        """Filter ``resources`` down to those the caller may list."""
        now = now or self.clock()
        permission = LIST_PERMISSION[scope]
        parents: _ParentCache = {}
        visible = []
        for resource in resources:
            try:
                allowed = await self._authorize(caller, scope, resource, permission, now, parents)
            except AccessDeniedError:
                continue
            if allowed:
                visible.append(resource)
        return visible

    async def effective_role(
        self,
        caller: Caller,
        scope: Scope,
        resource: StoredResource,
        now: datetime | None = None,
    ) -> Role:
        """Best role of the caller on ``resource``.

        Projects also consider the organization's grants; the higher role wins.
        Secrets and organizations report their direct role only.

        Raises:
            AccessDeniedError: If the resource's grants are malformed
        """
        now = now or self.clock()
        users, groups = self.load_grants(scope, resource).active(now)
        role = best_role_from_grants(caller.email, caller.groups, users, groups)

        resolver = self._resolvers.get(Scope.ORGANIZATION)
        if scope is Scope.PROJECT and resource.parent and resolver is not None:
            parent = await self._resolve(resolver, Scope.ORGANIZATION, resource.parent, now, {})
            if parent is not None:
                org_role = best_role_from_grants(caller.email, caller.groups, *parent)
                if role_level(org_role) > role_level(role):
                    return org_role
        return role

    def load_grants(self, scope: Scope, resource: StoredResource) -> ResourceGrants:
        """Parse the resource's grants, failing closed when they are malformed.

        Raises:
            AccessDeniedError: If the stored grants cannot be parsed
        """
        try:
            return ResourceGrants.from_annotations(
                resource.name, resource.annotations, parent=resource.parent
            )
        except MalformedGrantsError as exc:
            logger.warning(
                "malformed_grants scope=%s resource=%s field=%s",
                scope.value,
                resource.name,
                exc.field,
            )
            raise AccessDeniedError() from exc

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _authorize(
        self,
        caller: Caller,
        scope: Scope,
        resource: StoredResource,
        permission: Permission,
        now: datetime | None,
        parents: _ParentCache,
    ) -> bool:
        if scope_of(permission) is not scope:
            raise ValueError(
                f"Permission '{permission.value}' cannot be checked on a {scope.value}"
            )
        now = now or self.clock()

        users, groups = self.load_grants(scope, resource).active(now)
        if has_access(caller.email, caller.groups, users, groups, permission):
            return True

        parent_scope = PARENT_SCOPE.get(scope)
        if parent_scope is None or not resource.parent:
            return False
        resolver = self._resolvers.get(parent_scope)
        if resolver is None:
            return False

        table = cascade_table(scope, parent_scope)
        if cascade_permission(table, permission) is None:
            return False

        parent = await self._resolve(resolver, parent_scope, resource.parent, now, parents)
        if parent is None:
            return False
        parent_users, parent_groups = parent
        return has_cascade_access(
            caller.email, caller.groups, parent_users, parent_groups, permission, table
        )

    async def _resolve(
        self,
        resolver: GrantResolver,
        scope: Scope,
        name: str,
        now: datetime,
        parents: _ParentCache,
    ) -> ActiveGrantMaps | None:
        """Fetch parent grants active at ``now``; a failing resolver only disables the cascade."""
        key = (scope, name)
        if key in parents:
            return parents[key]
        try:
            result: ActiveGrantMaps | None = await resolver(name, now)
        except Exception as exc:
            logger.warning(
                "grant_resolver_failed scope=%s resource=%s error=%s",
                scope.value,
                name,
                exc,
            )
            result = None
        parents[key] = result
        return result
