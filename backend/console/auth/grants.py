"""
Sharing grants stored on resources.

Grants are persisted as JSON arrays in resource annotations, one array per
principal kind:

    [{"principal": "alice@example.com", "role": "owner", "nbf": 1700000000, "exp": 1800000000}]

``nbf`` (not before) and ``exp`` (expires at) are optional Unix seconds. A
grant is active from ``nbf`` inclusive until ``exp`` exclusive.
"""
from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Final

import pydantic
from pydantic import BaseModel, ConfigDict, StrictInt, StrictStr, TypeAdapter, field_serializer, field_validator

from ..errors import MalformedGrantsError
from .rbac import Role, role_from_name, role_level, role_name

SHARE_USERS_ANNOTATION: Final[str] = "console.holos.run/share-users"
SHARE_GROUPS_ANNOTATION: Final[str] = "console.holos.run/share-groups"
# Later schema name for the group bucket, used on projects and organizations.
SHARE_ROLES_ANNOTATION: Final[str] = "console.holos.run/share-roles"

GROUP_GRANT_ANNOTATIONS: Final[tuple[str, ...]] = (
    SHARE_ROLES_ANNOTATION,
    SHARE_GROUPS_ANNOTATION,
)


class Grant(BaseModel):
    model_config = ConfigDict(frozen=True)

    principal: StrictStr = ""
    role: Role = Role.UNSPECIFIED
    nbf: StrictInt | None = None
    exp: StrictInt | None = None

    @field_validator("principal", mode="before")
    @classmethod
    def _null_principal(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("role", mode="before")
    @classmethod
    def _parse_role(cls, value: object) -> Role:
        if isinstance(value, Role):
            return value
        if value is None:
            return Role.UNSPECIFIED
        if not isinstance(value, str):
            raise ValueError("role must be a string")
        return role_from_name(value)

    @field_serializer("role")
    def _serialize_role(self, role: Role) -> str:
        return role_name(role)

    def is_active(self, now_unix: int) -> bool:
        if self.nbf is not None and self.nbf > now_unix:
            return False
        if self.exp is not None and self.exp <= now_unix:
            return False
        return True


_GRANT_LIST: Final[TypeAdapter[list[Grant] | None]] = TypeAdapter(list[Grant] | None)
_GRANT_LIST_OUT: Final[TypeAdapter[list[Grant]]] = TypeAdapter(list[Grant])


# ============================================================================
# CODEC
# ============================================================================

def parse_grants(annotations: Mapping[str, str] | None, key: str) -> list[Grant] | None:
    """Parse one grant annotation.

    Returns None when the annotation is absent; absence is not an error.

    Raises:
        MalformedGrantsError: If the annotation value is not a valid grant array
    """
    if annotations is None:
        return None
    value = annotations.get(key)
    if value is None:
        return None
    try:
        return _GRANT_LIST.validate_json(value)
    except pydantic.ValidationError as exc:
        raise MalformedGrantsError(f"invalid {key} annotation: {exc}", field=key) from exc


def serialize_grants(grants: Iterable[Grant]) -> str:
    return _GRANT_LIST_OUT.dump_json(list(grants), exclude_none=True).decode()


def parse_group_grants(annotations: Mapping[str, str] | None) -> list[Grant] | None:
    """Parse the group bucket, preferring the share-roles key over share-groups."""
    if annotations is None:
        return None
    for key in GROUP_GRANT_ANNOTATIONS:
        if key in annotations:
            return parse_grants(annotations, key)
    return None


# ============================================================================
# TIME WINDOW
# ============================================================================

def unix_seconds(now: datetime) -> int:
    """Whole Unix seconds of ``now``; a naive datetime is read as UTC."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return math.floor(now.timestamp())


def active_grants(grants: Iterable[Grant] | None, now: datetime) -> dict[str, Role]:
    """Map principal to role for grants active at ``now``.

    Empty principals are dropped. When a principal appears more than once the
    last active grant wins.
    """
    now_unix = unix_seconds(now)
    result: dict[str, Role] = {}
    for grant in grants or ():
        if not grant.is_active(now_unix):
            continue
        if grant.principal:
            result[grant.principal] = grant.role
    return result


# ============================================================================
# DEDUPLICATION
# ============================================================================

def deduplicate_grants(grants: Iterable[Grant] | None) -> list[Grant]:
    """Collapse grants to one record per principal, keeping the highest role.

    The winning record keeps its own time window. Ties keep the first
    occurrence, output order follows the first appearance of each principal.
    Principals are compared exactly as stored.
    """
    best: dict[str, Grant] = {}
    for grant in grants or ():
        if not grant.principal:
            continue
        current = best.get(grant.principal)
        if current is None or role_level(grant.role) > role_level(current.role):
            best[grant.principal] = grant
    return list(best.values())


# ============================================================================
# RESOURCE GRANTS
# ============================================================================

class ResourceGrants(BaseModel):
    """Both grant buckets of one resource, plus the name of its parent scope."""

    model_config = ConfigDict(frozen=True)

    name: str
    parent: str | None = None
    user_grants: list[Grant] | None = None
    group_grants: list[Grant] | None = None

    @classmethod
    def from_annotations(
        cls,
        name: str,
        annotations: Mapping[str, str] | None,
        *,
        parent: str | None = None,
    ) -> "ResourceGrants":
        """Load grants from resource annotations.

        Raises:
            MalformedGrantsError: If either bucket is malformed
        """
        return cls(
            name=name,
            parent=parent,
            user_grants=parse_grants(annotations, SHARE_USERS_ANNOTATION),
            group_grants=parse_group_grants(annotations),
        )

    def active(self, now: datetime) -> tuple[dict[str, Role], dict[str, Role]]:
        return active_grants(self.user_grants, now), active_grants(self.group_grants, now)
