"""
Sharing updates.

Incoming grant lists are normalized before they are written back to a
resource: empty principals are dropped, each bucket is deduplicated, and on
creation the creator is guaranteed an owner grant so a new resource is never
left without anyone able to manage it.
"""
from __future__ import annotations

from collections.abc import Iterable
from typing import Final

from ..auth.grants import (
    SHARE_GROUPS_ANNOTATION,
    SHARE_ROLES_ANNOTATION,
    SHARE_USERS_ANNOTATION,
    Grant,
    deduplicate_grants,
    serialize_grants,
)
from ..auth.rbac import Role

GROUP_ANNOTATION_BY_KIND: Final[dict[str, str]] = {
    "groups": SHARE_GROUPS_ANNOTATION,
    "roles": SHARE_ROLES_ANNOTATION,
}


def ensure_creator_owner(grants: Iterable[Grant], email: str) -> list[Grant]:
    """Append an owner grant for ``email`` unless one already exists."""
    result = list(grants)
    email_key = email.lower()
    for grant in result:
        if grant.principal.lower() == email_key and grant.role is Role.OWNER:
            return result
    result.append(Grant(principal=email, role=Role.OWNER))
    return result


def prepare_sharing(
    user_grants: Iterable[Grant] | None,
    group_grants: Iterable[Grant] | None,
    *,
    creator_email: str | None = None,
    group_kind: str = "roles",
) -> dict[str, str]:
    """Build the annotation values for a sharing update.

    Args:
        user_grants: Per-user grants as submitted
        group_grants: Per-group grants as submitted
        creator_email: Set when creating a resource; the creator becomes an owner
        group_kind: "roles" for projects and organizations, "groups" for secrets

    Returns:
        dict[str, str]: Annotation key to serialized grant array

    Raises:
        ValueError: If ``group_kind`` is unknown
    """
    if group_kind not in GROUP_ANNOTATION_BY_KIND:
        raise ValueError(
            f"Invalid group_kind '{group_kind}'. "
            f"Must be one of: {', '.join(sorted(GROUP_ANNOTATION_BY_KIND))}"
        )

    users = deduplicate_grants(user_grants)
    if creator_email:
        users = deduplicate_grants(ensure_creator_owner(users, creator_email))
    groups = deduplicate_grants(group_grants)

    return {
        SHARE_USERS_ANNOTATION: serialize_grants(users),
        GROUP_ANNOTATION_BY_KIND[group_kind]: serialize_grants(groups),
    }
