from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timezone
from typing import Protocol

from ...auth.grants import ResourceGrants
from ...auth.rbac import Role

ActiveGrantMaps = tuple[dict[str, Role], dict[str, Role]]
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class GrantResolver(Protocol):
    """Resolve the user and group grants of a parent resource active at ``now``."""

    async def __call__(self, name: str, now: datetime) -> ActiveGrantMaps:
        ...


class AnnotationSource(Protocol):
    """Fetch the annotations of a stored resource; None when it has none."""

    async def __call__(self, name: str) -> Mapping[str, str] | None:
        ...


class AnnotationGrantResolver:
    """GrantResolver reading grants from resource annotations.

    Each call reads the annotations fresh from the source; nothing is cached.
    Grants are filtered at the instant of the check that asked for them.
    Malformed annotations raise MalformedGrantsError to the caller.
    """

    def __init__(
        self,
        source: AnnotationSource | Callable[[str], Awaitable[Mapping[str, str] | None]],
    ):
        self.source = source

    async def __call__(self, name: str, now: datetime) -> ActiveGrantMaps:
        annotations = await self.source(name)
        grants = ResourceGrants.from_annotations(name, annotations)
        return grants.active(now)
