from pydantic import BaseModel, Field


class StoredResource(BaseModel):
    """A resource as read from the backing store, before its grants are parsed."""

    name: str = Field(..., min_length=1)
    # Organization of a project, project of a secret; None for organizations.
    parent: str | None = None
    annotations: dict[str, str] = Field(default_factory=dict)
