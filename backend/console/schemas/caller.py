from pydantic import BaseModel, Field


class Caller(BaseModel):
    """Authenticated identity, as extracted from the caller's token."""

    email: str = Field(..., min_length=1)
    groups: list[str] = Field(default_factory=list)
    subject: str | None = None
