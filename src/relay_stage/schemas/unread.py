"""Unread counter schemas."""

from pydantic import BaseModel, Field


class UnreadCountsResponse(BaseModel):
    """Unread messages per conversation partner and per group."""

    direct: dict[str, int] = Field(default_factory=dict)
    groups: dict[str, int] = Field(default_factory=dict)
    total: int = 0
