"""Message-related Pydantic schemas."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class AttachmentPayload(BaseModel):
    """Attachment reference; content lives in external file storage."""

    type: Literal["image", "pdf", "excel", "document"]
    url: str = Field(..., description="Absolute URL of the uploaded file")
    name: str = Field(..., min_length=1, max_length=255)
    size: int = Field(..., ge=1, description="Size in bytes")
    mime_type: str


class MessageCreate(BaseModel):
    """Body of a direct or group message. Either text or attachments is required."""

    text: str | None = Field(None, description="Message text, trimmed before storage")
    attachments: list[AttachmentPayload] = Field(default_factory=list)


class DirectMessageCreate(MessageCreate):
    recipient_id: str = Field(..., min_length=1, max_length=32)


class ReadReceipt(BaseModel):
    user_id: str
    read_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DirectMessageResponse(BaseModel):
    """Direct message as stored in the durable store."""

    id: int
    sender_user_id: str
    recipient_user_id: str
    text: str | None
    attachments: list[dict[str, Any]]
    created_at: datetime
    read_by: list[ReadReceipt] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class GroupMessageResponse(BaseModel):
    id: int
    group_id: str
    sender_user_id: str
    text: str | None
    attachments: list[dict[str, Any]]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DeliveryResponse(BaseModel):
    """Identity of a sent message plus best-effort delivery flags.

    A flag is null when the step did not run or had not finished when the
    response was produced.
    """

    message_id: int
    kind: Literal["direct", "group"]
    broadcast_path: str
    broadcast_key: str
    created_at: datetime
    recipient_ids: list[str]
    broadcast_ok: bool | None
    counters_ok: bool | None
    push_ok: bool | None
    degraded: bool

    model_config = ConfigDict(from_attributes=True)


class PartnerProfile(BaseModel):
    id: str
    handle: str
    display_name: str | None
    is_admin: bool
    avatar: str | None

    model_config = ConfigDict(from_attributes=True)


class ConversationResponse(BaseModel):
    partner: PartnerProfile
    last_message: DirectMessageResponse
    message_count: int
    unread_count: int

    model_config = ConfigDict(from_attributes=True)


class MarkReadResponse(BaseModel):
    status: str = "marked_as_read"
    marked: int = 0
