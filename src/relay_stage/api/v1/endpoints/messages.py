"""Direct and group message endpoints for the Relay API."""

from __future__ import annotations

from fastapi import APIRouter, Query, status

from relay_stage.schemas.message import (
    ConversationResponse,
    DeliveryResponse,
    DirectMessageCreate,
    DirectMessageResponse,
    GroupMessageResponse,
    MarkReadResponse,
    MessageCreate,
)
from relay_stage.services.errors import RelayError

from ..dependencies import ConversationDep, CurrentUserDep, DeliveryDep, to_http_exception

router = APIRouter(prefix="/messages", tags=["messages"])


def _attachments(payload: MessageCreate) -> list[dict[str, object]]:
    return [attachment.model_dump() for attachment in payload.attachments]


@router.post(
    "/direct",
    status_code=status.HTTP_201_CREATED,
    response_model=DeliveryResponse,
)
async def send_direct_message(
    payload: DirectMessageCreate,
    current_user: CurrentUserDep,
    delivery: DeliveryDep,
) -> DeliveryResponse:
    """Send a direct message; regular users may only write to admins."""
    try:
        receipt = await delivery.send_direct(
            current_user,
            payload.recipient_id,
            payload.text,
            _attachments(payload),
        )
    except RelayError as err:
        raise to_http_exception(err) from err
    return DeliveryResponse.model_validate(receipt)


@router.get("/conversations", response_model=list[ConversationResponse])
async def list_conversations(
    current_user: CurrentUserDep,
    conversations: ConversationDep,
) -> list[ConversationResponse]:
    try:
        summaries = conversations.conversations(current_user)
    except RelayError as err:
        raise to_http_exception(err) from err
    return [ConversationResponse.model_validate(summary) for summary in summaries]


@router.get("/sent", response_model=list[DirectMessageResponse])
async def get_sent_messages(
    current_user: CurrentUserDep,
    conversations: ConversationDep,
    limit: int = Query(50, ge=1, le=100),
) -> list[DirectMessageResponse]:
    try:
        messages = conversations.sent(current_user, limit)
    except RelayError as err:
        raise to_http_exception(err) from err
    return [DirectMessageResponse.model_validate(message) for message in messages]


@router.get("/received", response_model=list[DirectMessageResponse])
async def get_received_messages(
    current_user: CurrentUserDep,
    conversations: ConversationDep,
    limit: int = Query(50, ge=1, le=100),
) -> list[DirectMessageResponse]:
    try:
        messages = conversations.received(current_user, limit)
    except RelayError as err:
        raise to_http_exception(err) from err
    return [DirectMessageResponse.model_validate(message) for message in messages]


@router.get("/direct/{partner_id}", response_model=list[DirectMessageResponse])
async def get_conversation(
    partner_id: str,
    current_user: CurrentUserDep,
    conversations: ConversationDep,
) -> list[DirectMessageResponse]:
    """Return the whole conversation with ``partner_id``, oldest first."""
    try:
        messages = conversations.direct_history(current_user, partner_id)
    except RelayError as err:
        raise to_http_exception(err) from err
    return [DirectMessageResponse.model_validate(message) for message in messages]


@router.put("/direct/{partner_id}/read", response_model=MarkReadResponse)
async def mark_conversation_read(
    partner_id: str,
    current_user: CurrentUserDep,
    conversations: ConversationDep,
) -> MarkReadResponse:
    """Mark the partner's messages read and reset the unread counter."""
    try:
        marked = conversations.mark_direct_read(current_user, partner_id)
    except RelayError as err:
        raise to_http_exception(err) from err
    return MarkReadResponse(marked=marked)


@router.post(
    "/groups/{group_id}",
    status_code=status.HTTP_201_CREATED,
    response_model=DeliveryResponse,
)
async def send_group_message(
    group_id: str,
    payload: MessageCreate,
    current_user: CurrentUserDep,
    delivery: DeliveryDep,
) -> DeliveryResponse:
    try:
        receipt = await delivery.send_group(
            current_user,
            group_id,
            payload.text,
            _attachments(payload),
        )
    except RelayError as err:
        raise to_http_exception(err) from err
    return DeliveryResponse.model_validate(receipt)


@router.get("/groups/{group_id}", response_model=list[GroupMessageResponse])
async def get_group_messages(
    group_id: str,
    current_user: CurrentUserDep,
    conversations: ConversationDep,
) -> list[GroupMessageResponse]:
    try:
        messages = conversations.group_history(current_user, group_id)
    except RelayError as err:
        raise to_http_exception(err) from err
    return [GroupMessageResponse.model_validate(message) for message in messages]


@router.put("/groups/{group_id}/read", response_model=MarkReadResponse)
async def mark_group_read(
    group_id: str,
    current_user: CurrentUserDep,
    conversations: ConversationDep,
) -> MarkReadResponse:
    try:
        conversations.mark_group_read(current_user, group_id)
    except RelayError as err:
        raise to_http_exception(err) from err
    return MarkReadResponse()
