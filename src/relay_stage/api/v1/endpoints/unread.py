"""Unread counter endpoints for the Relay API."""

from __future__ import annotations

from fastapi import APIRouter

from relay_stage.schemas.unread import UnreadCountsResponse

from ..dependencies import CurrentUserDep, UnreadDep

router = APIRouter(prefix="/unread", tags=["unread"])


@router.get("", response_model=UnreadCountsResponse)
async def get_unread_counts(
    current_user: CurrentUserDep,
    unread: UnreadDep,
) -> UnreadCountsResponse:
    """Return every unread counter for the current user."""
    return UnreadCountsResponse(**unread.get(current_user.id).as_dict())


@router.get("/total")
async def get_unread_total(current_user: CurrentUserDep, unread: UnreadDep) -> dict[str, int]:
    return {"total": unread.total(current_user.id)}


@router.get("/direct/{partner_id}")
async def get_direct_unread(
    partner_id: str,
    current_user: CurrentUserDep,
    unread: UnreadDep,
) -> dict[str, object]:
    return {"partner_id": partner_id, "count": unread.get_direct(current_user.id, partner_id)}


@router.get("/groups/{group_id}")
async def get_group_unread(
    group_id: str,
    current_user: CurrentUserDep,
    unread: UnreadDep,
) -> dict[str, object]:
    return {"group_id": group_id, "count": unread.get_group(current_user.id, group_id)}


@router.delete("")
async def clear_unread(current_user: CurrentUserDep, unread: UnreadDep) -> dict[str, str]:
    """Drop every counter; read receipts in the durable store are untouched."""
    unread.clear_all(current_user.id)
    return {"status": "cleared"}
