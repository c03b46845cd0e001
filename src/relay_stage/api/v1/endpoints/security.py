"""Security violation and account block endpoints for the Relay API."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query, status

from relay_stage.schemas.security import (
    BlockRequest,
    SecurityProfileResponse,
    ViolationReport,
    ViolationReportResponse,
    ViolationResponse,
)
from relay_stage.services.errors import RelayError

from ..dependencies import (
    CurrentAdminDep,
    CurrentUserDep,
    DirectoryDep,
    TrackerDep,
    to_http_exception,
)

router = APIRouter(prefix="/security", tags=["security"])


@router.post(
    "/violations",
    status_code=status.HTTP_201_CREATED,
    response_model=ViolationReportResponse,
)
async def report_violation(
    payload: ViolationReport,
    current_user: CurrentUserDep,
    tracker: TrackerDep,
) -> ViolationReportResponse:
    """Record a client-detected violation; the third one blocks the account."""
    try:
        outcome = await tracker.record(current_user, payload.type, payload.device_info)
    except RelayError as err:
        raise to_http_exception(err) from err
    return ViolationReportResponse(
        violation=ViolationResponse.model_validate(outcome.violation),
        violation_count=outcome.violation_count,
        is_blocked=outcome.blocked,
        warning=outcome.warning,
    )


@router.get("/violations", response_model=list[ViolationResponse])
async def list_violations(
    _admin: CurrentAdminDep,
    tracker: TrackerDep,
    user_id: str | None = Query(None),
    violation_type: str | None = Query(None, alias="type"),
    since: datetime | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
) -> list[ViolationResponse]:
    violations = tracker.list_violations(
        user_id=user_id,
        violation_type=violation_type,
        since=since,
        limit=limit,
    )
    return [ViolationResponse.model_validate(item) for item in violations]


@router.get("/users/{user_id}", response_model=SecurityProfileResponse)
async def get_security_profile(
    user_id: str,
    _admin: CurrentAdminDep,
    tracker: TrackerDep,
    directory: DirectoryDep,
) -> SecurityProfileResponse:
    try:
        user = directory.get(user_id, include_deleted=True)
    except RelayError as err:
        raise to_http_exception(err) from err
    return SecurityProfileResponse.model_validate(tracker.security_profile(user))


@router.post("/users/{user_id}/block", response_model=SecurityProfileResponse)
async def block_user(
    user_id: str,
    _admin: CurrentAdminDep,
    tracker: TrackerDep,
    directory: DirectoryDep,
    payload: BlockRequest | None = None,
) -> SecurityProfileResponse:
    """Block a regular user and end their active session."""
    reason = payload.reason if payload is not None else None
    try:
        user = tracker.block(directory.get(user_id), reason)
    except RelayError as err:
        raise to_http_exception(err) from err
    return SecurityProfileResponse.model_validate(tracker.security_profile(user))


@router.post("/users/{user_id}/unblock", response_model=SecurityProfileResponse)
async def unblock_user(
    user_id: str,
    _admin: CurrentAdminDep,
    tracker: TrackerDep,
    directory: DirectoryDep,
) -> SecurityProfileResponse:
    try:
        user = tracker.unblock(directory.get(user_id))
    except RelayError as err:
        raise to_http_exception(err) from err
    return SecurityProfileResponse.model_validate(tracker.security_profile(user))
