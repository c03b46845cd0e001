"""Push device registration endpoints for the Relay API."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from relay_stage.schemas.device import DeviceRegisterRequest, DeviceResponse
from relay_stage.services.errors import RelayError

from ..dependencies import CurrentUserDep, DirectoryDep, to_http_exception

router = APIRouter(prefix="/devices", tags=["devices"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=DeviceResponse)
async def register_device(
    payload: DeviceRegisterRequest,
    current_user: CurrentUserDep,
    directory: DirectoryDep,
) -> DeviceResponse:
    """Register a push token; a regular user's previous token is replaced."""
    try:
        address = directory.register_push_address(
            current_user,
            payload.token,
            device_type=payload.device_type,
            device_id=payload.device_id,
        )
    except RelayError as err:
        raise to_http_exception(err) from err
    return DeviceResponse.model_validate(address)


@router.delete("/{token}")
async def unregister_device(
    token: str,
    current_user: CurrentUserDep,
    directory: DirectoryDep,
) -> dict[str, str]:
    if not directory.remove_push_address(current_user, token):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Device token not registered",
        )
    return {"status": "removed"}
