"""Authentication and session endpoints for the Relay API."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Header, status
from fastapi.security import HTTPAuthorizationCredentials

from relay_stage.schemas.auth import (
    LoginRequest,
    RegisterRequest,
    SessionStatusResponse,
    TokenResponse,
)
from relay_stage.services.errors import RelayError
from relay_stage.services.sessions import IssuedSession, SessionGuard

from ..dependencies import (
    AuthenticatedDep,
    SessionGuardDep,
    bearer_scheme,
    to_http_exception,
)

router = APIRouter(prefix="/auth", tags=["authentication"])


def _token_response(issued: IssuedSession) -> TokenResponse:
    return TokenResponse(
        access_token=issued.access_token,
        user_id=issued.user.id,
        role=issued.user.role,
        session_replaced=issued.superseded is not None,
    )


@router.post(
    "/register",
    summary="Register a regular user and open a device session",
    status_code=status.HTTP_201_CREATED,
    response_model=TokenResponse,
)
async def register_user(payload: RegisterRequest, guard: SessionGuardDep) -> TokenResponse:
    try:
        issued = await guard.register(
            payload.handle,
            payload.login_key,
            payload.device_fingerprint,
            display_name=payload.display_name,
            avatar=payload.avatar,
            device_info=payload.device_info,
        )
    except RelayError as err:
        raise to_http_exception(err) from err
    return _token_response(issued)


@router.post(
    "/login",
    summary="Authenticate from a device",
    response_model=TokenResponse,
)
async def login_user(payload: LoginRequest, guard: SessionGuardDep) -> TokenResponse:
    """Open a session; a regular user's session on another device is ended."""
    try:
        issued = await guard.login(
            payload.handle,
            payload.login_key,
            payload.device_fingerprint,
            payload.device_info,
        )
    except RelayError as err:
        raise to_http_exception(err) from err
    return _token_response(issued)


@router.post("/logout")
async def logout_user(authenticated: AuthenticatedDep, guard: SessionGuardDep) -> dict[str, str]:
    """Revoke the session the request was made with."""
    guard.logout(authenticated.session)
    return {"status": "logged_out"}


@router.get("/session", response_model=SessionStatusResponse)
async def validate_session(authenticated: AuthenticatedDep) -> SessionStatusResponse:
    return SessionStatusResponse(**SessionGuard.session_status(authenticated))


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    guard: SessionGuardDep,
    x_device_fingerprint: Annotated[str | None, Header()] = None,
) -> TokenResponse:
    """Re-issue a bearer token for a live session, even if it has expired."""
    try:
        access_token = guard.refresh(credentials.credentials, x_device_fingerprint)
        authenticated = guard.validate(access_token, x_device_fingerprint)
    except RelayError as err:
        raise to_http_exception(err) from err
    return TokenResponse(
        access_token=access_token,
        user_id=authenticated.user.id,
        role=authenticated.user.role,
    )
