"""Shared API dependencies for authentication and service wiring."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from relay_stage.db.session import get_db
from relay_stage.models import User
from relay_stage.services.broadcast import BroadcastStore, get_broadcast_store
from relay_stage.services.conversations import ConversationService
from relay_stage.services.delivery import DeliveryCoordinator
from relay_stage.services.directory import UserDirectory
from relay_stage.services.errors import (
    BlockedError,
    ForbiddenError,
    InvalidSessionError,
    NotFoundError,
    PersistenceFailureError,
    RelayError,
    ValidationFailedError,
)
from relay_stage.services.push import PushGateway, get_push_gateway
from relay_stage.services.security import SecurityViolationTracker
from relay_stage.services.sessions import AuthenticatedSession, SessionGuard
from relay_stage.services.unread import UnreadCounterService

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]

_STATUS_BY_ERROR: list[tuple[type[RelayError], int]] = [
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidSessionError, status.HTTP_401_UNAUTHORIZED),
    (ValidationFailedError, status.HTTP_400_BAD_REQUEST),
    (PersistenceFailureError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def to_http_exception(err: RelayError) -> HTTPException:
    """Translate a service error into the matching HTTP error."""
    if isinstance(err, BlockedError):
        return HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"message": str(err), "block_reason": err.reason},
        )
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(err, error_type):
            headers = (
                {"WWW-Authenticate": "Bearer"}
                if status_code == status.HTTP_401_UNAUTHORIZED
                else None
            )
            return HTTPException(status_code=status_code, detail=str(err), headers=headers)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(err))


def get_broadcast_store_dep() -> BroadcastStore:
    """Return the shared broadcast store."""
    return get_broadcast_store()


def get_push_gateway_dep() -> PushGateway:
    """Return the shared push gateway."""
    return get_push_gateway()


BroadcastDep = Annotated[BroadcastStore, Depends(get_broadcast_store_dep)]
PushGatewayDep = Annotated[PushGateway, Depends(get_push_gateway_dep)]


def get_unread_service_dep(broadcast: BroadcastDep) -> UnreadCounterService:
    return UnreadCounterService(broadcast)


UnreadDep = Annotated[UnreadCounterService, Depends(get_unread_service_dep)]


def get_tracker(
    db: SessionDep,
    broadcast: BroadcastDep,
    push_gateway: PushGatewayDep,
) -> SecurityViolationTracker:
    return SecurityViolationTracker(db, broadcast=broadcast, push_gateway=push_gateway)


TrackerDep = Annotated[SecurityViolationTracker, Depends(get_tracker)]


def get_session_guard(db: SessionDep, tracker: TrackerDep) -> SessionGuard:
    return SessionGuard(db, directory=tracker.directory, tracker=tracker)


SessionGuardDep = Annotated[SessionGuard, Depends(get_session_guard)]


def get_delivery_coordinator(
    db: SessionDep,
    broadcast: BroadcastDep,
    unread: UnreadDep,
    push_gateway: PushGatewayDep,
) -> DeliveryCoordinator:
    return DeliveryCoordinator(
        db,
        broadcast=broadcast,
        unread=unread,
        push_gateway=push_gateway,
    )


DeliveryDep = Annotated[DeliveryCoordinator, Depends(get_delivery_coordinator)]


def get_conversation_service(db: SessionDep, unread: UnreadDep) -> ConversationService:
    return ConversationService(db, unread=unread)


ConversationDep = Annotated[ConversationService, Depends(get_conversation_service)]


def get_directory(db: SessionDep) -> UserDirectory:
    return UserDirectory(db)


DirectoryDep = Annotated[UserDirectory, Depends(get_directory)]


def get_authenticated_session(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    guard: SessionGuardDep,
    x_device_fingerprint: Annotated[str | None, Header()] = None,
) -> AuthenticatedSession:
    """Validate the bearer token against the device it was issued to.

    Raises:
        HTTPException: 401 for an invalid, ended or foreign-device session,
            403 if the account is blocked.
    """
    try:
        return guard.validate(credentials.credentials, x_device_fingerprint)
    except RelayError as err:
        raise to_http_exception(err) from err


AuthenticatedDep = Annotated[AuthenticatedSession, Depends(get_authenticated_session)]


def get_current_user(authenticated: AuthenticatedDep) -> User:
    """Get the user behind a validated session."""
    return authenticated.user


CurrentUserDep = Annotated[User, Depends(get_current_user)]


def get_current_admin(current_user: CurrentUserDep) -> User:
    """Require an administrator account."""
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


CurrentAdminDep = Annotated[User, Depends(get_current_admin)]
