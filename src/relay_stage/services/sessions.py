"""Device-bound sessions and the single-active-device rule.

Each regular user moves through ``NoSession -> Active -> (Revoked |
Superseded)``. A login from a different device fingerprint supersedes the
live session and records a ``multiple_login_attempt`` violation; a login
from the same device simply replaces it. Administrators are exempt: every
admin login opens an independent session row.

The bearer token is a JWT whose ``sid`` claim carries the opaque session
token. Only a BLAKE3 digest of that token is stored, next to the device
fingerprint it is bound to.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import select
from sqlalchemy.orm import Session

from relay_stage.core import security
from relay_stage.core.settings import settings
from relay_stage.db.time import utcnow
from relay_stage.models import DeviceSession, RegularUser, User
from relay_stage.models.security import VIOLATION_MULTIPLE_LOGIN
from relay_stage.models.session import (
    SESSION_STATE_ACTIVE,
    SESSION_STATE_REVOKED,
    SESSION_STATE_SUPERSEDED,
)
from relay_stage.services.directory import UserDirectory
from relay_stage.services.errors import BlockedError, InvalidSessionError
from relay_stage.services.security import SecurityViolationTracker
from relay_stage.utils.hash import token_fingerprint

logger = logging.getLogger(__name__)

SESSION_CLAIM = "sid"


@dataclass(frozen=True)
class IssuedSession:
    """Bearer token handed to the client plus the session it authenticates."""

    access_token: str
    user: User
    session: DeviceSession
    superseded: DeviceSession | None = None


@dataclass(frozen=True)
class AuthenticatedSession:
    """A validated request identity."""

    user: User
    session: DeviceSession


def create_access_token(user_id: str, session_token: str) -> str:
    """Create the JWT bearer token for a session."""
    expire = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode: dict[str, object] = {"sub": user_id, SESSION_CLAIM: session_token, "exp": expire}
    encoded_jwt: str = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


def _decode(access_token: str, *, verify_exp: bool = True) -> tuple[str, str]:
    try:
        payload = jwt.decode(
            access_token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"verify_exp": verify_exp},
        )
    except ExpiredSignatureError as err:
        raise InvalidSessionError("Session expired") from err
    except JWTError as err:
        raise InvalidSessionError("Could not validate credentials") from err

    subject = payload.get("sub")
    session_token = payload.get(SESSION_CLAIM)
    if not isinstance(subject, str) or not isinstance(session_token, str):
        raise InvalidSessionError("Could not validate credentials")
    return subject, session_token


class SessionGuard:
    """Issue, validate and revoke device-bound sessions."""

    def __init__(
        self,
        db: Session,
        *,
        directory: UserDirectory | None = None,
        tracker: SecurityViolationTracker | None = None,
    ) -> None:
        self.db = db
        self.directory = directory or UserDirectory(db)
        self._tracker = tracker

    @property
    def tracker(self) -> SecurityViolationTracker:
        if self._tracker is None:
            self._tracker = SecurityViolationTracker(self.db, directory=self.directory)
        return self._tracker

    # --- Issuing ------------------------------------------------------------------
    async def register(
        self,
        handle: str,
        login_key: str,
        device_fingerprint: str,
        *,
        display_name: str | None = None,
        avatar: str | None = None,
        device_info: Mapping[str, Any] | None = None,
    ) -> IssuedSession:
        """Create a regular user and open their first session."""
        user = self.directory.create_regular(
            handle, login_key, display_name=display_name, avatar=avatar
        )
        self.db.commit()
        logger.info("Registered user %s", user.id)
        return await self.open_session(user, device_fingerprint, device_info)

    async def login(
        self,
        handle: str,
        login_key: str,
        device_fingerprint: str,
        device_info: Mapping[str, Any] | None = None,
    ) -> IssuedSession:
        """Authenticate by handle and login key, then open a session."""
        user = self.directory.get_by_handle(handle)
        if user is None or user.is_deleted or not security.verify_key(
            login_key, user.credential_hash
        ):
            raise InvalidSessionError("Invalid credentials")
        return await self.open_session(user, device_fingerprint, device_info)

    async def open_session(
        self,
        user: User,
        device_fingerprint: str,
        device_info: Mapping[str, Any] | None = None,
    ) -> IssuedSession:
        """Bind a fresh session token to ``device_fingerprint``."""
        if not device_fingerprint:
            raise InvalidSessionError("Device fingerprint is required")
        if user.is_blocked:
            raise BlockedError(reason=user.block_reason)

        superseded: DeviceSession | None = None
        if isinstance(user, RegularUser):
            for previous in user.sessions:
                if not previous.is_active:
                    continue
                if previous.device_fingerprint == device_fingerprint:
                    previous.end(SESSION_STATE_REVOKED)
                else:
                    previous.end(SESSION_STATE_SUPERSEDED)
                    superseded = previous

        session_token = security.generate_session_token()
        session = DeviceSession(
            device_fingerprint=device_fingerprint,
            session_token_hash=token_fingerprint(session_token),
            device_info=dict(device_info or {}),
            state=SESSION_STATE_ACTIVE,
            issued_at=utcnow(),
        )
        user.sessions.append(session)
        self.db.commit()

        if superseded is not None:
            logger.info(
                "Session %s of user %s superseded by a login from another device",
                superseded.id,
                user.id,
            )
            await self.tracker.record(
                user,
                VIOLATION_MULTIPLE_LOGIN,
                {
                    "previous_device": superseded.device_fingerprint,
                    "new_device": device_fingerprint,
                    **dict(device_info or {}),
                },
            )

        return IssuedSession(
            access_token=create_access_token(user.id, session_token),
            user=user,
            session=session,
            superseded=superseded,
        )

    # --- Validation ---------------------------------------------------------------
    def _resolve(
        self,
        user_id: str,
        session_token: str,
        device_fingerprint: str | None,
    ) -> AuthenticatedSession:
        user = self.directory.find(user_id)
        if user is None:
            raise InvalidSessionError("User not found")

        session = self.db.scalars(
            select(DeviceSession).where(
                DeviceSession.session_token_hash == token_fingerprint(session_token)
            )
        ).first()
        if session is None or session.user_id != user.id:
            raise InvalidSessionError("Session not found")
        # Blocked accounts are refused as such whatever state the session is in.
        if user.is_blocked:
            raise BlockedError(reason=user.block_reason)
        if not session.is_active:
            if session.state == SESSION_STATE_SUPERSEDED:
                raise InvalidSessionError("Session was replaced by a login on another device")
            raise InvalidSessionError("Session has ended")
        if not device_fingerprint or session.device_fingerprint != device_fingerprint:
            raise InvalidSessionError("Device mismatch")
        return AuthenticatedSession(user=user, session=session)

    def validate(self, access_token: str, device_fingerprint: str | None) -> AuthenticatedSession:
        """Authenticate a request; token possession without the device is not enough."""
        user_id, session_token = _decode(access_token)
        return self._resolve(user_id, session_token, device_fingerprint)

    def refresh(self, access_token: str, device_fingerprint: str | None) -> str:
        """Issue a new bearer token for the same session, ignoring expiry only."""
        user_id, session_token = _decode(access_token, verify_exp=False)
        authenticated = self._resolve(user_id, session_token, device_fingerprint)
        return create_access_token(authenticated.user.id, session_token)

    # --- Ending -------------------------------------------------------------------
    def logout(self, session: DeviceSession) -> None:
        """Revoke the presented session."""
        session.end(SESSION_STATE_REVOKED)
        self.db.commit()
        logger.debug("Session %s revoked by logout", session.id)

    @staticmethod
    def session_status(authenticated: AuthenticatedSession) -> dict[str, Any]:
        user, session = authenticated.user, authenticated.session
        return {
            "valid": True,
            "user_id": user.id,
            "role": user.role,
            "device_fingerprint": session.device_fingerprint,
            "issued_at": session.issued_at,
            "active_sessions": sum(1 for item in user.sessions if item.is_active),
        }
