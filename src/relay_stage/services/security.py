"""Security violation tracking and the block state machine.

Violations are appended to a per-user log and never edited, apart from the
``notified_admin`` flag. The block transition is one-way from the tracker's
perspective: once the log reaches ``VIOLATION_BLOCK_THRESHOLD`` entries the
user is blocked, and only an explicit administrator ``unblock`` clears it.
Administrator alerts are best effort and never undo a recorded violation.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from relay_stage.core.settings import settings
from relay_stage.db.time import to_iso, utcnow
from relay_stage.models import SecurityViolation, User
from relay_stage.models.security import (
    VIOLATION_COPY,
    VIOLATION_FORWARD,
    VIOLATION_SCREENSHOT,
    VIOLATION_TYPES,
)
from relay_stage.models.session import SESSION_STATE_REVOKED
from relay_stage.services.broadcast import (
    SECURITY_ALERTS_ROOT,
    BroadcastStore,
    get_broadcast_store,
)
from relay_stage.services.directory import UserDirectory
from relay_stage.services.errors import ForbiddenError, ValidationFailedError
from relay_stage.services.push import PushGateway, get_push_gateway
from relay_stage.services.side_effects import (
    STEP_ALERT,
    SideEffectRunner,
    StepResult,
    get_side_effect_runner,
)

logger = logging.getLogger(__name__)

AUTO_BLOCK_REASON = "Multiple security violations"
WARNING_MESSAGE = "Warning: One more violation will result in account suspension"

_TYPE_COUNTERS = {
    VIOLATION_SCREENSHOT: "screenshot_attempts",
    VIOLATION_COPY: "copy_attempts",
    VIOLATION_FORWARD: "forward_attempts",
}


@dataclass
class ViolationOutcome:
    """Result of recording one violation."""

    violation: SecurityViolation
    violation_count: int
    blocked: bool
    newly_blocked: bool
    warning: str | None = None
    alert: asyncio.Task[StepResult] | None = None


class SecurityViolationTracker:
    """Append violations and derive the block state."""

    def __init__(
        self,
        db: Session,
        *,
        directory: UserDirectory | None = None,
        broadcast: BroadcastStore | None = None,
        push_gateway: PushGateway | None = None,
        runner: SideEffectRunner | None = None,
    ) -> None:
        self.db = db
        self.directory = directory or UserDirectory(db)
        self.broadcast = broadcast or get_broadcast_store()
        self.push_gateway = push_gateway or get_push_gateway()
        self.runner = runner or get_side_effect_runner()
        self.block_threshold = settings.violation_block_threshold
        self.warning_threshold = settings.violation_warning_threshold

    async def record(
        self,
        user: User,
        violation_type: str,
        device_info: Mapping[str, Any] | None = None,
    ) -> ViolationOutcome:
        """Append a violation for ``user`` and apply the block threshold."""
        if violation_type not in VIOLATION_TYPES:
            raise ValidationFailedError(f"Unknown violation type: {violation_type}")

        violation = SecurityViolation(
            type=violation_type,
            device_info=dict(device_info or {}),
            notified_admin=False,
            created_at=utcnow(),
        )
        user.violations.append(violation)

        counter = _TYPE_COUNTERS.get(violation_type)
        if counter is not None:
            setattr(user, counter, (getattr(user, counter) or 0) + 1)

        count = user.violation_count
        newly_blocked = False
        if count >= self.block_threshold and not user.is_blocked:
            self._apply_block(user, AUTO_BLOCK_REASON)
            newly_blocked = True
        self.db.commit()

        logger.info(
            "Recorded %s for user %s (%d total)", violation_type, user.id, count
        )
        if newly_blocked:
            logger.info("User %s auto-blocked after %d violations", user.id, count)

        warning = None
        if not user.is_blocked and count == self.warning_threshold:
            warning = WARNING_MESSAGE

        outcome = ViolationOutcome(
            violation=violation,
            violation_count=count,
            blocked=user.is_blocked,
            newly_blocked=newly_blocked,
            warning=warning,
        )
        outcome.alert = self._dispatch_alert(user, violation, count)
        if settings.delivery_await_side_effects:
            result = await outcome.alert
            if result.ok:
                violation.notified_admin = True
                self.db.commit()
        return outcome

    def _dispatch_alert(
        self,
        user: User,
        violation: SecurityViolation,
        count: int,
    ) -> asyncio.Task[StepResult]:
        # Snapshot everything the task needs; it must not touch the session.
        alert = {
            "user_id": user.id,
            "handle": user.handle,
            "display_name": user.display_name,
            "violation_type": violation.type,
            "violation_count": count,
            "is_blocked": user.is_blocked,
            "device_info": dict(violation.device_info or {}),
            "created_at": to_iso(violation.created_at),
        }
        admin_tokens = self.directory.admin_push_tokens()
        label = user.display_name or user.handle
        title = "Security Alert"
        body = f"{label} triggered {violation.type.replace('_', ' ')} ({count} total)"

        async def _notify_admins() -> bool:
            published = True
            try:
                await asyncio.to_thread(self.broadcast.push, SECURITY_ALERTS_ROOT, alert)
            except Exception as exc:
                logger.warning("Failed to publish security alert for %s: %s", user.id, exc)
                published = False
            outcomes = await self.push_gateway.notify(
                admin_tokens,
                title,
                body,
                {"type": "security_alert", "user_id": alert["user_id"]},
            )
            return published or any(outcomes.values())

        return self.runner.dispatch(STEP_ALERT, user.id, _notify_admins, succeeded=bool)

    @staticmethod
    def _apply_block(user: User, reason: str) -> None:
        user.is_blocked = True
        user.block_reason = reason
        user.blocked_at = utcnow()

    def block(self, user: User, reason: str | None = None) -> User:
        """Block ``user`` on an administrator's request and end their session."""
        if user.is_admin:
            raise ForbiddenError("Cannot block admin users")
        self._apply_block(user, reason or "Blocked by admin")
        for session in user.sessions:
            session.end(SESSION_STATE_REVOKED)
        self.db.commit()
        logger.info("User %s blocked by administrator", user.id)
        return user

    def unblock(self, user: User) -> User:
        """Clear the block state; the violation log is kept for audit."""
        user.is_blocked = False
        user.block_reason = None
        user.blocked_at = None
        self.db.commit()
        logger.info("User %s unblocked", user.id)
        return user

    def security_profile(self, user: User) -> dict[str, Any]:
        return {
            "user_id": user.id,
            "is_blocked": user.is_blocked,
            "block_reason": user.block_reason,
            "blocked_at": user.blocked_at,
            "violation_count": user.violation_count,
            "screenshot_attempts": user.screenshot_attempts,
            "copy_attempts": user.copy_attempts,
            "forward_attempts": user.forward_attempts,
            "violations": list(user.violations),
        }

    def list_violations(
        self,
        *,
        user_id: str | None = None,
        violation_type: str | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> Sequence[SecurityViolation]:
        """Return violations newest first, optionally filtered."""
        stmt = select(SecurityViolation)
        if user_id is not None:
            stmt = stmt.where(SecurityViolation.user_id == user_id)
        if violation_type is not None:
            stmt = stmt.where(SecurityViolation.type == violation_type)
        if since is not None:
            stmt = stmt.where(SecurityViolation.created_at >= since)
        stmt = stmt.order_by(SecurityViolation.id.desc()).limit(limit)
        return self.db.scalars(stmt).all()
