"""User directory backed by the relational database.

The directory owns identity lookups and the small set of mutable fields the
messaging core writes: block state, type counters and push addresses.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from relay_stage.core import security
from relay_stage.db.time import utcnow
from relay_stage.models import AdminUser, ChatGroup, PushAddress, RegularUser, User
from relay_stage.models.device import DEVICE_TYPES
from relay_stage.services.errors import NotFoundError, ValidationFailedError

logger = logging.getLogger(__name__)

__all__ = ["UserDirectory", "WRITABLE_FIELDS"]

WRITABLE_FIELDS = frozenset(
    {
        "display_name",
        "avatar",
        "is_deleted",
        "is_blocked",
        "block_reason",
        "blocked_at",
        "screenshot_attempts",
        "copy_attempts",
        "forward_attempts",
    }
)


class UserDirectory:
    """Lookup and partial-update access to user records."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, user_id: str, *, include_deleted: bool = False) -> User:
        """Return the user or raise ``NotFoundError``."""
        user = self.db.get(User, user_id)
        if user is None or (user.is_deleted and not include_deleted):
            raise NotFoundError("User not found")
        return user

    def find(self, user_id: str) -> User | None:
        """Return a live user or None."""
        user = self.db.get(User, user_id)
        if user is None or user.is_deleted:
            return None
        return user

    def get_by_handle(self, handle: str) -> User | None:
        return self.db.scalars(
            select(User).where(User.handle == handle.strip().lower())
        ).first()

    def get_many(self, user_ids: Iterable[str]) -> dict[str, User]:
        """Return live users keyed by id; missing ids are simply absent."""
        ids = set(user_ids)
        if not ids:
            return {}
        rows = self.db.scalars(
            select(User).where(User.id.in_(ids), User.is_deleted.is_(False))
        ).all()
        return {user.id: user for user in rows}

    def list_admins(self) -> Sequence[User]:
        return self.db.scalars(
            select(AdminUser).where(AdminUser.is_deleted.is_(False))
        ).all()

    def get_group(self, group_id: str) -> ChatGroup:
        group = self.db.get(ChatGroup, group_id)
        if group is None:
            raise NotFoundError("Group not found")
        return group

    def put(self, user_id: str, **fields: Any) -> User:
        """Apply a partial update and commit it (last write wins)."""
        unknown = set(fields) - WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not writable through the directory: {sorted(unknown)}")
        user = self.get(user_id, include_deleted=True)
        for key, value in fields.items():
            setattr(user, key, value)
        self.db.commit()
        return user

    def create_regular(
        self,
        handle: str,
        login_key: str,
        *,
        display_name: str | None = None,
        avatar: str | None = None,
    ) -> RegularUser:
        """Register a regular user; admins are provisioned out of band."""
        normalized = handle.strip().lower()
        if self.get_by_handle(normalized) is not None:
            raise ValidationFailedError("Handle already exists")
        user = RegularUser(
            handle=normalized,
            display_name=display_name,
            avatar=avatar,
            credential_hash=security.hash_key(login_key),
        )
        self.db.add(user)
        self.db.flush()
        return user

    def create_admin(self, handle: str, login_key: str, *, display_name: str | None = None) -> AdminUser:
        normalized = handle.strip().lower()
        if self.get_by_handle(normalized) is not None:
            raise ValidationFailedError("Handle already exists")
        admin = AdminUser(
            handle=normalized,
            display_name=display_name,
            credential_hash=security.hash_key(login_key),
        )
        self.db.add(admin)
        self.db.flush()
        return admin

    # --- Push addresses -------------------------------------------------------------
    def register_push_address(
        self,
        user: User,
        token: str,
        *,
        device_type: str = "android",
        device_id: str | None = None,
    ) -> PushAddress:
        """Attach a device token to ``user``.

        Regular users hold a single address, so registering replaces any
        previous one. Administrators accumulate addresses; re-registering an
        existing token refreshes it.
        """
        if device_type not in DEVICE_TYPES:
            raise ValidationFailedError(f"Unsupported device type: {device_type}")

        if user.is_admin:
            for existing in list(user.push_addresses):
                if existing.token == token:
                    user.push_addresses.remove(existing)
        else:
            user.push_addresses.clear()

        address = PushAddress(
            token=token,
            device_type=device_type,
            device_id=device_id,
            is_active=True,
            last_used=utcnow(),
        )
        user.push_addresses.append(address)
        self.db.commit()
        return address

    def remove_push_address(self, user: User, token: str) -> bool:
        """Detach ``token`` from ``user``; returns False if it was not registered."""
        for existing in list(user.push_addresses):
            if existing.token == token:
                user.push_addresses.remove(existing)
                self.db.commit()
                return True
        return False

    def admin_push_tokens(self) -> list[str]:
        """Return every active device token held by administrators."""
        tokens: list[str] = []
        for admin in self.list_admins():
            tokens.extend(admin.active_push_tokens)
        return tokens
