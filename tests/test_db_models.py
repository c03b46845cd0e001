"""Unit tests for the ORM models defined in relay_stage.models.

These tests verify mapping correctness: table names, the shared user
table with its role discriminator, and the uniqueness guarantees the
services rely on.
"""

import pytest

from relay_stage.models import (
    AdminUser,
    ChatGroup,
    ChatGroupMember,
    DeviceSession,
    DirectMessage,
    MessageRead,
    GroupMessage,
    PushAddress,
    RegularUser,
    SecurityViolation,
    User,
)
from relay_stage.models.session import (
    SESSION_STATE_ACTIVE,
    SESSION_STATE_REVOKED,
    SESSION_STATE_SUPERSEDED,
)


def test_table_names():
    """Model classes expose expected __tablename__ values."""
    assert User.__tablename__ == "user_account"
    assert DeviceSession.__tablename__ == "device_session"
    assert PushAddress.__tablename__ == "push_address"
    assert DirectMessage.__tablename__ == "direct_message"
    assert MessageRead.__tablename__ == "direct_message_read"
    assert ChatGroup.__tablename__ == "chat_group"
    assert ChatGroupMember.__tablename__ == "chat_group_member"
    assert GroupMessage.__tablename__ == "group_message"
    assert SecurityViolation.__tablename__ == "security_violation"


def test_roles_share_one_table():
    """Admins and regular users live in the same table."""
    assert AdminUser.__table__ is User.__table__
    assert RegularUser.__table__ is User.__table__


def test_role_discriminator(make_admin, make_regular, db_session):
    admin = make_admin()
    regular = make_regular()
    db_session.expunge_all()

    loaded = {user.id: user for user in db_session.query(User).all()}
    assert isinstance(loaded[admin.id], AdminUser)
    assert isinstance(loaded[regular.id], RegularUser)
    assert loaded[admin.id].is_admin
    assert not loaded[regular.id].is_admin


def test_group_membership_composite_primary_key():
    """Membership is keyed by (group_id, user_id)."""
    pk_names = {c.name for c in ChatGroupMember.__table__.primary_key}
    assert pk_names == {"group_id", "user_id"}


def test_session_end_is_one_way():
    session = DeviceSession(device_fingerprint="d1", session_token_hash="x", state=SESSION_STATE_ACTIVE)
    session.end(SESSION_STATE_SUPERSEDED)
    assert session.state == SESSION_STATE_SUPERSEDED
    assert session.ended_at is not None

    # An ended session keeps its first terminal state.
    session.end(SESSION_STATE_REVOKED)
    assert session.state == SESSION_STATE_SUPERSEDED

    with pytest.raises(ValueError):
        session.end(SESSION_STATE_ACTIVE)


def test_naive_timestamps_render_as_utc():
    from datetime import datetime

    from relay_stage.db.time import to_iso

    assert to_iso(datetime(2024, 5, 1, 12, 30)) == "2024-05-01T12:30:00+00:00"
