# tests/conftest.py
from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Generator, Iterable, Iterator, Mapping
from itertools import count
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "relay-test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from relay_stage.api.v1.dependencies import (  # noqa: E402
    get_broadcast_store_dep,
    get_push_gateway_dep,
)
from relay_stage.db.session import Base  # noqa: E402
from relay_stage.db.session import get_db as app_get_session  # noqa: E402
from relay_stage.main import app as fastapi_app  # noqa: E402
from relay_stage.models import AdminUser, ChatGroup, ChatGroupMember, RegularUser, User  # noqa: E402
from relay_stage.services.broadcast import InMemoryBroadcastStore  # noqa: E402
from relay_stage.services.directory import UserDirectory  # noqa: E402
from relay_stage.services.push import PushConfig, PushGateway  # noqa: E402
from relay_stage.services.security import SecurityViolationTracker  # noqa: E402
from relay_stage.services.sessions import SessionGuard  # noqa: E402
from relay_stage.services.side_effects import SideEffectRunner  # noqa: E402

TEST_DB_URL = "sqlite://"
LOGIN_KEY = "correct-horse-battery"

_HANDLE_COUNTER = count(1)


class RecordingPushGateway(PushGateway):
    """Push gateway that records notifications instead of sending them."""

    def __init__(self, fail_tokens: Iterable[str] = ()) -> None:
        super().__init__(
            config=PushConfig(base_url="http://push.test", api_key=None, timeout_seconds=1.0)
        )
        self.calls: list[dict[str, Any]] = []
        self.fail_tokens = set(fail_tokens)

    async def notify(
        self,
        addresses: Iterable[str],
        title: str,
        body: str,
        data: Mapping[str, Any] | None = None,
    ) -> dict[str, bool]:
        targets = list(dict.fromkeys(addresses))
        self.calls.append(
            {"addresses": targets, "title": title, "body": body, "data": dict(data or {})}
        )
        return {address: address not in self.fail_tokens for address in targets}

    def addresses(self) -> list[str]:
        return [address for call in self.calls for address in call["addresses"]]


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    session = SessionLocal()
    session.begin_nested()

    @event.listens_for(session, "after_transaction_end")
    def restart_savepoint(sess: Session, trans) -> None:  # pragma: no cover - SQLAlchemy internals
        if trans.nested and not getattr(trans._parent, "nested", False):
            session.begin_nested()

    try:
        yield session
    finally:
        event.remove(session, "after_transaction_end", restart_savepoint)
        session.close()

        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def broadcast_store() -> InMemoryBroadcastStore:
    return InMemoryBroadcastStore()


@pytest.fixture()
def push_gateway() -> RecordingPushGateway:
    return RecordingPushGateway()


@pytest.fixture()
def runner() -> SideEffectRunner:
    return SideEffectRunner(timeout_seconds=2.0)


@pytest.fixture(autouse=True)
def override_dependencies(
    app: FastAPI,
    db_session: Session,
    broadcast_store: InMemoryBroadcastStore,
    push_gateway: RecordingPushGateway,
) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    overrides: dict[Callable[..., Any], Callable[..., Any]] = {
        app_get_session: _get_session_override,
        get_broadcast_store_dep: lambda: broadcast_store,
        get_push_gateway_dep: lambda: push_gateway,
    }
    app.dependency_overrides.update(overrides)
    try:
        yield
    finally:
        for dependency in overrides:
            app.dependency_overrides.pop(dependency, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def directory(db_session: Session) -> UserDirectory:
    return UserDirectory(db_session)


@pytest.fixture()
def tracker(
    db_session: Session,
    directory: UserDirectory,
    broadcast_store: InMemoryBroadcastStore,
    push_gateway: RecordingPushGateway,
    runner: SideEffectRunner,
) -> SecurityViolationTracker:
    return SecurityViolationTracker(
        db_session,
        directory=directory,
        broadcast=broadcast_store,
        push_gateway=push_gateway,
        runner=runner,
    )


@pytest.fixture()
def guard(
    db_session: Session,
    directory: UserDirectory,
    tracker: SecurityViolationTracker,
) -> SessionGuard:
    return SessionGuard(db_session, directory=directory, tracker=tracker)


@pytest.fixture()
def make_regular(db_session: Session, directory: UserDirectory) -> Callable[..., RegularUser]:
    """Return a factory creating persisted regular users."""

    def _make(name: str = "user", **fields: Any) -> RegularUser:
        handle = f"{name}{next(_HANDLE_COUNTER)}"
        user = directory.create_regular(handle, LOGIN_KEY, display_name=name.title())
        for key, value in fields.items():
            setattr(user, key, value)
        db_session.commit()
        return user

    return _make


@pytest.fixture()
def make_admin(db_session: Session, directory: UserDirectory) -> Callable[..., AdminUser]:
    """Return a factory creating persisted administrators."""

    def _make(name: str = "admin") -> AdminUser:
        handle = f"{name}{next(_HANDLE_COUNTER)}"
        admin = directory.create_admin(handle, LOGIN_KEY, display_name=name.title())
        db_session.commit()
        return admin

    return _make


@pytest.fixture()
def regular_user(make_regular: Callable[..., RegularUser]) -> RegularUser:
    return make_regular("alice")


@pytest.fixture()
def other_regular(make_regular: Callable[..., RegularUser]) -> RegularUser:
    return make_regular("bob")


@pytest.fixture()
def admin_user(make_admin: Callable[..., AdminUser]) -> AdminUser:
    return make_admin("operator")


@pytest.fixture()
def make_group(db_session: Session) -> Callable[..., ChatGroup]:
    """Return a factory creating a group with the given members."""

    def _make(name: str, members: Iterable[User], *, is_active: bool = True) -> ChatGroup:
        group = ChatGroup(name=name, is_active=is_active)
        group.members = [ChatGroupMember(user_id=member.id) for member in members]
        db_session.add(group)
        db_session.commit()
        return group

    return _make


@pytest.fixture()
def login_headers(guard: SessionGuard) -> Callable[..., dict[str, str]]:
    """Return a factory that opens a session and builds request headers."""

    def _login(user: User, fingerprint: str = "device-1") -> dict[str, str]:
        issued = asyncio.run(guard.open_session(user, fingerprint))
        return {
            "Authorization": f"Bearer {issued.access_token}",
            "X-Device-Fingerprint": fingerprint,
        }

    return _login


@pytest.fixture()
def user_headers(
    regular_user: RegularUser,
    login_headers: Callable[..., dict[str, str]],
) -> dict[str, str]:
    return login_headers(regular_user, "alice-phone")


@pytest.fixture()
def admin_headers(
    admin_user: AdminUser,
    login_headers: Callable[..., dict[str, str]],
) -> dict[str, str]:
    return login_headers(admin_user, "admin-console")


@pytest.fixture()
def login_key() -> str:
    """Return the login key every fixture user is created with."""
    return LOGIN_KEY
