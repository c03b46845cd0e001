"""Engine and session factory for the durable message store."""

from __future__ import annotations

from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from relay_stage.core.settings import settings


class Base(DeclarativeBase):
    """Declarative base for every Relay table."""


def _engine_options(url: str) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": settings.sql_debug, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        # Request handlers run in a threadpool.
        options["connect_args"] = {"check_same_thread": False}
    return options


engine = create_engine(
    settings.effective_database_url,
    **_engine_options(settings.effective_database_url),
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db() -> Generator[Session, None, None]:
    """Yield one session per request and close it afterwards."""
    with SessionLocal() as db:
        yield db
