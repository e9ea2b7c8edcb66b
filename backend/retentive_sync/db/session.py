"""Engine and session helpers for the SQLite-backed local store."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .base import Base

_MEMORY_URLS = {"sqlite://", "sqlite:///:memory:"}


def build_engine(database_url: str, *, echo: bool = False) -> Engine:
    if not database_url:
        raise RuntimeError("RETENTIVE_DATABASE_URL must be configured before using the local store.")

    kwargs: dict[str, object] = {
        "echo": echo,
        "future": True,
        "pool_pre_ping": True,
    }
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in _MEMORY_URLS:
            # every session must see the same in-memory database
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def init_schema(engine: Engine) -> None:
    """Create any missing local tables. Deployed databases use the alembic migration."""
    from . import models  # noqa: F401  # registers the mapped tables

    Base.metadata.create_all(engine)


@contextmanager
def session_scope(
    factory: sessionmaker[Session],
    *,
    commit: bool = True,
) -> Generator[Session, None, None]:
    session = factory()
    try:
        yield session
        if commit:
            session.commit()
    except Exception:  # noqa: BLE001
        session.rollback()
        raise
    finally:
        session.close()


__all__ = [
    "build_engine",
    "build_session_factory",
    "init_schema",
    "session_scope",
]
