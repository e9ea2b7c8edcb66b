"""Database utilities for the local store."""

from .session import (
    build_engine,
    build_session_factory,
    init_schema,
    session_scope,
)

__all__ = [
    "build_engine",
    "build_session_factory",
    "init_schema",
    "session_scope",
]
