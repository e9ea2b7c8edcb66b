"""Persistence helpers over the local SQLite store."""

from .local_records import LocalStore

__all__ = ["LocalStore"]
