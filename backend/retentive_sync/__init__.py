"""Local-first sync core: offline queue, sync engine, conflict resolution and realtime channels."""

__version__ = "0.1.0"
