"""Database layer - explicit handle, base classes and types."""

from authorization_kernel.db.base import Base, TrackedBase, UUIDString
from authorization_kernel.db.engine import Database, init_engine_from_url

__all__ = [
    "Database",
    "init_engine_from_url",
    "Base",
    "TrackedBase",
    "UUIDString",
]
