"""Database layer - engine, base classes and money helpers."""

from epp_kernel.db.base import Base, TrackedBase, UUIDString
from epp_kernel.db.engine import (
    build_engine,
    create_tables,
    get_engine,
    get_session,
    session_scope,
)

__all__ = [
    "build_engine",
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
]
