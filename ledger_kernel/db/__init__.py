"""Database layer - engine, sessions, base classes and immutability rules."""

from ledger_kernel.db.base import UUID, Base, TimestampedBase, UUIDString
from ledger_kernel.db.engine import (
    build_engine,
    create_tables,
    get_engine,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "Base",
    "TimestampedBase",
    "UUIDString",
    "UUID",
    "build_engine",
    "create_tables",
    "get_engine",
    "init_engine_from_url",
    "session_scope",
]
