"""Database layer - engine, base classes, types."""

from rent_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from rent_kernel.db.engine import create_tables, get_engine, get_session, session_scope
from rent_kernel.db.types import round_half_up_int, round_money

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "UUID",
    "round_money",
    "round_half_up_int",
]
