"""Database layer - persistence handle and declarative base classes."""

from fulfillment_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from fulfillment_kernel.db.engine import Database

__all__ = [
    "Base",
    "Database",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "UUID",
]
