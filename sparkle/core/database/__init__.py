"""
Database infrastructure: declarative base, engine/session management and
the unit of work.

``UnitOfWork`` lives in ``sparkle.core.database.unit_of_work``; it depends on
the domain exception module and is imported from there directly.
"""

from sparkle.core.database.base import Base, IdMixin, JSONType, TimestampMixin, UTCDateTime, utc_now
from sparkle.core.database.service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    DatabaseService,
)

__all__ = [
    "Base",
    "IdMixin",
    "JSONType",
    "TimestampMixin",
    "UTCDateTime",
    "utc_now",
    "DatabaseService",
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
]
