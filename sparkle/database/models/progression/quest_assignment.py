"""
QuestAssignment: a quest handed to an account for one cycle.
Schema only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from sparkle.core.database.base import Base, BigIntPK, IdMixin, JSONType, TimestampMixin, UTCDateTime, utc_now

from ..enums import QuestStatus


class QuestAssignment(Base, IdMixin, TimestampMixin):
    """
    ``cycle_key`` identifies the rotation the assignment belongs to
    (``2024-03-10`` for a daily quest, ``2024-W10`` weekly, ``2024-03``
    monthly, ``once`` or an assignment timestamp for the rest). The unique
    constraint makes re-assignment within a cycle impossible.

    ``progress`` holds counters that have no durable source query
    (reactions given today, XP earned since assignment).
    """

    __tablename__ = "quest_assignments"
    __table_args__ = (
        UniqueConstraint("account_id", "quest_id", "cycle_key"),
        Index("ix_quest_assignments_account_status", "account_id", "status"),
        Index("ix_quest_assignments_status_expiry", "status", "expires_at"),
    )

    account_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
    )
    quest_id: Mapped[str] = mapped_column(String(100), nullable=False)
    quest_type: Mapped[str] = mapped_column(String(20), nullable=False)
    cycle_key: Mapped[str] = mapped_column(String(40), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=QuestStatus.AVAILABLE.value)
    progress: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    assigned_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
    started_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}
