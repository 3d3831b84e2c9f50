"""
AchievementProgress: per (account, achievement) progress and unlock.
Schema only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from sparkle.core.database.base import Base, BigIntPK, IdMixin, TimestampMixin, UTCDateTime


class AchievementProgress(Base, IdMixin, TimestampMixin):
    """
    Created lazily on first evaluation.

    ``unlocked_at`` is set exactly once and never cleared; the rewards of
    the achievement are granted in the same transaction that sets it.
    """

    __tablename__ = "achievement_progress"
    __table_args__ = (UniqueConstraint("account_id", "achievement_id"),)

    account_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    achievement_id: Mapped[str] = mapped_column(String(100), nullable=False)
    current: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    required: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unlocked_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_unlocked(self) -> bool:
        return self.unlocked_at is not None
