"""
Account: one gamification profile per user.
Schema only.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from sparkle.core.database.base import Base, IdMixin, TimestampMixin

from ..enums import AccountRole


class Account(Base, IdMixin, TimestampMixin):
    """
    XP, level and both currency balances for a user.

    ``id`` is the host application's user id. Balances and experience are
    mutated only by the currency ledger and XP award paths, always under a
    row lock; ``version`` catches any write that slipped past the lock.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("experience >= 0", name="experience_non_negative"),
        CheckConstraint("level >= 1", name="level_positive"),
        CheckConstraint("sparkle_points >= 0", name="sparkle_points_non_negative"),
        CheckConstraint("premium_points >= 0", name="premium_points_non_negative"),
    )

    username: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=AccountRole.USER.value)
    banned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    experience: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    sparkle_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    premium_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, doc="Optimistic locking version")

    __mapper_args__ = {"version_id_col": version}
