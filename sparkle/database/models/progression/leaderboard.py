"""
LeaderboardSnapshot: persisted ranking for one (metric, scope, period).
Schema only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from sparkle.core.database.base import Base, IdMixin, JSONType, UTCDateTime, utc_now


class LeaderboardSnapshot(Base, IdMixin):
    """
    Cache of a computed ranking, upserted by ``refresh_leaderboard``.
    Never the source of truth.
    """

    __tablename__ = "leaderboard_snapshots"
    __table_args__ = (UniqueConstraint("metric", "scope", "period"),)

    metric: Mapped[str] = mapped_column(String(30), nullable=False)
    scope: Mapped[str] = mapped_column(String(60), nullable=False)
    period: Mapped[str] = mapped_column(String(10), nullable=False)
    entries: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    computed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
