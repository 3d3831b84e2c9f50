"""
XPEntry: append-only experience log.
Schema only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import BigInteger, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from sparkle.core.database.base import Base, BigIntPK, IdMixin, JSONType, UTCDateTime, utc_now


class XPEntry(Base, IdMixin):
    """One row per XP award; ``total_after`` snapshots cumulative experience."""

    __tablename__ = "xp_entries"
    __table_args__ = (Index("ix_xp_entries_account_time", "account_id", "created_at"),)

    account_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[str] = mapped_column(String(200), nullable=False)
    details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    total_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now, index=True)
