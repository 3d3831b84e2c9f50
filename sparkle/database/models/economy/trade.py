"""
Trade: two-party item and currency exchange.
Schema only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from sparkle.core.database.base import Base, BigIntPK, IdMixin, JSONType, TimestampMixin, UTCDateTime

from ..enums import TradeStatus


class Trade(Base, IdMixin, TimestampMixin):
    """
    Offer from ``initiator_id`` to ``recipient_id``.

    Item maps are ``{item_id: quantity}``. Points are sparkle points.
    Status moves forward only; see ``TradeStatus``.
    """

    __tablename__ = "trades"
    __table_args__ = (
        CheckConstraint("initiator_id <> recipient_id", name="not_self"),
        CheckConstraint("initiator_points >= 0 AND recipient_points >= 0", name="points_non_negative"),
        Index("ix_trades_recipient_status", "recipient_id", "status"),
        Index("ix_trades_initiator_status", "initiator_id", "status"),
        Index("ix_trades_status_expiry", "status", "expires_at"),
    )

    initiator_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    recipient_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )

    initiator_items: Mapped[Dict[str, int]] = mapped_column(JSONType, nullable=False, default=dict)
    recipient_items: Mapped[Dict[str, int]] = mapped_column(JSONType, nullable=False, default=dict)
    initiator_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    recipient_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TradeStatus.PENDING.value)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    responded_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}
