"""
InventoryEntry: items held by an account.
Schema only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from sparkle.core.database.base import Base, BigIntPK, IdMixin, TimestampMixin, UTCDateTime


class InventoryEntry(Base, IdMixin, TimestampMixin):
    """
    One row per (account, item). Rows whose quantity would reach zero are
    deleted rather than stored.
    """

    __tablename__ = "inventory_entries"
    __table_args__ = (
        UniqueConstraint("account_id", "item_id"),
        CheckConstraint("quantity > 0", name="quantity_positive"),
    )

    account_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    equipped: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source: Mapped[str] = mapped_column(String(30), nullable=False, default="purchase")
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}
