"""
StoreItem: purchasable catalogue entry.
Schema only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from sparkle.core.database.base import Base, TimestampMixin, UTCDateTime

from ..enums import ItemCategory


class StoreItem(Base, TimestampMixin):
    """
    Store item keyed by a slug id (``"theme_aurora"``).

    An item is priced in premium points when ``price_premium`` is set,
    otherwise in sparkle points. ``stock_remaining`` of None means unlimited.
    """

    __tablename__ = "store_items"
    __table_args__ = (
        CheckConstraint("discount_percentage BETWEEN 0 AND 100", name="discount_range"),
        CheckConstraint("stock_remaining IS NULL OR stock_remaining >= 0", name="stock_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(30), nullable=False, default=ItemCategory.COSMETIC.value)

    price_sparkle: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    price_premium: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    discount_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    stock_remaining: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    available_from: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    available_until: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    tradeable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<StoreItem id={self.id!r}>"
