"""
CurrencyTransaction: append-only currency ledger.
Schema only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from sparkle.core.database.base import Base, BigIntPK, IdMixin, UTCDateTime, utc_now


class CurrencyTransaction(Base, IdMixin):
    """
    One row per balance mutation; never updated or deleted.

    ``amount`` is signed. For every (account, currency) the sum of
    ``amount`` equals the account's balance and ``balance_after`` snapshots
    the balance right after this row.
    """

    __tablename__ = "currency_transactions"
    __table_args__ = (
        Index("ix_currency_transactions_account_currency_time", "account_id", "currency", "created_at"),
        Index("ix_currency_transactions_kind_time", "kind", "created_at"),
    )

    account_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(20), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str] = mapped_column(String(200), nullable=False)
    reference_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    reference_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
