"""
Login streak queries.

A streak is the number of consecutive UTC calendar days with at least one
login event, counted back from today (or from yesterday when the account has
not logged in yet today). Only the last ``window_days`` are inspected.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional, Set

from sqlalchemy import select

from sparkle.core.database.base import utc_now
from sparkle.database.models.social import LoginEvent
from sparkle.modules.shared.formulas import calculate_login_streak

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

DEFAULT_WINDOW_DAYS = 30


async def get_login_days(
    session: AsyncSession,
    account_id: int,
    *,
    since: datetime,
) -> Set[date]:
    stmt = select(LoginEvent.occurred_at).where(
        LoginEvent.account_id == account_id,
        LoginEvent.occurred_at >= since,
    )
    result = await session.execute(stmt)
    return {occurred.astimezone(timezone.utc).date() for occurred in result.scalars().all()}


async def get_login_streak(
    session: AsyncSession,
    account_id: int,
    *,
    today: Optional[date] = None,
    window_days: int = DEFAULT_WINDOW_DAYS,
) -> int:
    today = today or utc_now().date()
    since = datetime.combine(today - timedelta(days=window_days), datetime.min.time(), tzinfo=timezone.utc)
    days = await get_login_days(session, account_id, since=since)
    return calculate_login_streak(days, today)


def record_login(session: AsyncSession, account_id: int, at: Optional[datetime] = None) -> LoginEvent:
    event = LoginEvent(account_id=account_id, occurred_at=at or utc_now())
    session.add(event)
    return event
