"""
Leaderboard Service
===================

Purpose
-------
Ranked views over one metric, scope and period, computed on read and cached
with a short TTL.

Domain
------
- Metrics: ``xp``, ``sparkle_points``, ``posts``, ``followers``
- Scopes: ``global``, ``following:<account_id>`` (the accounts it follows plus itself)
- Periods: ``day`` (since start of UTC day), ``week`` (7 days), ``month`` (30 days), ``all``
- All-time ``xp`` and ``sparkle_points`` sort current account balances;
  everything else aggregates the append-only logs inside the window
- Admins and banned accounts never rank
- Ties break on ascending account id, so identical data gives identical order

Caching
-------
Rankings are stored through RedisService under
``leaderboard:{metric}:{scope}:{period}:{limit}``. A disabled or unreachable
cache degrades to computing every call. ``refresh_leaderboard`` recomputes,
upserts a LeaderboardSnapshot row and rewrites the cache after commit.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, func, or_, select

from sparkle.core.database.base import utc_now
from sparkle.core.database.service import DatabaseService
from sparkle.core.database.unit_of_work import UnitOfWork
from sparkle.core.logging.logger import get_logger
from sparkle.core.redis.service import RedisService
from sparkle.core.validation.input_validator import InputValidator
from sparkle.database.models.core import Account
from sparkle.database.models.economy import CurrencyTransaction
from sparkle.database.models.enums import (
    AccountRole,
    CurrencyType,
    LeaderboardMetric,
    LeaderboardPeriod,
    TransactionKind,
)
from sparkle.database.models.progression import LeaderboardSnapshot, XPEntry
from sparkle.database.models.social import Follow, Post
from sparkle.modules.shared.base_repository import BaseRepository
from sparkle.modules.shared.base_service import BaseService
from sparkle.modules.shared.cache_keys import leaderboard_key, leaderboard_pattern
from sparkle.modules.shared.exceptions import ConcurrencyConflictError, ValidationError

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from sparkle.core.config.manager import ConfigManager
    from sparkle.core.event.bus import EventBus

GLOBAL_SCOPE = "global"
FOLLOWING_SCOPE_PREFIX = "following:"

PERIOD_DAYS = {
    LeaderboardPeriod.WEEK: 7,
    LeaderboardPeriod.MONTH: 30,
}


def period_start(period: LeaderboardPeriod, now: datetime) -> Optional[datetime]:
    """Inclusive lower bound of ``period``; None for all-time."""
    if period is LeaderboardPeriod.ALL:
        return None
    if period is LeaderboardPeriod.DAY:
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    return now - timedelta(days=PERIOD_DAYS[period])


# ============================================================================
# Repository
# ============================================================================


class LeaderboardSnapshotRepository(BaseRepository[LeaderboardSnapshot]):
    async def find_snapshot(
        self,
        session: AsyncSession,
        metric: str,
        scope: str,
        period: str,
        *,
        for_update: bool = False,
    ) -> Optional[LeaderboardSnapshot]:
        return await self.find_one_where(
            session,
            LeaderboardSnapshot.metric == metric,
            LeaderboardSnapshot.scope == scope,
            LeaderboardSnapshot.period == period,
            for_update=for_update,
        )


# ============================================================================
# LeaderboardService
# ============================================================================


class LeaderboardService(BaseService):
    """
    Public Methods
    --------------
    - get_leaderboard() -> Ranked entries, cached
    - refresh_leaderboard() -> Recompute, persist snapshot, rewrite cache
    - get_snapshot() -> Last persisted snapshot
    - get_user_rank() -> One account's position
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._snapshots = LeaderboardSnapshotRepository(
            model_class=LeaderboardSnapshot,
            logger=get_logger(f"{__name__}.LeaderboardSnapshotRepository"),
        )

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def get_leaderboard(
        self,
        metric: str,
        scope: str = GLOBAL_SCOPE,
        period: str = LeaderboardPeriod.ALL.value,
        limit: Optional[int] = None,
        *,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """
        Top ``limit`` accounts for ``metric`` within ``scope`` and ``period``.

        Returns:
            ``[{"rank", "account_id", "username", "level", "score"}, ...]``

        Raises:
            ValidationError: Unknown metric, scope or period, or limit out of range
        """
        metric_enum, scope, period_enum, limit = self._validate(metric, scope, period, limit)
        key = leaderboard_key(metric_enum.value, scope, period_enum.value, limit)

        cached = await RedisService.get_json(key)
        if cached is not None:
            self.log.debug("Leaderboard cache hit", extra={"key": key})
            return cached

        self.log_operation(
            "get_leaderboard",
            metric=metric_enum.value,
            scope=scope,
            period=period_enum.value,
            limit=limit,
        )

        async with DatabaseService.get_session() as session:
            entries = await self._compute(session, metric_enum, scope, period_enum, limit, now or utc_now())

        await RedisService.set_json(key, entries, ttl_seconds=self._cache_ttl())
        return entries

    async def get_snapshot(
        self,
        metric: str,
        scope: str = GLOBAL_SCOPE,
        period: str = LeaderboardPeriod.ALL.value,
    ) -> Optional[Dict[str, Any]]:
        metric_enum, scope, period_enum, _ = self._validate(metric, scope, period, None)

        async with DatabaseService.get_session() as session:
            snapshot = await self._snapshots.find_snapshot(session, metric_enum.value, scope, period_enum.value)
            if snapshot is None:
                return None
            return {
                "metric": snapshot.metric,
                "scope": snapshot.scope,
                "period": snapshot.period,
                "entries": list(snapshot.entries or []),
                "computed_at": snapshot.computed_at.isoformat(),
            }

    async def get_user_rank(
        self,
        account_id: int,
        metric: str = LeaderboardMetric.XP.value,
        period: str = LeaderboardPeriod.ALL.value,
        *,
        now: Optional[datetime] = None,
        session: Optional[AsyncSession] = None,
    ) -> Dict[str, Any]:
        """
        Global position of ``account_id``.

        ``rank`` is None when the account is excluded from rankings or has no
        score in a windowed period.
        """
        account_id = InputValidator.validate_account_id(account_id)
        metric_enum, _, period_enum, _ = self._validate(metric, GLOBAL_SCOPE, period, None)
        now = now or utc_now()

        if session is not None:
            return await self._rank_of(session, account_id, metric_enum, period_enum, now)
        async with DatabaseService.get_session() as session:
            return await self._rank_of(session, account_id, metric_enum, period_enum, now)

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def refresh_leaderboard(
        self,
        metric: str,
        scope: str = GLOBAL_SCOPE,
        period: str = LeaderboardPeriod.ALL.value,
        limit: Optional[int] = None,
        *,
        now: Optional[datetime] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> List[Dict[str, Any]]:
        """
        Recompute the ranking, upsert its snapshot and rewrite the cache.

        Safe to call redundantly: concurrent refreshes converge on one
        snapshot row, and a lost insert race is retried once.
        """
        metric_enum, scope, period_enum, limit = self._validate(metric, scope, period, limit)
        now = now or utc_now()

        self.log_operation(
            "refresh_leaderboard",
            metric=metric_enum.value,
            scope=scope,
            period=period_enum.value,
            limit=limit,
        )

        try:
            return await self._refresh(uow, metric_enum, scope, period_enum, limit, now)
        except ConcurrencyConflictError:
            if uow is not None:
                raise
            self.log.info(
                "Leaderboard snapshot raced, retrying",
                extra={"metric": metric_enum.value, "scope": scope, "period": period_enum.value},
            )
            return await self._refresh(None, metric_enum, scope, period_enum, limit, now)

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    async def _refresh(
        self,
        uow: Optional[UnitOfWork],
        metric: LeaderboardMetric,
        scope: str,
        period: LeaderboardPeriod,
        limit: int,
        now: datetime,
    ) -> List[Dict[str, Any]]:
        async with UnitOfWork.begin(uow) as uow:
            session = uow.session
            entries = await self._compute(session, metric, scope, period, limit, now)

            snapshot = await self._snapshots.find_snapshot(
                session, metric.value, scope, period.value, for_update=True
            )
            if snapshot is None:
                snapshot = self._snapshots.add(
                    session,
                    LeaderboardSnapshot(metric=metric.value, scope=scope, period=period.value),
                )
            snapshot.entries = entries
            snapshot.computed_at = now
            await self._snapshots.flush(session)

            pattern = leaderboard_pattern(metric.value, scope, period.value)
            key = leaderboard_key(metric.value, scope, period.value, limit)
            ttl = self._cache_ttl()

            async def _rewrite_cache() -> None:
                await RedisService.delete_pattern(pattern)
                await RedisService.set_json(key, entries, ttl_seconds=ttl)

            uow.after_commit(f"cache:refresh:{key}", _rewrite_cache, key=f"cache:{pattern}")
            self.emit_after_commit(
                uow,
                "leaderboard.refreshed",
                {"metric": metric.value, "scope": scope, "period": period.value, "count": len(entries)},
            )
            return entries

    async def _compute(
        self,
        session: AsyncSession,
        metric: LeaderboardMetric,
        scope: str,
        period: LeaderboardPeriod,
        limit: int,
        now: datetime,
    ) -> List[Dict[str, Any]]:
        scores = self._score_subquery(metric, period, now)
        stmt = (
            select(Account.id, Account.username, Account.level, scores.c.score)
            .join(scores, scores.c.account_id == Account.id)
            .where(*self._eligible(scope))
            .order_by(scores.c.score.desc(), Account.id.asc())
            .limit(limit)
        )
        rows = (await session.execute(stmt)).all()
        return [
            {
                "rank": position,
                "account_id": row.id,
                "username": row.username,
                "level": row.level,
                "score": int(row.score),
            }
            for position, row in enumerate(rows, start=1)
        ]

    async def _rank_of(
        self,
        session: AsyncSession,
        account_id: int,
        metric: LeaderboardMetric,
        period: LeaderboardPeriod,
        now: datetime,
    ) -> Dict[str, Any]:
        scores = self._score_subquery(metric, period, now)
        eligible = self._eligible(GLOBAL_SCOPE)

        mine_stmt = (
            select(scores.c.score)
            .join(Account, Account.id == scores.c.account_id)
            .where(scores.c.account_id == account_id, *eligible)
        )
        mine = (await session.execute(mine_stmt)).scalar_one_or_none()
        if mine is None:
            return {"account_id": account_id, "metric": metric.value, "period": period.value, "rank": None, "score": 0}

        ahead_stmt = (
            select(func.count())
            .select_from(scores)
            .join(Account, Account.id == scores.c.account_id)
            .where(
                *eligible,
                or_(
                    scores.c.score > mine,
                    and_(scores.c.score == mine, scores.c.account_id < account_id),
                ),
            )
        )
        ahead = int((await session.execute(ahead_stmt)).scalar_one())
        return {
            "account_id": account_id,
            "metric": metric.value,
            "period": period.value,
            "rank": ahead + 1,
            "score": int(mine),
        }

    @staticmethod
    def _score_subquery(metric: LeaderboardMetric, period: LeaderboardPeriod, now: datetime) -> Any:
        """``(account_id, score)`` rows for every account with a score."""
        since = period_start(period, now)

        if since is None and metric is LeaderboardMetric.XP:
            return select(Account.id.label("account_id"), Account.experience.label("score")).subquery()
        if since is None and metric is LeaderboardMetric.SPARKLE_POINTS:
            return select(Account.id.label("account_id"), Account.sparkle_points.label("score")).subquery()

        if metric is LeaderboardMetric.XP:
            owner, score = XPEntry.account_id, func.sum(XPEntry.amount)
            conditions = [XPEntry.created_at >= since]
        elif metric is LeaderboardMetric.SPARKLE_POINTS:
            owner, score = CurrencyTransaction.account_id, func.sum(CurrencyTransaction.amount)
            conditions = [
                CurrencyTransaction.currency == CurrencyType.SPARKLE_POINTS.value,
                CurrencyTransaction.kind == TransactionKind.EARNED.value,
                CurrencyTransaction.created_at >= since,
            ]
        elif metric is LeaderboardMetric.POSTS:
            owner, score = Post.author_id, func.count(Post.id)
            conditions = [Post.published.is_(True)]
            if since is not None:
                conditions.append(Post.created_at >= since)
        else:
            owner, score = Follow.following_id, func.count(Follow.id)
            conditions = [Follow.created_at >= since] if since is not None else []

        return (
            select(owner.label("account_id"), score.label("score"))
            .where(*conditions)
            .group_by(owner)
            .having(score > 0)
            .subquery()
        )

    @staticmethod
    def _eligible(scope: str) -> List[Any]:
        conditions = [Account.role != AccountRole.ADMIN.value, Account.banned.is_(False)]
        if scope.startswith(FOLLOWING_SCOPE_PREFIX):
            viewer = int(scope[len(FOLLOWING_SCOPE_PREFIX):])
            followed = select(Follow.following_id).where(Follow.follower_id == viewer)
            conditions.append(or_(Account.id == viewer, Account.id.in_(followed)))
        return conditions

    def _validate(
        self,
        metric: Any,
        scope: Any,
        period: Any,
        limit: Optional[int],
    ) -> Tuple[LeaderboardMetric, str, LeaderboardPeriod, int]:
        metric_value = InputValidator.validate_choice(metric, "metric", [m.value for m in LeaderboardMetric])
        period_value = InputValidator.validate_choice(period, "period", [p.value for p in LeaderboardPeriod])

        scope = str(scope or "").strip().lower()
        if scope != GLOBAL_SCOPE:
            if not scope.startswith(FOLLOWING_SCOPE_PREFIX):
                raise ValidationError("scope", "Scope must be 'global' or 'following:<account_id>'")
            viewer = InputValidator.validate_account_id(scope[len(FOLLOWING_SCOPE_PREFIX):], "scope")
            scope = f"{FOLLOWING_SCOPE_PREFIX}{viewer}"

        max_limit = self.get_int_config("leaderboard.max_limit", 100)
        if limit is None:
            limit = self.get_int_config("leaderboard.default_limit", 10)
        limit = InputValidator.validate_integer(limit, "limit", min_value=1, max_value=max_limit)

        return LeaderboardMetric(metric_value), scope, LeaderboardPeriod(period_value), limit

    def _cache_ttl(self) -> int:
        return self.get_int_config("leaderboard.cache_ttl_seconds", 300)
