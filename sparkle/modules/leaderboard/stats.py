"""
User stats: the profile summary shown next to rankings.

Read-only; assembled from one session and cached briefly under
``user:stats:{account_id}``. XP awards and currency mutations drop the
cached copy after they commit.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict

from sqlalchemy import func, select

from sparkle.core.database.service import DatabaseService
from sparkle.core.logging.logger import get_logger
from sparkle.core.redis.service import RedisService
from sparkle.core.validation.input_validator import InputValidator
from sparkle.database.models.core import Account
from sparkle.database.models.economy import CurrencyTransaction
from sparkle.database.models.enums import CurrencyType, QuestStatus, TransactionKind
from sparkle.database.models.progression import QuestAssignment, XPEntry
from sparkle.database.models.social import Comment, Follow, Post
from sparkle.modules.accounts.service import AccountRepository
from sparkle.modules.economy.ledger import CurrencyTransactionRepository
from sparkle.modules.progression.streaks import get_login_streak
from sparkle.modules.progression.xp_service import xp_entry_to_dict
from sparkle.modules.shared.base_service import BaseService
from sparkle.modules.shared.cache_keys import user_stats_key
from sparkle.modules.shared.formulas import calculate_level_progress

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from sparkle.core.config.manager import ConfigManager
    from sparkle.core.event.bus import EventBus
    from sparkle.modules.leaderboard.service import LeaderboardService
    from sparkle.modules.progression.achievement_service import AchievementService


class UserStatsService(BaseService):
    """
    Public Methods
    --------------
    - get_user_stats() -> Level, rank, achievements, activity, quests, economy, streak
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        achievements: AchievementService,
        leaderboard: LeaderboardService,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._achievements = achievements
        self._leaderboard = leaderboard
        self._accounts = AccountRepository(
            model_class=Account,
            logger=get_logger(f"{__name__}.AccountRepository"),
        )
        self._transactions = CurrencyTransactionRepository(
            model_class=CurrencyTransaction,
            logger=get_logger(f"{__name__}.CurrencyTransactionRepository"),
        )

    async def get_user_stats(self, account_id: int) -> Dict[str, Any]:
        """
        Raises:
            NotFoundError: Unknown account
        """
        account_id = InputValidator.validate_account_id(account_id)
        key = user_stats_key(account_id)

        cached = await RedisService.get_json(key)
        if cached is not None:
            return cached

        self.log_operation("get_user_stats", account_id=account_id)

        async with DatabaseService.get_session() as session:
            stats = await self._assemble(session, account_id)

        await RedisService.set_json(key, stats, ttl_seconds=self.get_int_config("stats.cache_ttl_seconds", 60))
        return stats

    async def _assemble(self, session: AsyncSession, account_id: int) -> Dict[str, Any]:
        account = await self._accounts.require(session, account_id)

        rank = await self._leaderboard.get_user_rank(account_id, session=session)
        achievements = await self._achievements.get_summary(
            session, account_id, recent=self.get_int_config("stats.recent_achievements", 5)
        )

        recent_xp = (
            await session.execute(
                select(XPEntry)
                .where(XPEntry.account_id == account_id)
                .order_by(XPEntry.created_at.desc(), XPEntry.id.desc())
                .limit(self.get_int_config("stats.recent_xp_entries", 10))
            )
        ).scalars().all()

        quest_rows = (
            await session.execute(
                select(QuestAssignment.status, func.count())
                .where(QuestAssignment.account_id == account_id)
                .group_by(QuestAssignment.status)
            )
        ).all()
        quests = {status.value: 0 for status in QuestStatus}
        quests.update({status: int(count) for status, count in quest_rows})

        streak = await get_login_streak(
            session, account_id, window_days=self.get_int_config("streaks.window_days", 30)
        )

        return {
            "account_id": account.id,
            "username": account.username,
            "level": calculate_level_progress(account.experience, account.level).to_dict(),
            "rank": rank["rank"],
            "achievements": achievements,
            "activity": {
                "posts": await self._count(session, Post, Post.author_id == account_id, Post.published.is_(True)),
                "comments": await self._count(session, Comment, Comment.author_id == account_id),
                "followers": await self._count(session, Follow, Follow.following_id == account_id),
                "following": await self._count(session, Follow, Follow.follower_id == account_id),
            },
            "recent_xp": [xp_entry_to_dict(entry) for entry in recent_xp],
            "quests": quests,
            "economy": {
                "sparkle_points": account.sparkle_points,
                "premium_points": account.premium_points,
                "sparkle_earned": await self._transactions.kind_total(
                    session, account_id, CurrencyType.SPARKLE_POINTS, TransactionKind.EARNED
                ),
                "sparkle_spent": await self._transactions.kind_total(
                    session, account_id, CurrencyType.SPARKLE_POINTS, TransactionKind.SPENT
                ),
            },
            "login_streak": streak,
        }

    @staticmethod
    async def _count(session: AsyncSession, model: Any, *conditions: Any) -> int:
        stmt = select(func.count()).select_from(model).where(*conditions)
        return int((await session.execute(stmt)).scalar_one())
