"""
Achievement Service
===================

Purpose
-------
Evaluates achievement definitions when a trigger fires and unlocks the ones
whose criteria are met. Progress is always measured against durable state
(posts, follows, ledgers, quest assignments, login events), never against
in-memory counters, so evaluation is correct across restarts and retries.

Unlock Protocol
---------------
1. Lock (or lazily create) the ``AchievementProgress`` row
2. Skip when ``unlocked_at`` is already set
3. Require every prerequisite to be unlocked
4. Measure progress; below threshold -> persist progress and stop
5. Set ``unlocked_at`` and flush, then grant the reward bundle in the same
   unit of work. The flag and the grant commit together or not at all.

Re-running the same trigger never grants twice: step 2 sees the flag.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set

from sqlalchemy import func, or_, select

from sparkle.core.database.service import DatabaseService
from sparkle.core.database.unit_of_work import UnitOfWork
from sparkle.core.logging.logger import get_logger
from sparkle.core.validation.input_validator import InputValidator
from sparkle.database.models.core import Account
from sparkle.database.models.economy import CurrencyTransaction, Trade
from sparkle.database.models.enums import CurrencyType, QuestStatus, TradeStatus, TransactionKind
from sparkle.database.models.progression import AchievementProgress, QuestAssignment
from sparkle.database.models.social import Comment, Follow, Post, Reaction
from sparkle.modules.accounts.service import AccountRepository
from sparkle.modules.progression.streaks import get_login_streak
from sparkle.modules.shared.base_repository import BaseRepository
from sparkle.modules.shared.base_service import BaseService
from sparkle.modules.shared.catalog import AchievementDefinition, AchievementMetric
from sparkle.modules.shared.formulas import calculate_percentage
from sparkle.modules.shared.triggers import EntityRef, EntityType, TriggerEvent

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from sparkle.core.config.manager import ConfigManager
    from sparkle.core.event.bus import EventBus
    from sparkle.core.infra.notifications import SideEffectDispatcher
    from sparkle.modules.economy.inventory import InventoryService
    from sparkle.modules.economy.ledger import CurrencyLedger
    from sparkle.modules.progression.xp_service import XPService
    from sparkle.modules.shared.catalog import GamificationCatalog


# ============================================================================
# Repository
# ============================================================================


class AchievementProgressRepository(BaseRepository[AchievementProgress]):
    async def find_progress(
        self,
        session: AsyncSession,
        account_id: int,
        achievement_id: str,
        *,
        for_update: bool = False,
    ) -> Optional[AchievementProgress]:
        return await self.find_one_where(
            session,
            AchievementProgress.account_id == account_id,
            AchievementProgress.achievement_id == achievement_id,
            for_update=for_update,
        )

    async def unlocked_ids(self, session: AsyncSession, account_id: int) -> Set[str]:
        stmt = select(AchievementProgress.achievement_id).where(
            AchievementProgress.account_id == account_id,
            AchievementProgress.unlocked_at.is_not(None),
        )
        result = await session.execute(stmt)
        return set(result.scalars().all())


# ============================================================================
# Durable-state measurements
# ============================================================================


async def _scalar(session: AsyncSession, stmt: Any) -> int:
    result = await session.execute(stmt)
    return int(result.scalar_one() or 0)


async def measure_metric(
    session: AsyncSession,
    definition: AchievementDefinition,
    account: Account,
    event: TriggerEvent,
    *,
    streak_window_days: int = 30,
) -> int:
    """Current progress of ``account`` toward ``definition``."""
    metric = definition.metric
    account_id = account.id

    if metric is AchievementMetric.POST_COUNT:
        return await _scalar(
            session,
            select(func.count(Post.id)).where(Post.author_id == account_id, Post.published.is_(True)),
        )
    if metric is AchievementMetric.COMMENT_COUNT:
        return await _scalar(session, select(func.count(Comment.id)).where(Comment.author_id == account_id))
    if metric is AchievementMetric.FOLLOW_COUNT:
        return await _scalar(session, select(func.count(Follow.id)).where(Follow.follower_id == account_id))
    if metric is AchievementMetric.FOLLOWER_COUNT:
        return await _scalar(session, select(func.count(Follow.id)).where(Follow.following_id == account_id))
    if metric is AchievementMetric.MAX_POST_REACTIONS:
        per_post = (
            select(func.count(Reaction.id).label("reactions"))
            .join(Post, Post.id == Reaction.post_id)
            .where(Post.author_id == account_id)
            .group_by(Reaction.post_id)
            .subquery()
        )
        return await _scalar(session, select(func.max(per_post.c.reactions)))
    if metric is AchievementMetric.REACTIONS_GIVEN:
        return await _scalar(session, select(func.count(Reaction.id)).where(Reaction.account_id == account_id))
    if metric is AchievementMetric.YOUTUBE_POST_COUNT:
        return await _scalar(
            session,
            select(func.count(Post.id)).where(
                Post.author_id == account_id,
                Post.published.is_(True),
                Post.youtube_video_id.is_not(None),
            ),
        )
    if metric is AchievementMetric.LEVEL:
        return account.level
    if metric is AchievementMetric.TOTAL_XP:
        return account.experience
    if metric in (AchievementMetric.CURRENCY_EARNED, AchievementMetric.CURRENCY_SPENT):
        currency = definition.currency or CurrencyType.SPARKLE_POINTS
        kind = TransactionKind.EARNED if metric is AchievementMetric.CURRENCY_EARNED else TransactionKind.SPENT
        total = await _scalar(
            session,
            select(func.coalesce(func.sum(CurrencyTransaction.amount), 0)).where(
                CurrencyTransaction.account_id == account_id,
                CurrencyTransaction.currency == currency.value,
                CurrencyTransaction.kind == kind.value,
            ),
        )
        return abs(total)
    if metric is AchievementMetric.ITEMS_PURCHASED:
        return await _scalar(
            session,
            select(func.count(CurrencyTransaction.id)).where(
                CurrencyTransaction.account_id == account_id,
                CurrencyTransaction.kind == TransactionKind.SPENT.value,
                CurrencyTransaction.reference_type == EntityType.ITEM.value,
            ),
        )
    if metric is AchievementMetric.TRADES_COMPLETED:
        return await _scalar(
            session,
            select(func.count(Trade.id)).where(
                Trade.status == TradeStatus.COMPLETED.value,
                or_(Trade.initiator_id == account_id, Trade.recipient_id == account_id),
            ),
        )
    if metric is AchievementMetric.QUESTS_COMPLETED:
        return await _scalar(
            session,
            select(func.count(QuestAssignment.id)).where(
                QuestAssignment.account_id == account_id,
                QuestAssignment.status == QuestStatus.CLAIMED.value,
            ),
        )
    if metric is AchievementMetric.LOGIN_STREAK:
        return await get_login_streak(
            session,
            account_id,
            today=event.occurred_at.date(),
            window_days=max(streak_window_days, definition.threshold),
        )
    if metric is AchievementMetric.ACTION:
        return 1 if event.data.get("action") == definition.action else 0
    # EVENT: the trigger itself is the criterion
    return 1


# ============================================================================
# AchievementService
# ============================================================================


class AchievementService(BaseService):
    """
    Public Methods
    --------------
    - handle_trigger() -> TriggerRouter handler; evaluates and unlocks
    - list_achievements() -> Display list with progress (hidden until unlocked)
    - get_summary() -> Totals and recent unlocks for user stats
    """

    RESULT_TYPE = "achievement_unlocked"

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        catalog: GamificationCatalog,
        xp_service: XPService,
        ledger: CurrencyLedger,
        inventory: InventoryService,
        dispatcher: SideEffectDispatcher,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._catalog = catalog
        self._xp = xp_service
        self._ledger = ledger
        self._inventory = inventory
        self._dispatcher = dispatcher
        self._accounts = AccountRepository(
            model_class=Account,
            logger=get_logger(f"{__name__}.AccountRepository"),
        )
        self._progress = AchievementProgressRepository(
            model_class=AchievementProgress,
            logger=get_logger(f"{__name__}.AchievementProgressRepository"),
        )

    # ========================================================================
    # Trigger handling
    # ========================================================================

    async def handle_trigger(self, uow: UnitOfWork, event: TriggerEvent) -> List[Dict[str, Any]]:
        """
        Evaluate every definition bound to ``event.trigger``.

        Returns:
            One record per achievement unlocked by this event
        """
        definitions = self._catalog.achievements_for(event.trigger)
        if not definitions:
            return []

        session = uow.session
        account = await self._accounts.require(session, event.account_id)
        unlocked_ids = await self._progress.unlocked_ids(session, account.id)
        streak_window = self.get_int_config("streaks.window_days", 30)
        unlocked: List[Dict[str, Any]] = []

        for definition in definitions:
            if definition.id in unlocked_ids or not definition.is_available(event.occurred_at):
                continue
            if definition.metric is AchievementMetric.ACTION and event.data.get("action") != definition.action:
                continue
            if any(prereq not in unlocked_ids for prereq in definition.prerequisites):
                continue

            progress = await self._progress.find_progress(session, account.id, definition.id, for_update=True)
            if progress is not None and progress.is_unlocked:
                unlocked_ids.add(definition.id)
                continue

            current = await measure_metric(
                session, definition, account, event, streak_window_days=streak_window
            )

            if progress is None:
                progress = self._progress.add(
                    session,
                    AchievementProgress(
                        account_id=account.id,
                        achievement_id=definition.id,
                        current=0,
                        required=definition.threshold,
                    ),
                )
            progress.current = current
            progress.required = definition.threshold

            if current < definition.threshold:
                continue

            progress.unlocked_at = event.occurred_at
            await self._progress.flush(session)
            unlocked_ids.add(definition.id)

            unlocked.extend(await self._grant(uow, account.id, definition, event.occurred_at))

        return unlocked

    async def _grant(
        self,
        uow: UnitOfWork,
        account_id: int,
        definition: AchievementDefinition,
        unlocked_at: datetime,
    ) -> List[Dict[str, Any]]:
        """The unlock record, followed by any achievements its XP reward unlocked."""
        rewards = definition.rewards
        reference = EntityRef.of(EntityType.ACHIEVEMENT, definition.id)
        reason = f"achievement:{definition.id}"

        for currency, amount in rewards.currency_amounts():
            await self._ledger.award(account_id, amount, currency, reason, reference=reference, uow=uow)
        for item_id, quantity in rewards.items.items():
            await self._inventory.grant(account_id, item_id, quantity, source="achievement", uow=uow)
        cascaded: List[Dict[str, Any]] = []
        if rewards.xp > 0:
            xp_result = await self._xp.award_xp(
                account_id, rewards.xp, reason, {"achievement_id": definition.id}, uow=uow
            )
            cascaded = xp_result["achievements"]

        record = {
            "type": self.RESULT_TYPE,
            "account_id": account_id,
            "achievement_id": definition.id,
            "name": definition.name,
            "description": definition.description,
            "rarity": definition.rarity.value,
            "category": definition.category,
            "rewards": rewards.to_dict(),
            "unlocked_at": unlocked_at.isoformat(),
        }
        self._dispatcher.notify_after_commit(
            uow, account_id, "achievement_unlocked", record, realtime_event="achievement:unlocked"
        )
        self.emit_after_commit(uow, "achievement.unlocked", record)
        self.log.info(
            f"Achievement unlocked: {definition.id}",
            extra={"account_id": account_id, "achievement_id": definition.id, "uow_id": uow.id},
        )
        return [record, *cascaded]

    # ========================================================================
    # Read operations
    # ========================================================================

    async def list_achievements(self, account_id: int) -> List[Dict[str, Any]]:
        """
        Every visible achievement with the account's progress.

        Hidden achievements appear only once unlocked.
        """
        account_id = InputValidator.validate_account_id(account_id)

        async with DatabaseService.get_session() as session:
            await self._accounts.require(session, account_id)
            rows = await self._progress.find_many_where(
                session, AchievementProgress.account_id == account_id
            )

        by_id = {row.achievement_id: row for row in rows}
        listing: List[Dict[str, Any]] = []
        for definition in self._catalog.achievements.values():
            row = by_id.get(definition.id)
            is_unlocked = row is not None and row.is_unlocked
            if definition.hidden and not is_unlocked:
                continue

            current = row.current if row else 0
            listing.append(
                {
                    **definition.to_dict(),
                    "unlocked": is_unlocked,
                    "unlocked_at": row.unlocked_at.isoformat() if is_unlocked else None,
                    "current": current,
                    "required": definition.threshold,
                    "percentage": 100.0 if is_unlocked else calculate_percentage(current, definition.threshold),
                }
            )
        return listing

    async def get_summary(self, session: AsyncSession, account_id: int, *, recent: int = 5) -> Dict[str, Any]:
        unlocked_rows = await self._progress.find_many_where(
            session,
            AchievementProgress.account_id == account_id,
            AchievementProgress.unlocked_at.is_not(None),
            order_by=[AchievementProgress.unlocked_at.desc(), AchievementProgress.id.desc()],
        )
        total = len(self._catalog.achievements)
        recent_unlocks = []
        for row in unlocked_rows[:recent]:
            definition = self._catalog.achievements.get(row.achievement_id)
            recent_unlocks.append(
                {
                    "achievement_id": row.achievement_id,
                    "name": definition.name if definition else row.achievement_id,
                    "rarity": definition.rarity.value if definition else None,
                    "unlocked_at": row.unlocked_at.isoformat(),
                }
            )

        return {
            "total": total,
            "unlocked": len(unlocked_rows),
            "percentage": calculate_percentage(len(unlocked_rows), total) if total else 0.0,
            "recent": recent_unlocks,
        }
