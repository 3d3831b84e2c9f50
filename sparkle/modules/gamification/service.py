"""
Gamification Service
====================

Purpose
-------
Single entry point the host application calls from its post, comment,
login, store, follow and trade flows.

Responsibilities
----------------
- Build every domain service around one catalogue, config manager, event
  bus and pair of side-effect sinks
- Register trigger handlers: the achievement evaluator receives every
  trigger, the quest tracker receives the triggers its requirements follow
- Expose the caller-facing operations; each returns a result dict or
  raises a typed ``SparkleDomainException``

Non-Responsibilities
--------------------
- Writing host activity rows (posts, comments, follows, reactions). The
  host writes them, then fires the matching trigger through ``on_trigger``.
  ``user_followed`` should be fired for both parties so follow and
  follower milestones are evaluated.
- Scheduling. ``run_maintenance`` and ``refresh_leaderboard`` are safe to
  call from any external scheduler, redundantly.

Usage
-----
    engine = GamificationService()
    await engine.open_account(42, "ada")
    result = await engine.award_xp(42, 150, "post_created")
"""

from __future__ import annotations

import random
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from sparkle.core.config.config import Config
from sparkle.core.config.manager import ConfigManager
from sparkle.core.database.base import utc_now
from sparkle.core.database.unit_of_work import UnitOfWork
from sparkle.core.event import event_bus as default_event_bus
from sparkle.core.infra.notifications import (
    EventBusNotificationSink,
    EventBusRealtimeSink,
    SideEffectDispatcher,
)
from sparkle.core.logging.logger import get_logger
from sparkle.core.validation.input_validator import InputValidator
from sparkle.database.models.core import Account
from sparkle.modules.accounts.service import AccountRepository, AccountService
from sparkle.modules.economy.inventory import InventoryService
from sparkle.modules.economy.ledger import CurrencyLedger
from sparkle.modules.economy.store import StoreService
from sparkle.modules.leaderboard.service import LeaderboardService
from sparkle.modules.leaderboard.stats import UserStatsService
from sparkle.modules.progression.achievement_service import AchievementService
from sparkle.modules.progression.streaks import get_login_streak, record_login
from sparkle.modules.progression.xp_service import XPService, split_trigger_results
from sparkle.modules.quests.service import QuestService
from sparkle.modules.shared.catalog import GamificationCatalog
from sparkle.modules.shared.triggers import EntityRef, TriggerEvent, TriggerRouter, TriggerType
from sparkle.modules.trading.service import TradeService

if TYPE_CHECKING:
    from logging import Logger

    from sparkle.core.event.bus import EventBus
    from sparkle.core.infra.notifications import NotificationSink, RealtimeSink


class GamificationService:
    """
    Facade over the gamification engine.

    Args:
        catalog: Achievement and quest definitions; loaded from config when omitted
        config_manager: Tunables source (class or instance)
        event_bus: Bus for post-commit domain events
        notifier: Notification sink; defaults to publishing on the event bus
        realtime: Realtime sink; defaults to publishing on the event bus
        rng: Random source for daily quest rotation
        logger: Logger for facade operations
    """

    def __init__(
        self,
        catalog: Optional[GamificationCatalog] = None,
        config_manager: "type[ConfigManager] | ConfigManager" = ConfigManager,
        event_bus: Optional[EventBus] = None,
        notifier: Optional[NotificationSink] = None,
        realtime: Optional[RealtimeSink] = None,
        *,
        rng: Optional[random.Random] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        self.catalog = catalog or GamificationCatalog.from_config(config_manager)
        self.config = config_manager
        self.events = event_bus or default_event_bus
        self.log = logger or get_logger(__name__)

        self.router = TriggerRouter()
        self.dispatcher = SideEffectDispatcher(
            notifier or EventBusNotificationSink(self.events),
            realtime or EventBusRealtimeSink(self.events),
        )

        def _logger(name: str) -> Logger:
            return get_logger(f"sparkle.modules.{name}")

        self.ledger = CurrencyLedger(config_manager, self.events, _logger("economy.ledger"), self.router)
        self.inventory = InventoryService(config_manager, self.events, _logger("economy.inventory"))
        self.store = StoreService(
            config_manager, self.events, _logger("economy.store"), self.ledger, self.inventory, self.router
        )
        self.xp = XPService(
            config_manager,
            self.events,
            _logger("progression.xp"),
            self.ledger,
            self.inventory,
            self.router,
            self.dispatcher,
        )
        self.achievements = AchievementService(
            config_manager,
            self.events,
            _logger("progression.achievements"),
            self.catalog,
            self.xp,
            self.ledger,
            self.inventory,
            self.dispatcher,
        )
        self.quests = QuestService(
            config_manager,
            self.events,
            _logger("quests"),
            self.catalog,
            self.xp,
            self.ledger,
            self.inventory,
            self.router,
            self.dispatcher,
            rng=rng,
        )
        self.trades = TradeService(
            config_manager,
            self.events,
            _logger("trading"),
            self.ledger,
            self.inventory,
            self.router,
            self.dispatcher,
        )
        self.leaderboard = LeaderboardService(config_manager, self.events, _logger("leaderboard"))
        self.stats = UserStatsService(
            config_manager, self.events, _logger("leaderboard.stats"), self.achievements, self.leaderboard
        )
        self.accounts = AccountService(config_manager, self.events, _logger("accounts"), self.ledger)
        self._account_repo = AccountRepository(
            model_class=Account,
            logger=get_logger(f"{__name__}.AccountRepository"),
        )

        self.router.register(self.achievements.handle_trigger, name="achievements")
        self.router.register(
            self.quests.handle_trigger,
            triggers=QuestService.handled_triggers(),
            name="quests",
        )

        self.log.info(
            "Gamification engine ready",
            extra={
                "achievements": len(self.catalog.achievements),
                "quests": len(self.catalog.quests),
                "config": Config.get_config_summary(),
            },
        )

    # ========================================================================
    # Accounts
    # ========================================================================

    async def open_account(
        self,
        account_id: int,
        username: str,
        *,
        sparkle_points: int = 0,
        premium_points: int = 0,
        role: str = "user",
    ) -> Dict[str, Any]:
        return await self.accounts.open_account(
            account_id,
            username,
            sparkle_points=sparkle_points,
            premium_points=premium_points,
            role=role,
        )

    async def get_account(self, account_id: int) -> Dict[str, Any]:
        return await self.accounts.get_account(account_id)

    # ========================================================================
    # XP, triggers and achievements
    # ========================================================================

    async def award_xp(
        self,
        account_id: int,
        amount: int,
        reason: str,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """See ``XPService.award_xp``."""
        return await self.xp.award_xp(account_id, amount, reason, metadata)

    async def on_trigger(
        self,
        account_id: int,
        trigger: Any,
        data: Optional[Mapping[str, Any]] = None,
        *,
        entity: Optional[EntityRef] = None,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """
        Evaluate achievements (and quests) for a host event.

        Returns:
            Achievements unlocked by this event, including any unlocked by
            the rewards they granted. Calling twice for the same state
            unlocks nothing the second time.
        """
        account_id = InputValidator.validate_account_id(account_id)
        trigger = TriggerType.parse(trigger)

        async with UnitOfWork.begin() as uow:
            await self._account_repo.require(uow.session, account_id)
            results = await self.router.dispatch(
                uow,
                TriggerEvent(trigger, account_id, data or {}, entity=entity, occurred_at=now or utc_now()),
            )
        return split_trigger_results(results, AchievementService.RESULT_TYPE)

    async def get_achievements(self, account_id: int) -> List[Dict[str, Any]]:
        return await self.achievements.list_achievements(account_id)

    async def record_login(self, account_id: int, *, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Record a login, then evaluate streak achievements and quests.

        Returns:
            {"account_id", "login_streak", "achievements", "quests_completed"}
        """
        account_id = InputValidator.validate_account_id(account_id)
        now = now or utc_now()
        window = self.config.get("streaks.window_days", 30)

        async with UnitOfWork.begin() as uow:
            session = uow.session
            await self._account_repo.require(session, account_id)
            record_login(session, account_id, at=now)
            await session.flush()

            results = await self.router.dispatch(uow, TriggerEvent(TriggerType.LOGIN, account_id, {}, occurred_at=now))
            streak = await get_login_streak(session, account_id, today=now.date(), window_days=int(window))

        return {
            "account_id": account_id,
            "login_streak": streak,
            "achievements": split_trigger_results(results, AchievementService.RESULT_TYPE),
            "quests_completed": split_trigger_results(results, QuestService.RESULT_TYPE),
        }

    # ========================================================================
    # Quests
    # ========================================================================

    async def refresh_daily_quests(self, account_id: int, *, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        return await self.quests.refresh_daily_quests(account_id, now=now)

    async def get_active_quests(self, account_id: int, *, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        return await self.quests.get_active_quests(account_id, now=now)

    async def start_quest(self, account_id: int, quest_id: str, *, now: Optional[datetime] = None) -> Dict[str, Any]:
        return await self.quests.start_quest(account_id, quest_id, now=now)

    async def update_quest_progress(
        self,
        account_id: int,
        requirement_type: str,
        amount: int = 1,
        *,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        return await self.quests.update_quest_progress(account_id, requirement_type, amount, now=now)

    async def claim_quest_rewards(
        self,
        account_id: int,
        quest_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        return await self.quests.claim_quest_rewards(account_id, quest_id, now=now)

    # ========================================================================
    # Store
    # ========================================================================

    async def purchase_item(
        self,
        account_id: int,
        item_id: str,
        quantity: int = 1,
        *,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        return await self.store.purchase_item(account_id, item_id, quantity, now=now)

    # ========================================================================
    # Trades
    # ========================================================================

    async def propose_trade(
        self,
        initiator_id: int,
        recipient_id: int,
        *,
        offer_items: Optional[Mapping[str, int]] = None,
        offer_points: int = 0,
        request_items: Optional[Mapping[str, int]] = None,
        request_points: int = 0,
        message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        return await self.trades.propose_trade(
            initiator_id,
            recipient_id,
            offer_items=offer_items,
            offer_points=offer_points,
            request_items=request_items,
            request_points=request_points,
            message=message,
            now=now,
        )

    async def respond_trade(
        self,
        trade_id: int,
        account_id: int,
        accept: bool,
        *,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        return await self.trades.respond_trade(trade_id, account_id, accept, now=now)

    async def cancel_trade(self, trade_id: int, account_id: int) -> Dict[str, Any]:
        return await self.trades.cancel_trade(trade_id, account_id)

    # ========================================================================
    # Leaderboards and stats
    # ========================================================================

    async def get_leaderboard(
        self,
        metric: str,
        scope: str = "global",
        period: str = "all",
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return await self.leaderboard.get_leaderboard(metric, scope, period, limit)

    async def refresh_leaderboard(
        self,
        metric: str,
        scope: str = "global",
        period: str = "all",
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return await self.leaderboard.refresh_leaderboard(metric, scope, period, limit)

    async def get_user_stats(self, account_id: int) -> Dict[str, Any]:
        return await self.stats.get_user_stats(account_id)

    # ========================================================================
    # Maintenance
    # ========================================================================

    async def run_maintenance(self, *, now: Optional[datetime] = None) -> Dict[str, int]:
        """Expire overdue trades and quests. Returns how many of each changed."""
        now = now or utc_now()
        expired_trades = await self.trades.expire_trades(now=now)
        expired_quests = await self.quests.expire_quests(now=now)
        self.log.info(
            "Maintenance sweep finished",
            extra={"expired_trades": expired_trades, "expired_quests": expired_quests},
        )
        return {"expired_trades": expired_trades, "expired_quests": expired_quests}
