"""
XP Service
==========

Purpose
-------
The XP award and level-up flow. One call increments cumulative experience,
appends an ``XPEntry``, derives the new level, grants the reward bundle of
every level crossed, and fires the ``level_reached`` / ``xp_gained``
triggers, all inside a single unit of work.

Level Rewards (config ``progression.level_rewards``)
----------------------------------------------------
- sparkle points: ``level * sparkle_per_level``
- premium points: ``level * premium_per_level`` on every ``premium_interval``-th level
- milestone items at configured levels (10 / 25 / 50 / 100 by default)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from sparkle.core.database.service import DatabaseService
from sparkle.core.database.unit_of_work import UnitOfWork
from sparkle.core.infra.audit_logger import AuditLogger
from sparkle.core.logging.logger import get_logger
from sparkle.core.validation.input_validator import InputValidator
from sparkle.database.models.core import Account
from sparkle.database.models.enums import CurrencyType
from sparkle.database.models.progression import XPEntry
from sparkle.modules.accounts.service import AccountRepository
from sparkle.modules.shared.base_repository import BaseRepository
from sparkle.modules.shared.base_service import BaseService
from sparkle.modules.shared.cache_keys import invalidate_user_stats_after_commit
from sparkle.modules.shared.exceptions import ConfigurationError
from sparkle.modules.shared.formulas import (
    DEFAULT_MILESTONE_ITEMS,
    LevelRewardBundle,
    calculate_level_from_xp,
    calculate_level_progress,
    calculate_level_rewards,
)
from sparkle.modules.shared.triggers import TriggerEvent, TriggerType

if TYPE_CHECKING:
    from logging import Logger

    from sparkle.core.config.manager import ConfigManager
    from sparkle.core.event.bus import EventBus
    from sparkle.core.infra.notifications import SideEffectDispatcher
    from sparkle.modules.economy.inventory import InventoryService
    from sparkle.modules.economy.ledger import CurrencyLedger
    from sparkle.modules.shared.triggers import TriggerRouter


# ============================================================================
# Repository
# ============================================================================


class XPEntryRepository(BaseRepository[XPEntry]):
    pass


def split_trigger_results(results: List[Dict[str, Any]], kind: str) -> List[Dict[str, Any]]:
    return [result for result in results if result.get("type") == kind]


# ============================================================================
# XPService
# ============================================================================


class XPService(BaseService):
    """
    Public Methods
    --------------
    - award_xp() -> Add XP, handle level-ups and their rewards
    - get_xp_history() -> Recent XP entries
    - level_rewards_for() -> Reward bundle of a level under current config
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        ledger: CurrencyLedger,
        inventory: InventoryService,
        router: TriggerRouter,
        dispatcher: SideEffectDispatcher,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._ledger = ledger
        self._inventory = inventory
        self._router = router
        self._dispatcher = dispatcher
        self._accounts = AccountRepository(
            model_class=Account,
            logger=get_logger(f"{__name__}.AccountRepository"),
        )
        self._entries = XPEntryRepository(
            model_class=XPEntry,
            logger=get_logger(f"{__name__}.XPEntryRepository"),
        )

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    def level_rewards_for(self, level: int) -> LevelRewardBundle:
        milestones = self.get_config("progression.level_rewards.milestone_items") or DEFAULT_MILESTONE_ITEMS
        return calculate_level_rewards(
            level,
            sparkle_per_level=self.get_int_config("progression.level_rewards.sparkle_per_level", 100),
            premium_interval=self.get_int_config("progression.level_rewards.premium_interval", 5),
            premium_per_level=self.get_int_config("progression.level_rewards.premium_per_level", 10),
            milestone_items=self._milestone_map(milestones),
        )

    async def award_xp(
        self,
        account_id: int,
        amount: int,
        reason: str,
        metadata: Optional[Mapping[str, Any]] = None,
        *,
        uow: Optional[UnitOfWork] = None,
    ) -> Dict[str, Any]:
        """
        Award XP and apply any resulting level-ups.

        The XP increment, the XPEntry, the new level, each crossed level's
        rewards and every achievement unlocked along the way commit
        together or not at all.

        Returns:
            {
                "account_id": int,
                "total_xp": int,
                "xp_gained": int,
                "level": int,
                "level_up": bool,
                "new_level": int | None,
                "rewards": list[dict],        # one bundle per crossed level
                "achievements": list[dict],   # unlocked during this award
                "quests_completed": list[dict],
            }

        Raises:
            NotFoundError: If the account does not exist
            ValidationError: If inputs are invalid

        Example:
            >>> result = await xp_service.award_xp(42, 150, "post_created")
            >>> result["level_up"]
            False
        """
        account_id = InputValidator.validate_account_id(account_id)
        amount = InputValidator.validate_positive_integer(amount, "amount")
        reason = InputValidator.validate_string(reason, "reason", min_length=1, max_length=200)
        details = dict(metadata) if metadata else None

        self.log_operation("award_xp", account_id=account_id, amount=amount, reason=reason)

        async with UnitOfWork.begin(uow) as uow:
            account = await self._accounts.require_for_update(uow.session, account_id)

            previous_level = account.level
            account.experience += amount
            total_xp = account.experience
            new_level = calculate_level_from_xp(total_xp)

            self._entries.add(
                uow.session,
                XPEntry(
                    account_id=account_id,
                    amount=amount,
                    reason=reason,
                    details=details,
                    total_after=total_xp,
                ),
            )

            results: List[Dict[str, Any]] = []
            rewards: List[Dict[str, Any]] = []
            leveled_up = new_level > previous_level

            if leveled_up:
                account.level = new_level
                for level in range(previous_level + 1, new_level + 1):
                    rewards.append(await self._grant_level_rewards(uow, account_id, level))

                results.extend(
                    await self._router.dispatch(
                        uow,
                        TriggerEvent(
                            TriggerType.LEVEL_REACHED,
                            account_id,
                            {"level": new_level, "previous_level": previous_level},
                        ),
                    )
                )

                level_payload = {
                    "previous_level": previous_level,
                    "new_level": new_level,
                    "total_xp": total_xp,
                    "rewards": rewards,
                }
                self._dispatcher.notify_after_commit(
                    uow, account_id, "level_up", level_payload, realtime_event="level:up"
                )
                self.emit_after_commit(uow, "level.up", {"account_id": account_id, **level_payload})
                self.log.info(
                    f"Account {account_id} reached level {new_level}",
                    extra={"account_id": account_id, "previous_level": previous_level, "new_level": new_level},
                )

            results.extend(
                await self._router.dispatch(
                    uow,
                    TriggerEvent(
                        TriggerType.XP_GAINED,
                        account_id,
                        {"amount": amount, "total": total_xp, "reason": reason},
                    ),
                )
            )

            self.emit_after_commit(
                uow,
                "xp.awarded",
                {"account_id": account_id, "amount": amount, "total_xp": total_xp, "reason": reason},
            )
            AuditLogger.log_after_commit(
                uow,
                event_bus=self._events,
                account_id=account_id,
                transaction_type="xp_awarded",
                details={
                    "amount": amount,
                    "total_after": total_xp,
                    "previous_level": previous_level,
                    "new_level": new_level,
                },
                context=reason,
            )
            invalidate_user_stats_after_commit(uow, account_id)

            return {
                "account_id": account_id,
                "total_xp": total_xp,
                "xp_gained": amount,
                "level": new_level,
                "level_up": leveled_up,
                "new_level": new_level if leveled_up else None,
                "rewards": rewards,
                "achievements": split_trigger_results(results, "achievement_unlocked"),
                "quests_completed": split_trigger_results(results, "quest_completed"),
            }

    async def get_xp_history(self, account_id: int, limit: int = 10) -> Dict[str, Any]:
        account_id = InputValidator.validate_account_id(account_id)
        limit = InputValidator.validate_integer(limit, "limit", min_value=1, max_value=200)

        async with DatabaseService.get_session() as session:
            account = await self._accounts.require(session, account_id)
            entries = await self._entries.find_many_where(
                session,
                XPEntry.account_id == account_id,
                order_by=[XPEntry.created_at.desc(), XPEntry.id.desc()],
                limit=limit,
            )
            return {
                "account_id": account_id,
                "level_progress": calculate_level_progress(account.experience, account.level).to_dict(),
                "entries": [xp_entry_to_dict(entry) for entry in entries],
            }

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    async def _grant_level_rewards(self, uow: UnitOfWork, account_id: int, level: int) -> Dict[str, Any]:
        bundle = self.level_rewards_for(level)
        reason = f"level_reward:{level}"

        for currency, amount in (
            (CurrencyType.SPARKLE_POINTS, bundle.sparkle_points),
            (CurrencyType.PREMIUM_POINTS, bundle.premium_points),
        ):
            if amount > 0:
                await self._ledger.award(account_id, amount, currency, reason, uow=uow)

        for item_id in bundle.items:
            await self._inventory.grant(account_id, item_id, 1, source="level_reward", uow=uow)

        return {
            "level": level,
            "sparkle_points": bundle.sparkle_points,
            "premium_points": bundle.premium_points,
            "items": list(bundle.items),
        }

    @staticmethod
    def _milestone_map(raw: Mapping[Any, Any]) -> Dict[int, str]:
        try:
            return {int(level): str(item_id) for level, item_id in raw.items()}
        except (AttributeError, TypeError, ValueError) as exc:
            raise ConfigurationError(
                "progression.level_rewards.milestone_items",
                f"Expected a mapping of level to item id, got {raw!r}",
            ) from exc


def xp_entry_to_dict(entry: XPEntry) -> Dict[str, Any]:
    return {
        "amount": entry.amount,
        "reason": entry.reason,
        "details": entry.details,
        "total_after": entry.total_after,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
