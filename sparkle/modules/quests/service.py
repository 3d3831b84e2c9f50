"""
Quest Service
=============

Purpose
-------
Assigns quests, tracks their progress and pays out claimed rewards exactly
once.

State Machine
-------------
    LOCKED ──(gates met)──> AVAILABLE ──(start / progress)──> IN_PROGRESS
    AVAILABLE / IN_PROGRESS ──(progress reaches 100%)──> COMPLETED
    COMPLETED ──(claim, claimed_at was null)──> CLAIMED
    any non-terminal ──(expires_at elapses)──> EXPIRED

Cycles
------
Each assignment belongs to a cycle (``cycle_key``): the UTC date for daily
quests, ``YYYY-Www`` for weekly, ``YYYY-MM`` for monthly, ``once`` for
one-off quests, or the assignment time for quests with a cooldown. The
unique (account, quest, cycle) constraint makes double assignment
impossible even under concurrent refreshes.

Progress Rules
--------------
- create_posts / create_comments / share_youtube: counted from durable rows
  created since the start of the assignment's window
- login_streak: current login streak
- give_reactions / earn_xp / purchase_items: counters accumulated in the
  assignment's ``progress`` blob, updated in the same transaction as the
  triggering event
"""

from __future__ import annotations

import random
from datetime import datetime, time, timedelta, timezone
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm.attributes import flag_modified

from sparkle.core.database.base import utc_now
from sparkle.core.database.unit_of_work import UnitOfWork
from sparkle.core.logging.logger import get_logger
from sparkle.core.validation.input_validator import InputValidator
from sparkle.database.models.core import Account
from sparkle.database.models.enums import QuestStatus, QuestType
from sparkle.database.models.progression import QuestAssignment
from sparkle.database.models.social import Comment, Post
from sparkle.modules.accounts.service import AccountRepository
from sparkle.modules.progression.streaks import get_login_streak
from sparkle.modules.shared.base_repository import BaseRepository
from sparkle.modules.shared.base_service import BaseService
from sparkle.modules.shared.catalog import REQUIREMENT_TRIGGERS, QuestDefinition, QuestRequirementType
from sparkle.modules.shared.exceptions import (
    ConcurrencyConflictError,
    InvalidOperationError,
    InvalidStateError,
    NotFoundError,
)
from sparkle.modules.shared.formulas import calculate_percentage
from sparkle.modules.shared.triggers import EntityRef, EntityType, TriggerEvent, TriggerType

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
    from sparkle.modules.shared.triggers import TriggerRouter

OPEN_STATUSES = (
    QuestStatus.LOCKED.value,
    QuestStatus.AVAILABLE.value,
    QuestStatus.IN_PROGRESS.value,
)
EXPIRABLE_STATUSES = OPEN_STATUSES + (QuestStatus.COMPLETED.value,)

_TRIGGER_REQUIREMENTS: Dict[TriggerType, Tuple[QuestRequirementType, ...]] = {}
for _requirement, _trigger in REQUIREMENT_TRIGGERS.items():
    _TRIGGER_REQUIREMENTS[_trigger] = _TRIGGER_REQUIREMENTS.get(_trigger, ()) + (_requirement,)


# ============================================================================
# Cycle helpers
# ============================================================================


def _start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)


def cycle_window(definition: QuestDefinition, now: datetime) -> Tuple[str, datetime, Optional[datetime]]:
    """
    ``(cycle_key, window_start, expires_at)`` for assigning ``definition`` at ``now``.

    Example:
        >>> cycle_window(daily_quest, datetime(2024, 3, 10, 15, tzinfo=timezone.utc))[0]
        '2024-03-10'
    """
    day_start = _start_of_day(now)

    if definition.quest_type is QuestType.DAILY:
        key = day_start.date().isoformat()
        start, end = day_start, day_start + timedelta(days=1)
    elif definition.quest_type is QuestType.WEEKLY:
        iso_year, iso_week, iso_weekday = day_start.isocalendar()
        key = f"{iso_year}-W{iso_week:02d}"
        start = day_start - timedelta(days=iso_weekday - 1)
        end = start + timedelta(days=7)
    elif definition.quest_type is QuestType.MONTHLY:
        key = f"{day_start.year}-{day_start.month:02d}"
        start = day_start.replace(day=1)
        end = (start + timedelta(days=32)).replace(day=1)
    else:
        repeatable = definition.cooldown_hours > 0 or definition.expiry_hours
        key = now.isoformat(timespec="seconds") if repeatable else "once"
        start = now
        end = now + timedelta(hours=definition.expiry_hours) if definition.expiry_hours else None

    if definition.available_until is not None and (end is None or definition.available_until < end):
        end = definition.available_until
    return key, start, end


def _as_utc(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


# ============================================================================
# Repository
# ============================================================================


class QuestAssignmentRepository(BaseRepository[QuestAssignment]):
    async def latest_for_quest(
        self,
        session: AsyncSession,
        account_id: int,
        quest_id: str,
        *,
        for_update: bool = False,
    ) -> Optional[QuestAssignment]:
        rows = await self.find_many_where(
            session,
            QuestAssignment.account_id == account_id,
            QuestAssignment.quest_id == quest_id,
            order_by=[QuestAssignment.assigned_at.desc(), QuestAssignment.id.desc()],
            for_update=for_update,
            limit=1,
        )
        return rows[0] if rows else None

    async def open_for_account(
        self,
        session: AsyncSession,
        account_id: int,
        *,
        quest_ids: Optional[Iterable[str]] = None,
        statuses: Tuple[str, ...] = OPEN_STATUSES,
    ) -> List[QuestAssignment]:
        conditions = [
            QuestAssignment.account_id == account_id,
            QuestAssignment.status.in_(statuses),
        ]
        if quest_ids is not None:
            conditions.append(QuestAssignment.quest_id.in_(list(quest_ids)))
        return await self.find_many_where(
            session,
            *conditions,
            order_by=[QuestAssignment.assigned_at, QuestAssignment.id],
            for_update=True,
        )

    async def claimed_quest_ids(self, session: AsyncSession, account_id: int) -> set:
        stmt = select(QuestAssignment.quest_id).where(
            QuestAssignment.account_id == account_id,
            QuestAssignment.status == QuestStatus.CLAIMED.value,
        )
        result = await session.execute(stmt)
        return set(result.scalars().all())


# ============================================================================
# QuestService
# ============================================================================


class QuestService(BaseService):
    """
    Public Methods
    --------------
    - refresh_daily_quests() -> Assign today's rotation (idempotent)
    - start_quest() -> Begin a quest or move an assignment to IN_PROGRESS
    - update_quest_progress() -> Re-evaluate assignments for a requirement
    - handle_trigger() -> TriggerRouter handler
    - claim_quest_rewards() -> COMPLETED -> CLAIMED with a one-time payout
    - get_active_quests() -> Open assignments, refreshing the daily set
    - expire_quests() -> Sweep elapsed assignments to EXPIRED
    """

    RESULT_TYPE = "quest_completed"

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        catalog: GamificationCatalog,
        xp_service: XPService,
        ledger: CurrencyLedger,
        inventory: InventoryService,
        router: TriggerRouter,
        dispatcher: SideEffectDispatcher,
        rng: Optional[random.Random] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._catalog = catalog
        self._xp = xp_service
        self._ledger = ledger
        self._inventory = inventory
        self._router = router
        self._dispatcher = dispatcher
        self._rng = rng or random.Random()
        self._accounts = AccountRepository(
            model_class=Account,
            logger=get_logger(f"{__name__}.AccountRepository"),
        )
        self._assignments = QuestAssignmentRepository(
            model_class=QuestAssignment,
            logger=get_logger(f"{__name__}.QuestAssignmentRepository"),
        )

    @staticmethod
    def handled_triggers() -> List[TriggerType]:
        return list(_TRIGGER_REQUIREMENTS)

    # ========================================================================
    # PUBLIC API - Daily rotation
    # ========================================================================

    async def refresh_daily_quests(
        self,
        account_id: int,
        *,
        now: Optional[datetime] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> List[Dict[str, Any]]:
        """
        Assign today's daily quests if the account has none yet.

        Safe to call redundantly and concurrently: the account row lock and
        the unique (account, quest, cycle) constraint let exactly one caller
        create the day's set; the others read it back.

        Returns:
            Today's daily assignments
        """
        account_id = InputValidator.validate_account_id(account_id)
        now = now or utc_now()

        self.log_operation("refresh_daily_quests", account_id=account_id)

        if uow is not None:
            return await self._refresh_daily(uow, account_id, now)

        try:
            async with UnitOfWork.begin() as uow:
                return await self._refresh_daily(uow, account_id, now)
        except ConcurrencyConflictError:
            self.log.warning(
                "Concurrent daily quest refresh; reading back the winner's set",
                extra={"account_id": account_id},
            )
            async with UnitOfWork.begin() as uow:
                return await self._refresh_daily(uow, account_id, now)

    async def _refresh_daily(self, uow: UnitOfWork, account_id: int, now: datetime) -> List[Dict[str, Any]]:
        session = uow.session
        account = await self._accounts.require_for_update(session, account_id)
        today = _start_of_day(now).date().isoformat()

        existing = await self._assignments.find_many_where(
            session,
            QuestAssignment.account_id == account_id,
            QuestAssignment.quest_type == QuestType.DAILY.value,
            QuestAssignment.cycle_key == today,
            order_by=[QuestAssignment.id],
        )
        if existing:
            return [self._to_dict(assignment) for assignment in existing]

        eligible = []
        for definition in sorted(self._catalog.quests_of_type(QuestType.DAILY), key=lambda q: q.id):
            if not definition.is_available(now):
                continue
            if await self._cooldown_remaining(session, account_id, definition, now) is not None:
                continue
            eligible.append(definition)

        count = min(self.get_int_config("quests.daily_count", 3), len(eligible))
        picks = self._rng.sample(eligible, count) if count else []

        claimed = await self._assignments.claimed_quest_ids(session, account_id)
        created = []
        for definition in picks:
            created.append(await self._create_assignment(uow, account, definition, now, claimed))

        if created:
            self.emit_after_commit(
                uow,
                "quests.assigned",
                {"account_id": account_id, "cycle_key": today, "quest_ids": [a.quest_id for a in created]},
            )
        return [self._to_dict(assignment) for assignment in created]

    # ========================================================================
    # PUBLIC API - Start / progress
    # ========================================================================

    async def start_quest(
        self,
        account_id: int,
        quest_id: str,
        *,
        now: Optional[datetime] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> Dict[str, Any]:
        """
        Start ``quest_id`` for the account.

        An AVAILABLE assignment in the current cycle moves to IN_PROGRESS.
        Non-daily quests without one get a new assignment, subject to the
        availability window, level / prerequisite gates and cooldown.

        Raises:
            NotFoundError: Unknown quest
            InvalidStateError: An assignment for this cycle is past AVAILABLE
            InvalidOperationError: Locked, unavailable, on cooldown or not assigned
        """
        account_id = InputValidator.validate_account_id(account_id)
        definition = self._catalog.get_quest(quest_id)
        now = now or utc_now()

        self.log_operation("start_quest", account_id=account_id, quest_id=quest_id)

        async with UnitOfWork.begin(uow) as uow:
            session = uow.session
            account = await self._accounts.require(session, account_id)
            claimed = await self._assignments.claimed_quest_ids(session, account_id)
            assignment = await self._assignments.latest_for_quest(session, account_id, quest_id, for_update=True)

            if assignment is not None and self._expire_if_due(assignment, now):
                assignment = None

            current_key = cycle_window(definition, now)[0]
            in_cycle = assignment is not None and (
                assignment.cycle_key == current_key or assignment.status in EXPIRABLE_STATUSES
            )

            if in_cycle:
                status = QuestStatus(assignment.status)
                if status is QuestStatus.LOCKED:
                    if not self._gates_met(account, definition, claimed):
                        raise InvalidOperationError("start_quest", f"{quest_id} is locked", error_code="QUEST_LOCKED")
                    status = QuestStatus.AVAILABLE
                if status is not QuestStatus.AVAILABLE:
                    raise InvalidStateError("quest", assignment.status, "start_quest")
            else:
                if definition.quest_type is QuestType.DAILY:
                    raise InvalidOperationError(
                        "start_quest",
                        f"{quest_id} is not in today's rotation",
                        error_code="QUEST_NOT_ASSIGNED",
                    )
                if not definition.is_available(now):
                    raise InvalidOperationError(
                        "start_quest", f"{quest_id} is not available", error_code="QUEST_UNAVAILABLE"
                    )
                if not self._gates_met(account, definition, claimed):
                    raise InvalidOperationError("start_quest", f"{quest_id} is locked", error_code="QUEST_LOCKED")
                remaining = await self._cooldown_remaining(session, account_id, definition, now)
                if remaining is not None:
                    raise InvalidOperationError(
                        "start_quest",
                        f"{quest_id} is on cooldown for another {remaining}",
                        error_code="COOLDOWN_ACTIVE",
                    )
                assignment = await self._create_assignment(uow, account, definition, now, claimed)

            assignment.status = QuestStatus.IN_PROGRESS.value
            assignment.started_at = assignment.started_at or now
            await self._evaluate(uow, account, assignment, definition, now, increment=0)
            await self._assignments.flush(session)
            return self._to_dict(assignment)

    async def update_quest_progress(
        self,
        account_id: int,
        requirement_type: Any,
        amount: int = 1,
        *,
        now: Optional[datetime] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> List[Dict[str, Any]]:
        """
        Re-evaluate the account's open assignments for ``requirement_type``.

        Durable requirements are recounted; counter requirements add
        ``amount`` to the assignment's blob.

        Returns:
            Every assignment that was re-evaluated
        """
        account_id = InputValidator.validate_account_id(account_id)
        requirement = self._parse_requirement(requirement_type)
        amount = InputValidator.validate_non_negative_integer(amount, "amount")
        now = now or utc_now()

        self.log_operation(
            "update_quest_progress",
            account_id=account_id,
            requirement_type=requirement.value,
            amount=amount,
        )

        async with UnitOfWork.begin(uow) as uow:
            touched = await self._update(uow, account_id, (requirement,), amount, now)
            return [self._to_dict(assignment) for assignment in touched]

    async def handle_trigger(self, uow: UnitOfWork, event: TriggerEvent) -> List[Dict[str, Any]]:
        """TriggerRouter handler: advance quests whose requirement this trigger feeds."""
        requirements = _TRIGGER_REQUIREMENTS.get(event.trigger, ())
        if not requirements:
            return []

        if event.trigger is TriggerType.XP_GAINED:
            amount = int(event.data.get("amount", 0))
        elif event.trigger is TriggerType.ITEM_PURCHASED:
            amount = int(event.data.get("quantity", 1))
        else:
            amount = 1

        touched = await self._update(uow, event.account_id, requirements, amount, event.occurred_at)
        return [
            {"type": self.RESULT_TYPE, "account_id": event.account_id, **self._to_dict(assignment)}
            for assignment in touched
            if assignment.status == QuestStatus.COMPLETED.value
        ]

    async def _update(
        self,
        uow: UnitOfWork,
        account_id: int,
        requirements: Tuple[QuestRequirementType, ...],
        amount: int,
        now: datetime,
    ) -> List[QuestAssignment]:
        quest_ids = [
            definition.id
            for requirement in requirements
            for definition in self._catalog.quests_for_requirement(requirement)
        ]
        if not quest_ids:
            return []

        session = uow.session
        assignments = await self._assignments.open_for_account(session, account_id, quest_ids=quest_ids)
        if not assignments:
            return []

        account = await self._accounts.require(session, account_id)
        claimed = await self._assignments.claimed_quest_ids(session, account_id)
        touched = []

        for assignment in assignments:
            definition = self._catalog.quests.get(assignment.quest_id)
            if definition is None or self._expire_if_due(assignment, now):
                continue
            if assignment.status == QuestStatus.LOCKED.value:
                if not self._gates_met(account, definition, claimed):
                    continue
                assignment.status = QuestStatus.AVAILABLE.value

            await self._evaluate(uow, account, assignment, definition, now, increment=amount)
            touched.append(assignment)

        await self._assignments.flush(session)
        return touched

    # ========================================================================
    # PUBLIC API - Claim
    # ========================================================================

    async def claim_quest_rewards(
        self,
        account_id: int,
        quest_id: str,
        *,
        now: Optional[datetime] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> Dict[str, Any]:
        """
        Claim the reward bundle of a completed quest.

        ``claimed_at`` moves from null to set under the row lock before any
        reward is granted, so a second claim always fails.

        Returns:
            {
                "account_id": int,
                "quest_id": str,
                "status": "claimed",
                "rewards": dict,
                "achievements": list[dict],
            }

        Raises:
            NotFoundError: Unknown quest or no assignment
            InvalidStateError: Not COMPLETED, already claimed, or expired
        """
        account_id = InputValidator.validate_account_id(account_id)
        definition = self._catalog.get_quest(quest_id)
        now = now or utc_now()

        self.log_operation("claim_quest_rewards", account_id=account_id, quest_id=quest_id)

        async with UnitOfWork.begin(uow) as uow:
            session = uow.session
            assignment = await self._assignments.latest_for_quest(session, account_id, quest_id, for_update=True)
            if assignment is None:
                raise NotFoundError("QuestAssignment", f"{account_id}:{quest_id}")

            if (
                assignment.status in EXPIRABLE_STATUSES
                and assignment.expires_at is not None
                and now >= assignment.expires_at
            ):
                raise InvalidStateError("quest", QuestStatus.EXPIRED.value, "claim_quest_rewards")
            if assignment.status != QuestStatus.COMPLETED.value or assignment.claimed_at is not None:
                raise InvalidStateError("quest", assignment.status, "claim_quest_rewards")

            assignment.status = QuestStatus.CLAIMED.value
            assignment.claimed_at = now
            await self._assignments.flush(session)

            await self._grant_rewards(uow, account_id, definition)
            unlocked = await self._router.dispatch(
                uow,
                TriggerEvent(
                    TriggerType.QUEST_COMPLETED,
                    account_id,
                    {"quest_id": quest_id, "quest_type": definition.quest_type.value},
                    entity=EntityRef.of(EntityType.QUEST, quest_id),
                    occurred_at=now,
                ),
            )

            payload = {
                "account_id": account_id,
                "quest_id": quest_id,
                "status": QuestStatus.CLAIMED.value,
                "rewards": definition.rewards.to_dict(),
            }
            self.emit_after_commit(uow, "quest.claimed", payload)
            return {**payload, "achievements": [r for r in unlocked if r.get("type") == "achievement_unlocked"]}

    async def _grant_rewards(self, uow: UnitOfWork, account_id: int, definition: QuestDefinition) -> None:
        rewards = definition.rewards
        reference = EntityRef.of(EntityType.QUEST, definition.id)
        reason = f"quest:{definition.id}"

        for currency, amount in rewards.currency_amounts():
            await self._ledger.award(account_id, amount, currency, reason, reference=reference, uow=uow)
        for item_id, quantity in rewards.items.items():
            await self._inventory.grant(account_id, item_id, quantity, source="quest", uow=uow)
        if rewards.xp > 0:
            await self._xp.award_xp(account_id, rewards.xp, reason, {"quest_id": definition.id}, uow=uow)

    # ========================================================================
    # PUBLIC API - Reads and sweeps
    # ========================================================================

    async def get_active_quests(
        self,
        account_id: int,
        *,
        now: Optional[datetime] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> List[Dict[str, Any]]:
        """
        Open and completed-unclaimed assignments, refreshing today's daily set first.

        Assignments whose window elapsed are expired on the way.
        """
        account_id = InputValidator.validate_account_id(account_id)
        now = now or utc_now()

        async with UnitOfWork.begin(uow) as uow:
            await self._refresh_daily(uow, account_id, now)
            assignments = await self._assignments.open_for_account(
                uow.session, account_id, statuses=EXPIRABLE_STATUSES
            )
            active = [a for a in assignments if not self._expire_if_due(a, now)]
            return [self._to_dict(assignment) for assignment in active]

    async def expire_quests(self, *, now: Optional[datetime] = None, uow: Optional[UnitOfWork] = None) -> int:
        """
        Move every unclaimed assignment whose window elapsed to EXPIRED.

        Returns:
            Number of assignments expired
        """
        now = now or utc_now()
        self.log_operation("expire_quests", now=now.isoformat())

        async with UnitOfWork.begin(uow) as uow:
            due = await self._assignments.find_many_where(
                uow.session,
                QuestAssignment.status.in_(EXPIRABLE_STATUSES),
                QuestAssignment.expires_at.is_not(None),
                QuestAssignment.expires_at <= now,
                order_by=[QuestAssignment.id],
                for_update=True,
            )
            for assignment in due:
                assignment.status = QuestStatus.EXPIRED.value

            if due:
                self.log.info(f"Expired {len(due)} quest assignments", extra={"count": len(due)})
            return len(due)

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    async def _create_assignment(
        self,
        uow: UnitOfWork,
        account: Account,
        definition: QuestDefinition,
        now: datetime,
        claimed: set,
    ) -> QuestAssignment:
        cycle_key, window_start, expires_at = cycle_window(definition, now)
        status = QuestStatus.AVAILABLE if self._gates_met(account, definition, claimed) else QuestStatus.LOCKED

        assignment = self._assignments.add(
            uow.session,
            QuestAssignment(
                account_id=account.id,
                quest_id=definition.id,
                quest_type=definition.quest_type.value,
                cycle_key=cycle_key,
                status=status.value,
                progress={"since": window_start.isoformat(), "count": 0, "current": 0},
                assigned_at=now,
                expires_at=expires_at,
            ),
        )
        await self._assignments.flush(uow.session)
        return assignment

    async def _evaluate(
        self,
        uow: UnitOfWork,
        account: Account,
        assignment: QuestAssignment,
        definition: QuestDefinition,
        now: datetime,
        *,
        increment: int,
    ) -> None:
        progress = assignment.progress or {}
        requirement = definition.requirement_type

        if requirement.is_counter:
            progress["count"] = int(progress.get("count", 0)) + increment
            current = progress["count"]
        else:
            since = _as_utc(progress.get("since")) or assignment.assigned_at
            current = await self._measure(uow.session, account.id, requirement, since, now)

        progress["current"] = current
        assignment.progress = progress
        flag_modified(assignment, "progress")

        if current >= definition.required:
            assignment.status = QuestStatus.COMPLETED.value
            assignment.completed_at = now
            assignment.started_at = assignment.started_at or now

            payload = {
                "quest_id": definition.id,
                "name": definition.name,
                "quest_type": definition.quest_type.value,
                "rewards": definition.rewards.to_dict(),
            }
            self._dispatcher.notify_after_commit(
                uow, account.id, "quest_completed", payload, realtime_event="quest:completed"
            )
            self.emit_after_commit(uow, "quest.completed", {"account_id": account.id, **payload})
        elif current > 0 or assignment.status == QuestStatus.IN_PROGRESS.value:
            assignment.status = QuestStatus.IN_PROGRESS.value
            assignment.started_at = assignment.started_at or now

    async def _measure(
        self,
        session: AsyncSession,
        account_id: int,
        requirement: QuestRequirementType,
        since: datetime,
        now: datetime,
    ) -> int:
        if requirement is QuestRequirementType.LOGIN_STREAK:
            return await get_login_streak(
                session,
                account_id,
                today=now.date(),
                window_days=self.get_int_config("streaks.window_days", 30),
            )

        if requirement is QuestRequirementType.CREATE_COMMENTS:
            stmt = select(func.count(Comment.id)).where(
                Comment.author_id == account_id,
                Comment.created_at >= since,
            )
        else:
            stmt = select(func.count(Post.id)).where(
                Post.author_id == account_id,
                Post.published.is_(True),
                Post.created_at >= since,
            )
            if requirement is QuestRequirementType.SHARE_YOUTUBE:
                stmt = stmt.where(Post.youtube_video_id.is_not(None))

        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    async def _cooldown_remaining(
        self,
        session: AsyncSession,
        account_id: int,
        definition: QuestDefinition,
        now: datetime,
    ) -> Optional[timedelta]:
        if definition.cooldown_hours <= 0:
            return None
        latest = await self._assignments.latest_for_quest(session, account_id, definition.id)
        if latest is None:
            return None
        ready_at = latest.assigned_at + timedelta(hours=definition.cooldown_hours)
        return ready_at - now if ready_at > now else None

    @staticmethod
    def _gates_met(account: Account, definition: QuestDefinition, claimed: set) -> bool:
        if account.level < definition.min_level:
            return False
        return all(prereq in claimed for prereq in definition.prerequisites)

    @staticmethod
    def _expire_if_due(assignment: QuestAssignment, now: datetime) -> bool:
        if (
            assignment.status in EXPIRABLE_STATUSES
            and assignment.expires_at is not None
            and now >= assignment.expires_at
        ):
            assignment.status = QuestStatus.EXPIRED.value
            return True
        return False

    @staticmethod
    def _parse_requirement(value: Any) -> QuestRequirementType:
        choice = InputValidator.validate_choice(
            value, "requirement_type", [r.value for r in QuestRequirementType]
        )
        return QuestRequirementType(choice)

    def _to_dict(self, assignment: QuestAssignment) -> Dict[str, Any]:
        definition = self._catalog.quests.get(assignment.quest_id)
        required = definition.required if definition else 0
        current = int((assignment.progress or {}).get("current", 0))
        claimed_or_done = assignment.status in (QuestStatus.COMPLETED.value, QuestStatus.CLAIMED.value)

        return {
            "quest_id": assignment.quest_id,
            "name": definition.name if definition else assignment.quest_id,
            "description": definition.description if definition else "",
            "quest_type": assignment.quest_type,
            "cycle_key": assignment.cycle_key,
            "status": assignment.status,
            "current": current,
            "required": required,
            "percentage": 100.0 if claimed_or_done else calculate_percentage(current, required),
            "rewards": definition.rewards.to_dict() if definition else {},
            "assigned_at": assignment.assigned_at.isoformat() if assignment.assigned_at else None,
            "started_at": assignment.started_at.isoformat() if assignment.started_at else None,
            "completed_at": assignment.completed_at.isoformat() if assignment.completed_at else None,
            "claimed_at": assignment.claimed_at.isoformat() if assignment.claimed_at else None,
            "expires_at": assignment.expires_at.isoformat() if assignment.expires_at else None,
        }
