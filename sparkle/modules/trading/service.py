"""
Trade Service
=============

Purpose
-------
Two-party, consent-based exchange of items and sparkle points.

Protocol
--------
1. ``propose_trade``: point-in-time check that the initiator can cover the
   offer; the trade is created PENDING with an expiry (7 days by default)
   and the recipient is notified. Nothing is reserved.
2. ``respond_trade``: only the recipient may respond, only to a PENDING
   trade that has not expired. Rejecting moves it to REJECTED.
3. Accepting executes in one transaction: both accounts are locked in
   ascending id order, every commitment is re-verified, then all items and
   points move. If either side can no longer cover its part the trade ends
   FAILED and nothing moves.
4. PENDING trades past ``expires_at`` become EXPIRED, lazily on access or
   through ``expire_trades``.

Status only moves forward; every transition happens under the trade's row
lock and its ``version`` column, so concurrent accepts yield exactly one
COMPLETED outcome.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from sqlalchemy import or_

from sparkle.core.database.base import utc_now
from sparkle.core.database.service import DatabaseService
from sparkle.core.database.unit_of_work import UnitOfWork
from sparkle.core.infra.audit_logger import AuditLogger
from sparkle.core.logging.logger import get_logger
from sparkle.core.validation.input_validator import InputValidator
from sparkle.database.models.core import Account
from sparkle.database.models.economy import StoreItem, Trade
from sparkle.database.models.enums import CurrencyType, TradeStatus
from sparkle.modules.accounts.service import AccountRepository
from sparkle.modules.shared.base_repository import BaseRepository
from sparkle.modules.shared.base_service import BaseService
from sparkle.modules.shared.exceptions import (
    InsufficientFundsError,
    InsufficientInventoryError,
    InvalidOperationError,
    InvalidStateError,
    NotFoundError,
    SelfReferenceNotAllowedError,
    SparkleDomainException,
    TradeNoLongerValidError,
    ValidationError,
)
from sparkle.modules.shared.triggers import EntityRef, EntityType, TriggerEvent, TriggerType

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from sparkle.core.config.manager import ConfigManager
    from sparkle.core.event.bus import EventBus
    from sparkle.core.infra.notifications import SideEffectDispatcher
    from sparkle.modules.economy.inventory import InventoryService
    from sparkle.modules.economy.ledger import CurrencyLedger
    from sparkle.modules.shared.triggers import TriggerRouter

TRADE_CURRENCY = CurrencyType.SPARKLE_POINTS


# ============================================================================
# Repository
# ============================================================================


class TradeRepository(BaseRepository[Trade]):
    async def require_for_update(self, session: AsyncSession, trade_id: int) -> Trade:
        trade = await self.get_for_update(session, trade_id)
        if trade is None:
            raise NotFoundError("Trade", trade_id)
        return trade


def trade_to_dict(trade: Trade) -> Dict[str, Any]:
    def _iso(value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value else None

    return {
        "trade_id": trade.id,
        "initiator_id": trade.initiator_id,
        "recipient_id": trade.recipient_id,
        "initiator_items": dict(trade.initiator_items or {}),
        "recipient_items": dict(trade.recipient_items or {}),
        "initiator_points": trade.initiator_points,
        "recipient_points": trade.recipient_points,
        "status": trade.status,
        "message": trade.message,
        "failure_reason": trade.failure_reason,
        "expires_at": _iso(trade.expires_at),
        "responded_at": _iso(trade.responded_at),
        "completed_at": _iso(trade.completed_at),
        "created_at": _iso(trade.created_at),
    }


# ============================================================================
# TradeService
# ============================================================================


class TradeService(BaseService):
    """
    Public Methods
    --------------
    - propose_trade() -> Create a PENDING offer
    - respond_trade() -> Accept (execute) or reject, recipient only
    - cancel_trade() -> Withdraw a PENDING offer, initiator only
    - get_trade() -> One trade, expiring it lazily
    - list_trades() -> Trades an account takes part in
    - expire_trades() -> Sweep PENDING trades past expiry
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
        self._trades = TradeRepository(
            model_class=Trade,
            logger=get_logger(f"{__name__}.TradeRepository"),
        )

    # ========================================================================
    # PUBLIC API - Propose
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
        uow: Optional[UnitOfWork] = None,
    ) -> Dict[str, Any]:
        """
        Offer ``offer_items`` + ``offer_points`` for ``request_items`` + ``request_points``.

        Raises:
            SelfReferenceNotAllowedError: initiator == recipient
            ValidationError: Empty trade or malformed input
            NotFoundError: Either account missing
            InsufficientFundsError / InsufficientInventoryError: Offer not covered now
            InvalidOperationError: An offered or requested item is not tradeable
        """
        initiator_id = InputValidator.validate_account_id(initiator_id, "initiator_id")
        recipient_id = InputValidator.validate_account_id(recipient_id, "recipient_id")
        if initiator_id == recipient_id:
            raise SelfReferenceNotAllowedError("propose_trade", initiator_id)

        offer_items = InputValidator.validate_item_map(offer_items, "offer_items")
        request_items = InputValidator.validate_item_map(request_items, "request_items")
        offer_points = InputValidator.validate_non_negative_integer(offer_points, "offer_points")
        request_points = InputValidator.validate_non_negative_integer(request_points, "request_points")
        if message is not None:
            message = InputValidator.validate_string(message, "message", max_length=500) or None
        if not (offer_items or request_items or offer_points or request_points):
            raise ValidationError("trade", "A trade must move at least one item or point")

        now = now or utc_now()
        expiry_days = self.get_int_config("trading.default_expiry_days", 7)

        self.log_operation(
            "propose_trade",
            initiator_id=initiator_id,
            recipient_id=recipient_id,
            offer_points=offer_points,
            request_points=request_points,
        )

        async with UnitOfWork.begin(uow) as uow:
            session = uow.session
            initiator = await self._accounts.require(session, initiator_id)
            await self._accounts.require(session, recipient_id)

            await self._check_tradeable(session, {**offer_items, **request_items})
            if initiator.sparkle_points < offer_points:
                raise InsufficientFundsError(TRADE_CURRENCY.value, offer_points, initiator.sparkle_points)
            for item_id, quantity in offer_items.items():
                held = await self._inventory.quantity_of(initiator_id, item_id, session=session)
                if held < quantity:
                    raise InsufficientInventoryError(item_id, quantity, held)

            trade = self._trades.add(
                session,
                Trade(
                    initiator_id=initiator_id,
                    recipient_id=recipient_id,
                    initiator_items=offer_items,
                    recipient_items=request_items,
                    initiator_points=offer_points,
                    recipient_points=request_points,
                    status=TradeStatus.PENDING.value,
                    message=message,
                    expires_at=now + timedelta(days=expiry_days),
                ),
            )
            await self._trades.flush(session)

            payload = trade_to_dict(trade)
            self._dispatcher.notify_after_commit(
                uow, recipient_id, "trade_request", payload, realtime_event="trade:request"
            )
            self.emit_after_commit(uow, "trade.proposed", payload)
            return payload

    # ========================================================================
    # PUBLIC API - Respond / cancel
    # ========================================================================

    async def respond_trade(
        self,
        trade_id: int,
        account_id: int,
        accept: bool,
        *,
        now: Optional[datetime] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> Dict[str, Any]:
        """
        Accept or reject a PENDING trade as its recipient.

        An expired trade is marked EXPIRED (committed) before
        ``InvalidStateError`` is raised. An accepted trade that fails
        re-verification is marked FAILED (committed) before
        ``TradeNoLongerValidError`` is raised; no item or point moves.

        Returns:
            The trade after the transition, plus ``achievements`` unlocked
            by completing it

        Raises:
            NotFoundError: Unknown trade
            InvalidStateError: Trade not PENDING, or expired
            InvalidOperationError: Caller is not the recipient
            TradeNoLongerValidError: A party can no longer cover its side
        """
        trade_id = InputValidator.validate_integer(trade_id, "trade_id", min_value=1)
        account_id = InputValidator.validate_account_id(account_id)
        now = now or utc_now()

        self.log_operation("respond_trade", trade_id=trade_id, account_id=account_id, accept=bool(accept))

        failure: Optional[SparkleDomainException] = None
        async with UnitOfWork.begin(uow) as uow:
            trade = await self._trades.require_for_update(uow.session, trade_id)

            if trade.status != TradeStatus.PENDING.value:
                raise InvalidStateError("trade", trade.status, "respond_trade")
            if trade.recipient_id != account_id:
                raise InvalidOperationError(
                    "respond_trade",
                    "only the recipient may respond",
                    error_code="NOT_TRADE_RECIPIENT",
                )

            if now >= trade.expires_at:
                self._mark_expired(uow, trade)
                failure = InvalidStateError("trade", TradeStatus.EXPIRED.value, "respond_trade")
                result = trade_to_dict(trade)
            elif not accept:
                trade.status = TradeStatus.REJECTED.value
                trade.responded_at = now
                result = trade_to_dict(trade)
                self._dispatcher.notify_after_commit(
                    uow, trade.initiator_id, "trade_rejected", result, realtime_event="trade:rejected"
                )
                self.emit_after_commit(uow, "trade.rejected", result)
            else:
                trade.status = TradeStatus.ACCEPTED.value
                trade.responded_at = now
                failure, result = await self._execute(uow, trade, now)

        if failure is not None:
            raise failure
        return result

    async def cancel_trade(
        self,
        trade_id: int,
        account_id: int,
        *,
        now: Optional[datetime] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> Dict[str, Any]:
        """
        Withdraw a PENDING trade as its initiator.

        Raises:
            InvalidStateError: Trade not PENDING
            InvalidOperationError: Caller is not the initiator
        """
        trade_id = InputValidator.validate_integer(trade_id, "trade_id", min_value=1)
        account_id = InputValidator.validate_account_id(account_id)
        now = now or utc_now()

        self.log_operation("cancel_trade", trade_id=trade_id, account_id=account_id)

        async with UnitOfWork.begin(uow) as uow:
            trade = await self._trades.require_for_update(uow.session, trade_id)
            if trade.status != TradeStatus.PENDING.value:
                raise InvalidStateError("trade", trade.status, "cancel_trade")
            if trade.initiator_id != account_id:
                raise InvalidOperationError(
                    "cancel_trade",
                    "only the initiator may cancel",
                    error_code="NOT_TRADE_INITIATOR",
                )

            trade.status = TradeStatus.CANCELLED.value
            trade.responded_at = now
            result = trade_to_dict(trade)
            self._dispatcher.notify_after_commit(uow, trade.recipient_id, "trade_cancelled", result)
            self.emit_after_commit(uow, "trade.cancelled", result)
            return result

    # ========================================================================
    # PUBLIC API - Reads and sweeps
    # ========================================================================

    async def get_trade(
        self,
        trade_id: int,
        *,
        account_id: Optional[int] = None,
        now: Optional[datetime] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> Dict[str, Any]:
        """One trade; a PENDING trade past its expiry is expired on read."""
        trade_id = InputValidator.validate_integer(trade_id, "trade_id", min_value=1)
        now = now or utc_now()

        async with UnitOfWork.begin(uow) as uow:
            trade = await self._trades.require_for_update(uow.session, trade_id)
            if account_id is not None and account_id not in (trade.initiator_id, trade.recipient_id):
                raise NotFoundError("Trade", trade_id)
            if trade.status == TradeStatus.PENDING.value and now >= trade.expires_at:
                self._mark_expired(uow, trade)
            return trade_to_dict(trade)

    async def list_trades(
        self,
        account_id: int,
        *,
        status: Optional[str] = None,
        limit: int = 20,
    ) -> List[Dict[str, Any]]:
        account_id = InputValidator.validate_account_id(account_id)
        limit = InputValidator.validate_integer(limit, "limit", min_value=1, max_value=100)

        conditions = [or_(Trade.initiator_id == account_id, Trade.recipient_id == account_id)]
        if status is not None:
            status = InputValidator.validate_choice(status, "status", [s.value for s in TradeStatus])
            conditions.append(Trade.status == status)

        async with DatabaseService.get_session() as session:
            trades = await self._trades.find_many_where(
                session,
                *conditions,
                order_by=[Trade.created_at.desc(), Trade.id.desc()],
                limit=limit,
            )
            return [trade_to_dict(trade) for trade in trades]

    async def expire_trades(self, *, now: Optional[datetime] = None, uow: Optional[UnitOfWork] = None) -> int:
        """
        Expire every PENDING trade past ``expires_at``.

        Returns:
            Number of trades expired
        """
        now = now or utc_now()
        self.log_operation("expire_trades", now=now.isoformat())

        async with UnitOfWork.begin(uow) as uow:
            due = await self._trades.find_many_where(
                uow.session,
                Trade.status == TradeStatus.PENDING.value,
                Trade.expires_at <= now,
                order_by=[Trade.id],
                for_update=True,
            )
            for trade in due:
                self._mark_expired(uow, trade)

            if due:
                self.log.info(f"Expired {len(due)} trades", extra={"count": len(due)})
            return len(due)

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    async def _execute(
        self,
        uow: UnitOfWork,
        trade: Trade,
        now: datetime,
    ) -> tuple:
        """Re-verify and move everything; returns ``(failure, result)``."""
        session = uow.session
        locked = await self._ledger.lock_accounts(session, [trade.initiator_id, trade.recipient_id])
        initiator, recipient = locked[trade.initiator_id], locked[trade.recipient_id]

        problem = await self._verify_side(session, initiator, trade.initiator_points, trade.initiator_items)
        if problem is None:
            problem = await self._verify_side(session, recipient, trade.recipient_points, trade.recipient_items)

        if problem is not None:
            reason, offender = problem
            trade.status = TradeStatus.FAILED.value
            trade.failure_reason = reason[:200]
            result = trade_to_dict(trade)
            for party in (trade.initiator_id, trade.recipient_id):
                self._dispatcher.notify_after_commit(uow, party, "trade_failed", result)
            self.emit_after_commit(uow, "trade.failed", result)
            self.log.warning(
                "Trade failed re-verification",
                extra={"trade_id": trade.id, "reason": reason, "account_id": offender},
            )
            return TradeNoLongerValidError(trade.id, reason, offender), result

        reference = EntityRef.of(EntityType.TRADE, trade.id)
        reason = f"trade:{trade.id}"

        for item_id, quantity in (trade.initiator_items or {}).items():
            await self._inventory.transfer(
                trade.initiator_id, trade.recipient_id, item_id, quantity, source="trade", uow=uow
            )
        for item_id, quantity in (trade.recipient_items or {}).items():
            await self._inventory.transfer(
                trade.recipient_id, trade.initiator_id, item_id, quantity, source="trade", uow=uow
            )
        if trade.initiator_points:
            await self._ledger.transfer(
                trade.initiator_id, trade.recipient_id, trade.initiator_points, TRADE_CURRENCY, reason,
                reference=reference, uow=uow,
            )
        if trade.recipient_points:
            await self._ledger.transfer(
                trade.recipient_id, trade.initiator_id, trade.recipient_points, TRADE_CURRENCY, reason,
                reference=reference, uow=uow,
            )

        trade.status = TradeStatus.COMPLETED.value
        trade.completed_at = now
        await self._trades.flush(session)

        achievements: List[Dict[str, Any]] = []
        for party in (trade.initiator_id, trade.recipient_id):
            produced = await self._router.dispatch(
                uow,
                TriggerEvent(
                    TriggerType.TRADE_COMPLETED,
                    party,
                    {"trade_id": trade.id},
                    entity=reference,
                    occurred_at=now,
                ),
            )
            achievements.extend(r for r in produced if r.get("type") == "achievement_unlocked")

        result = trade_to_dict(trade)
        for party in (trade.initiator_id, trade.recipient_id):
            self._dispatcher.notify_after_commit(
                uow, party, "trade_completed", result, realtime_event="trade:completed"
            )
            AuditLogger.log_after_commit(
                uow,
                event_bus=self._events,
                account_id=party,
                transaction_type="trade_completed",
                details=result,
                context=reason,
            )
        self.emit_after_commit(uow, "trade.completed", result)
        return None, {**result, "achievements": achievements}

    async def _verify_side(
        self,
        session: AsyncSession,
        account: Account,
        points: int,
        items: Mapping[str, int],
    ) -> Optional[tuple]:
        if account.banned:
            return f"account {account.id} is banned", account.id
        if account.sparkle_points < points:
            return (
                f"account {account.id} has {account.sparkle_points} sparkle points, needs {points}",
                account.id,
            )
        for item_id, quantity in (items or {}).items():
            held = await self._inventory.quantity_of(account.id, item_id, session=session)
            if held < quantity:
                return f"account {account.id} holds {held} of {item_id}, needs {quantity}", account.id
        return None

    async def _check_tradeable(self, session: AsyncSession, items: Mapping[str, int]) -> None:
        for item_id in items:
            item = await session.get(StoreItem, item_id)
            if item is not None and not item.tradeable:
                raise InvalidOperationError(
                    "propose_trade",
                    f"{item_id} cannot be traded",
                    error_code="ITEM_NOT_TRADEABLE",
                )

    def _mark_expired(self, uow: UnitOfWork, trade: Trade) -> None:
        trade.status = TradeStatus.EXPIRED.value
        payload = trade_to_dict(trade)
        self._dispatcher.notify_after_commit(uow, trade.initiator_id, "trade_expired", payload)
        self.emit_after_commit(uow, "trade.expired", payload)
