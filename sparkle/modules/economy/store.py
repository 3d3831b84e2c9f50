"""
Store Service
=============

Purpose
-------
Catalogue of purchasable items and the purchase flow: availability window,
stock bookkeeping, percentage discounts, premium-priced items, one-per-account
ownership for non-consumables, currency debit and inventory grant in one
transaction.

Pricing
-------
An item priced in premium points (``price_premium`` set) is charged in
premium points, otherwise in sparkle points. The charged amount is
``floor(unit_price * quantity * (1 - discount / 100))``.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import or_

from sparkle.core.database.base import utc_now
from sparkle.core.database.service import DatabaseService
from sparkle.core.database.unit_of_work import UnitOfWork
from sparkle.core.logging.logger import get_logger
from sparkle.core.validation.input_validator import InputValidator
from sparkle.database.models.economy import StoreItem
from sparkle.database.models.enums import CurrencyType, ItemCategory
from sparkle.modules.shared.base_repository import BaseRepository
from sparkle.modules.shared.base_service import BaseService
from sparkle.modules.shared.exceptions import (
    InvalidOperationError,
    NotFoundError,
    ValidationError,
)
from sparkle.modules.shared.formulas import calculate_discounted_price
from sparkle.modules.shared.triggers import EntityRef, EntityType, TriggerEvent, TriggerType

if TYPE_CHECKING:
    from logging import Logger

    from sparkle.core.config.manager import ConfigManager
    from sparkle.core.event.bus import EventBus
    from sparkle.modules.economy.inventory import InventoryService
    from sparkle.modules.economy.ledger import CurrencyLedger
    from sparkle.modules.shared.triggers import TriggerRouter


# ============================================================================
# Repository
# ============================================================================


class StoreItemRepository(BaseRepository[StoreItem]):
    pass


def item_to_dict(item: StoreItem) -> Dict[str, Any]:
    currency = item_currency(item)
    return {
        "item_id": item.id,
        "name": item.name,
        "description": item.description,
        "category": item.category,
        "currency": currency.value,
        "unit_price": item_unit_price(item),
        "discount_percentage": item.discount_percentage,
        "stock_remaining": item.stock_remaining,
        "tradeable": item.tradeable,
        "available_from": item.available_from.isoformat() if item.available_from else None,
        "available_until": item.available_until.isoformat() if item.available_until else None,
    }


def item_currency(item: StoreItem) -> CurrencyType:
    return CurrencyType.PREMIUM_POINTS if item.price_premium is not None else CurrencyType.SPARKLE_POINTS


def item_unit_price(item: StoreItem) -> int:
    if item.price_premium is not None:
        return item.price_premium
    return item.price_sparkle or 0


# ============================================================================
# StoreService
# ============================================================================


class StoreService(BaseService):
    """
    Public Methods
    --------------
    - add_item() -> Create or replace a catalogue entry
    - list_items() -> Items currently on sale
    - purchase_item() -> Buy an item (Facade ``purchase_item``)
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        ledger: CurrencyLedger,
        inventory: InventoryService,
        router: TriggerRouter,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._ledger = ledger
        self._inventory = inventory
        self._router = router
        self._items = StoreItemRepository(
            model_class=StoreItem,
            logger=get_logger(f"{__name__}.StoreItemRepository"),
        )

    # ========================================================================
    # PUBLIC API - Catalogue
    # ========================================================================

    async def add_item(
        self,
        item_id: str,
        name: str,
        *,
        category: str = ItemCategory.COSMETIC.value,
        price_sparkle: Optional[int] = None,
        price_premium: Optional[int] = None,
        discount_percentage: int = 0,
        stock_remaining: Optional[int] = None,
        available_from: Optional[datetime] = None,
        available_until: Optional[datetime] = None,
        tradeable: bool = True,
        description: Optional[str] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> Dict[str, Any]:
        item_id = InputValidator.validate_item_id(item_id)
        name = InputValidator.validate_string(name, "name", min_length=1, max_length=120)
        category = InputValidator.validate_choice(category, "category", [c.value for c in ItemCategory])
        if price_sparkle is not None:
            price_sparkle = InputValidator.validate_non_negative_integer(price_sparkle, "price_sparkle")
        if price_premium is not None:
            price_premium = InputValidator.validate_non_negative_integer(price_premium, "price_premium")
        discount_percentage = InputValidator.validate_integer(
            discount_percentage, "discount_percentage", min_value=0, max_value=100
        )
        if stock_remaining is not None:
            stock_remaining = InputValidator.validate_non_negative_integer(stock_remaining, "stock_remaining")

        self.log_operation("add_item", item_id=item_id, category=category)

        async with UnitOfWork.begin(uow) as uow:
            item = await self._items.get_for_update(uow.session, item_id)
            if item is None:
                item = self._items.add(uow.session, StoreItem(id=item_id, name=name))

            item.name = name
            item.description = description
            item.category = category
            item.price_sparkle = price_sparkle
            item.price_premium = price_premium
            item.discount_percentage = discount_percentage
            item.stock_remaining = stock_remaining
            item.available_from = available_from
            item.available_until = available_until
            item.tradeable = tradeable
            await self._items.flush(uow.session)
            return item_to_dict(item)

    async def list_items(self, *, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = now or utc_now()

        async with DatabaseService.get_session() as session:
            items = await self._items.find_many_where(
                session,
                or_(StoreItem.available_from.is_(None), StoreItem.available_from <= now),
                or_(StoreItem.available_until.is_(None), StoreItem.available_until >= now),
                or_(StoreItem.stock_remaining.is_(None), StoreItem.stock_remaining > 0),
                order_by=[StoreItem.id],
            )
            return [item_to_dict(item) for item in items]

    # ========================================================================
    # PUBLIC API - Purchase
    # ========================================================================

    async def purchase_item(
        self,
        account_id: int,
        item_id: str,
        quantity: int = 1,
        *,
        now: Optional[datetime] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> Dict[str, Any]:
        """
        Buy ``quantity`` of ``item_id``.

        The item row is locked so stock cannot be oversold; the currency
        debit, stock decrement, inventory grant and ``item_purchased``
        trigger commit together.

        Returns:
            {
                "account_id": int,
                "item_id": str,
                "quantity": int,
                "currency": str,
                "price_paid": int,
                "balance": int,
                "stock_remaining": int | None,
                "achievements": list[dict],
            }

        Raises:
            NotFoundError: Unknown item
            InvalidOperationError: Unavailable, out of stock or already owned
            InsufficientFundsError: Balance below the price
            ValidationError: Invalid input
        """
        account_id = InputValidator.validate_account_id(account_id)
        item_id = InputValidator.validate_item_id(item_id)
        quantity = InputValidator.validate_positive_integer(quantity, "quantity", max_value=1000)
        now = now or utc_now()

        self.log_operation("purchase_item", account_id=account_id, item_id=item_id, quantity=quantity)

        async with UnitOfWork.begin(uow) as uow:
            item = await self._items.get_for_update(uow.session, item_id)
            if item is None:
                raise NotFoundError("StoreItem", item_id)

            await self._check_purchasable(uow, item, account_id, quantity, now)

            currency = item_currency(item)
            price = calculate_discounted_price(item_unit_price(item), quantity, item.discount_percentage)
            reference = EntityRef.of(EntityType.ITEM, item.id)

            if price > 0:
                balance = await self._ledger.spend(
                    account_id,
                    price,
                    currency,
                    f"purchase:{item.id}",
                    reference=reference,
                    uow=uow,
                )
            else:
                locked = await self._ledger.lock_accounts(uow.session, [account_id])
                balance = getattr(locked[account_id], currency.column)

            if item.stock_remaining is not None:
                item.stock_remaining -= quantity

            await self._inventory.grant(account_id, item.id, quantity, source="purchase", uow=uow)

            unlocked = await self._router.dispatch(
                uow,
                TriggerEvent(
                    TriggerType.ITEM_PURCHASED,
                    account_id,
                    {
                        "item_id": item.id,
                        "quantity": quantity,
                        "price": price,
                        "currency": currency.value,
                        "category": item.category,
                    },
                    entity=reference,
                    occurred_at=now,
                ),
            )

            result = {
                "account_id": account_id,
                "item_id": item.id,
                "quantity": quantity,
                "currency": currency.value,
                "price_paid": price,
                "balance": balance,
                "stock_remaining": item.stock_remaining,
                "achievements": [r for r in unlocked if r.get("type") == "achievement_unlocked"],
            }
            self.emit_after_commit(uow, "store.item_purchased", {k: v for k, v in result.items() if k != "achievements"})
            return result

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    async def _check_purchasable(
        self,
        uow: UnitOfWork,
        item: StoreItem,
        account_id: int,
        quantity: int,
        now: datetime,
    ) -> None:
        if (item.available_from is not None and now < item.available_from) or (
            item.available_until is not None and now > item.available_until
        ):
            raise InvalidOperationError(
                "purchase_item",
                f"{item.id} is not on sale",
                error_code="ITEM_UNAVAILABLE",
            )

        if item.stock_remaining is not None and item.stock_remaining < quantity:
            raise InvalidOperationError(
                "purchase_item",
                f"{item.id} has {item.stock_remaining} left",
                error_code="OUT_OF_STOCK",
            )

        if item.category != ItemCategory.CONSUMABLE.value:
            if quantity > 1:
                raise ValidationError("quantity", "Non-consumable items can only be bought once")
            owned = await self._inventory.quantity_of(account_id, item.id, session=uow.session)
            if owned > 0:
                raise InvalidOperationError(
                    "purchase_item",
                    f"{item.id} is already owned",
                    error_code="ALREADY_OWNED",
                )
