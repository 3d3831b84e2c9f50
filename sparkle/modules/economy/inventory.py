"""
Inventory Service
=================

Items held by an account, one row per (account, item). Rows are created on
first grant and deleted when their quantity reaches zero. Purchases, trades
and quest / achievement / level rewards all land here.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sparkle.core.database.service import DatabaseService
from sparkle.core.database.unit_of_work import UnitOfWork
from sparkle.core.infra.audit_logger import AuditLogger
from sparkle.core.logging.logger import get_logger
from sparkle.core.validation.input_validator import MAX_ITEM_STACK, InputValidator
from sparkle.database.models.economy import InventoryEntry
from sparkle.modules.shared.base_repository import BaseRepository
from sparkle.modules.shared.base_service import BaseService
from sparkle.modules.shared.cache_keys import invalidate_user_stats_after_commit
from sparkle.modules.shared.exceptions import (
    InsufficientInventoryError,
    NotFoundError,
    SelfReferenceNotAllowedError,
)

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from sparkle.core.config.manager import ConfigManager
    from sparkle.core.event.bus import EventBus


# ============================================================================
# Repository
# ============================================================================


class InventoryRepository(BaseRepository[InventoryEntry]):
    async def find_entry(
        self,
        session: AsyncSession,
        account_id: int,
        item_id: str,
        *,
        for_update: bool = False,
    ) -> Optional[InventoryEntry]:
        return await self.find_one_where(
            session,
            InventoryEntry.account_id == account_id,
            InventoryEntry.item_id == item_id,
            for_update=for_update,
        )


def entry_to_dict(entry: InventoryEntry) -> Dict[str, Any]:
    return {
        "item_id": entry.item_id,
        "quantity": entry.quantity,
        "equipped": entry.equipped,
        "source": entry.source,
        "expires_at": entry.expires_at.isoformat() if entry.expires_at else None,
    }


# ============================================================================
# InventoryService
# ============================================================================


class InventoryService(BaseService):
    """
    Public Methods
    --------------
    - grant() -> Add items to an account
    - remove() -> Take items away; InsufficientInventoryError when short
    - transfer() -> Move items between two accounts
    - quantity_of() -> Held quantity (0 when absent)
    - list_items() -> Everything an account holds
    - equip() -> Toggle the equipped flag
    """

    def __init__(self, config_manager: ConfigManager, event_bus: EventBus, logger: Logger) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._inventory = InventoryRepository(
            model_class=InventoryEntry,
            logger=get_logger(f"{__name__}.InventoryRepository"),
        )

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def quantity_of(
        self,
        account_id: int,
        item_id: str,
        *,
        session: Optional[AsyncSession] = None,
    ) -> int:
        if session is not None:
            entry = await self._inventory.find_entry(session, account_id, item_id)
            return entry.quantity if entry else 0

        async with DatabaseService.get_session() as session:
            entry = await self._inventory.find_entry(session, account_id, item_id)
            return entry.quantity if entry else 0

    async def list_items(self, account_id: int) -> List[Dict[str, Any]]:
        account_id = InputValidator.validate_account_id(account_id)

        async with DatabaseService.get_session() as session:
            entries = await self._inventory.find_many_where(
                session,
                InventoryEntry.account_id == account_id,
                order_by=[InventoryEntry.item_id],
            )
            return [entry_to_dict(entry) for entry in entries]

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def grant(
        self,
        account_id: int,
        item_id: str,
        quantity: int = 1,
        *,
        source: str = "reward",
        uow: Optional[UnitOfWork] = None,
    ) -> Dict[str, Any]:
        """
        Add ``quantity`` of ``item_id`` to an account.

        Returns:
            The inventory entry after the grant
        """
        account_id = InputValidator.validate_account_id(account_id)
        item_id = InputValidator.validate_item_id(item_id)
        quantity = InputValidator.validate_positive_integer(quantity, "quantity", max_value=MAX_ITEM_STACK)

        self.log_operation("grant", account_id=account_id, item_id=item_id, quantity=quantity, source=source)

        async with UnitOfWork.begin(uow) as uow:
            entry = await self._inventory.find_entry(uow.session, account_id, item_id, for_update=True)
            if entry is None:
                entry = self._inventory.add(
                    uow.session,
                    InventoryEntry(account_id=account_id, item_id=item_id, quantity=quantity, source=source),
                )
            else:
                entry.quantity += quantity

            self._after_change(uow, account_id, item_id, quantity, entry.quantity, source)
            return entry_to_dict(entry)

    async def remove(
        self,
        account_id: int,
        item_id: str,
        quantity: int = 1,
        *,
        reason: str = "consumed",
        uow: Optional[UnitOfWork] = None,
    ) -> int:
        """
        Take ``quantity`` of ``item_id`` from an account.

        Returns:
            Remaining quantity (0 means the row was deleted)

        Raises:
            InsufficientInventoryError: If fewer than ``quantity`` are held
        """
        account_id = InputValidator.validate_account_id(account_id)
        item_id = InputValidator.validate_item_id(item_id)
        quantity = InputValidator.validate_positive_integer(quantity, "quantity", max_value=MAX_ITEM_STACK)

        self.log_operation("remove", account_id=account_id, item_id=item_id, quantity=quantity, reason=reason)

        async with UnitOfWork.begin(uow) as uow:
            entry = await self._inventory.find_entry(uow.session, account_id, item_id, for_update=True)
            held = entry.quantity if entry else 0
            if entry is None or held < quantity:
                raise InsufficientInventoryError(item_id, quantity, held)

            remaining = held - quantity
            if remaining == 0:
                await self._inventory.delete(uow.session, entry)
            else:
                entry.quantity = remaining

            self._after_change(uow, account_id, item_id, -quantity, remaining, reason)
            return remaining

    async def transfer(
        self,
        from_account_id: int,
        to_account_id: int,
        item_id: str,
        quantity: int,
        *,
        source: str = "trade",
        uow: Optional[UnitOfWork] = None,
    ) -> None:
        if from_account_id == to_account_id:
            raise SelfReferenceNotAllowedError("transfer_item", from_account_id)

        async with UnitOfWork.begin(uow) as uow:
            await self.remove(from_account_id, item_id, quantity, reason=source, uow=uow)
            await self.grant(to_account_id, item_id, quantity, source=source, uow=uow)

    async def equip(
        self,
        account_id: int,
        item_id: str,
        equipped: bool = True,
        *,
        uow: Optional[UnitOfWork] = None,
    ) -> Dict[str, Any]:
        account_id = InputValidator.validate_account_id(account_id)
        item_id = InputValidator.validate_item_id(item_id)

        async with UnitOfWork.begin(uow) as uow:
            entry = await self._inventory.find_entry(uow.session, account_id, item_id, for_update=True)
            if entry is None:
                raise NotFoundError("InventoryEntry", f"{account_id}:{item_id}")
            entry.equipped = bool(equipped)
            return entry_to_dict(entry)

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    def _after_change(
        self,
        uow: UnitOfWork,
        account_id: int,
        item_id: str,
        delta: int,
        quantity: int,
        source: str,
    ) -> None:
        details = {"item_id": item_id, "delta": delta, "quantity": quantity, "source": source}
        self.emit_after_commit(uow, "inventory.changed", {"account_id": account_id, **details})
        AuditLogger.log_after_commit(
            uow,
            event_bus=self._events,
            account_id=account_id,
            transaction_type="inventory_changed",
            details=details,
            context=source,
        )
        invalidate_user_stats_after_commit(uow, account_id)
