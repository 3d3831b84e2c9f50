"""
Currency Ledger
===============

Purpose
-------
Owns every mutation of ``sparkle_points`` and ``premium_points``. Each
mutation locks the account row, checks the balance, applies the delta and
appends an immutable ``CurrencyTransaction`` in the same transaction, so the
sum of an account's ledger rows always equals its balance.

Domain
------
- award / spend / refund on a single account
- transfer between two accounts (both rows locked, ascending id order)
- balance and history reads, ledger reconciliation

Side effects (after commit only)
--------------------------------
- ``currency.changed`` event
- audit record per mutation
- user stats cache invalidation
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sparkle.core.database.service import DatabaseService
from sparkle.core.database.unit_of_work import UnitOfWork
from sparkle.core.infra.audit_logger import AuditLogger
from sparkle.core.logging.logger import get_logger
from sparkle.core.validation.input_validator import InputValidator
from sparkle.database.models.core import Account
from sparkle.database.models.economy import CurrencyTransaction
from sparkle.database.models.enums import CurrencyType, TransactionKind
from sparkle.modules.accounts.service import AccountRepository
from sparkle.modules.shared.base_repository import BaseRepository
from sparkle.modules.shared.base_service import BaseService
from sparkle.modules.shared.cache_keys import invalidate_user_stats_after_commit
from sparkle.modules.shared.exceptions import (
    InsufficientFundsError,
    SelfReferenceNotAllowedError,
    ValidationError,
)
from sparkle.modules.shared.triggers import EntityRef, TriggerEvent, TriggerType

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from sparkle.core.config.manager import ConfigManager
    from sparkle.core.event.bus import EventBus
    from sparkle.modules.shared.triggers import TriggerRouter


# ============================================================================
# Repository
# ============================================================================


class CurrencyTransactionRepository(BaseRepository[CurrencyTransaction]):
    """Append-only access to the currency ledger."""

    async def ledger_sum(self, session: AsyncSession, account_id: int, currency: CurrencyType) -> int:
        return await self.sum(
            session,
            CurrencyTransaction.amount,
            CurrencyTransaction.account_id == account_id,
            CurrencyTransaction.currency == currency.value,
        )

    async def kind_total(
        self,
        session: AsyncSession,
        account_id: int,
        currency: CurrencyType,
        kind: TransactionKind,
    ) -> int:
        """Absolute total of ``kind`` rows, e.g. lifetime sparkle earned."""
        total = await self.sum(
            session,
            CurrencyTransaction.amount,
            CurrencyTransaction.account_id == account_id,
            CurrencyTransaction.currency == currency.value,
            CurrencyTransaction.kind == kind.value,
        )
        return abs(total)


def _parse_currency(value: Any) -> CurrencyType:
    if isinstance(value, CurrencyType):
        return value
    try:
        return CurrencyType(str(value).lower().strip())
    except ValueError:
        raise ValidationError(
            "currency",
            f"Must be one of: {', '.join(c.value for c in CurrencyType)}",
        ) from None


# ============================================================================
# CurrencyLedger
# ============================================================================


class CurrencyLedger(BaseService):
    """
    Balance mutations with an append-only audit ledger.

    Every write locks the account row(s) with ``SELECT ... FOR UPDATE`` and
    relies on the ``version`` column to reject any stale write that
    slipped past the lock.

    Public Methods
    --------------
    - award() -> Credit an account (kind "earned")
    - spend() -> Debit an account; InsufficientFundsError when short
    - refund() -> Credit an account (kind "refunded")
    - transfer() -> Atomic debit + credit between two accounts
    - get_balance() -> Current balances
    - get_transactions() -> Ledger history, newest first
    - reconcile() -> Compare ledger sums with balances
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        router: TriggerRouter,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._router = router
        self._accounts = AccountRepository(
            model_class=Account,
            logger=get_logger(f"{__name__}.AccountRepository"),
        )
        self._transactions = CurrencyTransactionRepository(
            model_class=CurrencyTransaction,
            logger=get_logger(f"{__name__}.CurrencyTransactionRepository"),
        )

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def get_balance(self, account_id: int) -> Dict[str, int]:
        account_id = InputValidator.validate_account_id(account_id)

        async with DatabaseService.get_session() as session:
            account = await self._accounts.require(session, account_id)
            return {
                "account_id": account.id,
                CurrencyType.SPARKLE_POINTS.value: account.sparkle_points,
                CurrencyType.PREMIUM_POINTS.value: account.premium_points,
            }

    async def get_transactions(
        self,
        account_id: int,
        *,
        currency: Optional[Any] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """Ledger rows for an account, newest first."""
        account_id = InputValidator.validate_account_id(account_id)
        limit = InputValidator.validate_integer(limit, "limit", min_value=1, max_value=500)

        conditions = [CurrencyTransaction.account_id == account_id]
        if currency is not None:
            conditions.append(CurrencyTransaction.currency == _parse_currency(currency).value)

        async with DatabaseService.get_session() as session:
            rows = await self._transactions.find_many_where(
                session,
                *conditions,
                order_by=[CurrencyTransaction.created_at.desc(), CurrencyTransaction.id.desc()],
                limit=limit,
            )
            return [self._transaction_to_dict(row) for row in rows]

    async def reconcile(self, account_id: int) -> Dict[str, Any]:
        """
        Check the ledger invariant for both currencies.

        Returns:
            {
                "account_id": int,
                "consistent": bool,
                "currencies": {
                    "sparkle_points": {"balance": int, "ledger_sum": int, "consistent": bool},
                    "premium_points": {...},
                },
            }
        """
        account_id = InputValidator.validate_account_id(account_id)

        async with DatabaseService.get_session() as session:
            account = await self._accounts.require(session, account_id)
            report: Dict[str, Dict[str, Any]] = {}
            for currency in CurrencyType:
                balance = getattr(account, currency.column)
                ledger_sum = await self._transactions.ledger_sum(session, account_id, currency)
                report[currency.value] = {
                    "balance": balance,
                    "ledger_sum": ledger_sum,
                    "consistent": balance == ledger_sum,
                }

        consistent = all(entry["consistent"] for entry in report.values())
        if not consistent:
            self.log.error(
                "Currency ledger out of balance",
                extra={"account_id": account_id, "report": report},
            )
        return {"account_id": account_id, "consistent": consistent, "currencies": report}

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def award(
        self,
        account_id: int,
        amount: int,
        currency: Any,
        reason: str,
        *,
        reference: Optional[EntityRef] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> int:
        """
        Credit ``amount`` to an account and fire ``currency_earned``.

        Returns:
            New balance of ``currency``

        Raises:
            NotFoundError: If the account does not exist
            ValidationError: If inputs are invalid
        """
        account_id = InputValidator.validate_account_id(account_id)
        amount = InputValidator.validate_positive_integer(amount, "amount")
        currency = _parse_currency(currency)
        reason = InputValidator.validate_string(reason, "reason", min_length=1, max_length=200)

        self.log_operation("award", account_id=account_id, amount=amount, currency=currency.value, reason=reason)

        async with UnitOfWork.begin(uow) as uow:
            account = await self._accounts.require_for_update(uow.session, account_id)
            balance = self._apply(
                uow, account, amount, currency, TransactionKind.EARNED, reason, reference
            )
            await self._router.dispatch(
                uow,
                TriggerEvent(
                    TriggerType.CURRENCY_EARNED,
                    account_id,
                    {"amount": amount, "currency": currency.value, "reason": reason},
                    entity=reference,
                ),
            )
            return balance

    async def spend(
        self,
        account_id: int,
        amount: int,
        currency: Any,
        reason: str,
        *,
        reference: Optional[EntityRef] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> int:
        """
        Debit ``amount`` from an account and fire ``currency_spent``.

        The balance check and the debit happen under the same row lock.

        Returns:
            New balance of ``currency``

        Raises:
            InsufficientFundsError: If the balance is below ``amount``
            NotFoundError: If the account does not exist
        """
        account_id = InputValidator.validate_account_id(account_id)
        amount = InputValidator.validate_positive_integer(amount, "amount")
        currency = _parse_currency(currency)
        reason = InputValidator.validate_string(reason, "reason", min_length=1, max_length=200)

        self.log_operation("spend", account_id=account_id, amount=amount, currency=currency.value, reason=reason)

        async with UnitOfWork.begin(uow) as uow:
            account = await self._accounts.require_for_update(uow.session, account_id)
            self._check_funds(account, amount, currency)
            balance = self._apply(
                uow, account, -amount, currency, TransactionKind.SPENT, reason, reference
            )
            await self._router.dispatch(
                uow,
                TriggerEvent(
                    TriggerType.CURRENCY_SPENT,
                    account_id,
                    {"amount": amount, "currency": currency.value, "reason": reason},
                    entity=reference,
                ),
            )
            return balance

    async def refund(
        self,
        account_id: int,
        amount: int,
        currency: Any,
        reason: str,
        *,
        reference: Optional[EntityRef] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> int:
        """Credit back a previous spend. Refunds do not count as earnings."""
        account_id = InputValidator.validate_account_id(account_id)
        amount = InputValidator.validate_positive_integer(amount, "amount")
        currency = _parse_currency(currency)
        reason = InputValidator.validate_string(reason, "reason", min_length=1, max_length=200)

        self.log_operation("refund", account_id=account_id, amount=amount, currency=currency.value, reason=reason)

        async with UnitOfWork.begin(uow) as uow:
            account = await self._accounts.require_for_update(uow.session, account_id)
            return self._apply(uow, account, amount, currency, TransactionKind.REFUNDED, reason, reference)

    async def transfer(
        self,
        from_account_id: int,
        to_account_id: int,
        amount: int,
        currency: Any,
        reason: str,
        *,
        reference: Optional[EntityRef] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> Dict[str, int]:
        """
        Move ``amount`` between two accounts as one atomic unit.

        Both rows are locked in ascending id order before the balance check.
        If the debit fails nothing is credited.

        Returns:
            {"from_balance": int, "to_balance": int}

        Raises:
            SelfReferenceNotAllowedError: If both ids are equal
            InsufficientFundsError: If the sender cannot cover ``amount``
            NotFoundError: If either account does not exist
        """
        from_account_id = InputValidator.validate_account_id(from_account_id, "from_account_id")
        to_account_id = InputValidator.validate_account_id(to_account_id, "to_account_id")
        amount = InputValidator.validate_positive_integer(amount, "amount")
        currency = _parse_currency(currency)
        reason = InputValidator.validate_string(reason, "reason", min_length=1, max_length=200)

        if from_account_id == to_account_id:
            raise SelfReferenceNotAllowedError("transfer", from_account_id)

        self.log_operation(
            "transfer",
            from_account_id=from_account_id,
            to_account_id=to_account_id,
            amount=amount,
            currency=currency.value,
        )

        async with UnitOfWork.begin(uow) as uow:
            locked = await self.lock_accounts(uow.session, [from_account_id, to_account_id])
            sender, receiver = locked[from_account_id], locked[to_account_id]

            self._check_funds(sender, amount, currency)
            from_balance = self._apply(
                uow, sender, -amount, currency, TransactionKind.TRANSFERRED, reason, reference
            )
            to_balance = self._apply(
                uow, receiver, amount, currency, TransactionKind.TRANSFERRED, reason, reference
            )
            return {"from_balance": from_balance, "to_balance": to_balance}

    async def lock_accounts(self, session: AsyncSession, account_ids: List[int]) -> Dict[int, Account]:
        """
        Lock several accounts in ascending id order.

        Raises:
            NotFoundError: If any id has no account
        """
        wanted = sorted(set(account_ids))
        accounts = await self._accounts.get_many_for_update(session, wanted)
        found = {account.id: account for account in accounts}
        for account_id in wanted:
            if account_id not in found:
                await self._accounts.require(session, account_id)
        return found

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    @staticmethod
    def _check_funds(account: Account, amount: int, currency: CurrencyType) -> None:
        current = getattr(account, currency.column)
        if current < amount:
            raise InsufficientFundsError(currency.value, amount, current)

    def _apply(
        self,
        uow: UnitOfWork,
        account: Account,
        delta: int,
        currency: CurrencyType,
        kind: TransactionKind,
        reason: str,
        reference: Optional[EntityRef],
    ) -> int:
        old_balance = getattr(account, currency.column)
        new_balance = old_balance + delta
        setattr(account, currency.column, new_balance)

        self._transactions.add(
            uow.session,
            CurrencyTransaction(
                account_id=account.id,
                amount=delta,
                currency=currency.value,
                kind=kind.value,
                reason=reason,
                reference_type=reference.entity_type.value if reference else None,
                reference_id=reference.entity_id if reference else None,
                balance_after=new_balance,
            ),
        )

        details = {
            "currency": currency.value,
            "delta": delta,
            "old_value": old_balance,
            "new_value": new_balance,
            "kind": kind.value,
            "reason": reason,
            "reference": reference.to_dict() if reference else None,
        }
        self.emit_after_commit(uow, "currency.changed", {"account_id": account.id, **details})
        AuditLogger.log_after_commit(
            uow,
            event_bus=self._events,
            account_id=account.id,
            transaction_type=f"currency_{kind.value}",
            details=details,
            context=reason,
        )
        invalidate_user_stats_after_commit(uow, account.id)

        self.log.info(
            f"Currency {kind.value}: {delta:+,} {currency.value}",
            extra={
                "account_id": account.id,
                "currency": currency.value,
                "delta": delta,
                "new_value": new_balance,
                "uow_id": uow.id,
            },
        )
        return new_balance

    @staticmethod
    def _transaction_to_dict(row: CurrencyTransaction) -> Dict[str, Any]:
        return {
            "id": row.id,
            "amount": row.amount,
            "currency": row.currency,
            "kind": row.kind,
            "reason": row.reason,
            "reference_type": row.reference_type,
            "reference_id": row.reference_id,
            "balance_after": row.balance_after,
            "created_at": row.created_at.isoformat() if row.created_at else None,
        }
