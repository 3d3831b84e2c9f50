"""
Account Service
===============

Purpose
-------
Opens gamification accounts and exposes read access to XP, level and
balances. The host application calls ``open_account`` when it registers a
user; every later mutation of an account goes through the currency ledger
or the XP award path.

Domain
------
- Account creation with optional starting balances (recorded as ledger rows)
- Account lookup with level progress
- Ranking flags (role, banned) used by leaderboards
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

from sparkle.core.database.service import DatabaseService
from sparkle.core.database.unit_of_work import UnitOfWork
from sparkle.core.logging.logger import get_logger
from sparkle.core.validation.input_validator import InputValidator
from sparkle.database.models.core import Account
from sparkle.database.models.enums import AccountRole, CurrencyType
from sparkle.modules.shared.base_repository import BaseRepository
from sparkle.modules.shared.base_service import BaseService
from sparkle.modules.shared.exceptions import InvalidOperationError, NotFoundError
from sparkle.modules.shared.formulas import calculate_level_progress

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from sparkle.core.config.manager import ConfigManager
    from sparkle.core.event.bus import EventBus
    from sparkle.modules.economy.ledger import CurrencyLedger


# ============================================================================
# Repository
# ============================================================================


class AccountRepository(BaseRepository[Account]):
    """Repository for Account with not-found translation."""

    async def require(self, session: AsyncSession, account_id: int) -> Account:
        account = await self.get(session, account_id)
        if account is None:
            raise NotFoundError("Account", account_id)
        return account

    async def require_for_update(self, session: AsyncSession, account_id: int) -> Account:
        account = await self.get_for_update(session, account_id)
        if account is None:
            raise NotFoundError("Account", account_id)
        return account


def account_to_dict(account: Account) -> Dict[str, Any]:
    return {
        "account_id": account.id,
        "username": account.username,
        "role": account.role,
        "banned": account.banned,
        "experience": account.experience,
        "level": account.level,
        "sparkle_points": account.sparkle_points,
        "premium_points": account.premium_points,
    }


# ============================================================================
# AccountService
# ============================================================================


class AccountService(BaseService):
    """
    Public Methods
    --------------
    - open_account() -> Create an account, optionally with starting balances
    - get_account() -> Account snapshot with level progress
    - update_flags() -> Change role / banned flags
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        ledger: CurrencyLedger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._ledger = ledger
        self._accounts = AccountRepository(
            model_class=Account,
            logger=get_logger(f"{__name__}.AccountRepository"),
        )

    async def open_account(
        self,
        account_id: int,
        username: str,
        *,
        sparkle_points: int = 0,
        premium_points: int = 0,
        role: str = AccountRole.USER.value,
        uow: Optional[UnitOfWork] = None,
    ) -> Dict[str, Any]:
        """
        Create the account for a newly registered user.

        Starting balances are credited through the ledger so the
        balance-equals-ledger-sum invariant holds from the first row.

        Raises:
            InvalidOperationError: If the account already exists
            ValidationError: If inputs are invalid
        """
        account_id = InputValidator.validate_account_id(account_id)
        username = InputValidator.validate_string(username, "username", min_length=1, max_length=64)
        sparkle_points = InputValidator.validate_non_negative_integer(sparkle_points, "sparkle_points")
        premium_points = InputValidator.validate_non_negative_integer(premium_points, "premium_points")
        role = InputValidator.validate_choice(role, "role", [r.value for r in AccountRole])

        self.log_operation("open_account", account_id=account_id, username=username)

        async with UnitOfWork.begin(uow) as uow:
            if await self._accounts.get(uow.session, account_id) is not None:
                raise InvalidOperationError(
                    "open_account",
                    f"Account {account_id} already exists",
                    error_code="ACCOUNT_EXISTS",
                )

            account = self._accounts.add(
                uow.session,
                Account(id=account_id, username=username, role=role),
            )
            await self._accounts.flush(uow.session)

            for currency, amount in (
                (CurrencyType.SPARKLE_POINTS, sparkle_points),
                (CurrencyType.PREMIUM_POINTS, premium_points),
            ):
                if amount > 0:
                    await self._ledger.award(
                        account_id, amount, currency, "opening_balance", uow=uow
                    )

            self.emit_after_commit(uow, "account.opened", {"account_id": account_id, "username": username})
            return account_to_dict(account)

    async def get_account(self, account_id: int) -> Dict[str, Any]:
        """Read-only snapshot of an account plus its level progress."""
        account_id = InputValidator.validate_account_id(account_id)

        async with DatabaseService.get_session() as session:
            account = await self._accounts.require(session, account_id)
            payload = account_to_dict(account)
            payload["level_progress"] = calculate_level_progress(account.experience, account.level).to_dict()
            return payload

    async def update_flags(
        self,
        account_id: int,
        *,
        role: Optional[str] = None,
        banned: Optional[bool] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> Dict[str, Any]:
        account_id = InputValidator.validate_account_id(account_id)
        if role is not None:
            role = InputValidator.validate_choice(role, "role", [r.value for r in AccountRole])

        self.log_operation("update_flags", account_id=account_id, role=role, banned=banned)

        async with UnitOfWork.begin(uow) as uow:
            account = await self._accounts.require_for_update(uow.session, account_id)
            if role is not None:
                account.role = role
            if banned is not None:
                account.banned = bool(banned)
            return account_to_dict(account)
