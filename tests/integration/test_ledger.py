"""
Integration Tests for Accounts and the Currency Ledger
======================================================

Purpose
-------
Verify the ledger invariant (balance equals the sum of ledger rows) across
awards, spends, refunds and transfers, and that balances never go negative
even when spends race.

Testing Strategy
----------------
- Real SQLite file per test (see ``database`` fixture)
- Operations driven through the engine facade's services
- Side effects observed through the recording sinks and ``published``
"""

import asyncio

import pytest

from sparkle.core.database.unit_of_work import UnitOfWork
from sparkle.modules.shared.exceptions import (
    InsufficientFundsError,
    InvalidOperationError,
    NotFoundError,
    SelfReferenceNotAllowedError,
    ValidationError,
)


# ============================================================================
# ACCOUNT TESTS
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestAccounts:
    """Test account creation and snapshots."""

    async def test_open_account_credits_opening_balance(self, engine):
        # Act
        account = await engine.open_account(1, "ada", sparkle_points=250, premium_points=5)

        # Assert
        assert account["sparkle_points"] == 250
        assert account["premium_points"] == 5
        assert account["level"] == 1
        rows = await engine.ledger.get_transactions(1)
        assert {row["reason"] for row in rows} == {"opening_balance"}
        assert (await engine.ledger.reconcile(1))["consistent"] is True

    async def test_duplicate_account_rejected(self, engine):
        await engine.open_account(1, "ada")

        with pytest.raises(InvalidOperationError) as exc_info:
            await engine.open_account(1, "ada-again")

        assert exc_info.value.error_code == "ACCOUNT_EXISTS"

    async def test_get_account_includes_level_progress(self, engine):
        await engine.open_account(1, "ada")

        account = await engine.get_account(1)

        assert account["level_progress"]["level"] == 1
        assert account["level_progress"]["next_level_xp"] == 300

    async def test_unknown_account(self, engine):
        with pytest.raises(NotFoundError) as exc_info:
            await engine.get_account(404)

        assert exc_info.value.error_code == "ACCOUNT_NOT_FOUND"

    async def test_update_flags(self, engine):
        await engine.open_account(1, "ada")

        flags = await engine.accounts.update_flags(1, role="ADMIN", banned=True)

        assert flags["role"] == "admin"
        assert flags["banned"] is True


# ============================================================================
# LEDGER TESTS
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestCurrencyLedger:
    """Test balance changes and the ledger invariant."""

    async def test_award_spend_refund_keep_invariant(self, engine):
        """Every balance change writes exactly one ledger row."""
        # Arrange
        await engine.open_account(1, "ada")

        # Act
        assert await engine.ledger.award(1, 100, "sparkle_points", "bonus") == 100
        assert await engine.ledger.spend(1, 30, "sparkle_points", "tip") == 70
        assert await engine.ledger.refund(1, 10, "sparkle_points", "tip_refund") == 80

        # Assert
        report = await engine.ledger.reconcile(1)
        assert report["consistent"] is True
        assert report["currencies"]["sparkle_points"] == {"balance": 80, "ledger_sum": 80, "consistent": True}

        rows = await engine.ledger.get_transactions(1)
        assert [row["kind"] for row in rows] == ["refunded", "spent", "earned"]
        assert [row["balance_after"] for row in rows] == [80, 70, 100]

    async def test_spend_more_than_balance(self, engine):
        await engine.open_account(1, "ada", sparkle_points=40)

        with pytest.raises(InsufficientFundsError) as exc_info:
            await engine.ledger.spend(1, 100, "sparkle_points", "too_much")

        assert exc_info.value.details["current"] == 40
        balance = await engine.ledger.get_balance(1)
        assert balance["sparkle_points"] == 40
        assert len(await engine.ledger.get_transactions(1)) == 1

    async def test_zero_amount_rejected(self, engine):
        await engine.open_account(1, "ada")

        with pytest.raises(ValidationError):
            await engine.ledger.award(1, 0, "sparkle_points", "nothing")

    async def test_unknown_currency_rejected(self, engine):
        await engine.open_account(1, "ada")

        with pytest.raises(ValidationError):
            await engine.ledger.award(1, 5, "gold", "bonus")

    async def test_concurrent_spends_never_overdraw(self, engine):
        """Two spends that each fit but together do not: exactly one wins."""
        # Arrange
        await engine.open_account(1, "ada", sparkle_points=100)

        # Act
        results = await asyncio.gather(
            engine.ledger.spend(1, 60, "sparkle_points", "first"),
            engine.ledger.spend(1, 60, "sparkle_points", "second"),
            return_exceptions=True,
        )

        # Assert
        assert sorted(type(r).__name__ for r in results) == ["InsufficientFundsError", "int"]
        assert (await engine.ledger.get_balance(1))["sparkle_points"] == 40
        assert (await engine.ledger.reconcile(1))["consistent"] is True

    async def test_transfer_moves_points_atomically(self, engine):
        await engine.open_account(1, "ada", sparkle_points=100)
        await engine.open_account(2, "bo")

        balances = await engine.ledger.transfer(1, 2, 35, "sparkle_points", "gift")

        assert balances == {"from_balance": 65, "to_balance": 35}
        assert (await engine.ledger.reconcile(1))["consistent"] is True
        assert (await engine.ledger.reconcile(2))["consistent"] is True

    async def test_failed_transfer_changes_nothing(self, engine):
        await engine.open_account(1, "ada", sparkle_points=10)
        await engine.open_account(2, "bo")

        with pytest.raises(InsufficientFundsError):
            await engine.ledger.transfer(1, 2, 35, "sparkle_points", "gift")

        assert (await engine.ledger.get_balance(1))["sparkle_points"] == 10
        assert (await engine.ledger.get_balance(2))["sparkle_points"] == 0

    async def test_transfer_to_self_rejected(self, engine):
        await engine.open_account(1, "ada", sparkle_points=10)

        with pytest.raises(SelfReferenceNotAllowedError):
            await engine.ledger.transfer(1, 1, 5, "sparkle_points", "loop")

    async def test_transactions_filtered_by_currency(self, engine):
        await engine.open_account(1, "ada", sparkle_points=10, premium_points=3)

        premium = await engine.ledger.get_transactions(1, currency="premium_points")

        assert [row["amount"] for row in premium] == [3]


# ============================================================================
# SIDE EFFECT TESTS
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestAfterCommitSideEffects:
    """Test that events leave the engine only when the transaction commits."""

    async def test_events_published_after_commit(self, engine, published):
        await engine.open_account(1, "ada")

        await engine.ledger.award(1, 25, "sparkle_points", "bonus")

        changes = [payload for name, payload in published if name == "currency.changed"]
        assert changes[-1]["delta"] == 25
        assert changes[-1]["new_value"] == 25

    async def test_rollback_discards_events_and_writes(self, engine, published):
        """A failure later in the same unit of work undoes earlier changes."""
        # Arrange
        await engine.open_account(1, "ada")
        published.clear()

        # Act
        with pytest.raises(InsufficientFundsError):
            async with UnitOfWork.begin() as uow:
                await engine.ledger.award(1, 50, "sparkle_points", "bonus", uow=uow)
                await engine.ledger.spend(1, 80, "sparkle_points", "too_much", uow=uow)

        # Assert
        assert published == []
        assert (await engine.ledger.get_balance(1))["sparkle_points"] == 0
        assert await engine.ledger.get_transactions(1) == []

    async def test_after_commit_keys_collapse(self, database, mocker):
        callback = mocker.AsyncMock()

        async with UnitOfWork.begin() as uow:
            uow.after_commit("first", callback, key="same")
            uow.after_commit("second", callback, key="same")
            assert uow.pending_count == 1

        callback.assert_awaited_once()

    async def test_failing_side_effect_does_not_undo_commit(self, engine, mocker):
        await engine.open_account(1, "ada")
        broken = mocker.AsyncMock(side_effect=RuntimeError("sink down"))

        async with UnitOfWork.begin() as uow:
            await engine.ledger.award(1, 5, "sparkle_points", "bonus", uow=uow)
            uow.after_commit("broken", broken)

        broken.assert_awaited_once()
        assert (await engine.ledger.get_balance(1))["sparkle_points"] == 5
