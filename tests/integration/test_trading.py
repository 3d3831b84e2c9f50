"""
Integration Tests for Trading
=============================

Purpose
-------
Verify the propose / respond / cancel protocol and that an accepted trade
moves every item and point or nothing at all.

Test Coverage
-------------
- Atomic execution and trade-completion achievements for both parties
- Re-verification failure (FAILED, nothing moves)
- Exactly one outcome under concurrent accepts
- Permissions, expiry and non-tradeable items
"""

import asyncio
from datetime import timedelta

import pytest

from sparkle.modules.shared.exceptions import (
    InsufficientFundsError,
    InsufficientInventoryError,
    InvalidOperationError,
    InvalidStateError,
    SelfReferenceNotAllowedError,
    TradeNoLongerValidError,
    ValidationError,
)
from tests.factories import NOW


@pytest.fixture
async def traders(engine):
    """Two accounts: ada holds 100 points and 2 gems, bo holds 50 points and a crown."""
    await engine.open_account(1, "ada", sparkle_points=100)
    await engine.open_account(2, "bo", sparkle_points=50)
    await engine.inventory.grant(1, "gem", 2, source="seed")
    await engine.inventory.grant(2, "crown", 1, source="seed")
    return engine


async def _propose_gems_for_crown(engine, **overrides):
    kwargs = dict(offer_items={"gem": 2}, offer_points=30, request_items={"crown": 1}, now=NOW)
    kwargs.update(overrides)
    return await engine.propose_trade(1, 2, **kwargs)


@pytest.mark.integration
@pytest.mark.database
class TestProposeTrade:
    """Test offer validation."""

    async def test_propose_creates_pending_trade(self, traders, notifier, realtime):
        trade = await _propose_gems_for_crown(traders, message="deal?")

        assert trade["status"] == "pending"
        assert trade["expires_at"] == (NOW + timedelta(days=7)).isoformat()
        assert "trade_request" in notifier.kinds(2)
        assert "trade:request" in realtime.events(2)

    async def test_nothing_is_reserved(self, traders):
        await _propose_gems_for_crown(traders)

        assert await traders.inventory.quantity_of(1, "gem") == 2
        assert (await traders.ledger.get_balance(1))["sparkle_points"] == 100

    async def test_self_trade_rejected(self, traders):
        with pytest.raises(SelfReferenceNotAllowedError):
            await traders.propose_trade(1, 1, offer_points=5)

    async def test_empty_trade_rejected(self, traders):
        with pytest.raises(ValidationError):
            await traders.propose_trade(1, 2)

    async def test_offer_must_be_covered(self, traders):
        with pytest.raises(InsufficientFundsError):
            await traders.propose_trade(1, 2, offer_points=1000)
        with pytest.raises(InsufficientInventoryError):
            await traders.propose_trade(1, 2, offer_items={"gem": 3})

    async def test_non_tradeable_item(self, traders):
        await traders.store.add_item("badge_founder", "Founder", category="badge", tradeable=False)

        with pytest.raises(InvalidOperationError) as exc_info:
            await traders.propose_trade(1, 2, request_items={"badge_founder": 1})

        assert exc_info.value.error_code == "ITEM_NOT_TRADEABLE"


@pytest.mark.integration
@pytest.mark.database
class TestRespondTrade:
    """Test acceptance, rejection and their guards."""

    async def test_accept_moves_everything(self, traders, notifier, published):
        """Items and points move both ways in one commit."""
        # Arrange
        trade = await _propose_gems_for_crown(traders, request_points=10)

        # Act
        result = await traders.respond_trade(trade["trade_id"], 2, True, now=NOW)

        # Assert
        assert result["status"] == "completed"
        assert await traders.inventory.quantity_of(1, "gem") == 0
        assert await traders.inventory.quantity_of(2, "gem") == 2
        assert await traders.inventory.quantity_of(1, "crown") == 1
        assert await traders.inventory.quantity_of(2, "crown") == 0

        balances = [(await traders.ledger.get_balance(a))["sparkle_points"] for a in (1, 2)]
        # 100 - 30 + 10 + trader reward 20; 50 + 30 - 10 + 20
        assert balances == [100, 90]
        for account_id in (1, 2):
            assert (await traders.ledger.reconcile(account_id))["consistent"] is True
            assert "trade_completed" in notifier.kinds(account_id)

        assert sorted(a["account_id"] for a in result["achievements"]) == [1, 2]
        assert "trade.completed" in [name for name, _ in published]

    async def test_reject(self, traders, notifier):
        trade = await _propose_gems_for_crown(traders)

        result = await traders.respond_trade(trade["trade_id"], 2, False, now=NOW)

        assert result["status"] == "rejected"
        assert "trade_rejected" in notifier.kinds(1)
        assert await traders.inventory.quantity_of(1, "gem") == 2

    async def test_only_recipient_may_respond(self, traders):
        trade = await _propose_gems_for_crown(traders)

        with pytest.raises(InvalidOperationError) as exc_info:
            await traders.respond_trade(trade["trade_id"], 1, True, now=NOW)

        assert exc_info.value.error_code == "NOT_TRADE_RECIPIENT"

    async def test_failed_reverification_moves_nothing(self, traders, notifier):
        """The initiator spent their gems after proposing: the trade fails whole."""
        # Arrange
        trade = await _propose_gems_for_crown(traders)
        await traders.inventory.remove(1, "gem", 1, reason="crafted")

        # Act
        with pytest.raises(TradeNoLongerValidError) as exc_info:
            await traders.respond_trade(trade["trade_id"], 2, True, now=NOW)

        # Assert
        assert exc_info.value.account_id == 1
        assert (await traders.trades.get_trade(trade["trade_id"], now=NOW))["status"] == "failed"
        assert await traders.inventory.quantity_of(1, "gem") == 1
        assert await traders.inventory.quantity_of(2, "crown") == 1
        assert (await traders.ledger.get_balance(1))["sparkle_points"] == 100
        assert "trade_failed" in notifier.kinds(1)
        assert "trade_failed" in notifier.kinds(2)

    async def test_concurrent_accepts_complete_once(self, traders):
        trade = await _propose_gems_for_crown(traders)

        results = await asyncio.gather(
            traders.respond_trade(trade["trade_id"], 2, True, now=NOW),
            traders.respond_trade(trade["trade_id"], 2, True, now=NOW),
            return_exceptions=True,
        )

        assert sorted(type(r).__name__ for r in results) == ["InvalidStateError", "dict"]
        assert await traders.inventory.quantity_of(2, "gem") == 2
        assert (await traders.ledger.get_balance(2))["sparkle_points"] == 50 + 30 + 20

    async def test_respond_after_expiry(self, traders, notifier):
        trade = await _propose_gems_for_crown(traders)

        with pytest.raises(InvalidStateError) as exc_info:
            await traders.respond_trade(trade["trade_id"], 2, True, now=NOW + timedelta(days=7))

        assert exc_info.value.details["state"] == "expired"
        assert (await traders.trades.get_trade(trade["trade_id"], now=NOW))["status"] == "expired"
        assert "trade_expired" in notifier.kinds(1)


@pytest.mark.integration
@pytest.mark.database
class TestCancelAndExpire:
    async def test_cancel_by_initiator(self, traders, notifier):
        trade = await _propose_gems_for_crown(traders)

        result = await traders.cancel_trade(trade["trade_id"], 1)

        assert result["status"] == "cancelled"
        assert "trade_cancelled" in notifier.kinds(2)
        with pytest.raises(InvalidStateError):
            await traders.respond_trade(trade["trade_id"], 2, True, now=NOW)

    async def test_recipient_cannot_cancel(self, traders):
        trade = await _propose_gems_for_crown(traders)

        with pytest.raises(InvalidOperationError) as exc_info:
            await traders.cancel_trade(trade["trade_id"], 2)

        assert exc_info.value.error_code == "NOT_TRADE_INITIATOR"

    async def test_maintenance_expires_pending_trades(self, traders):
        trade = await _propose_gems_for_crown(traders)
        await traders.propose_trade(2, 1, offer_points=5, now=NOW + timedelta(days=3))

        swept = await traders.run_maintenance(now=NOW + timedelta(days=8))

        assert swept["expired_trades"] == 1
        listed = {t["trade_id"]: t["status"] for t in await traders.trades.list_trades(1)}
        assert listed[trade["trade_id"]] == "expired"
        assert sorted(listed.values()) == ["expired", "pending"]
