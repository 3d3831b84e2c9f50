"""
Integration Tests for the Store
===============================

Purpose
-------
Verify purchases: pricing, stock, ownership rules, and the
``item_purchased`` trigger feeding achievements and quests.
"""

import asyncio
from datetime import timedelta

import pytest

from sparkle.modules.shared.exceptions import (
    InsufficientFundsError,
    InsufficientInventoryError,
    InvalidOperationError,
    NotFoundError,
    ValidationError,
)
from tests.factories import NOW


@pytest.mark.integration
@pytest.mark.database
class TestPurchases:
    """Test the purchase transaction."""

    async def test_purchase_debits_and_grants(self, engine, published):
        # Arrange
        await engine.open_account(1, "ada", sparkle_points=500)
        await engine.store.add_item("frame_gold", "Gold Frame", price_sparkle=200, discount_percentage=25)

        # Act
        result = await engine.purchase_item(1, "frame_gold", now=NOW)

        # Assert
        assert result["price_paid"] == 150
        assert result["currency"] == "sparkle_points"
        assert result["balance"] == 350
        assert await engine.inventory.quantity_of(1, "frame_gold") == 1
        rows = await engine.ledger.get_transactions(1)
        assert rows[0]["reason"] == "purchase:frame_gold"
        assert rows[0]["reference_type"] == "item"
        assert "store.item_purchased" in [name for name, _ in published]

    async def test_first_purchase_achievement(self, engine):
        await engine.open_account(1, "ada", sparkle_points=500)
        await engine.store.add_item("frame_gold", "Gold Frame", price_sparkle=200)

        result = await engine.purchase_item(1, "frame_gold", now=NOW)

        assert [a["achievement_id"] for a in result["achievements"]] == ["first_purchase"]
        assert await engine.inventory.quantity_of(1, "badge_shopper") == 1

    async def test_premium_price_takes_precedence(self, engine):
        await engine.open_account(1, "ada", sparkle_points=500, premium_points=20)
        await engine.store.add_item("pet_dragon", "Dragon", price_sparkle=400, price_premium=15)

        result = await engine.purchase_item(1, "pet_dragon", now=NOW)

        assert result["currency"] == "premium_points"
        assert result["balance"] == 5
        assert (await engine.ledger.get_balance(1))["sparkle_points"] == 500

    async def test_insufficient_funds_leaves_no_trace(self, engine):
        await engine.open_account(1, "ada", sparkle_points=50)
        await engine.store.add_item("frame_gold", "Gold Frame", price_sparkle=200, stock_remaining=3)

        with pytest.raises(InsufficientFundsError):
            await engine.purchase_item(1, "frame_gold", now=NOW)

        assert await engine.inventory.quantity_of(1, "frame_gold") == 0
        items = {item["item_id"]: item for item in await engine.store.list_items(now=NOW)}
        assert items["frame_gold"]["stock_remaining"] == 3

    async def test_consumables_stack(self, engine):
        await engine.open_account(1, "ada", sparkle_points=500)
        await engine.store.add_item("xp_potion", "XP Potion", category="consumable", price_sparkle=50)

        await engine.purchase_item(1, "xp_potion", 2, now=NOW)
        result = await engine.purchase_item(1, "xp_potion", 3, now=NOW)

        assert result["balance"] == 250
        assert await engine.inventory.quantity_of(1, "xp_potion") == 5

    async def test_non_consumable_rules(self, engine):
        await engine.open_account(1, "ada", sparkle_points=500)
        await engine.store.add_item("frame_gold", "Gold Frame", price_sparkle=100)

        with pytest.raises(ValidationError):
            await engine.purchase_item(1, "frame_gold", 2, now=NOW)
        await engine.purchase_item(1, "frame_gold", now=NOW)
        with pytest.raises(InvalidOperationError) as exc_info:
            await engine.purchase_item(1, "frame_gold", now=NOW)

        assert exc_info.value.error_code == "ALREADY_OWNED"

    async def test_availability_window(self, engine):
        await engine.open_account(1, "ada", sparkle_points=500)
        await engine.store.add_item(
            "hat_spring",
            "Spring Hat",
            price_sparkle=10,
            available_from=NOW + timedelta(days=1),
        )

        with pytest.raises(InvalidOperationError) as exc_info:
            await engine.purchase_item(1, "hat_spring", now=NOW)

        assert exc_info.value.error_code == "ITEM_UNAVAILABLE"
        assert "hat_spring" not in {item["item_id"] for item in await engine.store.list_items(now=NOW)}

    async def test_unknown_item(self, engine):
        await engine.open_account(1, "ada")

        with pytest.raises(NotFoundError):
            await engine.purchase_item(1, "no_such_item", now=NOW)

    async def test_free_item_writes_no_ledger_row(self, engine):
        """Free items are granted without a spend, so they never count as paid purchases."""
        await engine.open_account(1, "ada")
        await engine.store.add_item("badge_welcome", "Welcome", category="badge", price_sparkle=0)

        result = await engine.purchase_item(1, "badge_welcome", now=NOW)

        assert result["price_paid"] == 0
        assert result["achievements"] == []
        assert await engine.ledger.get_transactions(1) == []

    async def test_last_unit_sold_once(self, engine):
        """Two buyers race for one unit: exactly one gets it."""
        await engine.open_account(1, "ada", sparkle_points=100)
        await engine.open_account(2, "bo", sparkle_points=100)
        await engine.store.add_item("pin_rare", "Rare Pin", price_sparkle=10, stock_remaining=1)

        results = await asyncio.gather(
            engine.purchase_item(1, "pin_rare", now=NOW),
            engine.purchase_item(2, "pin_rare", now=NOW),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert errors[0].error_code == "OUT_OF_STOCK"
        owners = [await engine.inventory.quantity_of(a, "pin_rare") for a in (1, 2)]
        assert sorted(owners) == [0, 1]

    async def test_purchases_feed_weekly_quest(self, engine):
        await engine.open_account(1, "ada", sparkle_points=500)
        await engine.store.add_item("xp_potion", "XP Potion", category="consumable", price_sparkle=10)
        await engine.start_quest(1, "weekly_shopper", now=NOW)

        await engine.purchase_item(1, "xp_potion", 2, now=NOW)

        active = {a["quest_id"]: a for a in await engine.get_active_quests(1, now=NOW)}
        assert active["weekly_shopper"]["status"] == "completed"
        assert active["weekly_shopper"]["cycle_key"] == "2024-W10"


@pytest.mark.integration
@pytest.mark.database
class TestInventory:
    async def test_grant_stacks_and_remove_deletes_empty_rows(self, engine, published):
        await engine.open_account(1, "ada")
        await engine.inventory.grant(1, "gem", 2, source="seed")
        await engine.inventory.grant(1, "gem", 1, source="seed")

        assert await engine.inventory.remove(1, "gem", 2) == 1
        assert await engine.inventory.remove(1, "gem", 1) == 0

        assert await engine.inventory.list_items(1) == []
        assert [p["delta"] for name, p in published if name == "inventory.changed"] == [2, 1, -2, -1]

    async def test_remove_more_than_held(self, engine):
        await engine.open_account(1, "ada")
        await engine.inventory.grant(1, "gem", 1)

        with pytest.raises(InsufficientInventoryError) as exc_info:
            await engine.inventory.remove(1, "gem", 2)

        assert exc_info.value.details["current"] == 1
        assert await engine.inventory.quantity_of(1, "gem") == 1

    async def test_equip(self, engine):
        await engine.open_account(1, "ada")
        await engine.inventory.grant(1, "frame_gold")

        entry = await engine.inventory.equip(1, "frame_gold")

        assert entry["equipped"] is True
        assert (await engine.inventory.list_items(1))[0]["equipped"] is True
        with pytest.raises(NotFoundError):
            await engine.inventory.equip(1, "hat_spring")
