"""
Integration Tests for the Quest Tracker
=======================================

Purpose
-------
Verify daily rotation, progress tracking, the one-time claim and expiry.

Test Coverage
-------------
- Daily rotation: idempotent per day, convergent under concurrency
- Durable-count and counter-blob requirements
- Claim exactly once, including concurrent claims
- Level and cooldown gates for special quests
- Expiry sweeps and lazy expiry on read
"""

import asyncio
from datetime import timedelta

import pytest

from sparkle.core.config.manager import ConfigManager
from sparkle.modules.shared.exceptions import (
    InvalidOperationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from tests.factories import NOW, create_comment, create_post

DAILY_IDS = {"daily_first_post", "daily_commenter", "daily_reactor"}


# ============================================================================
# DAILY ROTATION TESTS
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestDailyRotation:
    """Test assignment of the daily quest set."""

    async def test_refresh_assigns_daily_set(self, engine):
        await engine.open_account(1, "ada")

        assigned = await engine.refresh_daily_quests(1, now=NOW)

        assert {a["quest_id"] for a in assigned} == DAILY_IDS
        assert {a["status"] for a in assigned} == {"available"}
        assert {a["cycle_key"] for a in assigned} == {"2024-03-10"}

    async def test_refresh_is_idempotent(self, engine):
        await engine.open_account(1, "ada")

        first = await engine.refresh_daily_quests(1, now=NOW)
        second = await engine.refresh_daily_quests(1, now=NOW + timedelta(hours=3))

        assert [a["quest_id"] for a in second] == [a["quest_id"] for a in first]

    async def test_concurrent_refresh_converges(self, engine):
        """Racing refreshes never produce a second daily set."""
        await engine.open_account(1, "ada")

        results = await asyncio.gather(*(engine.refresh_daily_quests(1, now=NOW) for _ in range(3)))

        for assigned in results:
            assert len(assigned) == 3
        active = await engine.get_active_quests(1, now=NOW)
        assert len(active) == 3

    async def test_rotation_size_follows_config(self, engine):
        ConfigManager.override({"quests": {"daily_count": 1}})
        await engine.open_account(1, "ada")

        assigned = await engine.refresh_daily_quests(1, now=NOW)

        assert len(assigned) == 1
        assert assigned[0]["quest_id"] in DAILY_IDS

    async def test_new_day_gets_new_set(self, engine):
        await engine.open_account(1, "ada")
        await engine.refresh_daily_quests(1, now=NOW)

        tomorrow = await engine.refresh_daily_quests(1, now=NOW + timedelta(days=1))

        assert {a["cycle_key"] for a in tomorrow} == {"2024-03-11"}

    async def test_unassigned_daily_cannot_be_started(self, engine):
        await engine.open_account(1, "ada")

        with pytest.raises(InvalidOperationError) as exc_info:
            await engine.start_quest(1, "daily_first_post", now=NOW)

        assert exc_info.value.error_code == "QUEST_NOT_ASSIGNED"


# ============================================================================
# PROGRESS TESTS
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestQuestProgress:
    """Test durable and counter progress rules."""

    async def test_post_trigger_completes_daily_quest(self, engine, notifier, published):
        # Arrange
        await engine.open_account(1, "ada")
        await engine.refresh_daily_quests(1, now=NOW)
        await create_post(1)

        # Act
        await engine.on_trigger(1, "post_created", now=NOW)

        # Assert
        active = {a["quest_id"]: a for a in await engine.get_active_quests(1, now=NOW)}
        assert active["daily_first_post"]["status"] == "completed"
        assert active["daily_first_post"]["percentage"] == 100.0
        assert "quest_completed" in notifier.kinds(1)
        assert "quest.completed" in [name for name, _ in published]

    async def test_posts_before_the_window_do_not_count(self, engine):
        await engine.open_account(1, "ada")
        await create_post(1, created_at=NOW - timedelta(days=1))
        await engine.refresh_daily_quests(1, now=NOW)

        touched = await engine.update_quest_progress(1, "create_posts", now=NOW)

        assert [(a["quest_id"], a["status"], a["current"]) for a in touched] == [
            ("daily_first_post", "available", 0)
        ]

    async def test_durable_comment_count(self, engine):
        await engine.open_account(1, "ada")
        await engine.refresh_daily_quests(1, now=NOW)
        post_id = await create_post(1)
        await create_comment(1, post_id)

        after_one = await engine.update_quest_progress(1, "create_comments", now=NOW)
        await create_comment(1, post_id)
        after_two = await engine.update_quest_progress(1, "create_comments", now=NOW)

        assert after_one[0]["status"] == "in_progress"
        assert after_one[0]["current"] == 1
        assert after_two[0]["status"] == "completed"

    async def test_reaction_counter_accumulates(self, engine):
        """give_reactions progress lives in the assignment's counter."""
        await engine.open_account(1, "ada")
        await engine.refresh_daily_quests(1, now=NOW)

        await engine.on_trigger(1, "reaction_given", now=NOW)
        await engine.update_quest_progress(1, "give_reactions", 1, now=NOW)
        touched = await engine.update_quest_progress(1, "give_reactions", 1, now=NOW)

        assert touched[0]["current"] == 3
        assert touched[0]["status"] == "completed"

    async def test_counter_update_inside_completed_quest_is_ignored(self, engine):
        await engine.open_account(1, "ada")
        await engine.refresh_daily_quests(1, now=NOW)
        await engine.update_quest_progress(1, "give_reactions", 3, now=NOW)

        touched = await engine.update_quest_progress(1, "give_reactions", 1, now=NOW)

        assert touched == []

    async def test_unknown_requirement(self, engine):
        await engine.open_account(1, "ada")

        with pytest.raises(ValidationError):
            await engine.update_quest_progress(1, "write_novels", now=NOW)


# ============================================================================
# CLAIM TESTS
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestQuestClaims:
    """Test the COMPLETED -> CLAIMED transition."""

    async def _complete_daily_post(self, engine):
        await engine.open_account(1, "ada")
        await engine.refresh_daily_quests(1, now=NOW)
        await create_post(1)
        await engine.on_trigger(1, "post_created", now=NOW)

    async def test_claim_pays_rewards_once(self, engine, published):
        """Quest rewards land, then the quest counts toward quest achievements."""
        # Arrange
        await self._complete_daily_post(engine)
        before = await engine.get_account(1)

        # Act
        claim = await engine.claim_quest_rewards(1, "daily_first_post", now=NOW)

        # Assert
        assert claim["status"] == "claimed"
        assert claim["rewards"]["sparkle_points"] == 25
        assert [a["achievement_id"] for a in claim["achievements"]] == ["quest_beginner"]

        after = await engine.get_account(1)
        assert after["sparkle_points"] == before["sparkle_points"] + 25 + 15
        assert after["experience"] == before["experience"] + 50
        assert "quest.claimed" in [name for name, _ in published]

        with pytest.raises(InvalidStateError):
            await engine.claim_quest_rewards(1, "daily_first_post", now=NOW)
        assert (await engine.get_account(1))["sparkle_points"] == after["sparkle_points"]

    async def test_concurrent_claims_pay_once(self, engine):
        await self._complete_daily_post(engine)
        before = await engine.get_account(1)

        results = await asyncio.gather(
            engine.claim_quest_rewards(1, "daily_first_post", now=NOW),
            engine.claim_quest_rewards(1, "daily_first_post", now=NOW),
            return_exceptions=True,
        )

        outcomes = sorted(type(r).__name__ for r in results)
        assert outcomes == ["InvalidStateError", "dict"]
        after = await engine.get_account(1)
        assert after["sparkle_points"] == before["sparkle_points"] + 25 + 15

    async def test_claim_before_completion(self, engine):
        await engine.open_account(1, "ada")
        await engine.refresh_daily_quests(1, now=NOW)

        with pytest.raises(InvalidStateError):
            await engine.claim_quest_rewards(1, "daily_commenter", now=NOW)

    async def test_claim_without_assignment(self, engine):
        await engine.open_account(1, "ada")

        with pytest.raises(NotFoundError):
            await engine.claim_quest_rewards(1, "weekly_shopper", now=NOW)
        with pytest.raises(NotFoundError):
            await engine.claim_quest_rewards(1, "no_such_quest", now=NOW)

    async def test_claim_after_expiry(self, engine):
        """A completed quest must be claimed within its window."""
        await self._complete_daily_post(engine)

        with pytest.raises(InvalidStateError) as exc_info:
            await engine.claim_quest_rewards(1, "daily_first_post", now=NOW + timedelta(days=1))

        assert exc_info.value.details["state"] == "expired"


# ============================================================================
# SPECIAL QUEST TESTS
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestSpecialQuests:
    """Test gates and cooldowns."""

    async def test_start_and_complete_special(self, engine):
        await engine.open_account(1, "ada")

        started = await engine.start_quest(1, "special_storyteller", now=NOW)
        await create_post(1)
        await create_post(1)
        await engine.on_trigger(1, "post_created", now=NOW)
        claim = await engine.claim_quest_rewards(1, "special_storyteller", now=NOW)

        assert started["status"] == "in_progress"
        assert started["cycle_key"] == NOW.isoformat(timespec="seconds")
        assert claim["rewards"]["items"] == {"badge_storyteller": 1}
        assert await engine.inventory.quantity_of(1, "badge_storyteller") == 1

    async def test_cooldown_between_runs(self, engine):
        await engine.open_account(1, "ada")
        await engine.start_quest(1, "special_storyteller", now=NOW)
        await create_post(1)
        await create_post(1)
        await engine.on_trigger(1, "post_created", now=NOW)
        await engine.claim_quest_rewards(1, "special_storyteller", now=NOW)

        with pytest.raises(InvalidOperationError) as exc_info:
            await engine.start_quest(1, "special_storyteller", now=NOW + timedelta(hours=1))
        restarted = await engine.start_quest(1, "special_storyteller", now=NOW + timedelta(hours=49))

        assert exc_info.value.error_code == "COOLDOWN_ACTIVE"
        assert restarted["current"] == 0

    async def test_start_twice_is_invalid_state(self, engine):
        await engine.open_account(1, "ada")
        await engine.start_quest(1, "special_storyteller", now=NOW)

        with pytest.raises(InvalidStateError):
            await engine.start_quest(1, "special_storyteller", now=NOW)

    async def test_level_gate(self, engine):
        await engine.open_account(1, "ada")

        with pytest.raises(InvalidOperationError) as exc_info:
            await engine.start_quest(1, "veteran_special", now=NOW)
        assert exc_info.value.error_code == "QUEST_LOCKED"

        await engine.award_xp(1, 1500, "veteran")
        started = await engine.start_quest(1, "veteran_special", now=NOW)
        assert started["status"] == "in_progress"


# ============================================================================
# EXPIRY TESTS
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestQuestExpiry:
    async def test_maintenance_expires_elapsed_assignments(self, engine):
        await engine.open_account(1, "ada")
        await engine.refresh_daily_quests(1, now=NOW)

        swept = await engine.run_maintenance(now=NOW + timedelta(days=1))
        again = await engine.run_maintenance(now=NOW + timedelta(days=1))

        assert swept["expired_quests"] == 3
        assert again["expired_quests"] == 0

    async def test_active_quests_skip_expired_and_refresh(self, engine):
        await engine.open_account(1, "ada")
        await engine.refresh_daily_quests(1, now=NOW)

        active = await engine.get_active_quests(1, now=NOW + timedelta(days=1))

        assert {a["cycle_key"] for a in active} == {"2024-03-11"}
