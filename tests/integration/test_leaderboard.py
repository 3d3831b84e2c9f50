"""
Integration Tests for Leaderboards and User Stats
=================================================

Purpose
-------
Verify ranking order, eligibility, period windows, followed-account scopes,
persisted snapshots and the user stats summary.
"""

import asyncio
from datetime import timedelta

import pytest

from sparkle.modules.shared.exceptions import NotFoundError
from tests.factories import NOW, create_comment, create_follow, create_post


def _board(entries):
    return [(entry["account_id"], entry["score"]) for entry in entries]


@pytest.fixture
async def community(engine):
    """
    Five accounts with known XP:

    1 ada 50, 2 bo 120, 3 cy (admin) 500, 4 di (banned) 500, 5 ed 50, 6 fa 0
    """
    for account_id, name in enumerate(["ada", "bo", "cy", "di", "ed", "fa"], start=1):
        await engine.open_account(account_id, name)
    for account_id, xp in ((1, 50), (2, 120), (3, 500), (4, 500), (5, 50)):
        await engine.award_xp(account_id, xp, "seed")
    await engine.accounts.update_flags(3, role="admin")
    await engine.accounts.update_flags(4, banned=True)
    return engine


@pytest.mark.integration
@pytest.mark.database
class TestRankings:
    """Test ordering and eligibility."""

    async def test_all_time_xp(self, community):
        """Ties break on account id; admins and banned accounts never rank."""
        board = await community.get_leaderboard("xp")

        assert _board(board) == [(2, 120), (1, 50), (5, 50), (6, 0)]
        assert [entry["rank"] for entry in board] == [1, 2, 3, 4]
        assert board[0]["username"] == "bo"

    async def test_limit(self, community):
        board = await community.get_leaderboard("xp", limit=2)

        assert _board(board) == [(2, 120), (1, 50)]

    async def test_user_rank(self, community):
        assert (await community.leaderboard.get_user_rank(5))["rank"] == 3
        assert (await community.leaderboard.get_user_rank(2))["score"] == 120
        assert (await community.leaderboard.get_user_rank(3))["rank"] is None

    async def test_following_scope(self, community):
        await create_follow(1, 2)
        await create_follow(1, 3)

        board = await community.get_leaderboard("xp", scope="following:1")

        assert _board(board) == [(2, 120), (1, 50)]

    async def test_posts_all_time_skips_zero_scores(self, community):
        for _ in range(2):
            await create_post(1)
        await create_post(2)
        await create_post(5, published=False)

        board = await community.get_leaderboard("posts")

        assert _board(board) == [(1, 2), (2, 1)]

    async def test_posts_windows(self, community):
        await create_post(1, created_at=NOW - timedelta(hours=2))
        await create_post(2, created_at=NOW - timedelta(days=2))
        await create_post(2, created_at=NOW - timedelta(days=10))

        day = await community.leaderboard.get_leaderboard("posts", period="day", now=NOW)
        week = await community.leaderboard.get_leaderboard("posts", period="week", now=NOW)
        month = await community.leaderboard.get_leaderboard("posts", period="month", now=NOW)

        assert _board(day) == [(1, 1)]
        assert _board(week) == [(1, 1), (2, 1)]
        assert _board(month) == [(2, 2), (1, 1)]

    async def test_followers(self, community):
        await create_follow(1, 5)
        await create_follow(2, 5)
        await create_follow(5, 1)

        board = await community.get_leaderboard("followers")

        assert _board(board) == [(5, 2), (1, 1)]

    async def test_windowed_sparkle_counts_earnings_only(self, engine):
        await engine.open_account(1, "ada")
        await engine.open_account(2, "bo")
        await engine.ledger.award(1, 100, "sparkle_points", "bonus")
        await engine.ledger.spend(1, 80, "sparkle_points", "shopping")
        await engine.ledger.award(2, 50, "sparkle_points", "bonus")

        week = await engine.get_leaderboard("sparkle_points", period="week")
        all_time = await engine.get_leaderboard("sparkle_points")

        assert _board(week) == [(1, 100), (2, 50)]
        assert _board(all_time) == [(2, 50), (1, 20)]


@pytest.mark.integration
@pytest.mark.database
class TestSnapshots:
    async def test_refresh_persists_snapshot(self, community, published):
        entries = await community.refresh_leaderboard("xp")
        snapshot = await community.leaderboard.get_snapshot("xp")

        assert snapshot["entries"] == entries
        assert snapshot["metric"] == "xp"
        assert "leaderboard.refreshed" in [name for name, _ in published]

    async def test_missing_snapshot(self, community):
        assert await community.leaderboard.get_snapshot("posts", period="week") is None

    async def test_concurrent_refreshes_converge(self, community):
        """Redundant refreshes leave one snapshot holding the latest ranking."""
        results = await asyncio.gather(*(community.refresh_leaderboard("xp") for _ in range(3)))

        assert all(result == results[0] for result in results)
        snapshot = await community.leaderboard.get_snapshot("xp")
        assert _board(snapshot["entries"]) == [(2, 120), (1, 50), (5, 50), (6, 0)]


@pytest.mark.integration
@pytest.mark.database
class TestUserStats:
    async def test_stats_summary(self, engine):
        # Arrange
        await engine.open_account(1, "ada", sparkle_points=100)
        await engine.open_account(2, "bo")
        post_id = await create_post(1)
        await create_post(1)
        await create_comment(1, post_id)
        await create_follow(2, 1)
        await engine.on_trigger(1, "post_created", now=NOW)
        await engine.ledger.spend(1, 30, "sparkle_points", "tip")
        await engine.refresh_daily_quests(1)
        await engine.record_login(1)

        # Act
        stats = await engine.get_user_stats(1)

        # Assert
        assert stats["username"] == "ada"
        assert stats["rank"] == 1
        assert stats["level"]["current_xp"] == 100
        assert stats["achievements"]["unlocked"] == 1
        assert stats["achievements"]["total"] == 10
        assert stats["achievements"]["recent"][0]["achievement_id"] == "first_post"
        assert stats["activity"] == {"posts": 2, "comments": 1, "followers": 1, "following": 0}
        assert stats["recent_xp"][0]["reason"] == "achievement:first_post"
        assert stats["quests"]["available"] == 3
        assert stats["quests"]["claimed"] == 0
        assert stats["economy"] == {
            "sparkle_points": 120,
            "premium_points": 0,
            "sparkle_earned": 150,
            "sparkle_spent": 30,
        }
        assert stats["login_streak"] == 1

    async def test_unknown_account(self, engine):
        with pytest.raises(NotFoundError):
            await engine.get_user_stats(77)
