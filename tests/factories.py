"""
Test data factories.

Catalogue definitions shared by the fixtures, plus helpers that write host
activity rows (posts, comments, follows, reactions, logins) the way the host
application would before firing a trigger.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sparkle.core.database.service import DatabaseService
from sparkle.database.models.social import Comment, Follow, LoginEvent, Post, Reaction

# Fixed reference time for tests that depend on calendar boundaries.
NOW = datetime(2024, 3, 10, 15, 0, tzinfo=timezone.utc)


CATALOG_DATA: Dict[str, Any] = {
    "achievements": {
        "first_post": {
            "name": "First Steps",
            "description": "Create your first post",
            "category": "content",
            "trigger": "post_created",
            "criteria": {"metric": "post_count", "threshold": 1},
            "rewards": {"xp": 100, "sparkle_points": 50},
        },
        "prolific_writer": {
            "name": "Prolific Writer",
            "category": "content",
            "rarity": "uncommon",
            "trigger": "post_created",
            "criteria": {"metric": "post_count", "threshold": 3},
            "rewards": {"xp": 50},
            "prerequisites": ["first_post"],
        },
        "first_follow": {
            "name": "Making Friends",
            "category": "social",
            "trigger": "user_followed",
            "criteria": {"metric": "follow_count", "threshold": 1},
            "rewards": {"sparkle_points": 25},
        },
        "popular": {
            "name": "Popular",
            "category": "social",
            "trigger": "user_followed",
            "criteria": {"metric": "follower_count", "threshold": 2},
            "rewards": {"sparkle_points": 10},
        },
        "rising_star": {
            "name": "Rising Star",
            "category": "progression",
            "trigger": "level_reached",
            "criteria": {"metric": "level", "threshold": 2},
            "rewards": {"sparkle_points": 30},
        },
        "first_purchase": {
            "name": "Shopper",
            "category": "economy",
            "trigger": "item_purchased",
            "criteria": {"metric": "items_purchased", "threshold": 1},
            "rewards": {"items": ["badge_shopper"]},
        },
        "trader": {
            "name": "Trader",
            "category": "economy",
            "trigger": "trade_completed",
            "criteria": {"metric": "trades_completed", "threshold": 1},
            "rewards": {"sparkle_points": 20},
        },
        "streak_three": {
            "name": "Three in a Row",
            "category": "engagement",
            "trigger": "login",
            "criteria": {"metric": "login_streak", "threshold": 3},
            "rewards": {"xp": 30},
        },
        "lucky_sparkle": {
            "name": "Lucky Sparkle",
            "category": "secret",
            "rarity": "legendary",
            "hidden": True,
            "trigger": "special_action",
            "criteria": {"metric": "action", "action": "found_sparkle"},
            "rewards": {"premium_points": 5},
        },
        "quest_beginner": {
            "name": "Quest Beginner",
            "category": "quests",
            "trigger": "quest_completed",
            "criteria": {"metric": "quests_completed", "threshold": 1},
            "rewards": {"sparkle_points": 15},
        },
    },
    "quest_definitions": {
        "daily_first_post": {
            "name": "Daily Writer",
            "type": "daily",
            "requirement": {"type": "create_posts", "count": 1},
            "rewards": {"xp": 50, "sparkle_points": 25},
        },
        "daily_commenter": {
            "name": "Join the Discussion",
            "type": "daily",
            "requirement": {"type": "create_comments", "count": 2},
            "rewards": {"xp": 40},
        },
        "daily_reactor": {
            "name": "Spread the Love",
            "type": "daily",
            "requirement": {"type": "give_reactions", "count": 3},
            "rewards": {"sparkle_points": 15},
        },
        "weekly_shopper": {
            "name": "Treat Yourself",
            "type": "weekly",
            "requirement": {"type": "purchase_items", "count": 2},
            "rewards": {"premium_points": 5},
        },
        "special_storyteller": {
            "name": "Storyteller",
            "type": "special",
            "requirement": {"type": "create_posts", "count": 2},
            "rewards": {"xp": 20, "items": {"badge_storyteller": 1}},
            "cooldown_hours": 48,
        },
        "veteran_special": {
            "name": "Veteran",
            "type": "special",
            "requirement": {"type": "create_posts", "count": 1},
            "rewards": {"sparkle_points": 5},
            "min_level": 5,
        },
    },
}


async def create_post(
    author_id: int,
    *,
    created_at: Optional[datetime] = None,
    published: bool = True,
    youtube_video_id: Optional[str] = None,
) -> int:
    async with DatabaseService.get_transaction() as session:
        post = Post(
            author_id=author_id,
            title="post",
            published=published,
            youtube_video_id=youtube_video_id,
            created_at=created_at or NOW,
        )
        session.add(post)
        await session.flush()
        return post.id


async def create_comment(author_id: int, post_id: int, *, created_at: Optional[datetime] = None) -> int:
    async with DatabaseService.get_transaction() as session:
        comment = Comment(author_id=author_id, post_id=post_id, created_at=created_at or NOW)
        session.add(comment)
        await session.flush()
        return comment.id


async def create_follow(follower_id: int, following_id: int, *, created_at: Optional[datetime] = None) -> None:
    async with DatabaseService.get_transaction() as session:
        session.add(Follow(follower_id=follower_id, following_id=following_id, created_at=created_at or NOW))


async def create_reaction(account_id: int, post_id: int, kind: str = "like") -> None:
    async with DatabaseService.get_transaction() as session:
        session.add(Reaction(account_id=account_id, post_id=post_id, kind=kind))


async def create_login(account_id: int, at: datetime) -> None:
    async with DatabaseService.get_transaction() as session:
        session.add(LoginEvent(account_id=account_id, occurred_at=at))
