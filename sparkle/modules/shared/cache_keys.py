"""
Cache key builders and post-commit invalidation.

Key Layout
----------
- ``leaderboard:{metric}:{scope}:{period}:{limit}``  ranked entries
- ``user:stats:{account_id}``                         user stats payload
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sparkle.core.redis.service import RedisService

if TYPE_CHECKING:
    from sparkle.core.database.unit_of_work import UnitOfWork

LEADERBOARD_PREFIX = "leaderboard"
USER_STATS_PREFIX = "user:stats"


def leaderboard_key(metric: str, scope: str, period: str, limit: int) -> str:
    return f"{LEADERBOARD_PREFIX}:{metric}:{scope}:{period}:{limit}"


def leaderboard_pattern(metric: str, scope: str, period: str) -> str:
    return f"{LEADERBOARD_PREFIX}:{metric}:{scope}:{period}:*"


def user_stats_key(account_id: int) -> str:
    return f"{USER_STATS_PREFIX}:{account_id}"


def invalidate_user_stats_after_commit(uow: UnitOfWork, account_id: int) -> None:
    """Drop the cached stats of ``account_id`` once, after ``uow`` commits."""
    key = user_stats_key(account_id)

    async def _invalidate() -> None:
        await RedisService.delete(key)

    uow.after_commit(f"cache:invalidate:{key}", _invalidate, key=f"cache:{key}")
