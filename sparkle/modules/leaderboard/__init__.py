"""
Leaderboard Module
==================

Services:
- LeaderboardService: cached rankings and persisted snapshots
- UserStatsService: per-account profile summary
"""

from .service import LeaderboardService, period_start
from .stats import UserStatsService

__all__ = ["LeaderboardService", "UserStatsService", "period_start"]
