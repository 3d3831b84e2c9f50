"""Progression models: XP log, achievements, quests, leaderboards."""

from .achievement_progress import AchievementProgress
from .leaderboard import LeaderboardSnapshot
from .quest_assignment import QuestAssignment
from .xp_entry import XPEntry

__all__ = ["AchievementProgress", "LeaderboardSnapshot", "QuestAssignment", "XPEntry"]
