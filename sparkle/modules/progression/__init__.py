"""
Progression Module
==================

Services:
- XPService: XP award and level-up flow
- AchievementService: trigger-driven achievement evaluation

Helpers:
- streaks: login streak queries
"""

from .achievement_service import AchievementService
from .xp_service import XPService

__all__ = ["AchievementService", "XPService"]
