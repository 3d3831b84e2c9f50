"""
Quests Module
=============

Services:
- QuestService: assignment, progress tracking and reward claims
"""

from .service import QuestService, cycle_window

__all__ = ["QuestService", "cycle_window"]
