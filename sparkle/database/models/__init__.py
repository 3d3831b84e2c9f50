"""
Database Models Package
=======================

SQLAlchemy ORM models for the gamification engine, grouped by domain:

- core: Account
- economy: CurrencyTransaction, StoreItem, InventoryEntry, Trade
- progression: XPEntry, AchievementProgress, QuestAssignment, LeaderboardSnapshot
- social: Post, Comment, Follow, Reaction, LoginEvent (host-owned, read-only here)
- enums: shared categorical constants

Importing this package registers every table on ``Base.metadata``.
"""

from sparkle.core.database.base import Base

from .core import Account
from .economy import CurrencyTransaction, InventoryEntry, StoreItem, Trade
from .progression import AchievementProgress, LeaderboardSnapshot, QuestAssignment, XPEntry
from .social import Comment, Follow, LoginEvent, Post, Reaction

__all__ = [
    "Base",
    "Account",
    "CurrencyTransaction",
    "InventoryEntry",
    "StoreItem",
    "Trade",
    "AchievementProgress",
    "LeaderboardSnapshot",
    "QuestAssignment",
    "XPEntry",
    "Comment",
    "Follow",
    "LoginEvent",
    "Post",
    "Reaction",
]
