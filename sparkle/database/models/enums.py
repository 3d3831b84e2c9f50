"""
Database Model Enums
====================

Type-safe constants for categorical columns. Columns store the ``.value``
strings; services compare against these enums.
"""

from __future__ import annotations

import enum


class CurrencyType(str, enum.Enum):
    SPARKLE_POINTS = "sparkle_points"
    PREMIUM_POINTS = "premium_points"

    @property
    def column(self) -> str:
        """Attribute name of the balance on ``Account``."""
        return self.value


class TransactionKind(str, enum.Enum):
    """Classification of a currency ledger row."""

    EARNED = "earned"
    SPENT = "spent"
    TRANSFERRED = "transferred"
    REFUNDED = "refunded"


class AccountRole(str, enum.Enum):
    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


class ItemCategory(str, enum.Enum):
    CONSUMABLE = "consumable"
    COSMETIC = "cosmetic"
    BADGE = "badge"
    FEATURE = "feature"


class AchievementRarity(str, enum.Enum):
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"
    MYTHIC = "mythic"


class QuestType(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    SPECIAL = "special"
    ACHIEVEMENT = "achievement"
    SEASONAL = "seasonal"


class QuestStatus(str, enum.Enum):
    """
    Quest assignment lifecycle.

    AVAILABLE -> IN_PROGRESS -> COMPLETED -> CLAIMED, with EXPIRED reachable
    from any non-terminal state and LOCKED until gates are satisfied.
    """

    LOCKED = "locked"
    AVAILABLE = "available"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CLAIMED = "claimed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (QuestStatus.CLAIMED, QuestStatus.EXPIRED)


class TradeStatus(str, enum.Enum):
    """
    Trade lifecycle. PENDING is the only non-terminal state apart from the
    transient ACCEPTED that exists only inside the executing transaction.
    """

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    FAILED = "failed"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self not in (TradeStatus.PENDING, TradeStatus.ACCEPTED)


class LeaderboardMetric(str, enum.Enum):
    XP = "xp"
    SPARKLE_POINTS = "sparkle_points"
    POSTS = "posts"
    FOLLOWERS = "followers"


class LeaderboardPeriod(str, enum.Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    ALL = "all"
