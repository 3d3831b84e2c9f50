"""
Sparkle Gamification Formulas

Purpose
-------
Pure calculation functions for the engine's mathematical rules: the level
curve and its inverse, level progress, level-up reward bundles, store
discounts and login streaks.

Design Notes
------------
All formulas:
- Accept parameters explicitly (no config or database access)
- Are deterministic and side-effect free
- Raise ``ValueError`` on arguments outside their domain

Level Curve
-----------
Level 1 starts at 0 XP. For ``L >= 2`` the cumulative XP required to reach
level ``L`` is ``50 * L * (L + 1)``:

    level  2 ->    300
    level  3 ->    600
    level 10 ->  5,500

Usage
-----
    from sparkle.modules.shared.formulas import calculate_level_from_xp

    calculate_level_from_xp(300)  # 2
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Iterable, Mapping, Optional, Tuple

XP_CURVE_FACTOR = 50

DEFAULT_MILESTONE_ITEMS: Mapping[int, str] = {
    10: "badge_bronze_star",
    25: "badge_silver_star",
    50: "badge_gold_star",
    100: "badge_diamond_star",
}


def calculate_xp_for_level(level: int) -> int:
    """
    Total XP required to reach ``level``.

    Example:
        >>> calculate_xp_for_level(1)
        0
        >>> calculate_xp_for_level(2)
        300
    """
    if level < 1:
        raise ValueError(f"level must be >= 1, got {level}")
    if level == 1:
        return 0
    return XP_CURVE_FACTOR * level * (level + 1)


def calculate_level_from_xp(xp: int) -> int:
    """
    Highest level whose threshold is <= ``xp`` (minimum 1).

    Closed-form inverse of ``calculate_xp_for_level`` using integer square
    roots, so there is no floating-point drift at exact thresholds.

    Example:
        >>> calculate_level_from_xp(0)
        1
        >>> calculate_level_from_xp(299)
        1
        >>> calculate_level_from_xp(300)
        2
    """
    if xp < 0:
        raise ValueError(f"xp must be non-negative, got {xp}")

    # 50 * L * (L + 1) <= xp  <=>  L * (L + 1) <= xp // 50
    quotient = xp // XP_CURVE_FACTOR
    level = (math.isqrt(4 * quotient + 1) - 1) // 2
    return max(1, level)


@dataclass(frozen=True)
class LevelProgress:
    level: int
    current_xp: int
    current_level_xp: int
    next_level_xp: int
    progress_xp: int
    progress_percentage: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "level": self.level,
            "current_xp": self.current_xp,
            "current_level_xp": self.current_level_xp,
            "next_level_xp": self.next_level_xp,
            "progress_xp": self.progress_xp,
            "progress_percentage": self.progress_percentage,
        }


def calculate_level_progress(xp: int, level: Optional[int] = None) -> LevelProgress:
    """
    Progress of ``xp`` inside its level band.

    ``level`` defaults to the level derived from ``xp``.
    """
    if level is None:
        level = calculate_level_from_xp(xp)

    floor_xp = calculate_xp_for_level(level)
    next_xp = calculate_xp_for_level(level + 1)
    progress_xp = xp - floor_xp
    needed = next_xp - floor_xp

    return LevelProgress(
        level=level,
        current_xp=xp,
        current_level_xp=floor_xp,
        next_level_xp=next_xp,
        progress_xp=progress_xp,
        progress_percentage=round(progress_xp / needed * 100, 2),
    )


@dataclass(frozen=True)
class LevelRewardBundle:
    level: int
    sparkle_points: int = 0
    premium_points: int = 0
    items: Tuple[str, ...] = field(default_factory=tuple)


def calculate_level_rewards(
    level: int,
    *,
    sparkle_per_level: int = 100,
    premium_interval: int = 5,
    premium_per_level: int = 10,
    milestone_items: Optional[Mapping[int, str]] = None,
) -> LevelRewardBundle:
    """
    Reward bundle for reaching ``level``.

    Example:
        >>> calculate_level_rewards(2).sparkle_points
        200
        >>> calculate_level_rewards(10).premium_points
        100
    """
    milestones = DEFAULT_MILESTONE_ITEMS if milestone_items is None else milestone_items
    premium = level * premium_per_level if premium_interval > 0 and level % premium_interval == 0 else 0
    item = milestones.get(level)

    return LevelRewardBundle(
        level=level,
        sparkle_points=level * sparkle_per_level,
        premium_points=premium,
        items=(item,) if item else (),
    )


def calculate_discounted_price(unit_price: int, quantity: int, discount_percent: int = 0) -> int:
    """
    ``floor(unit_price * quantity * (1 - discount / 100))`` in integer math.

    Example:
        >>> calculate_discounted_price(150, 3, 10)
        405
    """
    if not 0 <= discount_percent <= 100:
        raise ValueError(f"discount_percent must be within 0..100, got {discount_percent}")
    return (unit_price * quantity * (100 - discount_percent)) // 100


def calculate_login_streak(login_days: Iterable[date], today: date) -> int:
    """
    Consecutive login days ending today or yesterday.

    A streak whose most recent day is older than yesterday is broken (0).

    Example:
        >>> d = date(2024, 3, 10)
        >>> calculate_login_streak([d, d - timedelta(days=1)], d)
        2
    """
    days = set(login_days)
    if today in days:
        cursor = today
    elif today - timedelta(days=1) in days:
        cursor = today - timedelta(days=1)
    else:
        return 0

    streak = 0
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def calculate_percentage(current: int, required: int) -> float:
    if required <= 0:
        return 100.0
    return round(min(current, required) / required * 100, 2)
