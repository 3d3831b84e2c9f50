"""
Sparkle Shared Module

Domain-level foundations for every gamification module:

- BaseService / BaseRepository patterns
- Domain exceptions
- Pure formulas (level curve, rewards, streaks)
- Trigger vocabulary and routing

Infrastructure (database, cache, event bus) lives in ``sparkle.core``.
"""

from __future__ import annotations

from .base_repository import BaseRepository
from .base_service import BaseService
from .exceptions import (
    ConcurrencyConflictError,
    ConfigurationError,
    ErrorSeverity,
    InsufficientFundsError,
    InsufficientInventoryError,
    InvalidOperationError,
    InvalidStateError,
    NotFoundError,
    SelfReferenceNotAllowedError,
    SparkleDomainException,
    TradeNoLongerValidError,
    ValidationError,
    get_error_severity,
    is_transient_error,
)
from .formulas import (
    LevelProgress,
    LevelRewardBundle,
    calculate_level_from_xp,
    calculate_level_progress,
    calculate_level_rewards,
    calculate_xp_for_level,
)

__all__ = [
    "BaseRepository",
    "BaseService",
    "ConcurrencyConflictError",
    "ConfigurationError",
    "ErrorSeverity",
    "InsufficientFundsError",
    "InsufficientInventoryError",
    "InvalidOperationError",
    "InvalidStateError",
    "NotFoundError",
    "SelfReferenceNotAllowedError",
    "SparkleDomainException",
    "TradeNoLongerValidError",
    "ValidationError",
    "get_error_severity",
    "is_transient_error",
    "LevelProgress",
    "LevelRewardBundle",
    "calculate_level_from_xp",
    "calculate_level_progress",
    "calculate_level_rewards",
    "calculate_xp_for_level",
]
