"""Core models: the gamification account."""

from .account import Account

__all__ = ["Account"]
