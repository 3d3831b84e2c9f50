"""Sparkle gamification engine: XP, currencies, achievements, quests, trades and leaderboards."""

__version__ = "0.1.0"
