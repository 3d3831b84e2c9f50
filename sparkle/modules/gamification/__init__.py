"""
Gamification Module
===================

The facade the host application talks to.

Services:
- GamificationService: wires the engine and exposes its caller-facing operations
"""

from sparkle.modules.shared.catalog import GamificationCatalog

from .service import GamificationService

__all__ = ["GamificationCatalog", "GamificationService"]
