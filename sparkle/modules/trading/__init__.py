"""
Trading Module
==============

Services:
- TradeService: consent-based item and point exchange between two accounts
"""

from .service import TradeService, trade_to_dict

__all__ = ["TradeService", "trade_to_dict"]
