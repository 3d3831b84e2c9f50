"""
Economy Module
==============

Services:
- CurrencyLedger: balance mutations with an append-only ledger
- InventoryService: items held per account
- StoreService: catalogue and purchase flow
"""

from .inventory import InventoryService
from .ledger import CurrencyLedger
from .store import StoreService

__all__ = ["CurrencyLedger", "InventoryService", "StoreService"]
