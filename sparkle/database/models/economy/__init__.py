"""Economy models: currency ledger, store, inventory, trades."""

from .currency_transaction import CurrencyTransaction
from .inventory import InventoryEntry
from .store_item import StoreItem
from .trade import Trade

__all__ = ["CurrencyTransaction", "InventoryEntry", "StoreItem", "Trade"]
