"""
Accounts Module
===============

Services:
- AccountService: account creation and lookup
"""

from .service import AccountRepository, AccountService, account_to_dict

__all__ = [
    "AccountRepository",
    "AccountService",
    "account_to_dict",
]
