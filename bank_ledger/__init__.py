"""
Bank Ledger

A small banking ledger service: accounts with balances, an append-only
ledger of movements, and atomic deposit, withdrawal and phone-based
transfer operations using Decimal money.
"""

__version__ = "1.0.0"
