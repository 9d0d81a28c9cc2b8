"""
Core Ledger

Account balances and their immutable transaction history, with atomic,
concurrency-safe deposits, withdrawals and transfers using Decimal precision.
"""

__version__ = "1.0.0"
