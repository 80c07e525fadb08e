"""
Ledger client boundary.
"""
from .base import BalanceSource, LedgerClient, UtxoListener
from .memory import InMemoryLedger
from .rest import KaspaRestApi

__all__ = ["BalanceSource", "LedgerClient", "UtxoListener", "InMemoryLedger", "KaspaRestApi"]
